"""Custom exceptions for the MYA gateway and CLI."""

from typing import Any


class MyaError(Exception):
    """Base exception for all MYA errors.

    Gateway-facing subclasses carry the HTTP status the API renders them with.
    """

    status_code: int = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidInputError(MyaError):
    """Raised for malformed emails, passcodes, or missing required fields."""

    status_code = 400


class UnauthorizedError(MyaError):
    """Raised when a bearer token or passcode cannot be verified."""

    status_code = 401


class RequestNotFoundError(MyaError):
    """Raised when a queued request record does not exist."""

    status_code = 404

    def __init__(self, user_id: str, request_id: str) -> None:
        super().__init__(
            f"Request {request_id} not found",
            details={"userId": user_id, "queueId": request_id},
        )
        self.user_id = user_id
        self.request_id = request_id


class QueueFullError(MyaError):
    """Raised when a user's queue is at capacity."""

    status_code = 409

    def __init__(self, user_id: str, max_size: int) -> None:
        super().__init__(
            f"Queue full for user {user_id}. Maximum {max_size} requests allowed.",
            details={"userId": user_id, "maxSize": max_size},
        )
        self.user_id = user_id
        self.max_size = max_size


class InvalidTransitionError(MyaError):
    """Raised when a status change would move a request backwards."""

    status_code = 409

    def __init__(self, request_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Request {request_id} cannot move from {current} to {target}",
            details={"queueId": request_id, "current": current, "target": target},
        )


class RateLimitedError(MyaError):
    """Raised when an identity exceeds its request quota."""

    status_code = 429


class BackendUnavailableError(MyaError):
    """Raised when the analysis backend cannot be reached."""

    status_code = 503


class BackendMisconfiguredError(MyaError):
    """Raised when backend URL or token configuration is missing."""

    status_code = 503


class MisconfiguredError(MyaError):
    """Raised when gateway configuration (e.g. the JWT secret) is missing."""

    status_code = 503


class StoreUnavailableError(MyaError):
    """Raised when the key-value store cannot be reached."""

    status_code = 503


# Client-side errors


class NetworkError(MyaError):
    """Raised when every attempt of a client request fails."""

    def __init__(self, attempts: int, last_error: str) -> None:
        super().__init__(
            f"Network request failed after {attempts} attempts: {last_error}",
            details={"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


class HttpError(MyaError):
    """Raised when the gateway answers with a non-success status."""

    def __init__(self, status_code: int, reason: str, body: str = "") -> None:
        message = f"HTTP {status_code}: {reason}"
        if body:
            message = f"{message} - {body}"
        super().__init__(message, details={"body": body} if body else None)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class MalformedResponseError(MyaError):
    """Raised when a successful response is not valid JSON."""

    def __init__(self, excerpt: str) -> None:
        super().__init__(f"Invalid JSON response: {excerpt}", details={"excerpt": excerpt})
        self.excerpt = excerpt
