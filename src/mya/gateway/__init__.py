"""Edge gateway: auth, rate limiting, per-user queueing, and backend proxying."""

from mya.gateway.proxy import BackendClient, BackendResponse, translate_backend_body
from mya.gateway.queue import QueuedRequest, RequestQueue, RequestStatus
from mya.gateway.rate_limit import RateLimiter

__all__ = [
    "BackendClient",
    "BackendResponse",
    "QueuedRequest",
    "RateLimiter",
    "RequestQueue",
    "RequestStatus",
    "translate_backend_body",
]
