"""Gateway routing table.

Every path the gateway answers is declared here with its dispatch mode and,
for forwarded routes, the backend path it maps to. The ``/api/v1`` prefix is a
declared strip transform: classification always runs on the stripped path.
Rules marked ``public`` are the only calls that skip authentication.
"""

import re
from dataclasses import dataclass, field
from enum import StrEnum


class Dispatch(StrEnum):
    LOCAL = "local"
    PROXY = "proxy"
    QUEUE = "queue"


@dataclass(frozen=True)
class PrefixRule:
    """A path prefix that is removed before classification."""

    prefix: str

    def strip(self, path: str) -> tuple[str, bool]:
        if path == self.prefix or path.startswith(self.prefix + "/"):
            return path[len(self.prefix) :] or "/", True
        return path, False


API_PREFIX = PrefixRule("/api/v1")

_PARAM_RE = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class RouteRule:
    method: str
    pattern: str
    dispatch: Dispatch
    backend_path: str | None = None
    public: bool = False
    _regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        regex = _PARAM_RE.sub(r"(?P<\1>[^/]+)", self.pattern)
        object.__setattr__(self, "_regex", re.compile(f"^{regex}$"))

    def match(self, method: str, path: str) -> dict[str, str] | None:
        if method.upper() != self.method:
            return None
        m = self._regex.match(path)
        return m.groupdict() if m else None

    def backend_target(self, params: dict[str, str]) -> str:
        if self.backend_path is None:
            raise ValueError(f"{self.method} {self.pattern} is not forwarded")
        return self.backend_path.format(**params)


ROUTE_TABLE: tuple[RouteRule, ...] = (
    # Served by the gateway itself
    RouteRule("GET", "/health", Dispatch.LOCAL, public=True),
    RouteRule("POST", "/auth", Dispatch.LOCAL, public=True),
    RouteRule("POST", "/verify-otp", Dispatch.LOCAL, public=True),
    RouteRule("POST", "/auth/verify", Dispatch.LOCAL, public=True),
    RouteRule("GET", "/test/otp/{method_id}", Dispatch.LOCAL, public=True),
    RouteRule("GET", "/queue/status/{queue_id}", Dispatch.LOCAL),
    RouteRule("GET", "/queue/stats", Dispatch.LOCAL),
    RouteRule("POST", "/queue/cleanup", Dispatch.LOCAL),
    # Heavy analysis, processed by the queue consumer
    RouteRule("POST", "/analyze", Dispatch.QUEUE, "/api/v1/analyze"),
    RouteRule("POST", "/forecast", Dispatch.QUEUE, "/api/v1/forecast"),
    RouteRule("POST", "/double", Dispatch.QUEUE, "/api/v1/double"),
    RouteRule("POST", "/cmt", Dispatch.QUEUE, "/api/v1/cmt"),
    RouteRule("POST", "/benchmark", Dispatch.QUEUE, "/api/v1/benchmark"),
    # Light reads, forwarded synchronously
    RouteRule("GET", "/analyze/{job_id}", Dispatch.PROXY, "/api/v1/analyze/{job_id}"),
    RouteRule("GET", "/daily-report", Dispatch.PROXY, "/api/v1/daily-report"),
    RouteRule("GET", "/learning-metrics", Dispatch.PROXY, "/api/v1/learning-metrics"),
    RouteRule("GET", "/recommendations/open", Dispatch.PROXY, "/api/v1/recommendations/open"),
    RouteRule("POST", "/announcements", Dispatch.PROXY, "/api/v1/announcements", public=True),
    RouteRule("POST", "/agent/ingest", Dispatch.PROXY, "/api/v1/agent/ingest"),
    RouteRule("POST", "/agent/predict", Dispatch.PROXY, "/api/v1/agent/predict"),
    RouteRule("POST", "/agent/benchmark", Dispatch.PROXY, "/api/v1/agent/benchmark"),
    RouteRule("GET", "/agent/status", Dispatch.PROXY, "/api/v1/agent/status"),
)


def is_public(method: str, path: str) -> bool:
    """True if the call (with or without the API prefix) matches a public rule exactly."""
    path, _ = API_PREFIX.strip(path)
    resolved = resolve(method, path)
    return resolved is not None and resolved[0].public


def resolve(method: str, path: str) -> tuple[RouteRule, dict[str, str]] | None:
    """Find the rule for method and path (API prefix already stripped)."""
    for rule in ROUTE_TABLE:
        params = rule.match(method, path)
        if params is not None:
            return rule, params
    return None


def local_path(method: str, path: str) -> str | None:
    """Return the stripped path if an API-prefixed call targets a gateway-local route."""
    stripped, had_prefix = API_PREFIX.strip(path)
    if not had_prefix:
        return None
    resolved = resolve(method, stripped)
    if resolved is not None and resolved[0].dispatch is Dispatch.LOCAL:
        return stripped
    return None


def forwarded_rules() -> list[RouteRule]:
    return [rule for rule in ROUTE_TABLE if rule.dispatch is not Dispatch.LOCAL]
