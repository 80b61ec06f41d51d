"""Error taxonomy for link resolution, verification and creation.

Every error carries the HTTP status it maps to; ``shortlink.main`` registers a
single handler for ``ShortLinkError`` that renders ``{"detail": ...}``.

Error Map
=========
::
    ShortLinkError
    ├─ NotFound             404  unknown id (terminal)
    ├─ Expired              410  expires_at reached (terminal)
    ├─ Unauthorized         401  wrong password (retryable)
    ├─ Conflict             409  duplicate custom id
    ├─ UpstreamUnavailable  503  cache or channel unreachable
    └─ StoreUnavailable     503  link store unreachable

Cache and channel failures are absorbed before they reach a redirect caller;
only StoreUnavailable is expected to surface from the redirect path.
"""

__all__ = [
    "ShortLinkError",
    "NotFound",
    "Expired",
    "Unauthorized",
    "Conflict",
    "UpstreamUnavailable",
    "StoreUnavailable",
]


class ShortLinkError(Exception):
    status_code: int = 500
    default_detail: str = "Internal Server Error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(ShortLinkError):
    status_code = 404
    default_detail = "Short link not found"


class Expired(ShortLinkError):
    status_code = 410
    default_detail = "This link has expired"


class Unauthorized(ShortLinkError):
    status_code = 401
    default_detail = "Incorrect password"


class Conflict(ShortLinkError):
    status_code = 409
    default_detail = "Link id is already taken"


class UpstreamUnavailable(ShortLinkError):
    """Raised by the cache and channel adapters when their backend is down."""

    status_code = 503
    default_detail = "Upstream service unavailable"


class StoreUnavailable(ShortLinkError):
    status_code = 503
    default_detail = "Link store unavailable"
