"""Pydantic schemas for request/response validation, cache payloads and click events.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (validated URL)
    ├─ custom_id: str | None
    ├─ expires_in_hours: float | None
    ├─ password: str | None
    └─ owner_id: str | None

    LinkResponse (Output)            LinkInfo (Output)
    ├─ link_id, short_url            ├─ link_id
    ├─ target_url                    ├─ has_password
    ├─ has_password, expires_at      ├─ title / image
    ├─ title / image                 └─ expires_at
    ├─ click_count
    └─ created_at / last_accessed_at

    CachedLinkPayload (Redis)        ClickEvent (Kafka)
    ├─ target_url                    ├─ link_id, timestamp
    ├─ expires_at                    ├─ client_ip, user_agent
    └─ has_password                  └─ browser, os, device_type, referrer

    StatsSnapshot (Output)
    ├─ link_id, window_days, total_clicks
    ├─ browsers / operating_systems / devices / referrers: [DimensionCount]
    └─ daily: [DailyCount]

Key Behaviours
===============
- URL validation uses the validators library.
- Custom ids are 3-20 characters of letters, digits, ``-`` or ``_``, and may
  not shadow a fixed route (``RESERVED_LINK_IDS``).
- Passwords are limited to 72 UTF-8 bytes, the most bcrypt will hash.
- All datetime fields are timezone-aware UTC.
- CachedLinkPayload is the only shape ever written to the resolution cache;
  it never contains the password hash.
"""

import datetime

import validators
from pydantic import BaseModel, Field, field_validator

from shortlink.enums import HealthStatus

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "LinkInfo",
    "BulkShortenRequest",
    "BulkShortenItem",
    "BulkShortenResponse",
    "PasswordVerifyRequest",
    "PasswordVerifyResponse",
    "CachedLinkPayload",
    "ClickEvent",
    "DimensionCount",
    "DailyCount",
    "StatsSnapshot",
    "AnalyticsResponse",
    "HealthResponse",
]


# Ids shadowed by fixed routes.
RESERVED_LINK_IDS = frozenset({"api", "health", "metrics", "docs", "redoc", "openapi"})

# bcrypt only reads the first 72 bytes of a secret.
PASSWORD_MAX_BYTES = 72


def _validate_url(v: str) -> str:
    if not validators.url(v):
        raise ValueError("Invalid URL provided")
    return v


def _validate_password_bytes(v: str | None) -> str | None:
    if v is not None and len(v.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return v


class LinkCreate(BaseModel):
    url: str
    custom_id: str | None = None
    expires_in_hours: float | None = Field(None, gt=0, description="Hours until the link stops resolving.")
    password: str | None = Field(None, min_length=1, max_length=72)
    owner_id: str | None = Field(None, max_length=64)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v)

    @field_validator("custom_id")
    @classmethod
    def validate_custom_id(cls, v: str | None) -> str | None:
        if v is not None:
            if len(v) < 3 or len(v) > 20:
                raise ValueError("Custom id must be between 3 and 20 characters")
            if not v.replace("-", "").replace("_", "").isalnum():
                raise ValueError("Custom id may only contain letters, digits, '-' and '_'")
            if v in RESERVED_LINK_IDS:
                raise ValueError(f"Custom id '{v}' is reserved")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str | None) -> str | None:
        return _validate_password_bytes(v)


class LinkResponse(BaseModel):
    link_id: str
    short_url: str
    target_url: str
    owner_id: str | None = None
    has_password: bool
    title: str | None = None
    image: str | None = None
    click_count: int
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    last_accessed_at: datetime.datetime | None = None


class LinkInfo(BaseModel):
    link_id: str
    has_password: bool
    title: str | None = None
    image: str | None = None
    expires_at: datetime.datetime | None = None


class BulkShortenRequest(BaseModel):
    urls: list[str] = Field(..., min_length=1)
    owner_id: str | None = Field(None, max_length=64)


class BulkShortenItem(BaseModel):
    url: str
    success: bool
    link_id: str | None = None
    short_url: str | None = None
    error: str | None = None


class BulkShortenResponse(BaseModel):
    results: list[BulkShortenItem]


class PasswordVerifyRequest(BaseModel):
    password: str = Field(..., max_length=72)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _validate_password_bytes(v)


class PasswordVerifyResponse(BaseModel):
    target_url: str


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a link — a disposable projection of the store row."""

    target_url: str
    expires_at: datetime.datetime | None = None
    has_password: bool = False

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ClickEvent(BaseModel):
    """Kafka click event payload, keyed by link_id for partition affinity."""

    link_id: str = Field(..., description="Link id being clicked, e.g. 'abc123'")
    timestamp: datetime.datetime
    client_ip: str | None = None
    user_agent: str | None = None
    browser: str = "Unknown"
    os: str = "Unknown"
    device_type: str = "unknown"
    referrer: str = "direct"


class DimensionCount(BaseModel):
    value: str
    clicks: int


class DailyCount(BaseModel):
    date: datetime.date
    clicks: int


class StatsSnapshot(BaseModel):
    link_id: str
    window_days: int
    total_clicks: int
    browsers: list[DimensionCount] = Field(default_factory=list)
    operating_systems: list[DimensionCount] = Field(default_factory=list)
    devices: list[DimensionCount] = Field(default_factory=list)
    referrers: list[DimensionCount] = Field(default_factory=list)
    daily: list[DailyCount] = Field(default_factory=list)


class AnalyticsResponse(BaseModel):
    link: LinkResponse
    stats: StatsSnapshot


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    channel: HealthStatus
