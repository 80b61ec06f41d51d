"""Click enrichment: User-Agent and referrer parsing."""

from functools import lru_cache
from urllib.parse import urlparse

from user_agents import parse

from shortlink.enums import DeviceType

__all__ = ["parse_user_agent", "referrer_host", "DIRECT_REFERRER", "UNKNOWN"]

DIRECT_REFERRER = "direct"
UNKNOWN = "Unknown"


@lru_cache(maxsize=1000)
def parse_user_agent(ua_string: str | None) -> tuple[str, str, str]:
    """Parse a User-Agent header.

    Args:
        ua_string: Raw User-Agent header, possibly empty.

    Returns:
        Tuple of (browser, os, device_type).
    """
    if not ua_string:
        return (UNKNOWN, UNKNOWN, DeviceType.UNKNOWN.value)

    ua = parse(ua_string)
    if ua.is_bot:
        device_type = DeviceType.BOT
    elif ua.is_tablet:
        device_type = DeviceType.TABLET
    elif ua.is_mobile:
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    return (
        ua.browser.family or UNKNOWN,
        ua.os.family or UNKNOWN,
        device_type.value,
    )


def referrer_host(referrer: str | None) -> str:
    """Reduce a Referer header to its host, or ``direct`` when absent."""
    if not referrer:
        return DIRECT_REFERRER
    host = urlparse(referrer).netloc.lower()
    return host or DIRECT_REFERRER
