"""Device and location detection for new sessions."""

from ipaddress import ip_address
from typing import Protocol

import httpx
import structlog
from user_agents import parse as parse_ua

from tonotes.core.modules.session.models import DeviceInfo

logger = structlog.get_logger(__name__)

UNKNOWN_LOCATION = "Unknown Location"
LOCAL_NETWORK = "Local Network"


def parse_user_agent(user_agent: str) -> DeviceInfo:
    """Extract browser family, OS family and device class from a User-Agent header."""
    if not user_agent:
        return DeviceInfo()

    parsed = parse_ua(user_agent)
    device = "Desktop"
    if parsed.is_mobile:
        device = "iPhone" if "iPhone" in user_agent else "Mobile"
    elif parsed.is_tablet:
        device = "Tablet"

    browser = parsed.browser.family.strip()
    os = parsed.os.family.strip()
    return DeviceInfo(
        browser=browser if browser and browser != "Other" else "Unknown Browser",
        os=os if os and os != "Other" else "Unknown OS",
        device=device,
    )


def session_display_name(device: DeviceInfo, location: str) -> str:
    return f"{device.browser} on {device.os} ({location or UNKNOWN_LOCATION})"


class Geolocator(Protocol):
    async def locate(self, ip: str) -> str: ...


class HttpGeolocator:
    """Resolves an IP to "City, Country" through an HTTP geolocation API.

    Never raises: lookups that fail or time out resolve to "Unknown Location",
    and private or loopback addresses resolve to "Local Network" without a request.
    """

    def __init__(self, url_template: str, timeout: float) -> None:
        self._url_template = url_template
        self._timeout = timeout

    async def locate(self, ip: str) -> str:
        if not ip:
            return UNKNOWN_LOCATION
        try:
            address = ip_address(ip)
        except ValueError:
            return UNKNOWN_LOCATION
        if address.is_private or address.is_loopback or address.is_link_local:
            return LOCAL_NETWORK

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self._url_template.format(ip=ip))
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("geolocation_failed", ip=ip, error=str(e))
            return UNKNOWN_LOCATION

        return format_location(data)


def format_location(data: object) -> str:
    if not isinstance(data, dict):
        return UNKNOWN_LOCATION
    city = data.get("city") or ""
    country = data.get("country") or data.get("country_name") or ""
    if city and country:
        return f"{city}, {country}"
    return str(country) if country else UNKNOWN_LOCATION
