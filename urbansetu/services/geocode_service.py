"""
Reverse geocoding for picked complaint locations.

Providers are tried in order; the first that yields a usable address wins.
When every provider fails the caller still gets a readable location built
from the raw coordinates, so this module never raises to the wizard.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from urbansetu.core.config import get_settings
from urbansetu.core.exceptions import GeocodeError

logger = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/reverse"
BIGDATACLOUD_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

MIN_ADDRESS_LENGTH = 15


def coordinate_fallback(latitude: float, longitude: float) -> str:
    return f"GPS Location: {latitude:.6f}, {longitude:.6f}"


def _first(addr: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        if addr.get(key):
            return addr[key]
    return None


def format_nominatim_detailed(data: Dict[str, Any]) -> Optional[str]:
    """
    Most specific to least specific: house, road, area/colony names, city,
    county, state, postcode. Country is left out to keep addresses local.
    """
    addr = data.get("address")
    if not addr:
        return None

    parts: List[str] = []
    if addr.get("house_number"):
        parts.append(addr["house_number"])
    road = _first(addr, "road", "street")
    if road:
        parts.append(road)
    for key in ("suburb", "neighbourhood", "quarter", "hamlet", "village", "city_district", "district", "borough"):
        if addr.get(key):
            parts.append(addr[key])
    for key in ("city", "town", "municipality"):
        if addr.get(key) and addr[key] not in parts:
            parts.append(addr[key])
    if addr.get("county"):
        parts.append(addr["county"])
    state = _first(addr, "state", "province")
    if state:
        parts.append(state)
    if addr.get("postcode"):
        parts.append(addr["postcode"])

    full_address = ", ".join(parts)
    if len(full_address) > MIN_ADDRESS_LENGTH:
        return full_address

    display_name = data.get("display_name")
    if display_name and len(display_name) > len(full_address):
        return display_name

    if len(full_address) < 10:
        short: List[str] = []
        for value in (
            road,
            _first(addr, "suburb", "neighbourhood"),
            addr.get("city"),
            addr.get("state"),
        ):
            if value and value not in short:
                short.append(value)
        if addr.get("postcode"):
            short.append(addr["postcode"])
        if short:
            return ", ".join(short)
    return None


def format_nominatim_compact(data: Dict[str, Any]) -> Optional[str]:
    addr = data.get("address")
    if addr:
        parts = [
            addr.get("house_number"),
            _first(addr, "road", "street"),
            _first(addr, "suburb", "neighbourhood"),
            _first(addr, "city_district", "district"),
            _first(addr, "city", "town"),
            addr.get("state"),
            addr.get("postcode"),
        ]
        full_address = ", ".join(p for p in parts if p)
        if len(full_address) > MIN_ADDRESS_LENGTH:
            return full_address
    return data.get("display_name") or None


def format_bigdatacloud(data: Dict[str, Any]) -> Optional[str]:
    parts = [data.get("locality"), data.get("principalSubdivision"), data.get("countryName")]
    address = ", ".join(p for p in parts if p)
    if len(address) > MIN_ADDRESS_LENGTH:
        return address
    return None


class GeocodeProvider:
    """One reverse-geocoding HTTP service."""

    name = "provider"
    url = ""

    def __init__(self, timeout: Optional[float] = None, user_agent: Optional[str] = None):
        settings = get_settings()
        self.timeout = timeout or settings.geocode_timeout
        self.user_agent = user_agent or settings.geocode_user_agent

    def params(self, latitude: float, longitude: float) -> Dict[str, Any]:
        raise NotImplementedError

    def format(self, data: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    async def fetch(self, latitude: float, longitude: float) -> Dict[str, Any]:
        headers = {"User-Agent": self.user_agent}
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                async with session.get(self.url, params=self.params(latitude, longitude)) as response:
                    if response.status != 200:
                        raise GeocodeError(f"{self.name} returned HTTP {response.status}")
                    return await response.json(content_type=None)
        except GeocodeError:
            raise
        except Exception as e:
            raise GeocodeError(f"{self.name} request failed: {e}")

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        data = await self.fetch(latitude, longitude)
        if not isinstance(data, dict):
            raise GeocodeError(f"{self.name} returned an unexpected payload")
        return self.format(data)


class NominatimProvider(GeocodeProvider):
    url = NOMINATIM_URL

    def __init__(self, compact: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.compact = compact
        self.name = "nominatim_compact" if compact else "nominatim"

    def params(self, latitude: float, longitude: float) -> Dict[str, Any]:
        return {
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "addressdetails": 1,
            "zoom": 18,
            "extratags": 1,
            "namedetails": 1,
            "accept-language": "en",
        }

    def format(self, data: Dict[str, Any]) -> Optional[str]:
        if self.compact:
            return format_nominatim_compact(data)
        return format_nominatim_detailed(data)


class BigDataCloudProvider(GeocodeProvider):
    name = "bigdatacloud"
    url = BIGDATACLOUD_URL

    def params(self, latitude: float, longitude: float) -> Dict[str, Any]:
        return {"latitude": latitude, "longitude": longitude, "localityLanguage": "en"}

    def format(self, data: Dict[str, Any]) -> Optional[str]:
        return format_bigdatacloud(data)


def default_providers() -> List[GeocodeProvider]:
    return [NominatimProvider(), BigDataCloudProvider(), NominatimProvider(compact=True)]


class ReverseGeocoder:

    def __init__(self, providers: Optional[List[GeocodeProvider]] = None):
        self.providers = providers if providers is not None else default_providers()

    async def reverse(self, latitude: float, longitude: float) -> str:
        """Human-readable address for the point; never raises."""
        for provider in self.providers:
            try:
                address = await provider.reverse(latitude, longitude)
            except GeocodeError as e:
                logger.warning(f"⚠️ Geocoder {provider.name} failed, trying next: {e.message}")
                continue
            if address and address.strip():
                logger.info(f"📍 Resolved ({latitude:.6f}, {longitude:.6f}) via {provider.name}")
                return address.strip()
            logger.debug(f"Geocoder {provider.name} returned no usable address")

        logger.warning(f"⚠️ All geocoders failed for ({latitude:.6f}, {longitude:.6f}); using coordinates")
        return coordinate_fallback(latitude, longitude)
