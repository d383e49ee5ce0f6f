"""Reverse geocoding — turn coordinates into a display address."""

import asyncio
import logging
from typing import Protocol

import httpx

from catalog_mirror.config import Config
from catalog_mirror.errors import GeocodeError

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def resolve(self, latitude: float, longitude: float) -> str:
        """Formatted address for the point; raises GeocodeError on failure."""
        ...


def _bigdatacloud_address(data: dict) -> str:
    """Build 'City, Province, Country' from a BigDataCloud payload."""
    administrative = (data.get("localityInfo") or {}).get("administrative") or []

    def admin_name(index: int):
        if len(administrative) > index:
            return administrative[index].get("name")
        return None

    parts = [admin_name(2), admin_name(1), data.get("countryName")]
    parts = [p for p in parts if p]
    if not parts:
        parts = [
            p for p in (
                data.get("city"),
                data.get("locality"),
                data.get("principalSubdivision"),
                data.get("countryName"),
            ) if p
        ]
    return ", ".join(parts)


class HttpGeocoder:
    """BigDataCloud first, OpenStreetMap Nominatim as the fallback."""

    FALLBACK_DELAY = 0.1  # Nominatim allows about one request per second

    def __init__(self, primary_url: str = None, fallback_url: str = None,
                 client: httpx.AsyncClient = None):
        self.primary_url = primary_url or Config.GEOCODER_PRIMARY_URL
        self.fallback_url = fallback_url or Config.GEOCODER_FALLBACK_URL
        self._client = client or httpx.AsyncClient(
            timeout=Config.REMOTE_TIMEOUT,
            headers={"User-Agent": Config.GEOCODER_USER_AGENT},
        )

    async def aclose(self):
        await self._client.aclose()

    async def resolve(self, latitude: float, longitude: float) -> str:
        try:
            address = await self._resolve_primary(latitude, longitude)
            if address:
                return address
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Primary geocoder failed for "
                           f"({latitude}, {longitude}): {e}")

        await asyncio.sleep(self.FALLBACK_DELAY)
        try:
            address = await self._resolve_fallback(latitude, longitude)
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodeError(
                f"Reverse geocoding failed for ({latitude}, {longitude}): {e}"
            ) from e
        if not address:
            raise GeocodeError(
                f"No address found for ({latitude}, {longitude})"
            )
        return address

    async def _resolve_primary(self, latitude: float, longitude: float) -> str:
        response = await self._client.get(self.primary_url, params={
            "latitude": latitude,
            "longitude": longitude,
            "localityLanguage": "en",
        })
        response.raise_for_status()
        return _bigdatacloud_address(response.json())

    async def _resolve_fallback(self, latitude: float, longitude: float) -> str:
        response = await self._client.get(self.fallback_url, params={
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "zoom": 18,
            "addressdetails": 1,
        })
        response.raise_for_status()
        return (response.json() or {}).get("display_name", "")
