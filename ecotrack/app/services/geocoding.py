"""
Reverse geocoding for reports submitted without an address.
Queries a BigDataCloud-compatible reverse-geocode endpoint.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ecotrack.app.core.config import settings
from ecotrack.app.core.reliability import CircuitBreaker, CircuitOpenError, geocoding_circuit_breaker

logger = logging.getLogger(__name__)


class ReverseGeocoder:
    """
    Best-effort address lookup. Any failure (timeout, HTTP error, open
    circuit, unparseable body) yields None.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url or settings.reverse_geocode_url
        self.timeout = timeout if timeout is not None else settings.geocode_timeout_seconds
        self.breaker = breaker or geocoding_circuit_breaker
        self.transport = transport

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[str]:
        """
        Resolve coordinates to a human-readable address.

        Args:
            lat: Latitude
            lng: Longitude

        Returns:
            Address string, or None if it could not be resolved
        """
        try:
            data = await self.breaker.call(self._fetch, lat, lng)
        except CircuitOpenError:
            logger.info("Reverse geocoding skipped: circuit open")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Reverse geocoding failed for (%s, %s): %s", lat, lng, e)
            return None

        return _parse_address(data)

    async def _fetch(self, lat: float, lng: float) -> Dict[str, Any]:
        params = {"latitude": lat, "longitude": lng, "localityLanguage": "en"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            return response.json()


def _parse_address(data: Any) -> Optional[str]:
    """
    Pick display_name if present, else join locality (or city),
    principal subdivision and country.
    """
    if not isinstance(data, dict):
        return None

    if data.get("display_name"):
        return data["display_name"]

    locality = data.get("locality") or data.get("city")
    if not locality:
        return None

    parts = [locality, data.get("principalSubdivision"), data.get("countryName")]
    return ", ".join(p for p in parts if p)


def get_geocoder() -> ReverseGeocoder:
    return ReverseGeocoder()
