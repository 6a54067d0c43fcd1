"""
Location providers.

StaticLocationProvider answers from fixed coordinates (demo mode, fixed
installations). HttpLocationProvider asks an IP geolocation endpoint for a
fresh fix and remembers the last one it got.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ...models import LocationFix, LocationSource
from ...errors import LocationUnavailableError

logger = logging.getLogger(__name__)


class StaticLocationProvider:
    """Returns preconfigured fixes."""

    def __init__(
        self,
        last_known: Optional[LocationFix] = None,
        fresh: Optional[LocationFix] = None
    ):
        self.last_known = last_known
        self.fresh = fresh
        self.last_known_requests = 0
        self.fresh_requests = 0

    @classmethod
    def at(cls, latitude: float, longitude: float) -> "StaticLocationProvider":
        """Provider that always knows the given position."""
        return cls(
            last_known=LocationFix(latitude=latitude, longitude=longitude, source=LocationSource.LAST_KNOWN),
            fresh=LocationFix(latitude=latitude, longitude=longitude, source=LocationSource.FRESH)
        )

    async def get_last_known(self) -> Optional[LocationFix]:
        self.last_known_requests += 1
        return self.last_known

    async def get_fresh_fix(self, priority: str) -> Optional[LocationFix]:
        self.fresh_requests += 1
        return self.fresh


class HttpLocationProvider:
    """IP geolocation over HTTP with a cached last-known fix."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize HTTP location provider.

        Args:
            url: Endpoint returning JSON with lat/lon or latitude/longitude keys
            timeout_s: Request timeout
            client: Optional shared client (tests inject a mock transport)
        """
        self.url = url
        self.timeout_s = timeout_s
        self._client = client
        self._last_fix: Optional[LocationFix] = None

    async def get_last_known(self) -> Optional[LocationFix]:
        if self._last_fix is None:
            return None
        return LocationFix(
            latitude=self._last_fix.latitude,
            longitude=self._last_fix.longitude,
            source=LocationSource.LAST_KNOWN
        )

    async def get_fresh_fix(self, priority: str) -> Optional[LocationFix]:
        """Query the endpoint. Raises LocationUnavailableError on any failure."""
        try:
            if self._client is not None:
                response = await self._client.get(self.url, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise LocationUnavailableError(f"Geolocation request failed: {e}")
        except ValueError as e:
            raise LocationUnavailableError(f"Invalid geolocation response: {e}")

        fix = self._parse_fix(payload)
        self._last_fix = fix
        logger.info(f"Fresh location fix ({priority}): {fix}")
        return fix

    @staticmethod
    def _parse_fix(payload: Dict[str, Any]) -> LocationFix:
        if not isinstance(payload, dict):
            raise LocationUnavailableError("Geolocation response is not an object")

        latitude = payload.get("latitude", payload.get("lat"))
        longitude = payload.get("longitude", payload.get("lon"))
        if latitude is None or longitude is None:
            raise LocationUnavailableError("Geolocation response has no coordinates")

        try:
            return LocationFix(
                latitude=float(latitude),
                longitude=float(longitude),
                source=LocationSource.FRESH
            )
        except (TypeError, ValueError) as e:
            raise LocationUnavailableError(f"Invalid coordinates: {e}")


__all__ = ['StaticLocationProvider', 'HttpLocationProvider']
