"""
Distance providers used to price a route before a quote is set.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from courier_core.core.config import ConfigManager, get_config

METERS_PER_MILE = 1609.34

GEOCODE_URL = "https://api.openrouteservice.org/geocode/search"
DIRECTIONS_URL = "https://api.openrouteservice.org/v2/directions/driving-car"


class DistanceUnavailableError(Exception):
    """The provider could not produce a distance (timeout, HTTP error, no route)."""


class DistanceProvider(ABC):
    """Road distance between two addresses."""

    @abstractmethod
    def distance_miles(self, origin: str, destination: str) -> float:
        """
        Driving distance in miles.

        Raises:
            DistanceUnavailableError: If no distance can be determined
        """


class OpenRouteServiceProvider(DistanceProvider):
    """
    DistanceProvider backed by OpenRouteService.

    Steps:
      1. Geocode both addresses via /geocode/search.
      2. Request /v2/directions/driving-car for the route summary.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.Client] = None,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            api_key: ORS API key (defaults to OPENROUTESERVICE_API_KEY)
            timeout_seconds: Request timeout (defaults to DISTANCE_TIMEOUT_SECONDS)
            client: Optional preconfigured httpx client (tests inject a mock transport)
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
        """
        config_manager = config_manager or get_config()
        self.api_key = api_key or config_manager.get_api_key("openrouteservice")
        self.timeout_seconds = timeout_seconds or config_manager.env.distance_timeout_seconds
        self._client = client
        self.logger = logger or structlog.get_logger(component="openrouteservice")

    def _request(self, client: httpx.Client, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise DistanceUnavailableError(f"OpenRouteService timed out: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise DistanceUnavailableError(f"OpenRouteService API error: {e}") from e

    def _geocode(self, client: httpx.Client, address: str) -> tuple[float, float]:
        """Return (longitude, latitude) for an address."""
        data = self._request(
            client,
            "GET",
            GEOCODE_URL,
            params={"api_key": self.api_key, "text": address, "boundary.country": "US"},
        )
        features = data.get("features", [])
        if not features:
            raise DistanceUnavailableError(f"Geocode failed for address: {address}")

        lon, lat = features[0]["geometry"]["coordinates"]
        return lon, lat

    def distance_miles(self, origin: str, destination: str) -> float:
        if not self.api_key:
            raise DistanceUnavailableError("OPENROUTESERVICE_API_KEY not configured")

        client = self._client or httpx.Client(timeout=self.timeout_seconds)
        try:
            start = self._geocode(client, origin)
            end = self._geocode(client, destination)

            route_data = self._request(
                client,
                "POST",
                DIRECTIONS_URL,
                headers={"Authorization": self.api_key, "Content-Type": "application/json"},
                json={"coordinates": [list(start), list(end)], "radiuses": [5000, 5000]},
            )
        finally:
            if self._client is None:
                client.close()

        routes = route_data.get("routes")
        if not routes:
            raise DistanceUnavailableError(f"OpenRouteService returned no route: {route_data}")

        miles = round(routes[0]["summary"]["distance"] / METERS_PER_MILE, 2)
        self.logger.info("route_distance", origin=origin, destination=destination, miles=miles)
        return miles
