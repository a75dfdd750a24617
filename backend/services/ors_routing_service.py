"""
OpenRouteService Routing Service

Alternative routing provider for deployments without Naver credentials, using
the OpenRouteService v2 directions API (driving-car profile, /json endpoint).

The /json endpoint returns the route geometry as a Google encoded polyline,
decoded here with the polyline package. Waypoints are sent as extra
coordinates between origin and destination.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import polyline
import requests

from services.exceptions import RoutingProviderError
from services.models import RoutePath
from services.routing_provider import RoutingProvider, error_code_for
from utils.secure_logging import redact_pii, redact_point

logger = logging.getLogger(__name__)


class ORSRoutingService(RoutingProvider):
    """Routing provider backed by OpenRouteService."""

    NAME = 'ors'

    ORS_BASE_URL = "https://api.openrouteservice.org/v2/directions/driving-car/json"
    ORS_TIMEOUT_SECONDS = 30

    # ORS 'preference' values
    PROFILES = ['recommended', 'fastest', 'shortest']

    # ORS accepts up to 50 coordinates; keep detours small like the other provider
    MAX_WAYPOINTS = 5

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the ORS routing service.

        Args:
            api_key: OpenRouteService API key. If None, reads from ORS_API_KEY env variable
            timeout: Default request timeout in seconds
        """
        self.api_key = api_key or os.getenv('ORS_API_KEY')
        self.timeout = timeout or self.ORS_TIMEOUT_SECONDS

        if not self.api_key:
            logger.warning("ORS_API_KEY not provided - ORS routing will be unavailable")
            self.enabled = False
        else:
            self.enabled = True
            logger.info("ORS Routing Service initialized successfully")

    def is_enabled(self) -> bool:
        """Check if ORS routing is available (API key configured)."""
        return self.enabled

    def compute_route(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        profile: Optional[str] = None,
        waypoints: Optional[List[Dict[str, float]]] = None,
        timeout: Optional[float] = None
    ) -> RoutePath:
        """
        Calculate a driving route with OpenRouteService.

        Args:
            start: {"lat": float, "lon": float}
            goal: {"lat": float, "lon": float}
            profile: recommended, fastest or shortest
            waypoints: Intermediate points, at most 5 are sent
            timeout: Request timeout in seconds

        Returns:
            RoutePath with distance in meters and duration in seconds

        Raises:
            RoutingProviderError: If the request fails or ORS reports an error
        """
        profile = self._check_request(profile, waypoints)

        logger.info(
            f"Calculating {profile} route from {redact_point(start)} to {redact_point(goal)} "
            f"with ORS ({len(waypoints or [])} waypoints)"
        )

        payload = self.build_ors_request(start, goal, profile, waypoints)

        try:
            response = requests.post(
                self.ORS_BASE_URL,
                json=payload,
                headers={
                    'Authorization': self.api_key,
                    'Content-Type': 'application/json',
                    'Accept': 'application/json'
                },
                timeout=timeout or self.timeout
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"ORS API request timed out after {timeout or self.timeout}s")
            raise RoutingProviderError(self.NAME, "Request timed out", code=error_code_for(e))
        except requests.exceptions.RequestException as e:
            logger.error(f"ORS API request failed: {redact_pii(str(e))}")
            raise RoutingProviderError(self.NAME, redact_pii(str(e)), code=error_code_for(e))

        try:
            ors_data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse ORS API response: {redact_pii(response.text[:500])}")
            raise RoutingProviderError(self.NAME, f"Invalid response: {e}", code='DIRECTIONS_ERROR')

        # ORS returns error details even with 4xx status
        if isinstance(ors_data, dict) and 'error' in ors_data:
            error = ors_data['error']
            if isinstance(error, dict):
                error_code = error.get('code')
                error_msg = error.get('message', 'Unknown error')
            else:
                error_code, error_msg = None, str(error)
            logger.warning(f"ORS error {error_code}: {error_msg}")
            if error_code == 2010:
                logger.warning("No routable point near a coordinate (park, water, restricted area)")
            raise RoutingProviderError(self.NAME, error_msg, code=str(error_code) if error_code else None)

        try:
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise RoutingProviderError(self.NAME, redact_pii(str(e)), code=error_code_for(e))

        return self.parse_ors_response(ors_data, profile)

    def build_ors_request(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        profile: str,
        waypoints: Optional[List[Dict[str, float]]] = None
    ) -> Dict[str, Any]:
        """
        Build OpenRouteService API request payload.

        Coordinates are converted to [lon, lat] and waypoints placed between
        origin and destination in order.
        """
        coordinates = [[start['lon'], start['lat']]]
        for wp in (waypoints or [])[:self.MAX_WAYPOINTS]:
            coordinates.append([wp['lon'], wp['lat']])
        coordinates.append([goal['lon'], goal['lat']])

        return {
            "coordinates": coordinates,
            "preference": profile,
            "geometry": True,
            "instructions": False,
            "elevation": False,
            "units": "m"
        }

    def parse_ors_response(self, response_json: Dict[str, Any], profile: str) -> RoutePath:
        """
        Parse an ORS /json response into a RoutePath.

        Raises:
            RoutingProviderError: If the response contains no usable route
        """
        routes = response_json.get('routes') or []
        if not routes:
            raise RoutingProviderError(self.NAME, "ORS response contains no routes", code='NO_ROUTE_FOUND')

        route = routes[0]
        summary = route.get('summary') or {}
        geometry = route.get('geometry')

        try:
            if isinstance(geometry, str):
                # polyline.decode returns [(lat, lon), ...]
                vertices = [{'lat': lat, 'lon': lon} for lat, lon in polyline.decode(geometry)]
            elif isinstance(geometry, dict):
                vertices = [{'lat': c[1], 'lon': c[0]} for c in geometry.get('coordinates', [])]
            else:
                vertices = []
        except (ValueError, TypeError, IndexError) as e:
            logger.error(f"Failed to decode ORS geometry: {e}", exc_info=True)
            raise RoutingProviderError(self.NAME, f"Undecodable geometry: {e}", code='DIRECTIONS_ERROR')

        if len(vertices) < 2:
            raise RoutingProviderError(self.NAME, "Route path has fewer than 2 vertices", code='NO_ROUTE_FOUND')

        return RoutePath(
            vertices=vertices,
            distance_meters=float(summary.get('distance', 0)),
            duration_seconds=float(summary.get('duration', 0)),
            profile=profile,
            provider=self.NAME
        )
