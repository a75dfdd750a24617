"""
Naver Directions Routing Service

Driving routes for the Korean road network through the Naver Cloud Platform
Directions 5 API.

Features:
- Three route options: traoptimal (default), tracomfort, trafast
- Up to 5 intermediate waypoints per request
- Optional road feature avoidance (toll, motorway, ferry)
- Paths returned as [lng, lat] pairs are converted to {'lat', 'lon'} vertices

API reference: https://api.ncloud-docs.com/docs/ai-naver-mapsdirections-driving
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from services.exceptions import RoutingProviderError
from services.models import RoutePath
from services.routing_provider import RoutingProvider, error_code_for
from utils.secure_logging import redact_pii, redact_point

logger = logging.getLogger(__name__)


class NaverDirectionsService(RoutingProvider):
    """Routing provider backed by Naver Directions 5."""

    NAME = 'naver'

    NAVER_BASE_URL = "https://naveropenapi.apigw.ntruss.com/map-direction/v1/driving"
    TIMEOUT_SECONDS = 15

    PROFILES = ['traoptimal', 'tracomfort', 'trafast']

    MAX_WAYPOINTS = 5

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        avoid: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the Naver Directions service.

        Args:
            client_id: NCP API key id. If None, reads NAVER_CLIENT_ID
            client_secret: NCP API key. If None, reads NAVER_CLIENT_SECRET
            avoid: Optional road features to avoid, e.g. 'toll:motorway'
            timeout: Default request timeout in seconds
        """
        self.client_id = client_id or os.getenv('NAVER_CLIENT_ID')
        self.client_secret = client_secret or os.getenv('NAVER_CLIENT_SECRET')
        self.avoid = avoid
        self.timeout = timeout or self.TIMEOUT_SECONDS

        if not self.client_id or not self.client_secret:
            logger.warning("Naver API credentials not configured - Naver routing will be unavailable")
            self.enabled = False
        else:
            self.enabled = True
            logger.info("Naver Directions Service initialized successfully")

    def is_enabled(self) -> bool:
        """Check if Naver routing is available (credentials configured)."""
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
        Calculate a driving route with Naver Directions.

        Args:
            start: {"lat": float, "lon": float}
            goal: {"lat": float, "lon": float}
            profile: traoptimal, tracomfort or trafast
            waypoints: Intermediate points, at most 5 are sent
            timeout: Request timeout in seconds

        Returns:
            RoutePath with distance in meters and duration in seconds

        Raises:
            RoutingProviderError: If the request fails or no route is returned
        """
        profile = self._check_request(profile, waypoints)

        logger.info(
            f"Calculating {profile} route from {redact_point(start)} to {redact_point(goal)} "
            f"with Naver ({len(waypoints or [])} waypoints)"
        )

        params = self._build_request_params(start, goal, profile, waypoints)
        headers = {
            'X-NCP-APIGW-API-KEY-ID': self.client_id,
            'X-NCP-APIGW-API-KEY': self.client_secret
        }

        try:
            response = requests.get(
                self.NAVER_BASE_URL,
                params=params,
                headers=headers,
                timeout=timeout or self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            logger.error("Naver Directions request timed out")
            raise RoutingProviderError(self.NAME, "Request timed out", code=error_code_for(e))
        except requests.exceptions.RequestException as e:
            code = error_code_for(e)
            logger.error(f"Naver Directions request failed ({code}): {redact_pii(str(e))}")
            raise RoutingProviderError(self.NAME, redact_pii(str(e)), code=code)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Naver Directions returned invalid JSON: {redact_pii(response.text[:500])}")
            raise RoutingProviderError(self.NAME, f"Invalid response: {e}", code='DIRECTIONS_ERROR')

        return self._parse_naver_response(data, profile)

    def _build_request_params(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        profile: str,
        waypoints: Optional[List[Dict[str, float]]] = None
    ) -> Dict[str, str]:
        """
        Build query parameters for a Naver Directions request.

        Naver uses lon,lat order and separates waypoints with '|'.
        """
        params = {
            'start': f"{start['lon']},{start['lat']}",
            'goal': f"{goal['lon']},{goal['lat']}",
            'option': profile
        }

        if waypoints:
            params['waypoints'] = '|'.join(
                f"{wp['lon']},{wp['lat']}" for wp in waypoints[:self.MAX_WAYPOINTS]
            )

        if self.avoid:
            params['avoid'] = self.avoid

        return params

    def _parse_naver_response(self, data: Dict[str, Any], profile: str) -> RoutePath:
        """
        Convert a Naver Directions response into a RoutePath.

        Response shape:
            {"code": 0, "message": "...",
             "route": {"traoptimal": [{"summary": {"distance": m, "duration": ms},
                                       "path": [[lng, lat], ...]}]}}

        Raises:
            RoutingProviderError: For a non-zero result code or a missing route
        """
        code = data.get('code', 0)
        if code != 0:
            message = data.get('message', 'No route found')
            logger.warning(f"Naver Directions returned code {code}: {message}")
            raise RoutingProviderError(self.NAME, message, code=str(code))

        routes = (data.get('route') or {}).get(profile) or []
        if not routes:
            raise RoutingProviderError(self.NAME, f"No {profile} route in response", code='NO_ROUTE_FOUND')

        route = routes[0]
        summary = route.get('summary') or {}
        vertices = self._decode_path(route.get('path'))
        if len(vertices) < 2:
            raise RoutingProviderError(self.NAME, "Route path has fewer than 2 vertices", code='NO_ROUTE_FOUND')

        return RoutePath(
            vertices=vertices,
            distance_meters=float(summary.get('distance', 0)),
            duration_seconds=float(summary.get('duration', 0)) / 1000.0,
            profile=profile,
            provider=self.NAME
        )

    @staticmethod
    def _decode_path(path: Any) -> List[Dict[str, float]]:
        """
        Decode a Naver path into {'lat', 'lon'} vertices.

        Accepts the JSON array form [[lng, lat], ...] and the flat
        comma-separated 'lng,lat,lng,lat' string form.
        """
        if not path:
            return []

        pairs = []
        if isinstance(path, str):
            values = [v for v in path.split(',') if v.strip()]
            pairs = [values[i:i + 2] for i in range(0, len(values) - 1, 2)]
        else:
            pairs = path

        vertices = []
        for pair in pairs:
            try:
                lng, lat = float(pair[0]), float(pair[1])
            except (TypeError, ValueError, IndexError):
                continue
            vertices.append({'lat': lat, 'lon': lng})
        return vertices
