"""
Routing provider interface.

A provider turns (start, goal, profile, waypoints) into a RoutePath. It knows
nothing about hazards: avoidance is done by the caller choosing waypoints and
profiles.
"""
import logging
from typing import Dict, List, Optional

import requests

from services.exceptions import RoutingProviderError
from services.models import RoutePath

logger = logging.getLogger(__name__)

# HTTP status -> provider error code
HTTP_ERROR_CODES = {
    400: 'BAD_REQUEST',
    401: 'AUTHENTICATION_ERROR',
    403: 'FORBIDDEN',
    404: 'NO_ROUTE_FOUND',
    429: 'RATE_LIMIT_ERROR',
    500: 'SERVER_ERROR'
}


def error_code_for(error: requests.exceptions.RequestException) -> str:
    """
    Classify a requests exception into a provider error code.

    Examples:
        >>> error_code_for(requests.exceptions.Timeout())
        'TIMEOUT_ERROR'
    """
    if isinstance(error, requests.exceptions.Timeout):
        return 'TIMEOUT_ERROR'

    response = getattr(error, 'response', None)
    if response is None:
        return 'NETWORK_ERROR'
    return HTTP_ERROR_CODES.get(response.status_code, 'DIRECTIONS_ERROR')


class RoutingProvider:
    """Base class for routing providers."""

    NAME = 'routing'

    # Route profiles in preference order; the first is the primary profile
    PROFILES: List[str] = []

    # Maximum intermediate waypoints per request
    MAX_WAYPOINTS = 5

    TIMEOUT_SECONDS = 15

    @property
    def primary_profile(self) -> str:
        return self.PROFILES[0]

    def alternate_profiles(self) -> List[str]:
        """Profiles to try after the primary one, in order."""
        return list(self.PROFILES[1:])

    def is_enabled(self) -> bool:
        return True

    def compute_route(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        profile: Optional[str] = None,
        waypoints: Optional[List[Dict[str, float]]] = None,
        timeout: Optional[float] = None
    ) -> RoutePath:
        """
        Compute a route.

        Args:
            start: {"lat": float, "lon": float}
            goal: {"lat": float, "lon": float}
            profile: One of PROFILES, defaults to the primary profile
            waypoints: Intermediate points to pass through, in order
            timeout: Request timeout in seconds, defaults to TIMEOUT_SECONDS

        Returns:
            RoutePath

        Raises:
            RoutingProviderError: On transport failure or when no route is returned
        """
        raise NotImplementedError

    def _check_request(self, profile: Optional[str], waypoints: Optional[List[Dict[str, float]]]) -> str:
        if not self.is_enabled():
            raise RoutingProviderError(self.NAME, "Routing provider not enabled - credentials not configured",
                                       code='AUTHENTICATION_ERROR')

        profile = profile or self.primary_profile
        if profile not in self.PROFILES:
            raise RoutingProviderError(self.NAME, f"Unsupported route profile '{profile}'", code='BAD_REQUEST')

        if waypoints and len(waypoints) > self.MAX_WAYPOINTS:
            logger.warning(
                f"{self.NAME}: {len(waypoints)} waypoints requested, only the first "
                f"{self.MAX_WAYPOINTS} are sent"
            )
        return profile


def create_routing_provider(cfg) -> RoutingProvider:
    """
    Build the routing provider named by ROUTING_PROVIDER ('naver' or 'ors').

    Raises:
        ValueError: For an unknown provider name
    """
    name = (getattr(cfg, 'ROUTING_PROVIDER', 'naver') or 'naver').lower()
    timeout = getattr(cfg, 'ROUTING_TIMEOUT_SECONDS', None)

    # Lazy imports to avoid circular dependency with the provider modules
    if name == 'naver':
        from services.naver_directions_service import NaverDirectionsService
        return NaverDirectionsService(
            client_id=getattr(cfg, 'NAVER_CLIENT_ID', None),
            client_secret=getattr(cfg, 'NAVER_CLIENT_SECRET', None),
            timeout=timeout
        )
    if name == 'ors':
        from services.ors_routing_service import ORSRoutingService
        return ORSRoutingService(api_key=getattr(cfg, 'ORS_API_KEY', None), timeout=timeout)

    raise ValueError(f"Unknown routing provider '{name}'. Use 'naver' or 'ors'")
