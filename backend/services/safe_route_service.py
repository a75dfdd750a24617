"""
Safe Route Service

Public entry point for hazard-aware routing. Validates the request, pulls the
active hazard sites around the start->goal corridor from the store and runs
the RouteAvoidanceEngine. Candidate paths that stray outside that corridor
are checked against the sites around their own bounds as well.
"""
import logging
import threading
from typing import Dict, List, Optional, Tuple

from services.models import HazardSite, SafeRouteResult
from services.proximity_engine import ProximityEngine
from services.route_avoidance_engine import RouteAvoidanceEngine, SiteLookup
from utils.geo import bounding_box
from utils.validators import RouteRequestValidator

logger = logging.getLogger(__name__)

BoundingBox = Tuple[float, float, float, float]


def _contains(outer: BoundingBox, inner: BoundingBox) -> bool:
    return (outer[0] <= inner[0] and outer[1] <= inner[1]
            and inner[2] <= outer[2] and inner[3] <= outer[3])


class SafeRouteService:
    """Finds routes that keep hazard sites outside an avoidance radius."""

    DEFAULT_AVOIDANCE_RADIUS_M = 1500.0

    # Hazards this far beyond the start/goal box are still considered
    DEFAULT_SEARCH_BUFFER_M = 5000.0

    def __init__(
        self,
        store,
        provider,
        default_radius_meters: float = DEFAULT_AVOIDANCE_RADIUS_M,
        search_buffer_meters: float = DEFAULT_SEARCH_BUFFER_M,
        timeout_seconds: Optional[float] = None,
        waypoint_safety_factor: float = 1.2
    ):
        """
        Args:
            store: HazardStore queried for candidate sites
            provider: RoutingProvider used by the avoidance engine
            default_radius_meters: Radius when the caller gives none
            search_buffer_meters: Expansion of the start/goal box for the hazard query
            timeout_seconds: Default overall search budget
            waypoint_safety_factor: Detour waypoint offset as a multiple of the radius
        """
        self.store = store
        self.provider = provider
        self.default_radius_meters = default_radius_meters
        self.search_buffer_meters = search_buffer_meters
        self.timeout_seconds = timeout_seconds
        self.engine = RouteAvoidanceEngine(
            provider,
            proximity_engine=ProximityEngine(),
            waypoint_safety_factor=waypoint_safety_factor
        )

    @classmethod
    def from_config(cls, cfg, store, provider) -> 'SafeRouteService':
        return cls(
            store,
            provider,
            default_radius_meters=cfg.DEFAULT_AVOIDANCE_RADIUS_M,
            search_buffer_meters=cfg.HAZARD_SEARCH_BUFFER_M,
            timeout_seconds=cfg.ROUTE_SEARCH_TIMEOUT_SECONDS,
            waypoint_safety_factor=cfg.WAYPOINT_SAFETY_FACTOR
        )

    def corridor_bounds(self, start: Dict[str, float], goal: Dict[str, float],
                        radius_meters: float) -> BoundingBox:
        """The start/goal box, buffered for detours."""
        return bounding_box([start, goal], max(self.search_buffer_meters, radius_meters))

    def candidate_sites(self, start: Dict[str, float], goal: Dict[str, float],
                        radius_meters: float) -> List[HazardSite]:
        """Active hazard sites around the start/goal box, buffered for detours."""
        return self.store.query_active_sites_in_bounds(self.corridor_bounds(start, goal, radius_meters))

    def sites_beyond_corridor(self, corridor: BoundingBox, radius_meters: float) -> SiteLookup:
        """
        Lookup for hazard sites near a candidate path that leaves the corridor.

        A path whose radius-buffered bounds fit in the corridor needs no extra
        query; otherwise the store is queried over the path's own bounds.
        """
        def lookup(vertices: List[Dict[str, float]]) -> List[HazardSite]:
            if not vertices:
                return []
            path_bounds = bounding_box(vertices, radius_meters)
            if _contains(corridor, path_bounds):
                return []
            logger.info("Candidate path leaves the hazard query corridor; querying its own bounds")
            return self.store.query_active_sites_in_bounds(path_bounds)

        return lookup

    def find_safe_route(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        avoidance_radius: Optional[float] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> SafeRouteResult:
        """
        Find a route from start to goal that avoids active hazard sites.

        Args:
            start: {"lat": float, "lon": float}
            goal: {"lat": float, "lon": float}
            avoidance_radius: Meters to keep from every hazard, default 1500
            timeout: Overall time budget in seconds
            cancel_event: Set to abandon the search early

        Returns:
            SafeRouteResult with path, safe flag and alerts. safe=False is a
            normal outcome when no candidate clears every hazard.

        Raises:
            ValueError: If the request is invalid
            RoutingProviderError: If the routing provider fails
            RouteCancelledError: If cancelled before any route was computed
            HazardStoreError: If the hazard store cannot be read
        """
        radius = self.default_radius_meters if avoidance_radius is None else avoidance_radius

        is_valid, error_message = RouteRequestValidator.validate_route_request(start, goal, radius)
        if not is_valid:
            raise ValueError(error_message)

        start = {'lat': float(start['lat']), 'lon': float(start['lon'])}
        goal = {'lat': float(goal['lat']), 'lon': float(goal['lon'])}
        radius = float(radius)

        corridor = self.corridor_bounds(start, goal, radius)
        sites = self.store.query_active_sites_in_bounds(corridor)
        logger.info(f"Found {len(sites)} active hazard sites near the requested corridor")

        return self.engine.find_safe_route(
            start,
            goal,
            sites,
            radius,
            timeout=timeout if timeout is not None else self.timeout_seconds,
            cancel_event=cancel_event,
            site_lookup=self.sites_beyond_corridor(corridor, radius)
        )
