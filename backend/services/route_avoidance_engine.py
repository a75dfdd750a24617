"""
Route Avoidance Engine

Finds a route between two points that keeps every hazard site outside the
avoidance radius, using only a routing provider and waypoint placement.

Search order (states in RouteState):

    direct -> proximity_checked -> safe
                                -> needs_detour -> detour_computed -> detour_checked -> safe
                                                                                   -> (alternate profiles)
                                                                                   -> no_safe_route_found

Detour waypoints are placed perpendicular to the start->goal direction at
WAYPOINT_SAFETY_FACTOR x radius from each alerted hazard, sorted by distance
from the start. When the primary profile's detour is still unsafe, each
alternate profile is tried, first as a plain route and then with its own
detour. If nothing is safe, the best candidate seen is returned with
safe=False: the one whose closest hazard approach is farthest, then the one
with fewest alerts.

Provider failures propagate as RoutingProviderError. The caller may bound the
search with a timeout and a cancel event; both are checked before every
provider call.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from services.exceptions import RouteCancelledError
from services.models import HazardSite, ProximityResult, RoutePath, SafeRouteResult
from services.proximity_engine import ProximityEngine
from services.routing_provider import RoutingProvider
from utils.geo import distance, is_valid_point, perpendicular_offset
from utils.secure_logging import redact_point

logger = logging.getLogger(__name__)

WAYPOINT_SAFETY_FACTOR = 1.2

# Given a candidate path's vertices, returns extra hazard sites to check it against
SiteLookup = Callable[[List[Dict[str, float]]], List[HazardSite]]


def merge_sites(sites: List[HazardSite], extra: List[HazardSite]) -> List[HazardSite]:
    """Sites plus any extra sites not already present, matched by location_id."""
    known = {site.location_id for site in sites}
    merged = list(sites)
    for site in extra:
        if site.location_id not in known:
            known.add(site.location_id)
            merged.append(site)
    return merged


class RouteState:
    """States of a safe-route search."""
    DIRECT = 'direct'
    PROXIMITY_CHECKED = 'proximity_checked'
    SAFE = 'safe'
    NEEDS_DETOUR = 'needs_detour'
    DETOUR_COMPUTED = 'detour_computed'
    DETOUR_CHECKED = 'detour_checked'
    NO_SAFE_ROUTE_FOUND = 'no_safe_route_found'


class _SearchStopped(Exception):
    """Internal signal: the search was cancelled or ran out of time."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class _Candidate:
    def __init__(self, path: RoutePath, proximity: ProximityResult, used_detour: bool):
        self.path = path
        self.proximity = proximity
        self.used_detour = used_detour

    def rank(self):
        closest = self.proximity.min_distance_meters
        if closest is None:
            closest = float('inf')
        return (closest, -len(self.proximity.alerts))


class _SearchRun:
    """Per-call search state. Never shared between calls."""

    def __init__(self, deadline: Optional[float], cancel_event: Optional[threading.Event],
                 clock: Callable[[], float], site_lookup: Optional[SiteLookup] = None):
        self.deadline = deadline
        self.site_lookup = site_lookup
        self.cancel_event = cancel_event
        self.clock = clock
        self.state = RouteState.DIRECT
        self.history: List[str] = [RouteState.DIRECT]
        self.attempts = 0
        self.best: Optional[_Candidate] = None

    def transition(self, state: str) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"Route search -> {state}")

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - self.clock()

    def ensure_active(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise _SearchStopped('cancelled')
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise _SearchStopped('timed out')

    def consider(self, candidate: _Candidate) -> None:
        if self.best is None or candidate.rank() > self.best.rank():
            self.best = candidate


class RouteAvoidanceEngine:
    """Hazard-aware route search on top of a RoutingProvider."""

    def __init__(
        self,
        provider: RoutingProvider,
        proximity_engine: Optional[ProximityEngine] = None,
        waypoint_safety_factor: float = WAYPOINT_SAFETY_FACTOR,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            provider: Routing provider used for every path
            proximity_engine: Path checker, a new ProximityEngine by default
            waypoint_safety_factor: Waypoint offset as a multiple of the radius
            clock: Monotonic clock for timeouts
        """
        self.provider = provider
        self.proximity_engine = proximity_engine or ProximityEngine()
        self.waypoint_safety_factor = waypoint_safety_factor
        self.clock = clock

    def generate_avoidance_waypoints(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        proximity: ProximityResult,
        radius_meters: float
    ) -> List[Dict[str, float]]:
        """
        Waypoints that steer a route around the alerted hazards.

        One waypoint per alert, offset perpendicular to the start->goal
        direction. Invalid waypoints are dropped. The rest are ordered by
        distance from the start.
        """
        direction = {
            'lat': goal['lat'] - start['lat'],
            'lon': goal['lon'] - start['lon']
        }
        offset = radius_meters * self.waypoint_safety_factor

        waypoints = []
        for alert in proximity.alerts:
            waypoint = perpendicular_offset(alert.hazard_site.location, direction, offset)
            if waypoint is None or not is_valid_point(waypoint):
                logger.debug(f"Dropping invalid waypoint for {alert.hazard_site.location_id}")
                continue
            waypoints.append(waypoint)

        waypoints.sort(key=lambda wp: distance(start, wp))
        return waypoints

    def find_safe_route(
        self,
        start: Dict[str, float],
        goal: Dict[str, float],
        hazard_sites: List[HazardSite],
        radius_meters: float,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        site_lookup: Optional[SiteLookup] = None
    ) -> SafeRouteResult:
        """
        Search for a route that keeps every hazard site outside the radius.

        Args:
            start: Route origin
            goal: Route destination
            hazard_sites: Sites to avoid
            radius_meters: Avoidance radius
            timeout: Overall time budget in seconds
            cancel_event: Set by the caller to abandon the search
            site_lookup: Called with each candidate path; the sites it returns are
                checked along with hazard_sites

        Returns:
            SafeRouteResult. safe=False with state no_safe_route_found when no
            candidate clears every hazard. cancelled=True when the search was
            stopped early and the best result so far is returned.

        Raises:
            RoutingProviderError: If the provider fails
            RouteCancelledError: If stopped before any route was computed
        """
        deadline = self.clock() + timeout if timeout is not None else None
        run = _SearchRun(deadline, cancel_event, self.clock, site_lookup)

        logger.info(
            f"Searching safe route from {redact_point(start)} to {redact_point(goal)} "
            f"around {len(hazard_sites)} hazard sites (radius {radius_meters}m)"
        )

        try:
            result = self._search(run, start, goal, hazard_sites, radius_meters)
        except _SearchStopped as stopped:
            if run.best is None:
                logger.warning(f"Route search {stopped.reason} before any route was computed")
                raise RouteCancelledError(stopped.reason)

            logger.warning(
                f"Route search {stopped.reason} after {run.attempts} attempts; returning best route so far"
            )
            result = self._result(run, run.best, run.state, cancelled=True)

        logger.info(
            f"Route search finished in state {result.state} after {result.attempts} attempts "
            f"(safe={result.safe}, alerts={len(result.alerts)})"
        )
        return result

    def _search(self, run: _SearchRun, start, goal, hazard_sites, radius_meters) -> SafeRouteResult:
        primary = self.provider.primary_profile

        direct = self._evaluate(run, start, goal, primary, None, hazard_sites, radius_meters)
        run.transition(RouteState.PROXIMITY_CHECKED)
        if direct.proximity.safe:
            run.transition(RouteState.SAFE)
            return self._result(run, direct, RouteState.SAFE)

        run.transition(RouteState.NEEDS_DETOUR)
        detour = self._try_detour(run, start, goal, primary, direct.proximity, hazard_sites, radius_meters)
        if detour is not None and detour.proximity.safe:
            run.transition(RouteState.SAFE)
            return self._result(run, detour, RouteState.SAFE)

        for profile in self.provider.alternate_profiles():
            logger.info(f"Trying alternate route profile {profile}")
            candidate = self._evaluate(run, start, goal, profile, None, hazard_sites, radius_meters)
            if candidate.proximity.safe:
                run.transition(RouteState.SAFE)
                return self._result(run, candidate, RouteState.SAFE)

            detour = self._try_detour(run, start, goal, profile, candidate.proximity, hazard_sites, radius_meters)
            if detour is not None and detour.proximity.safe:
                run.transition(RouteState.SAFE)
                return self._result(run, detour, RouteState.SAFE)

        run.transition(RouteState.NO_SAFE_ROUTE_FOUND)
        return self._result(run, run.best, RouteState.NO_SAFE_ROUTE_FOUND)

    def _try_detour(self, run: _SearchRun, start, goal, profile, proximity, hazard_sites,
                    radius_meters) -> Optional[_Candidate]:
        waypoints = self.generate_avoidance_waypoints(start, goal, proximity, radius_meters)
        if not waypoints:
            logger.info(f"No usable detour waypoints for profile {profile}")
            return None

        candidate = self._evaluate(run, start, goal, profile, waypoints, hazard_sites, radius_meters,
                                   used_detour=True)
        run.transition(RouteState.DETOUR_COMPUTED)
        run.transition(RouteState.DETOUR_CHECKED)
        return candidate

    def _evaluate(self, run: _SearchRun, start, goal, profile, waypoints, hazard_sites, radius_meters,
                  used_detour: bool = False) -> _Candidate:
        run.ensure_active()
        run.attempts += 1

        path = self.provider.compute_route(
            start, goal,
            profile=profile,
            waypoints=waypoints,
            timeout=run.remaining()
        )
        if run.site_lookup is not None:
            hazard_sites = merge_sites(hazard_sites, run.site_lookup(path.vertices))
        proximity = self.proximity_engine.check(path.vertices, hazard_sites, radius_meters)

        candidate = _Candidate(path, proximity, used_detour)
        run.consider(candidate)
        return candidate

    @staticmethod
    def _result(run: _SearchRun, candidate: _Candidate, state: str, cancelled: bool = False) -> SafeRouteResult:
        return SafeRouteResult(
            path=candidate.path,
            proximity=candidate.proximity,
            state=state,
            profile=candidate.path.profile,
            attempts=run.attempts,
            used_detour=candidate.used_detour,
            cancelled=cancelled
        )
