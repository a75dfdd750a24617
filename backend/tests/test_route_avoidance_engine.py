"""
Tests for RouteAvoidanceEngine

Uses a fake routing provider that draws straight lines through the requested
waypoints, so detour geometry is predictable.
"""
import threading
import pytest
from datetime import datetime, timezone

from services.exceptions import RouteCancelledError, RoutingProviderError
from services.models import HazardSite, ProximityAlert, ProximityResult, RoutePath
from services.route_avoidance_engine import RouteAvoidanceEngine, RouteState, merge_sites
from services.routing_provider import RoutingProvider
from utils.geo import path_length


NOW = datetime(2023, 7, 15, 10, 0, tzinfo=timezone.utc)
START = {'lat': 0.0, 'lon': -0.1}
GOAL = {'lat': 0.0, 'lon': 0.1}


class StraightLineProvider(RoutingProvider):
    """Routes are straight segments through start, waypoints and goal."""

    NAME = 'fake'
    PROFILES = ['fast', 'slow']

    def __init__(self, ignore_waypoints=False, on_call=None, error=None):
        self.ignore_waypoints = ignore_waypoints
        self.on_call = on_call
        self.error = error
        self.calls = []

    def compute_route(self, start, goal, profile=None, waypoints=None, timeout=None):
        profile = self._check_request(profile, waypoints)
        self.calls.append((profile, waypoints))
        if self.on_call:
            self.on_call(len(self.calls))
        if self.error:
            raise self.error

        vertices = [start]
        if waypoints and not self.ignore_waypoints:
            vertices.extend(waypoints)
        vertices.append(goal)
        return RoutePath(
            vertices=vertices,
            distance_meters=path_length(vertices),
            duration_seconds=0.0,
            profile=profile,
            provider=self.NAME
        )


def make_site(lat, lon, location_id=None):
    return HazardSite(
        location_id=location_id or f"loc_{lat}_{lon}",
        lat=lat,
        lon=lon,
        alert_type='warning',
        severity='medium',
        sources=['waterlevel'],
        feed_records={},
        last_updated=NOW
    )


class TestFindSafeRoute:

    def test_direct_route_already_safe(self):
        provider = StraightLineProvider()
        engine = RouteAvoidanceEngine(provider)

        result = engine.find_safe_route(START, GOAL, [make_site(0.5, 0.0)], 1000)

        assert result.safe is True
        assert result.state == RouteState.SAFE
        assert result.used_detour is False
        assert result.attempts == 1
        assert provider.calls == [('fast', None)]

    def test_detour_around_hazard_on_path(self):
        """A hazard on the straight line is cleared by one perpendicular waypoint"""
        provider = StraightLineProvider()
        engine = RouteAvoidanceEngine(provider)

        result = engine.find_safe_route(START, GOAL, [make_site(0.0, 0.0)], 1000)

        assert result.safe is True
        assert result.used_detour is True
        assert result.attempts == 2
        assert result.profile == 'fast'
        assert result.proximity.min_distance_meters > 1000

        profile, waypoints = provider.calls[1]
        assert len(waypoints) == 1
        # 1.2 x 1000 m north or south of the hazard
        assert abs(waypoints[0]['lat']) == pytest.approx(1200 / 111320.0)
        assert waypoints[0]['lon'] == pytest.approx(0.0)

    def test_site_lookup_adds_hazards_per_path(self):
        provider = StraightLineProvider()
        engine = RouteAvoidanceEngine(provider)
        looked_up = []

        def lookup(vertices):
            looked_up.append(len(vertices))
            return [make_site(0.0, 0.0)]

        result = engine.find_safe_route(START, GOAL, [], 1000, site_lookup=lookup)

        assert looked_up == [2, 3]
        assert result.safe is True
        assert result.used_detour is True

    def test_merge_sites_skips_known_locations(self):
        known = make_site(0.0, 0.0)
        merged = merge_sites([known], [make_site(0.0, 0.0), make_site(0.5, 0.0)])
        assert [s.location_id for s in merged] == ['loc_0.0_0.0', 'loc_0.5_0.0']
        assert merged[0] is known

    def test_no_safe_route_returns_best_candidate(self):
        provider = StraightLineProvider(ignore_waypoints=True)
        engine = RouteAvoidanceEngine(provider)

        result = engine.find_safe_route(START, GOAL, [make_site(0.0, 0.0)], 1000)

        assert result.safe is False
        assert result.state == RouteState.NO_SAFE_ROUTE_FOUND
        assert result.attempts == 4
        assert [call[0] for call in provider.calls] == ['fast', 'fast', 'slow', 'slow']
        assert len(result.alerts) == 1

    def test_alternate_profile_tried_after_primary_detour(self):
        class ProfileAwareProvider(StraightLineProvider):
            def compute_route(self, start, goal, profile=None, waypoints=None, timeout=None):
                path = super().compute_route(start, goal, profile, waypoints, timeout)
                if profile == 'slow':
                    # The slow profile takes a northern road
                    path.vertices = [start, {'lat': 0.05, 'lon': 0.0}, goal]
                else:
                    path.vertices = [start, goal]
                return path

        provider = ProfileAwareProvider()
        result = RouteAvoidanceEngine(provider).find_safe_route(START, GOAL, [make_site(0.0, 0.0)], 1000)

        assert result.safe is True
        assert result.profile == 'slow'
        assert result.used_detour is False
        assert result.attempts == 3

    def test_cancel_before_start_raises(self):
        cancel = threading.Event()
        cancel.set()
        engine = RouteAvoidanceEngine(StraightLineProvider())

        with pytest.raises(RouteCancelledError) as exc_info:
            engine.find_safe_route(START, GOAL, [], 1000, cancel_event=cancel)
        assert exc_info.value.reason == 'cancelled'

    def test_cancel_mid_search_returns_best_so_far(self):
        cancel = threading.Event()
        provider = StraightLineProvider(on_call=lambda n: cancel.set())
        engine = RouteAvoidanceEngine(provider)

        result = engine.find_safe_route(START, GOAL, [make_site(0.0, 0.0)], 1000, cancel_event=cancel)

        assert result.cancelled is True
        assert result.safe is False
        assert result.attempts == 1
        assert result.state == RouteState.NEEDS_DETOUR

    def test_zero_timeout_raises(self):
        ticks = iter([0.0, 1.0, 2.0, 3.0])
        engine = RouteAvoidanceEngine(StraightLineProvider(), clock=lambda: next(ticks))

        with pytest.raises(RouteCancelledError) as exc_info:
            engine.find_safe_route(START, GOAL, [], 1000, timeout=0.5)
        assert exc_info.value.reason == 'timed out'

    def test_provider_error_propagates(self):
        error = RoutingProviderError('fake', 'no route', code='NO_ROUTE_FOUND')
        engine = RouteAvoidanceEngine(StraightLineProvider(error=error))

        with pytest.raises(RoutingProviderError) as exc_info:
            engine.find_safe_route(START, GOAL, [], 1000)
        assert exc_info.value.code == 'NO_ROUTE_FOUND'

    def test_searches_do_not_share_state(self):
        provider = StraightLineProvider()
        engine = RouteAvoidanceEngine(provider)

        first = engine.find_safe_route(START, GOAL, [make_site(0.0, 0.0)], 1000)
        second = engine.find_safe_route(START, GOAL, [], 1000)

        assert first.attempts == 2
        assert second.attempts == 1


class TestGenerateAvoidanceWaypoints:

    def _proximity(self, sites):
        alerts = [ProximityAlert(hazard_site=s, min_distance_meters=0.0, alert_level='high') for s in sites]
        return ProximityResult(alerts=alerts, min_distance_meters=0.0, radius_meters=1000)

    def test_sorted_by_distance_from_start(self):
        engine = RouteAvoidanceEngine(StraightLineProvider())
        sites = [make_site(0.0, 0.05, 'east'), make_site(0.0, -0.05, 'west')]

        waypoints = engine.generate_avoidance_waypoints(START, GOAL, self._proximity(sites), 1000)

        assert len(waypoints) == 2
        assert waypoints[0]['lon'] == pytest.approx(-0.05)
        assert waypoints[1]['lon'] == pytest.approx(0.05)

    def test_invalid_waypoints_dropped(self):
        engine = RouteAvoidanceEngine(StraightLineProvider())
        # Travelling west, the offset points north and leaves the valid latitude range
        start = {'lat': 89.99, 'lon': 20.0}
        goal = {'lat': 89.99, 'lon': 10.0}
        waypoints = engine.generate_avoidance_waypoints(
            start, goal, self._proximity([make_site(89.99, 15.0)]), 5000
        )
        assert waypoints == []

    def test_same_start_and_goal_gives_no_waypoints(self):
        engine = RouteAvoidanceEngine(StraightLineProvider())
        waypoints = engine.generate_avoidance_waypoints(
            START, dict(START), self._proximity([make_site(0.0, 0.0)]), 1000
        )
        assert waypoints == []

    def test_safety_factor_scales_offset(self):
        engine = RouteAvoidanceEngine(StraightLineProvider(), waypoint_safety_factor=2.0)
        waypoints = engine.generate_avoidance_waypoints(
            START, GOAL, self._proximity([make_site(0.0, 0.0)]), 1000
        )
        assert abs(waypoints[0]['lat']) == pytest.approx(2000 / 111320.0)
