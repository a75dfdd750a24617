"""
Proximity Engine

Checks a travel path against fused hazard sites.

For each site the minimum distance to any path segment is computed. Sites
within the avoidance radius become alerts, graded by distance and adjusted by
the site's severity:

    distance <= 0.3 r  -> high
    distance <= 0.7 r  -> medium
    otherwise          -> low

    severity high   : low is raised to medium, everything else becomes high
    severity medium : unchanged
    severity low    : high is capped at medium

A path is safe exactly when it produces no alerts.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from services.models import HazardSite, ProximityAlert, ProximityResult, SEVERITY_RANKING
from utils.geo import bounding_box, distance_to_segment, min_distance_to_path, path_length

logger = logging.getLogger(__name__)

# Fractions of the radius for distance-based alert levels
HIGH_LEVEL_FRACTION = 0.3
MEDIUM_LEVEL_FRACTION = 0.7

# Slack applied to a hazard's closest approach when marking risky segments
RISK_SEGMENT_SLACK = 1.1


class ProximityEngine:
    """Path-to-hazard proximity checks and route risk analysis."""

    def check(
        self,
        path: List[Dict[str, float]],
        hazard_sites: List[HazardSite],
        radius_meters: float
    ) -> ProximityResult:
        """
        Check a path against hazard sites.

        Args:
            path: Ordered {'lat', 'lon'} vertices
            hazard_sites: Candidate sites
            radius_meters: Avoidance radius

        Returns:
            ProximityResult with alerts sorted by distance (closest first).
            min_distance_meters covers every checked site and is None when
            there are no sites. Paths with fewer than 2 vertices are infinitely
            far from everything and therefore safe.

        Raises:
            ValueError: If radius_meters is not positive
        """
        if radius_meters <= 0:
            raise ValueError("radius_meters must be positive")

        alerts = []
        closest = None

        for site in hazard_sites:
            d = min_distance_to_path(site.location, path)
            if closest is None or d < closest:
                closest = d

            if d <= radius_meters:
                alerts.append(ProximityAlert(
                    hazard_site=site,
                    min_distance_meters=d,
                    alert_level=self.determine_alert_level(d, radius_meters, site.severity)
                ))

        alerts.sort(key=lambda a: (a.min_distance_meters, a.hazard_site.location_id))

        result = ProximityResult(
            alerts=alerts,
            min_distance_meters=closest,
            radius_meters=radius_meters,
            analysis={
                'total_distance_meters': round(path_length(path), 1),
                'checked_points': len(path),
                'hazards_in_area': len(hazard_sites),
                'alert_count': len(alerts),
                'severity_distribution': self.severity_distribution(alerts)
            }
        )
        result.safety_score = self.calculate_route_safety_score(result)

        logger.debug(
            f"Proximity check: {len(hazard_sites)} sites, {len(alerts)} alerts, "
            f"radius {radius_meters}m"
        )
        return result

    @staticmethod
    def determine_alert_level(distance_meters: float, radius_meters: float, severity: str) -> str:
        """
        Grade an alert by distance, then adjust for hazard severity.

        Examples:
            >>> ProximityEngine.determine_alert_level(100, 1000, 'medium')
            'high'
            >>> ProximityEngine.determine_alert_level(900, 1000, 'high')
            'medium'
            >>> ProximityEngine.determine_alert_level(100, 1000, 'low')
            'medium'
        """
        if distance_meters <= radius_meters * HIGH_LEVEL_FRACTION:
            base_level = 'high'
        elif distance_meters <= radius_meters * MEDIUM_LEVEL_FRACTION:
            base_level = 'medium'
        else:
            base_level = 'low'

        if severity == 'high':
            return 'medium' if base_level == 'low' else 'high'
        if severity == 'medium':
            return base_level
        return 'medium' if base_level == 'high' else base_level

    @staticmethod
    def severity_distribution(alerts: List[ProximityAlert]) -> Dict[str, int]:
        """Count alerts per hazard severity."""
        distribution = {severity: 0 for severity in SEVERITY_RANKING}
        for alert in alerts:
            severity = alert.hazard_site.severity
            if severity in distribution:
                distribution[severity] += 1
        return distribution

    @staticmethod
    def calculate_route_safety_score(result: ProximityResult) -> int:
        """
        Score a checked route from 0 (dangerous) to 100 (no alerts).

        Penalties:
        - 10 per alert
        - 30 / 20 / 10 for a closest approach under 500 m / under 1000 m / otherwise
        - 20 per high-severity and 10 per medium-severity alerted hazard
        """
        if result.safe:
            return 100

        score = 100
        score -= len(result.alerts) * 10

        closest = min(a.min_distance_meters for a in result.alerts)
        if closest < 500:
            score -= 30
        elif closest < 1000:
            score -= 20
        else:
            score -= 10

        distribution = ProximityEngine.severity_distribution(result.alerts)
        score -= distribution['high'] * 20 + distribution['medium'] * 10

        return max(0, min(100, score))

    @staticmethod
    def identify_risk_segments(
        path: List[Dict[str, float]],
        result: ProximityResult
    ) -> List[Dict[str, Any]]:
        """
        Path segments that pass close to an alerted hazard.

        A segment is risky for a hazard when it comes within 110% of that
        hazard's closest approach to the whole path.

        Returns:
            List of dicts with segment_index, location_id, distance_meters,
            severity and alert_level, grouped by alert
        """
        segments = []
        for alert in result.alerts:
            site = alert.hazard_site
            limit = alert.min_distance_meters * RISK_SEGMENT_SLACK
            for i in range(len(path) - 1):
                d = distance_to_segment(site.location, path[i], path[i + 1])
                if d <= limit:
                    segments.append({
                        'segment_index': i,
                        'location_id': site.location_id,
                        'distance_meters': round(d, 1),
                        'severity': site.severity,
                        'alert_level': alert.alert_level
                    })
        return segments

    @staticmethod
    def calculate_route_bounds(path: List[Dict[str, float]], buffer_meters: float):
        """Bounding box (min_lon, min_lat, max_lon, max_lat) of a path plus a buffer."""
        return bounding_box(path, buffer_meters)

    def check_against_store(
        self,
        path: List[Dict[str, float]],
        store,
        radius_meters: float,
        search_buffer_meters: Optional[float] = None
    ) -> ProximityResult:
        """
        Check a path against the active sites a hazard store holds around it.

        Args:
            path: Ordered vertices, at least 2
            store: HazardStore to query
            radius_meters: Avoidance radius
            search_buffer_meters: Bounds expansion, defaults to the radius

        Raises:
            ValueError: If the path has fewer than 2 vertices
        """
        if len(path) < 2:
            raise ValueError("Invalid route path: at least 2 vertices required")

        buffer = radius_meters if search_buffer_meters is None else search_buffer_meters
        bounds = self.calculate_route_bounds(path, buffer)
        sites = store.query_active_sites_in_bounds(bounds)
        return self.check(path, sites, radius_meters)


class ProximityMonitor:
    """
    Periodically re-checks a path against a hazard store on a background thread.

    The callback receives every result that has alerts, and any result whose
    alert set differs from the previous check.
    """

    def __init__(
        self,
        engine: ProximityEngine,
        store,
        path: List[Dict[str, float]],
        callback: Callable[[ProximityResult], None],
        radius_meters: float,
        interval_seconds: float = 30.0
    ):
        self.engine = engine
        self.store = store
        self.path = path
        self.callback = callback
        self.radius_meters = radius_meters
        self.interval_seconds = interval_seconds
        self.last_result: Optional[ProximityResult] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check_once(self) -> ProximityResult:
        """Run a single check and notify the callback if warranted."""
        result = self.engine.check_against_store(self.path, self.store, self.radius_meters)

        previous_ids = self._alert_ids(self.last_result)
        current_ids = self._alert_ids(result)
        if result.alerts or (self.last_result is not None and previous_ids != current_ids):
            self.callback(result)

        self.last_result = result
        return result

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception as e:
                logger.error(f"Proximity monitoring check failed: {e}", exc_info=True)
            self._stop_event.wait(self.interval_seconds)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='proximity-monitor', daemon=True)
        self._thread.start()
        logger.info(f"Proximity monitoring started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Proximity monitoring stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @staticmethod
    def _alert_ids(result: Optional[ProximityResult]):
        if result is None:
            return frozenset()
        return frozenset(a.hazard_site.location_id for a in result.alerts)
