"""
Tests for ProximityEngine

Tests alert levels, severity adjustment, route analysis, safety scoring,
risk segments, store-backed checks and periodic monitoring.
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from services.hazard_store import InMemoryHazardStore
from services.models import HazardSite
from services.proximity_engine import ProximityEngine, ProximityMonitor


NOW = datetime(2023, 7, 15, 10, 0, tzinfo=timezone.utc)


def make_site(lat, lon, severity='medium', location_id=None, alert_type='warning'):
    return HazardSite(
        location_id=location_id or f"loc_{lat}_{lon}",
        lat=lat,
        lon=lon,
        alert_type=alert_type,
        severity=severity,
        sources=['waterlevel'],
        feed_records={},
        last_updated=NOW
    )


@pytest.fixture
def engine():
    return ProximityEngine()


@pytest.fixture
def seoul_path():
    """Straight path through central Seoul"""
    return [{'lat': 37.560, 'lon': 126.970}, {'lat': 37.570, 'lon': 126.980}]


class TestCheck:

    def test_hazard_on_path(self, engine, seoul_path):
        """A hazard at the midpoint is ~0 m away and produces one alert"""
        site = make_site(37.565, 126.975, severity='medium')
        result = engine.check(seoul_path, [site], 1500)

        assert result.safe is False
        assert len(result.alerts) == 1
        assert result.min_distance_meters == pytest.approx(0.0, abs=1.0)
        assert result.alerts[0].alert_level == 'high'

    def test_low_severity_capped_at_medium(self, engine, seoul_path):
        result = engine.check(seoul_path, [make_site(37.565, 126.975, severity='low')], 1500)
        assert result.alerts[0].alert_level == 'medium'

    def test_hazard_outside_radius(self, engine, seoul_path):
        far = make_site(37.60, 127.05)
        result = engine.check(seoul_path, [far], 1500)

        assert result.safe is True
        assert result.alerts == []
        assert result.min_distance_meters > 1500

    def test_no_hazards(self, engine, seoul_path):
        result = engine.check(seoul_path, [], 1500)
        assert result.safe is True
        assert result.min_distance_meters is None
        assert result.safety_score == 100

    def test_single_vertex_path_is_safe(self, engine):
        result = engine.check([{'lat': 37.565, 'lon': 126.975}], [make_site(37.565, 126.975)], 1500)
        assert result.safe is True

    def test_alerts_sorted_by_distance(self, engine, seoul_path):
        near = make_site(37.565, 126.975, location_id='near')
        farther = make_site(37.566, 126.9735, location_id='farther')
        result = engine.check(seoul_path, [farther, near], 1500)
        assert [a.hazard_site.location_id for a in result.alerts] == ['near', 'farther']

    def test_safe_iff_min_distance_exceeds_radius(self, engine, seoul_path):
        sites = [make_site(37.565, 126.990), make_site(37.55, 126.96)]
        result = engine.check(seoul_path, sites, 800)
        assert result.safe == (result.min_distance_meters > 800)

    def test_radius_must_be_positive(self, engine, seoul_path):
        with pytest.raises(ValueError):
            engine.check(seoul_path, [], 0)

    def test_analysis(self, engine, seoul_path):
        result = engine.check(seoul_path, [make_site(37.565, 126.975, severity='high')], 1500)
        assert result.analysis['checked_points'] == 2
        assert result.analysis['hazards_in_area'] == 1
        assert result.analysis['severity_distribution'] == {'low': 0, 'medium': 0, 'high': 1}
        assert result.analysis['total_distance_meters'] > 1000


class TestAlertLevel:

    @pytest.mark.parametrize('distance,severity,expected', [
        (100, 'medium', 'high'),
        (500, 'medium', 'medium'),
        (900, 'medium', 'low'),
        (900, 'high', 'medium'),
        (500, 'high', 'high'),
        (100, 'low', 'medium'),
        (900, 'low', 'low'),
    ])
    def test_levels(self, distance, severity, expected):
        assert ProximityEngine.determine_alert_level(distance, 1000, severity) == expected

    @pytest.mark.parametrize('severity', ['low', 'medium', 'high'])
    @pytest.mark.parametrize('radius', [50, 300, 1000, 1500, 5000])
    def test_closer_is_never_less_severe(self, severity, radius):
        rank = {'low': 1, 'medium': 2, 'high': 3}
        distances = [0, radius * 0.3, radius * 0.5, radius * 0.7, radius * 0.9, radius]

        levels = [rank[ProximityEngine.determine_alert_level(d, radius, severity)] for d in distances]

        assert levels == sorted(levels, reverse=True)
        assert levels[0] >= levels[-1]

    def test_boundaries_inclusive(self):
        assert ProximityEngine.determine_alert_level(300, 1000, 'medium') == 'high'
        assert ProximityEngine.determine_alert_level(700, 1000, 'medium') == 'medium'


class TestSafetyScore:

    def test_one_close_high_hazard(self, engine, seoul_path):
        result = engine.check(seoul_path, [make_site(37.565, 126.975, severity='high')], 1500)
        # 100 - 10 (alert) - 30 (< 500 m) - 20 (high)
        assert result.safety_score == 40

    def test_score_never_negative(self, engine, seoul_path):
        sites = [make_site(37.565 + i * 0.0001, 126.975, severity='high', location_id=str(i)) for i in range(5)]
        result = engine.check(seoul_path, sites, 1500)
        assert result.safety_score == 0


class TestRiskSegments:

    def test_segment_near_hazard(self, engine):
        path = [
            {'lat': 37.560, 'lon': 126.970},
            {'lat': 37.565, 'lon': 126.975},
            {'lat': 37.565, 'lon': 127.000},
        ]
        result = engine.check(path, [make_site(37.5625, 126.9725)], 1500)
        segments = engine.identify_risk_segments(path, result)

        assert [s['segment_index'] for s in segments] == [0]
        assert segments[0]['alert_level'] == result.alerts[0].alert_level


class TestCheckAgainstStore:

    def test_queries_buffered_bounds(self, engine, seoul_path):
        store = MagicMock()
        store.query_active_sites_in_bounds.return_value = [make_site(37.565, 126.975)]

        result = engine.check_against_store(seoul_path, store, 1500)

        bbox = store.query_active_sites_in_bounds.call_args[0][0]
        assert bbox[0] < 126.970 and bbox[2] > 126.980
        assert result.safe is False

    def test_with_in_memory_store(self, engine, seoul_path):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site(37.565, 126.975))
        store.upsert_hazard_site(make_site(35.1, 129.0))

        result = engine.check_against_store(seoul_path, store, 1500)
        assert result.analysis['hazards_in_area'] == 1

    def test_rejects_short_path(self, engine):
        with pytest.raises(ValueError):
            engine.check_against_store([{'lat': 1, 'lon': 1}], MagicMock(), 100)


class TestProximityMonitor:

    def test_callback_on_alert(self, engine, seoul_path):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site(37.565, 126.975))
        callback = MagicMock()

        monitor = ProximityMonitor(engine, store, seoul_path, callback, radius_meters=1500)
        result = monitor.check_once()

        callback.assert_called_once_with(result)

    def test_callback_when_alerts_clear(self, engine, seoul_path):
        store = MagicMock()
        store.query_active_sites_in_bounds.side_effect = [[make_site(37.565, 126.975)], []]
        callback = MagicMock()

        monitor = ProximityMonitor(engine, store, seoul_path, callback, radius_meters=1500)
        monitor.check_once()
        monitor.check_once()

        assert callback.call_count == 2
        assert callback.call_args[0][0].safe is True

    def test_no_callback_when_quiet(self, engine, seoul_path):
        callback = MagicMock()
        monitor = ProximityMonitor(engine, InMemoryHazardStore(), seoul_path, callback, radius_meters=1500)
        monitor.check_once()
        monitor.check_once()
        callback.assert_not_called()

    def test_start_and_stop(self, engine, seoul_path):
        monitor = ProximityMonitor(engine, InMemoryHazardStore(), seoul_path, MagicMock(),
                                   radius_meters=1500, interval_seconds=0.01)
        monitor.start()
        assert monitor.is_running()
        monitor.stop(timeout=1.0)
        assert not monitor.is_running()
