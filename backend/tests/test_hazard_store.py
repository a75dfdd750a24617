"""
Tests for hazard site stores

Tests last-write-wins upserts, bounds queries and expiry for the in-memory
store, and the Firebase store against a mocked firebase_admin.db.
"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, Mock, patch

from services.exceptions import HazardStoreError
from services.hazard_store import FirebaseHazardStore, InMemoryHazardStore, create_hazard_store
from services.hazard_fusion_service import HazardFusionService
from services.models import FEED_FORECAST, FEED_REALTIME, FEED_WATER_LEVEL, FeedRecord, HazardSite, RawObservation


NOW = datetime(2023, 7, 15, 10, 0, tzinfo=timezone.utc)
SEOUL_BOUNDS = (126.9, 37.5, 127.1, 37.6)


def make_site(location_id='loc_37.5665_126.978', lat=37.5665, lon=126.978,
              severity='medium', observed_minutes=0):
    record = FeedRecord(
        feed_type=FEED_WATER_LEVEL,
        timestamp=NOW + timedelta(minutes=observed_minutes),
        payload={'water_level': 6.0},
        alert_type='warning',
        severity=severity
    )
    return HazardSite(
        location_id=location_id,
        lat=lat,
        lon=lon,
        alert_type='warning',
        severity=severity,
        sources=[FEED_WATER_LEVEL],
        feed_records={FEED_WATER_LEVEL: record},
        dominant_feed=FEED_WATER_LEVEL,
        last_updated=NOW
    )


class TestInMemoryHazardStore:

    def test_upsert_and_get(self):
        store = InMemoryHazardStore()
        site = make_site()
        assert store.upsert_hazard_site(site) is True
        assert store.get_site(site.location_id) is site

    def test_newer_observation_replaces(self):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site(severity='low', observed_minutes=0))
        assert store.upsert_hazard_site(make_site(severity='high', observed_minutes=5)) is True
        assert store.get_site('loc_37.5665_126.978').severity == 'high'

    def test_older_observation_never_overwrites(self):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site(severity='high', observed_minutes=10))
        assert store.upsert_hazard_site(make_site(severity='low', observed_minutes=5)) is False
        assert store.get_site('loc_37.5665_126.978').severity == 'high'

    def test_equal_observation_time_replaces(self):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site(severity='low'))
        assert store.upsert_hazard_site(make_site(severity='high')) is True

    def test_query_in_bounds(self):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site('seoul'))
        store.upsert_hazard_site(make_site('busan', lat=35.1796, lon=129.0756))

        sites = store.query_active_sites_in_bounds(SEOUL_BOUNDS)
        assert [s.location_id for s in sites] == ['seoul']

    def test_expired_sites_not_active(self):
        store = InMemoryHazardStore(max_age_hours=24, clock=lambda: NOW + timedelta(hours=25))
        store.upsert_hazard_site(make_site())
        assert store.query_active_sites_in_bounds(SEOUL_BOUNDS) == []

    def test_statistics(self):
        store = InMemoryHazardStore(clock=lambda: NOW + timedelta(minutes=30))
        merged = make_site('merged', severity='high')
        merged.sources = [FEED_WATER_LEVEL, FEED_REALTIME]
        merged.alert_type = 'emergency'
        store.upsert_hazard_site(merged)
        store.upsert_hazard_site(make_site('older', lat=37.55, observed_minutes=-120))
        store.upsert_hazard_site(make_site('busan', lat=35.1796, lon=129.0756))

        stats = store.statistics()

        assert stats['total_sites'] == 3
        assert stats['by_source'] == {FEED_WATER_LEVEL: 3, FEED_REALTIME: 1, FEED_FORECAST: 0}
        assert stats['by_severity'] == {'low': 0, 'medium': 2, 'high': 1}
        assert stats['by_alert_type'] == {'advisory': 0, 'warning': 2, 'emergency': 1}
        assert stats['multi_source_sites'] == 1
        assert stats['average_sources_per_site'] == 1.33
        assert stats['freshness'] == {'fresh': 2, 'stale': 1}

        assert store.statistics(SEOUL_BOUNDS)['total_sites'] == 2

    def test_statistics_empty(self):
        stats = InMemoryHazardStore().statistics()
        assert stats['total_sites'] == 0
        assert stats['average_sources_per_site'] == 0.0

    def test_find_clusters_near(self):
        store = InMemoryHazardStore()
        store.upsert_hazard_site(make_site())

        near = store.find_clusters_near({'lat': 37.5666, 'lon': 126.978}, 100)
        assert len(near) == 1
        assert near[0].cluster_id == 'loc_37.5665_126.978'
        assert near[0].member_feed_types == {FEED_WATER_LEVEL}

        assert store.find_clusters_near({'lat': 37.58, 'lon': 126.978}, 100) == []


@pytest.fixture
def mock_db():
    return MagicMock()


class TestFirebaseHazardStore:

    def test_encode_key(self):
        assert FirebaseHazardStore.encode_key('loc_37.5665_126.978') == 'loc_37,5665_126,978'

    def test_upsert_writes_new_site(self, mock_db):
        store = FirebaseHazardStore(mock_db)
        child = mock_db.reference.return_value.child.return_value
        written = {}

        def transaction(apply):
            written['value'] = apply(None)

        child.transaction.side_effect = transaction
        site = make_site()

        assert store.upsert_hazard_site(site) is True
        mock_db.reference.assert_called_with('hazard_sites')
        mock_db.reference.return_value.child.assert_called_with('loc_37,5665_126,978')
        assert written['value'] == site.to_dict()

    def test_upsert_keeps_newer_stored_site(self, mock_db):
        store = FirebaseHazardStore(mock_db)
        child = mock_db.reference.return_value.child.return_value
        stored = make_site(severity='high', observed_minutes=10).to_dict()
        written = {}

        def transaction(apply):
            written['value'] = apply(stored)

        child.transaction.side_effect = transaction

        assert store.upsert_hazard_site(make_site(severity='low', observed_minutes=5)) is False
        assert written['value'] is stored

    def test_upsert_failure_raises_store_error(self, mock_db):
        store = FirebaseHazardStore(mock_db)
        mock_db.reference.return_value.child.return_value.transaction.side_effect = Exception("network")
        with pytest.raises(HazardStoreError):
            store.upsert_hazard_site(make_site())

    def test_query_in_bounds(self, mock_db):
        store = FirebaseHazardStore(mock_db, path='/sites/')
        query = mock_db.reference.return_value.order_by_child.return_value
        query.start_at.return_value.end_at.return_value.get.return_value = {
            'a': make_site('inside').to_dict(),
            'b': make_site('outside_lon', lon=128.0).to_dict(),
            'c': {'garbage': True},
            'd': make_site('unknown_severity', severity='critical').to_dict(),
            'e': dict(make_site('unknown_alert_type').to_dict(), alert_type='evacuate'),
        }

        sites = store.query_active_sites_in_bounds(SEOUL_BOUNDS)

        mock_db.reference.assert_called_with('sites')
        mock_db.reference.return_value.order_by_child.assert_called_with('lat')
        query.start_at.assert_called_with(37.5)
        query.start_at.return_value.end_at.assert_called_with(37.6)
        assert [s.location_id for s in sites] == ['inside']

    def test_query_failure_raises_store_error(self, mock_db):
        mock_db.reference.return_value.order_by_child.side_effect = Exception("permission denied")
        with pytest.raises(HazardStoreError):
            FirebaseHazardStore(mock_db).query_active_sites_in_bounds(SEOUL_BOUNDS)

    def test_get_site(self, mock_db):
        site = make_site()
        mock_db.reference.return_value.child.return_value.get.return_value = site.to_dict()
        restored = FirebaseHazardStore(mock_db).get_site(site.location_id)
        assert restored.to_dict() == site.to_dict()

    def test_get_missing_site(self, mock_db):
        mock_db.reference.return_value.child.return_value.get.return_value = None
        assert FirebaseHazardStore(mock_db).get_site('nope') is None

    def test_get_unreadable_site_is_absent(self, mock_db):
        mock_db.reference.return_value.child.return_value.get.return_value = {'lat': 37.5665}
        assert FirebaseHazardStore(mock_db).get_site('loc_37.5665_126.978') is None

    def test_fusion_survives_unreadable_stored_site(self, mock_db):
        root = mock_db.reference.return_value
        root.order_by_child.return_value.start_at.return_value.end_at.return_value.get.return_value = None
        root.child.return_value.get.return_value = {'lat': 37.5665}
        service = HazardFusionService(store=FirebaseHazardStore(mock_db))
        observation = RawObservation(
            feed_type=FEED_WATER_LEVEL,
            timestamp=NOW,
            payload={'water_level': 6.0, 'alert_level': 5.0, 'danger_level': 8.0},
            coordinates={'lat': 37.5665, 'lon': 126.978}
        )

        sites = service.fuse_observations([observation])

        assert len(sites) == 1
        assert sites[0].severity == 'medium'


class TestCreateHazardStore:

    def test_in_memory_without_database_url(self):
        store = create_hazard_store(Mock(FIREBASE_DATABASE_URL=None, SITE_MAX_AGE_HOURS=12))
        assert isinstance(store, InMemoryHazardStore)
        assert store.max_age_hours == 12

    @patch('firebase_setup.init_firebase')
    def test_firebase_with_database_url(self, mock_init):
        cfg = Mock(FIREBASE_DATABASE_URL='https://example.firebaseio.com',
                   SITE_MAX_AGE_HOURS=24, HAZARD_SITES_PATH='hazard_sites')
        store = create_hazard_store(cfg)

        mock_init.assert_called_once_with('https://example.firebaseio.com')
        assert isinstance(store, FirebaseHazardStore)
        assert store.db is mock_init.return_value
