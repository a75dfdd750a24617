"""
Hazard site stores.

A store holds the fused HazardSite per location and answers the three
questions the fusion and routing services ask:

- find_clusters_near(point, radius): existing locations to seed clustering
- upsert_hazard_site(site): last-write-wins on the site's newest observation
- query_active_sites_in_bounds(bbox): candidates for a route proximity check

InMemoryHazardStore serves tests and single-process deployments.
FirebaseHazardStore keeps sites in the Firebase Realtime Database under
HAZARD_SITES_PATH, indexed by 'lat' (add ".indexOn": ["lat"] to the rules).
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from shapely.geometry import Point, box

from services.exceptions import HazardStoreError
from services.models import ALERT_TYPE_RANKING, FEED_PRECEDENCE, SEVERITY_RANKING, HazardSite, LocationCluster
from utils.geo import distance
from utils.validators import HazardValidator

logger = logging.getLogger(__name__)

BoundingBox = Tuple[float, float, float, float]

WORLD_BOUNDS: BoundingBox = (-180.0, -90.0, 180.0, 90.0)


class HazardStore:
    """Interface for hazard site storage."""

    def __init__(self, max_age_hours: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            max_age_hours: Sites whose newest observation is older than this are
                not active. None keeps every site active.
            clock: Current time provider
        """
        self.max_age_hours = max_age_hours
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def find_clusters_near(self, point: Dict[str, float], radius_meters: float) -> List[LocationCluster]:
        raise NotImplementedError

    def upsert_hazard_site(self, site: HazardSite) -> bool:
        """
        Store a site unless the stored copy has a newer observation.

        Returns:
            True if the site was written

        Raises:
            HazardStoreError: If the store cannot be written
        """
        raise NotImplementedError

    def query_active_sites_in_bounds(self, bbox: BoundingBox) -> List[HazardSite]:
        """
        Active sites inside (min_lon, min_lat, max_lon, max_lat).

        Raises:
            HazardStoreError: If the store cannot be read
        """
        raise NotImplementedError

    def get_site(self, location_id: str) -> Optional[HazardSite]:
        raise NotImplementedError

    def statistics(self, bbox: BoundingBox = WORLD_BOUNDS, fresh_within_hours: float = 1.0) -> Dict[str, Any]:
        """
        Summarize the active sites in a bounding box.

        Args:
            bbox: Area to summarize, the whole world by default
            fresh_within_hours: Sites observed within this window count as fresh

        Returns:
            dict with total_sites, by_source, by_severity, by_alert_type,
            multi_source_sites, average_sources_per_site and freshness

        Raises:
            HazardStoreError: If the store cannot be read
        """
        sites = self.query_active_sites_in_bounds(bbox)
        fresh_after = self.clock() - timedelta(hours=fresh_within_hours)

        stats = {
            'total_sites': len(sites),
            'by_source': {feed_type: 0 for feed_type in FEED_PRECEDENCE},
            'by_severity': {severity: 0 for severity in SEVERITY_RANKING},
            'by_alert_type': {alert_type: 0 for alert_type in ALERT_TYPE_RANKING},
            'multi_source_sites': 0,
            'average_sources_per_site': 0.0,
            'freshness': {'fresh': 0, 'stale': 0}
        }

        total_sources = 0
        for site in sites:
            for feed_type in site.sources:
                stats['by_source'][feed_type] = stats['by_source'].get(feed_type, 0) + 1
            stats['by_severity'][site.severity] = stats['by_severity'].get(site.severity, 0) + 1
            stats['by_alert_type'][site.alert_type] = stats['by_alert_type'].get(site.alert_type, 0) + 1

            total_sources += len(site.sources)
            if len(site.sources) > 1:
                stats['multi_source_sites'] += 1

            observed_at = site.observed_at
            if observed_at is not None and observed_at >= fresh_after:
                stats['freshness']['fresh'] += 1
            else:
                stats['freshness']['stale'] += 1

        if sites:
            stats['average_sources_per_site'] = round(total_sources / len(sites), 2)

        logger.info(f"Hazard store statistics: {stats['total_sites']} active sites, "
                    f"{stats['multi_source_sites']} multi-source")
        return stats

    def is_active(self, site: HazardSite) -> bool:
        if self.max_age_hours is None:
            return True
        observed_at = site.observed_at
        if observed_at is None:
            return False
        return observed_at >= self.clock() - timedelta(hours=self.max_age_hours)

    @staticmethod
    def should_replace(current: Optional[HazardSite], incoming: HazardSite) -> bool:
        """Last write wins on observation time; an older observation never overwrites a newer one."""
        if current is None:
            return True
        if current.observed_at is None:
            return True
        if incoming.observed_at is None:
            return False
        return incoming.observed_at >= current.observed_at

    @staticmethod
    def _to_cluster(site: HazardSite) -> LocationCluster:
        return LocationCluster(
            cluster_id=site.location_id,
            lat=site.lat,
            lon=site.lon,
            member_feed_types=set(site.sources)
        )


class InMemoryHazardStore(HazardStore):
    """Thread-safe in-process store."""

    def __init__(self, max_age_hours: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        super().__init__(max_age_hours=max_age_hours, clock=clock)
        self._sites: Dict[str, HazardSite] = {}
        self._lock = threading.Lock()

    def find_clusters_near(self, point: Dict[str, float], radius_meters: float) -> List[LocationCluster]:
        with self._lock:
            sites = list(self._sites.values())
        return [
            self._to_cluster(site) for site in sites
            if distance(point, site.location) <= radius_meters
        ]

    def upsert_hazard_site(self, site: HazardSite) -> bool:
        with self._lock:
            current = self._sites.get(site.location_id)
            if not self.should_replace(current, site):
                logger.debug(f"Skipping stale write for {site.location_id}")
                return False
            self._sites[site.location_id] = site
            return True

    def query_active_sites_in_bounds(self, bbox: BoundingBox) -> List[HazardSite]:
        area = box(*bbox)
        with self._lock:
            sites = list(self._sites.values())
        return [
            site for site in sites
            if area.intersects(Point(site.lon, site.lat)) and self.is_active(site)
        ]

    def get_site(self, location_id: str) -> Optional[HazardSite]:
        with self._lock:
            return self._sites.get(location_id)

    def all_sites(self) -> List[HazardSite]:
        with self._lock:
            return list(self._sites.values())


class FirebaseHazardStore(HazardStore):
    """Store backed by the Firebase Realtime Database."""

    def __init__(self, db, path: str = 'hazard_sites', max_age_hours: Optional[float] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            db: firebase_admin.db module (or a compatible mock)
            path: Database path holding one child per site
        """
        super().__init__(max_age_hours=max_age_hours, clock=clock)
        self.db = db
        self.path = path.strip('/')

    @staticmethod
    def encode_key(location_id: str) -> str:
        """
        Firebase keys cannot contain '.', '$', '#', '[', ']' or '/'.

        Examples:
            >>> FirebaseHazardStore.encode_key('loc_37.5665_126.978')
            'loc_37,5665_126,978'
        """
        return location_id.replace('.', ',')

    def _root(self):
        return self.db.reference(self.path)

    @staticmethod
    def _decode_site(value: Any) -> Optional[HazardSite]:
        """Decode one stored record, or None when it is unreadable or carries unknown levels."""
        try:
            site = HazardSite.from_dict(value)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping unreadable hazard site record: {e}")
            return None
        if not HazardValidator.validate_severity(site.severity):
            logger.warning(f"Skipping hazard site {site.location_id} with severity {site.severity!r}")
            return None
        if not HazardValidator.validate_alert_type(site.alert_type):
            logger.warning(f"Skipping hazard site {site.location_id} with alert type {site.alert_type!r}")
            return None
        return site

    def _decode_sites(self, raw: Any) -> List[HazardSite]:
        if not raw:
            return []
        values = raw.values() if isinstance(raw, dict) else raw
        sites = []
        for value in values:
            if not value:
                continue
            site = self._decode_site(value)
            if site is not None:
                sites.append(site)
        return sites

    def find_clusters_near(self, point: Dict[str, float], radius_meters: float) -> List[LocationCluster]:
        # Latitude window first, exact distance after
        margin = radius_meters / 111320.0
        try:
            raw = (
                self._root()
                .order_by_child('lat')
                .start_at(point['lat'] - margin)
                .end_at(point['lat'] + margin)
                .get()
            )
        except Exception as e:
            logger.error(f"Failed to query hazard sites near point: {e}", exc_info=True)
            raise HazardStoreError(f"find_clusters_near failed: {e}")

        return [
            self._to_cluster(site) for site in self._decode_sites(raw)
            if distance(point, site.location) <= radius_meters
        ]

    def upsert_hazard_site(self, site: HazardSite) -> bool:
        ref = self._root().child(self.encode_key(site.location_id))
        outcome = {'written': False}

        def apply(current_value):
            current = None
            if current_value:
                try:
                    current = HazardSite.from_dict(current_value)
                except (KeyError, TypeError, ValueError):
                    logger.warning(f"Overwriting unreadable record for {site.location_id}")
            if not self.should_replace(current, site):
                outcome['written'] = False
                return current_value
            outcome['written'] = True
            return site.to_dict()

        try:
            ref.transaction(apply)
        except Exception as e:
            logger.error(f"Failed to upsert hazard site {site.location_id}: {e}", exc_info=True)
            raise HazardStoreError(f"upsert failed for {site.location_id}: {e}")

        if not outcome['written']:
            logger.debug(f"Skipping stale write for {site.location_id}")
        return outcome['written']

    def query_active_sites_in_bounds(self, bbox: BoundingBox) -> List[HazardSite]:
        min_lon, min_lat, max_lon, max_lat = bbox
        try:
            raw = (
                self._root()
                .order_by_child('lat')
                .start_at(min_lat)
                .end_at(max_lat)
                .get()
            )
        except Exception as e:
            logger.error(f"Failed to query hazard sites in bounds: {e}", exc_info=True)
            raise HazardStoreError(f"bounds query failed: {e}")

        area = box(min_lon, min_lat, max_lon, max_lat)
        return [
            site for site in self._decode_sites(raw)
            if area.intersects(Point(site.lon, site.lat)) and self.is_active(site)
        ]

    def get_site(self, location_id: str) -> Optional[HazardSite]:
        try:
            raw = self._root().child(self.encode_key(location_id)).get()
        except Exception as e:
            logger.error(f"Failed to read hazard site {location_id}: {e}", exc_info=True)
            raise HazardStoreError(f"read failed for {location_id}: {e}")
        if not raw:
            return None
        # Unreadable records read as absent; the next upsert overwrites them
        return self._decode_site(raw)


def create_hazard_store(cfg) -> HazardStore:
    """
    Build the store a configuration asks for.

    Firebase is used when FIREBASE_DATABASE_URL is set, the in-memory store otherwise.
    """
    max_age = getattr(cfg, 'SITE_MAX_AGE_HOURS', None)
    database_url = getattr(cfg, 'FIREBASE_DATABASE_URL', None)

    if database_url:
        # Lazy import so in-memory deployments never load firebase credentials
        from firebase_setup import init_firebase
        db = init_firebase(database_url)
        logger.info("Using Firebase hazard store")
        return FirebaseHazardStore(db, path=getattr(cfg, 'HAZARD_SITES_PATH', 'hazard_sites'),
                                   max_age_hours=max_age)

    logger.info("FIREBASE_DATABASE_URL not set - using in-memory hazard store")
    return InMemoryHazardStore(max_age_hours=max_age)
