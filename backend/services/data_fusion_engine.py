"""
Data Fusion Engine

Merges the observations clustered onto one location into a single HazardSite.

Rules:
- Per feed, only the latest observation counts (strictly newer timestamp wins,
  first seen wins on ties).
- Each feed derives its own alert type and severity:
  - water level / realtime: measured level vs. alert and danger thresholds
  - forecast: categorical bulletin label (Korean or English)
- The site's alert type and severity are the maxima over its feeds.
- The dominant feed (reported label) is the highest ranked one, ties broken by
  FEED_PRECEDENCE (water level > realtime > forecast).
- When merging into a stored site, a feed record is replaced only by a
  strictly newer one from the same feed.

Fusion is deterministic: the same inputs produce the same site apart from
last_updated.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from services.models import (
    ALERT_TYPE_RANKING,
    FEED_FORECAST,
    FEED_PRECEDENCE,
    FEED_REALTIME,
    FEED_WATER_LEVEL,
    SEVERITY_RANKING,
    FeedRecord,
    HazardSite,
    RawObservation,
)

logger = logging.getLogger(__name__)

SEVERITY_TO_ALERT_TYPE = {
    'low': 'advisory',
    'medium': 'warning',
    'high': 'emergency'
}

ALERT_TYPE_TO_SEVERITY = {
    'advisory': 'low',
    'warning': 'medium',
    'emergency': 'high'
}


def normalize_alert_type(label: Optional[str]) -> str:
    """
    Map a bulletin label to an alert type.

    Korean flood bulletins use 특보 (special report), 경보 (warning) and
    주의보 (advisory). Anything unrecognized is an advisory.

    Examples:
        >>> normalize_alert_type('홍수경보')
        'warning'
        >>> normalize_alert_type('EMERGENCY')
        'emergency'
        >>> normalize_alert_type('홍수주의보')
        'advisory'
    """
    if not label:
        return 'advisory'

    text = str(label).lower()
    if '특보' in text or 'emergency' in text:
        return 'emergency'
    if '경보' in text or 'warning' in text:
        return 'warning'
    return 'advisory'


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def feed_rank(feed_type: str) -> int:
    """Lower is stronger. Unknown feeds sort after the known ones."""
    try:
        return FEED_PRECEDENCE.index(feed_type)
    except ValueError:
        return len(FEED_PRECEDENCE)


class DataFusionEngine:
    """Combines per-feed observations of one location into a HazardSite."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            clock: Returns the current time for last_updated. Defaults to UTC now.
        """
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._derivation_rules = {
            FEED_WATER_LEVEL: self._derive_from_water_level,
            FEED_REALTIME: self._derive_from_water_level,
            FEED_FORECAST: self._derive_from_bulletin
        }

    def derive_feed_record(self, observation: RawObservation) -> FeedRecord:
        """
        Classify a single observation on its own.

        Unknown feed types are classified by their payload: numeric when they
        carry a water level, categorical otherwise.
        """
        rule = self._derivation_rules.get(observation.feed_type)
        if rule is None:
            if 'water_level' in observation.payload:
                rule = self._derive_from_water_level
            else:
                rule = self._derive_from_bulletin

        alert_type, severity, label = rule(observation.payload)
        return FeedRecord(
            feed_type=observation.feed_type,
            timestamp=observation.timestamp,
            payload=dict(observation.payload),
            alert_type=alert_type,
            severity=severity,
            alert_label=label
        )

    def _derive_from_water_level(self, payload: Dict[str, Any]):
        level = _to_float(payload.get('water_level'))
        alert_threshold = _to_float(payload.get('alert_level'))
        danger_threshold = _to_float(payload.get('danger_level'))
        label = payload.get('alert_label')

        if level is None or (alert_threshold is None and danger_threshold is None):
            # No measurement to compare: fall back to any label the gauge supplied
            alert_type = normalize_alert_type(label) if label else 'advisory'
            return alert_type, ALERT_TYPE_TO_SEVERITY[alert_type], label

        if danger_threshold is not None and level >= danger_threshold:
            severity = 'high'
        elif alert_threshold is not None and level >= alert_threshold:
            severity = 'medium'
        else:
            severity = 'low'

        alert_type = normalize_alert_type(label) if label else SEVERITY_TO_ALERT_TYPE[severity]
        return alert_type, severity, label

    def _derive_from_bulletin(self, payload: Dict[str, Any]):
        label = payload.get('alert_label')
        alert_type = normalize_alert_type(label)
        return alert_type, ALERT_TYPE_TO_SEVERITY[alert_type], label

    @staticmethod
    def select_latest(observations: List[RawObservation]) -> Dict[str, RawObservation]:
        """
        Latest observation per feed.

        A later observation replaces the current one only when its timestamp is
        strictly greater.
        """
        latest: Dict[str, RawObservation] = {}
        for observation in observations:
            current = latest.get(observation.feed_type)
            if current is None or observation.timestamp > current.timestamp:
                latest[observation.feed_type] = observation
        return latest

    @staticmethod
    def merge_records(
        existing: Dict[str, FeedRecord],
        incoming: Dict[str, FeedRecord]
    ) -> Dict[str, FeedRecord]:
        """Per-feed merge where only strictly newer incoming records replace stored ones."""
        merged = dict(existing)
        for feed_type, record in incoming.items():
            current = merged.get(feed_type)
            if current is None or record.timestamp > current.timestamp:
                merged[feed_type] = record
            else:
                logger.debug(f"Keeping stored {feed_type} record; incoming is not newer")
        return merged

    def fuse(
        self,
        cluster_id: str,
        observations: List[RawObservation],
        location: Optional[Dict[str, float]] = None,
        existing: Optional[HazardSite] = None
    ) -> HazardSite:
        """
        Fuse the observations of one cluster into a hazard site.

        Args:
            cluster_id: Location identity, becomes the site's location_id
            observations: Observations assigned to the cluster in this batch
            location: Representative point. Defaults to the existing site's
                point, then the newest observation's coordinates.
            existing: Previously stored site to merge into

        Returns:
            HazardSite with per-feed records and aggregated classification

        Raises:
            ValueError: If there is nothing to fuse or no location can be determined
        """
        latest = self.select_latest(observations)
        incoming = {
            feed_type: self.derive_feed_record(observation)
            for feed_type, observation in latest.items()
        }

        records = self.merge_records(existing.feed_records, incoming) if existing else incoming
        if not records:
            raise ValueError(f"No observations to fuse for {cluster_id}")

        if location is None:
            if existing is not None:
                location = existing.location
            else:
                location = self._latest_coordinates(observations)
        if location is None:
            raise ValueError(f"No location available for {cluster_id}")

        return self.build_site(cluster_id, location, records)

    def build_site(
        self,
        cluster_id: str,
        location: Dict[str, float],
        records: Dict[str, FeedRecord]
    ) -> HazardSite:
        """Aggregate per-feed records into a HazardSite."""
        ordered_feeds = sorted(records.keys(), key=feed_rank)
        sources = [feed for feed in ordered_feeds if records[feed].payload is not None]

        alert_type = max(
            (records[feed].alert_type for feed in ordered_feeds),
            key=lambda a: ALERT_TYPE_RANKING.get(a, 0)
        )
        severity = max(
            (records[feed].severity for feed in ordered_feeds),
            key=lambda s: SEVERITY_RANKING.get(s, 0)
        )

        # Highest (severity, alert type), ties resolved by feed precedence
        dominant_feed = min(
            ordered_feeds,
            key=lambda feed: (
                -SEVERITY_RANKING.get(records[feed].severity, 0),
                -ALERT_TYPE_RANKING.get(records[feed].alert_type, 0),
                feed_rank(feed)
            )
        )
        dominant = records[dominant_feed]

        return HazardSite(
            location_id=cluster_id,
            lat=float(location['lat']),
            lon=float(location['lon']),
            alert_type=alert_type,
            severity=severity,
            sources=sources,
            feed_records={feed: records[feed] for feed in ordered_feeds},
            dominant_feed=dominant_feed,
            alert_label=dominant.alert_label or dominant.alert_type,
            address=self._address(records, ordered_feeds),
            last_updated=self.clock()
        )

    @staticmethod
    def _address(records: Dict[str, FeedRecord], ordered_feeds: List[str]) -> Optional[str]:
        for feed in ordered_feeds:
            payload = records[feed].payload or {}
            name = payload.get('station_name') or payload.get('region')
            if name:
                return str(name)
        return None

    @staticmethod
    def _latest_coordinates(observations: List[RawObservation]) -> Optional[Dict[str, float]]:
        located = [o for o in observations if o.coordinates]
        if not located:
            return None
        newest = max(located, key=lambda o: o.timestamp)
        return {'lat': float(newest.coordinates['lat']), 'lon': float(newest.coordinates['lon'])}
