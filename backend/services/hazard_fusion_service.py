"""
Hazard Fusion Service

Entry point for turning feed batches into stored hazard sites:

1. fetch_all_feeds(): the three feeds are fetched concurrently; a failing feed
   is recorded and does not block the others
2. fuse_observations(): observations are clustered into locations (seeded with
   locations already in the store) and fused per location
3. refresh(): fetch, fuse and upsert every site, returning a FusionReport

Observations that cannot be located are dropped and logged. Store write
failures are counted, never raised.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import load_region_centroids
from services.data_fusion_engine import DataFusionEngine
from services.exceptions import FeedUnavailableError, HazardStoreError, UnresolvableLocationError
from services.hazard_feed_service import analyze_feed_quality, default_feeds
from services.location_clusterer import FusionBatchContext, LocationClusterer
from services.models import FEED_FORECAST, FEED_REALTIME, FEED_WATER_LEVEL, HazardSite, RawObservation

logger = logging.getLogger(__name__)


@dataclass
class FusionReport:
    """Outcome of one refresh cycle."""
    sites: List[HazardSite] = field(default_factory=list)
    feed_results: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    quality: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    observation_count: int = 0
    dropped_count: int = 0
    upserted_count: int = 0
    stale_count: int = 0
    changed_sites: List[Dict[str, Any]] = field(default_factory=list)
    store_failures: int = 0
    started_at: Optional[datetime] = None
    duration_ms: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.feed_results.values() if r.get('success'))

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.feed_results.values() if not r.get('success'))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'site_count': len(self.sites),
            'feed_results': self.feed_results,
            'quality': self.quality,
            'observation_count': self.observation_count,
            'dropped_count': self.dropped_count,
            'upserted_count': self.upserted_count,
            'stale_count': self.stale_count,
            'changed_sites': self.changed_sites,
            'store_failures': self.store_failures,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'duration_ms': self.duration_ms
        }


class HazardFusionService:
    """Coordinates feeds, clustering, fusion and the hazard store."""

    def __init__(
        self,
        store=None,
        feeds: Optional[List] = None,
        clusterer: Optional[LocationClusterer] = None,
        fusion_engine: Optional[DataFusionEngine] = None,
        max_workers: int = 3
    ):
        """
        Args:
            store: HazardStore for seeding and upserts. None fuses in isolation.
            feeds: Feed sources exposing FEED_TYPE and fetch_batch()
            clusterer: LocationClusterer, default 100 m threshold without region table
            fusion_engine: DataFusionEngine
            max_workers: Threads used to fetch feeds
        """
        self.store = store
        self.feeds = list(feeds or [])
        self.clusterer = clusterer or LocationClusterer()
        self.fusion_engine = fusion_engine or DataFusionEngine()
        self.max_workers = max(1, max_workers)

    @classmethod
    def from_config(cls, cfg, store=None) -> 'HazardFusionService':
        """Wire the three Han River feeds and a clusterer from configuration."""
        clusterer = LocationClusterer(
            proximity_threshold_m=cfg.PROXIMITY_THRESHOLD_M,
            region_centroids=load_region_centroids(cfg.REGION_CENTROIDS_FILE)
        )
        return cls(
            store=store,
            feeds=default_feeds(
                base_url=cfg.HANRIVER_BASE_URL,
                timeout=cfg.FEED_TIMEOUT_SECONDS,
                endpoints={
                    FEED_WATER_LEVEL: cfg.WATER_LEVEL_ENDPOINT,
                    FEED_REALTIME: cfg.REALTIME_ENDPOINT,
                    FEED_FORECAST: cfg.FORECAST_ENDPOINT
                }
            ),
            clusterer=clusterer,
            max_workers=cfg.FEED_FETCH_WORKERS
        )

    def fetch_all_feeds(self):
        """
        Fetch every feed concurrently.

        Returns:
            Tuple of (observations by feed type, feed results by feed type). A
            feed result is {'success': bool, 'count': int, 'error': str or None}.
        """
        observations: Dict[str, List[RawObservation]] = {}
        results: Dict[str, Dict[str, Any]] = {}

        if not self.feeds:
            return observations, results

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.feeds))) as executor:
            futures = {executor.submit(feed.fetch_batch): feed for feed in self.feeds}

            for future in as_completed(futures):
                feed = futures[future]
                feed_type = feed.FEED_TYPE
                try:
                    batch = future.result()
                except FeedUnavailableError as e:
                    logger.warning(f"Feed gap: {e}")
                    results[feed_type] = {'success': False, 'count': 0, 'error': str(e)}
                    continue
                except Exception as e:
                    logger.error(f"Unexpected error fetching {feed_type} feed: {e}", exc_info=True)
                    results[feed_type] = {'success': False, 'count': 0, 'error': str(e)}
                    continue

                observations[feed_type] = batch
                results[feed_type] = {'success': True, 'count': len(batch), 'error': None}

        logger.info(
            f"Fetched feeds: {sum(1 for r in results.values() if r['success'])} succeeded, "
            f"{sum(1 for r in results.values() if not r['success'])} failed"
        )
        return observations, results

    def _seed_context(self, observations: List[RawObservation]) -> FusionBatchContext:
        """Batch context pre-loaded with stored locations near the incoming observations."""
        context = FusionBatchContext()
        if self.store is None:
            return context

        seen_keys = set()
        for observation in observations:
            try:
                point = self.clusterer.resolve_coordinates(observation)
            except UnresolvableLocationError:
                continue

            key = self.clusterer.cluster_key(point['lat'], point['lon'])
            if key in seen_keys:
                continue
            seen_keys.add(key)

            try:
                nearby = self.store.find_clusters_near(point, self.clusterer.proximity_threshold_m)
            except HazardStoreError as e:
                logger.warning(f"Could not seed clusters from store: {e}")
                return context

            for cluster in nearby:
                context.add_cluster(cluster)

        if context.clusters:
            logger.debug(f"Seeded batch with {len(context.clusters)} stored locations")
        return context

    @staticmethod
    def detect_change(site: HazardSite, existing: Optional[HazardSite]) -> Optional[Dict[str, Any]]:
        """
        Compare a fused site with the stored copy.

        Returns:
            {'location_id', 'change', 'old', 'new'} where change is 'added' or
            'updated' and old/new hold alert_type and severity; None when the
            levels are unchanged
        """
        new = {'alert_type': site.alert_type, 'severity': site.severity}
        if existing is None:
            return {'location_id': site.location_id, 'change': 'added', 'old': None, 'new': new}

        old = {'alert_type': existing.alert_type, 'severity': existing.severity}
        if old == new:
            return None
        return {'location_id': site.location_id, 'change': 'updated', 'old': old, 'new': new}

    def fuse_observations(
        self,
        observations: List[RawObservation],
        context: Optional[FusionBatchContext] = None,
        changes: Optional[List[Dict[str, Any]]] = None
    ) -> List[HazardSite]:
        """
        Cluster and fuse a batch of observations.

        Args:
            observations: Observations from any mix of feeds
            context: Batch context to use. A fresh one seeded from the store by default.
            changes: When given, receives one detect_change() entry per site
                that is new or whose alert_type or severity moved

        Returns:
            One HazardSite per location that received observations, in the
            order the locations were first seen
        """
        if context is None:
            context = self._seed_context(observations)

        self.clusterer.cluster_batch(observations, context)

        sites = []
        for cluster, members in context.populated_clusters():
            existing = None
            if self.store is not None:
                try:
                    existing = self.store.get_site(cluster.cluster_id)
                except HazardStoreError as e:
                    logger.warning(f"Could not load stored site {cluster.cluster_id}: {e}")

            site = self.fusion_engine.fuse(
                cluster.cluster_id,
                members,
                location=cluster.location,
                existing=existing
            )
            sites.append(site)

            if changes is not None:
                change = self.detect_change(site, existing)
                if change is not None:
                    changes.append(change)

        logger.info(f"Fused {len(observations)} observations into {len(sites)} hazard sites")
        return sites

    def refresh(self) -> FusionReport:
        """
        Run a full ingestion cycle: fetch, fuse and store.

        Returns:
            FusionReport describing feed gaps, drops and writes
        """
        report = FusionReport(started_at=datetime.now(timezone.utc))
        started = time.monotonic()

        by_feed, report.feed_results = self.fetch_all_feeds()

        observations = []
        for feed in self.feeds:
            batch = by_feed.get(feed.FEED_TYPE)
            if batch is None:
                continue
            observations.extend(batch)
            report.quality[feed.FEED_TYPE] = analyze_feed_quality(
                feed.FEED_TYPE, batch, now=report.started_at
            )
        report.observation_count = len(observations)

        context = self._seed_context(observations)
        report.sites = self.fuse_observations(observations, context, changes=report.changed_sites)
        report.dropped_count = len(context.dropped)

        if self.store is not None:
            for site in report.sites:
                try:
                    if self.store.upsert_hazard_site(site):
                        report.upserted_count += 1
                    else:
                        report.stale_count += 1
                except HazardStoreError as e:
                    logger.error(f"Failed to store hazard site {site.location_id}: {e}")
                    report.store_failures += 1

        report.duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            f"Hazard refresh completed in {report.duration_ms}ms: {len(report.sites)} sites, "
            f"{report.upserted_count} written, {len(report.changed_sites)} changed, "
            f"{report.dropped_count} observations dropped"
        )
        return report
