"""
Location Clusterer

Assigns raw feed observations to canonical location identities so that the
water-level, realtime and forecast feeds describing the same gauging point end
up on one hazard site.

Algorithm (greedy, first match):
1. Resolve coordinates: the observation's own coordinates, else its region
   name looked up in an injected centroid table. No built-in fallback.
2. Exact key: loc_{lat:.4f}_{lon:.4f} (~11 m). An existing cluster with the
   same key wins.
3. Otherwise the first cluster, in creation order, whose representative point
   lies within the proximity threshold (default 100 m).
4. Otherwise a new cluster keyed by the observation's rounded coordinates.

The representative point follows the most recently assigned member. Earlier
assignments never move. Lookup is a linear scan over the batch's clusters
(O(clusters) per observation), isolated in FusionBatchContext.find_clusters_near
so a spatial index can replace it without touching assignment logic.
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from services.exceptions import UnresolvableLocationError
from services.models import LocationCluster, RawObservation
from utils.geo import distance, is_valid_point

logger = logging.getLogger(__name__)

# Decimal places kept for observation coordinates (~0.1 m)
COORDINATE_PRECISION = 6

# Decimal places in cluster keys (~11 m)
KEY_PRECISION = 4


class FusionBatchContext:
    """
    Batch-scoped clustering state.

    Created once per fusion batch and discarded afterwards. Holds the clusters
    in creation order, the observations assigned to each and the observations
    that could not be placed.
    """

    def __init__(self, seed_clusters: Optional[List[LocationCluster]] = None):
        self.clusters: "OrderedDict[str, LocationCluster]" = OrderedDict()
        self.members: Dict[str, List[RawObservation]] = {}
        self.dropped: List[Tuple[RawObservation, str]] = []

        for cluster in seed_clusters or []:
            self.add_cluster(cluster)

    def add_cluster(self, cluster: LocationCluster) -> None:
        if cluster.cluster_id in self.clusters:
            return
        self.clusters[cluster.cluster_id] = cluster
        self.members.setdefault(cluster.cluster_id, [])

    def get(self, cluster_id: str) -> Optional[LocationCluster]:
        return self.clusters.get(cluster_id)

    def find_clusters_near(self, point: Dict[str, float], radius_meters: float) -> List[LocationCluster]:
        """Clusters whose representative lies within radius_meters, in creation order."""
        return [
            cluster for cluster in self.clusters.values()
            if distance(point, cluster.location) <= radius_meters
        ]

    def record_member(self, cluster_id: str, observation: RawObservation) -> None:
        self.members.setdefault(cluster_id, []).append(observation)

    def record_dropped(self, observation: RawObservation, reason: str) -> None:
        self.dropped.append((observation, reason))

    def populated_clusters(self) -> List[Tuple[LocationCluster, List[RawObservation]]]:
        """Clusters that received at least one observation in this batch."""
        return [
            (cluster, self.members[cluster_id])
            for cluster_id, cluster in self.clusters.items()
            if self.members.get(cluster_id)
        ]


class LocationClusterer:
    """Greedy proximity clustering of raw observations into location identities."""

    def __init__(
        self,
        proximity_threshold_m: float = 100.0,
        region_centroids: Optional[Dict[str, Dict[str, float]]] = None
    ):
        """
        Args:
            proximity_threshold_m: Max distance from a cluster representative to join it
            region_centroids: Region name -> {'lat', 'lon'} for observations without
                coordinates. Matched by substring in mapping order.
        """
        if proximity_threshold_m <= 0:
            raise ValueError("proximity_threshold_m must be positive")

        self.proximity_threshold_m = proximity_threshold_m
        self.region_centroids = dict(region_centroids or {})

    @staticmethod
    def cluster_key(lat: float, lon: float) -> str:
        """
        Coarse location key used as cluster id.

        Examples:
            >>> LocationClusterer.cluster_key(37.56651, 126.97801)
            'loc_37.5665_126.978'
        """
        return f"loc_{round(lat, KEY_PRECISION)}_{round(lon, KEY_PRECISION)}"

    def resolve_coordinates(self, observation: RawObservation) -> Dict[str, float]:
        """
        Determine where an observation is.

        Returns:
            {'lat', 'lon'} rounded to 6 decimals

        Raises:
            UnresolvableLocationError: If there are no valid coordinates and the
                region name matches no configured centroid
        """
        coords = observation.coordinates
        if coords is not None and is_valid_point(coords):
            return {
                'lat': round(float(coords['lat']), COORDINATE_PRECISION),
                'lon': round(float(coords['lon']), COORDINATE_PRECISION)
            }

        region = (observation.region_name or '').strip()
        if region:
            for name, centroid in self.region_centroids.items():
                if name in region or region in name:
                    return {
                        'lat': round(float(centroid['lat']), COORDINATE_PRECISION),
                        'lon': round(float(centroid['lon']), COORDINATE_PRECISION)
                    }

        raise UnresolvableLocationError(
            observation.feed_type,
            source_id=observation.source_id,
            region_name=observation.region_name
        )

    def assign(self, observation: RawObservation, context: FusionBatchContext) -> str:
        """
        Assign an observation to a cluster, creating one if needed.

        Args:
            observation: Observation to place
            context: Batch context the cluster lives in

        Returns:
            The cluster id

        Raises:
            UnresolvableLocationError: If the observation cannot be located
        """
        point = self.resolve_coordinates(observation)
        key = self.cluster_key(point['lat'], point['lon'])

        cluster = context.get(key)
        if cluster is None:
            nearby = context.find_clusters_near(point, self.proximity_threshold_m)
            if nearby:
                cluster = nearby[0]
            else:
                cluster = LocationCluster(cluster_id=key, lat=point['lat'], lon=point['lon'])
                context.add_cluster(cluster)
                logger.debug(f"Created cluster {key} for {observation.feed_type} observation")

        # Representative follows the latest member
        cluster.lat = point['lat']
        cluster.lon = point['lon']
        cluster.member_feed_types.add(observation.feed_type)
        cluster.member_count += 1
        context.record_member(cluster.cluster_id, observation)

        return cluster.cluster_id

    def cluster_batch(
        self,
        observations: List[RawObservation],
        context: Optional[FusionBatchContext] = None
    ) -> FusionBatchContext:
        """
        Assign every observation of a batch, dropping the ones that cannot be located.

        Returns:
            The populated batch context
        """
        context = context or FusionBatchContext()

        for observation in observations:
            try:
                self.assign(observation, context)
            except UnresolvableLocationError as e:
                logger.warning(f"Dropping observation: {e}")
                context.record_dropped(observation, str(e))

        logger.info(
            f"Clustered {len(observations) - len(context.dropped)} observations into "
            f"{len(context.populated_clusters())} locations ({len(context.dropped)} dropped)"
        )
        return context
