"""
Domain records shared by the fusion, proximity and routing services.

Points are plain {'lat': float, 'lon': float} dicts everywhere, the same shape
routing providers accept and return.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set


# Feed identifiers
FEED_WATER_LEVEL = 'waterlevel'
FEED_REALTIME = 'realtime'
FEED_FORECAST = 'forecast'

# Tie-break order when two feeds rank equally: water level > realtime > forecast
FEED_PRECEDENCE = [FEED_WATER_LEVEL, FEED_REALTIME, FEED_FORECAST]

ALERT_TYPE_RANKING = {
    'advisory': 1,
    'warning': 2,
    'emergency': 3
}

SEVERITY_RANKING = {
    'low': 1,
    'medium': 2,
    'high': 3
}


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RawObservation:
    """One record as received from a hazard feed. Never modified after parsing."""
    feed_type: str
    timestamp: datetime
    payload: Dict[str, Any]
    coordinates: Optional[Dict[str, float]] = None
    region_name: Optional[str] = None
    source_id: Optional[str] = None


@dataclass
class LocationCluster:
    """A canonical location identity built up during one fusion batch."""
    cluster_id: str
    lat: float
    lon: float
    member_feed_types: Set[str] = field(default_factory=set)
    member_count: int = 0

    @property
    def location(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lon': self.lon}


@dataclass
class FeedRecord:
    """Latest contribution of a single feed to a hazard site."""
    feed_type: str
    timestamp: datetime
    payload: Dict[str, Any]
    alert_type: str
    severity: str
    alert_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'feed_type': self.feed_type,
            'timestamp': _to_iso(self.timestamp),
            'payload': dict(self.payload),
            'alert_type': self.alert_type,
            'severity': self.severity,
            'alert_label': self.alert_label
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeedRecord':
        return cls(
            feed_type=data['feed_type'],
            timestamp=_from_iso(data['timestamp']),
            payload=dict(data.get('payload') or {}),
            alert_type=data['alert_type'],
            severity=data['severity'],
            alert_label=data.get('alert_label')
        )


@dataclass
class HazardSite:
    """
    Fused hazard record for one physical location.

    alert_type and severity are the maxima over feed_records. sources lists the
    feeds that contributed a payload, in FEED_PRECEDENCE order.
    """
    location_id: str
    lat: float
    lon: float
    alert_type: str
    severity: str
    sources: List[str]
    feed_records: Dict[str, FeedRecord]
    dominant_feed: Optional[str] = None
    alert_label: Optional[str] = None
    address: Optional[str] = None
    last_updated: Optional[datetime] = None

    @property
    def location(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lon': self.lon}

    @property
    def observed_at(self) -> Optional[datetime]:
        """Timestamp of the newest feed record, used for last-write-wins in stores."""
        timestamps = [r.timestamp for r in self.feed_records.values() if r.timestamp]
        return max(timestamps) if timestamps else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'location_id': self.location_id,
            'lat': self.lat,
            'lon': self.lon,
            'alert_type': self.alert_type,
            'severity': self.severity,
            'sources': list(self.sources),
            'feed_records': {
                feed: record.to_dict() for feed, record in self.feed_records.items()
            },
            'dominant_feed': self.dominant_feed,
            'alert_label': self.alert_label,
            'address': self.address,
            'observed_at': _to_iso(self.observed_at),
            'last_updated': _to_iso(self.last_updated)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HazardSite':
        records = {
            feed: FeedRecord.from_dict(record)
            for feed, record in (data.get('feed_records') or {}).items()
        }
        return cls(
            location_id=data['location_id'],
            lat=float(data['lat']),
            lon=float(data['lon']),
            alert_type=data['alert_type'],
            severity=data['severity'],
            sources=list(data.get('sources') or []),
            feed_records=records,
            dominant_feed=data.get('dominant_feed'),
            alert_label=data.get('alert_label'),
            address=data.get('address'),
            last_updated=_from_iso(data.get('last_updated'))
        )


@dataclass
class RoutePath:
    """Ordered route vertices as returned by a routing provider."""
    vertices: List[Dict[str, float]]
    distance_meters: float
    duration_seconds: float
    profile: str
    provider: Optional[str] = None

    @property
    def summary(self) -> Dict[str, float]:
        return {
            'distance_meters': self.distance_meters,
            'duration_seconds': self.duration_seconds
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vertices': [dict(v) for v in self.vertices],
            'summary': self.summary,
            'profile': self.profile,
            'provider': self.provider
        }


@dataclass
class ProximityAlert:
    """A hazard site within the avoidance radius of a path."""
    hazard_site: HazardSite
    min_distance_meters: float
    alert_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'location_id': self.hazard_site.location_id,
            'lat': self.hazard_site.lat,
            'lon': self.hazard_site.lon,
            'alert_type': self.hazard_site.alert_type,
            'severity': self.hazard_site.severity,
            'alert_label': self.hazard_site.alert_label,
            'address': self.hazard_site.address,
            'min_distance_meters': round(self.min_distance_meters, 1),
            'alert_level': self.alert_level
        }


@dataclass
class ProximityResult:
    """
    Outcome of checking one path against a set of hazard sites.

    min_distance_meters is the closest approach over every checked site, or
    None when no sites were checked. safe is True exactly when alerts is empty.
    """
    alerts: List[ProximityAlert]
    min_distance_meters: Optional[float]
    radius_meters: float
    analysis: Dict[str, Any] = field(default_factory=dict)
    safety_score: Optional[int] = None

    @property
    def safe(self) -> bool:
        return len(self.alerts) == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'safe': self.safe,
            'alerts': [a.to_dict() for a in self.alerts],
            'min_distance_meters': (
                round(self.min_distance_meters, 1) if self.min_distance_meters is not None else None
            ),
            'radius_meters': self.radius_meters,
            'analysis': dict(self.analysis),
            'safety_score': self.safety_score
        }


@dataclass
class SafeRouteResult:
    """Final answer of a safe-route search."""
    path: RoutePath
    proximity: ProximityResult
    state: str
    profile: str
    attempts: int = 1
    used_detour: bool = False
    cancelled: bool = False

    @property
    def safe(self) -> bool:
        return self.proximity.safe

    @property
    def alerts(self) -> List[ProximityAlert]:
        return self.proximity.alerts

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path.to_dict(),
            'safe': self.safe,
            'alerts': [a.to_dict() for a in self.alerts],
            'state': self.state,
            'profile': self.profile,
            'attempts': self.attempts,
            'used_detour': self.used_detour,
            'cancelled': self.cancelled,
            'proximity': self.proximity.to_dict()
        }
