"""
Han River Flood Control Feeds

Fetches the three hazard feeds published by the Han River Flood Control Office
and turns each record into a RawObservation:

- WaterLevelFeedService:  gauging stations with alert and danger thresholds
- RealtimeWaterLevelFeedService: realtime gauge readings with flow rate
- FloodForecastFeedService: flood forecast bulletins by region

The endpoints are loosely structured: payloads may be a bare list or wrapped
in 'data' or 'list', and every field has several historical spellings.
Records that cannot be parsed are skipped; a feed that cannot be fetched at
all raises FeedUnavailableError.
"""
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from services.exceptions import FeedUnavailableError
from services.models import FEED_FORECAST, FEED_REALTIME, FEED_WATER_LEVEL, RawObservation
from utils.geo import is_valid_coordinates
from utils.secure_logging import safe_log_dict

logger = logging.getLogger(__name__)

# Feed times without an offset are Korea Standard Time
FEED_TIMEZONE = timezone(timedelta(hours=9))

LATITUDE_FIELDS = ['latitude', 'lat', 'y', 'yCoord']
LONGITUDE_FIELDS = ['longitude', 'lng', 'lon', 'x', 'xCoord']

# Plausible river stage range in meters
MIN_WATER_LEVEL_M = -10.0
MAX_WATER_LEVEL_M = 50.0


def first_value(item: Dict[str, Any], *keys: str) -> Any:
    """First present, non-empty value among alternative field names."""
    for key in keys:
        value = item.get(key)
        if value is not None and value != '':
            return value
    return None


def parse_float(value: Any) -> Optional[float]:
    """Parse a number, returning None for empty or non-numeric values."""
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a feed timestamp into an aware datetime.

    Handles:
    - ISO 8601 strings, with or without offset (no offset means KST)
    - Compact KST strings: YYYYMMDDHHMM, YYYYMMDDHH, YYYYMMDD
    - Unix timestamps in seconds or milliseconds
    - datetime objects

    Returns:
        Aware datetime, or None if the value cannot be parsed

    Examples:
        >>> parse_timestamp('202307151030').isoformat()
        '2023-07-15T10:30:00+09:00'
        >>> parse_timestamp(1689384600000).isoformat()
        '2023-07-15T01:30:00+00:00'
        >>> parse_timestamp('garbage') is None
        True
    """
    if value is None or value == '':
        return None

    try:
        if isinstance(value, datetime):
            return value if value.tzinfo else value.replace(tzinfo=FEED_TIMEZONE)

        if isinstance(value, (int, float)):
            # If > 1e10, it's in milliseconds
            seconds = value / 1000 if value > 1e10 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)

        text = str(value).strip()
        if text.isdigit():
            for fmt in ('%Y%m%d%H%M', '%Y%m%d%H', '%Y%m%d'):
                if len(text) == len(datetime(2000, 1, 1).strftime(fmt)):
                    return datetime.strptime(text, fmt).replace(tzinfo=FEED_TIMEZONE)
            return None

        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=FEED_TIMEZONE)
    except (ValueError, OSError, OverflowError) as e:
        logger.debug(f"Invalid feed timestamp {value!r}: {e}")
        return None


def parse_coordinates(item: Dict[str, Any]) -> Optional[Dict[str, float]]:
    """
    Read coordinates from whichever latitude/longitude field a record uses.

    Returns:
        {'lat', 'lon'} or None when either is missing or out of range
    """
    latitude = None
    longitude = None

    for field_name in LATITUDE_FIELDS:
        if field_name in item:
            latitude = parse_float(item[field_name])
            break

    for field_name in LONGITUDE_FIELDS:
        if field_name in item:
            longitude = parse_float(item[field_name])
            break

    if latitude is None or longitude is None or not is_valid_coordinates(latitude, longitude):
        return None
    return {'lat': latitude, 'lon': longitude}


def unwrap_records(data: Any) -> List[Dict[str, Any]]:
    """Extract the record list from a bare list or a 'data'/'list' envelope."""
    if isinstance(data, dict):
        if isinstance(data.get('data'), list):
            records = data['data']
        elif isinstance(data.get('list'), list):
            records = data['list']
        else:
            records = [data]
    elif isinstance(data, list):
        records = data
    else:
        return []
    return [r for r in records if isinstance(r, dict)]


class HanRiverFeedService:
    """Base class for the Han River feeds. Subclasses parse one record format."""

    FEED_TYPE = ''
    DEFAULT_ENDPOINT = ''
    ENDPOINT_ENV = ''

    DEFAULT_BASE_URL = 'http://211.188.52.85:9191'
    TIMEOUT_SECONDS = 10

    def __init__(
        self,
        base_url: Optional[str] = None,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            base_url: API host. If None, reads HANRIVER_BASE_URL
            endpoint: Path of this feed. If None, reads the feed's endpoint env variable
            timeout: Request timeout in seconds
            clock: Current time provider, used for missing timestamps and expiry
        """
        self.base_url = (base_url or os.getenv('HANRIVER_BASE_URL') or self.DEFAULT_BASE_URL).rstrip('/')
        self.endpoint = endpoint or os.getenv(self.ENDPOINT_ENV) or self.DEFAULT_ENDPOINT
        self.timeout = timeout or self.TIMEOUT_SECONDS
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.endpoint}"

    def _get_json(self) -> Any:
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            logger.error(f"{self.FEED_TYPE} feed request timed out after {self.timeout}s")
            raise FeedUnavailableError(self.FEED_TYPE, f"timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.FEED_TYPE} feed request failed: {e}")
            raise FeedUnavailableError(self.FEED_TYPE, str(e))

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{self.FEED_TYPE} feed returned invalid JSON: {e}")
            raise FeedUnavailableError(self.FEED_TYPE, f"invalid JSON: {e}")

    def fetch_batch(self) -> List[RawObservation]:
        """
        Fetch and parse the current batch of this feed.

        Returns:
            Parsed observations. Malformed records are skipped.

        Raises:
            FeedUnavailableError: If the feed cannot be fetched or decoded
        """
        logger.info(f"{self.FEED_TYPE} feed: fetching from {self.url}")
        data = self._get_json()

        if data is None:
            raise FeedUnavailableError(self.FEED_TYPE, "empty response")

        records = unwrap_records(data)
        fetched_at = self.clock()

        observations = []
        skipped = 0
        for item in records:
            try:
                observation = self.parse_record(item, fetched_at)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"{self.FEED_TYPE} feed: skipping malformed record: {e}")
                logger.debug(f"{self.FEED_TYPE} malformed record: {safe_log_dict(item)}")
                observation = None

            if observation is None:
                skipped += 1
                continue
            observations.append(observation)

        logger.info(
            f"{self.FEED_TYPE} feed: parsed {len(observations)} of {len(records)} records "
            f"({skipped} skipped)"
        )
        return observations

    def check_health(self) -> Dict[str, Any]:
        """Check the feed endpoint and report availability and latency."""
        started = time.monotonic()
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            healthy = True
            error = None
        except requests.exceptions.RequestException as e:
            healthy = False
            error = str(e)

        return {
            'feed_type': self.FEED_TYPE,
            'endpoint': self.endpoint,
            'healthy': healthy,
            'response_time_ms': round((time.monotonic() - started) * 1000),
            'error': error
        }

    def parse_record(self, item: Dict[str, Any], fetched_at: datetime) -> Optional[RawObservation]:
        raise NotImplementedError

    def _observed_at(self, item: Dict[str, Any], fetched_at: datetime, *keys: str) -> datetime:
        timestamp = parse_timestamp(first_value(item, *keys))
        if timestamp is None:
            logger.debug(f"{self.FEED_TYPE} record has no usable timestamp, using fetch time")
            return fetched_at
        return timestamp


class WaterLevelFeedService(HanRiverFeedService):
    """Gauging station water levels with alert and danger thresholds."""

    FEED_TYPE = FEED_WATER_LEVEL
    DEFAULT_ENDPOINT = '/waterlevelinfo/info.json'
    ENDPOINT_ENV = 'WATER_LEVEL_ENDPOINT'

    def parse_record(self, item: Dict[str, Any], fetched_at: datetime) -> Optional[RawObservation]:
        station_id = first_value(item, 'stationId', 'stnId', 'id')
        payload = {
            'station_id': str(station_id) if station_id is not None else None,
            'station_name': first_value(item, 'stationName', 'stnNm', 'name'),
            'water_level': parse_float(first_value(item, 'waterLevel', 'wl', 'level')),
            'alert_level': parse_float(first_value(item, 'alertLevel', 'alertWl', 'alert')),
            'danger_level': parse_float(first_value(item, 'dangerLevel', 'dangerWl', 'danger')),
            'alert_label': first_value(item, 'alertType', 'warning')
        }

        return RawObservation(
            feed_type=self.FEED_TYPE,
            timestamp=self._observed_at(item, fetched_at, 'timestamp', 'obsTime', 'time'),
            payload=payload,
            coordinates=parse_coordinates(item),
            region_name=first_value(item, 'region', 'area', 'location'),
            source_id=payload['station_id']
        )


class RealtimeWaterLevelFeedService(HanRiverFeedService):
    """Realtime gauge readings with water level and flow rate."""

    FEED_TYPE = FEED_REALTIME
    DEFAULT_ENDPOINT = '/getWaterLevel1D/list/1D/1018683/20230701/20230930.json'
    ENDPOINT_ENV = 'REALTIME_ENDPOINT'

    def parse_record(self, item: Dict[str, Any], fetched_at: datetime) -> Optional[RawObservation]:
        station_id = first_value(item, 'stationId', 'stnId', 'id')
        payload = {
            'station_id': str(station_id) if station_id is not None else None,
            'station_name': first_value(item, 'stationName', 'stnNm', 'name'),
            'water_level': parse_float(first_value(item, 'waterLevel', 'wl', 'level')),
            'flow_rate': parse_float(first_value(item, 'flowRate', 'flow', 'discharge')),
            'alert_level': parse_float(first_value(item, 'alertLevel', 'alertWl', 'alert')),
            'danger_level': parse_float(first_value(item, 'dangerLevel', 'dangerWl', 'danger'))
        }

        return RawObservation(
            feed_type=self.FEED_TYPE,
            timestamp=self._observed_at(item, fetched_at, 'timestamp', 'obsTime', 'time', 'ymdhm'),
            payload=payload,
            coordinates=parse_coordinates(item),
            region_name=first_value(item, 'region', 'area', 'location'),
            source_id=payload['station_id']
        )


class FloodForecastFeedService(HanRiverFeedService):
    """Flood forecast bulletins. Bulletins past their validity are skipped."""

    FEED_TYPE = FEED_FORECAST
    DEFAULT_ENDPOINT = '/fldfct/list/20230715.json'
    ENDPOINT_ENV = 'FORECAST_ENDPOINT'

    def parse_record(self, item: Dict[str, Any], fetched_at: datetime) -> Optional[RawObservation]:
        valid_until = parse_timestamp(first_value(item, 'validUntil', 'validTime', 'endTime'))
        forecast_id = first_value(item, 'forecastId', 'fcstId', 'id')

        if valid_until is not None and valid_until <= fetched_at:
            logger.debug(f"Skipping expired forecast {forecast_id}")
            return None

        payload = {
            'forecast_id': str(forecast_id) if forecast_id is not None else None,
            'region': first_value(item, 'region', 'area', 'location'),
            'alert_label': first_value(item, 'alertType', 'alert', 'warning'),
            'valid_until': valid_until.isoformat() if valid_until else None,
            'description': first_value(item, 'description', 'content', 'message')
        }

        return RawObservation(
            feed_type=self.FEED_TYPE,
            timestamp=self._observed_at(item, fetched_at, 'issueTime', 'issueDate', 'time'),
            payload=payload,
            coordinates=parse_coordinates(item),
            region_name=payload['region'],
            source_id=payload['forecast_id']
        )


def default_feeds(
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    endpoints: Optional[Dict[str, str]] = None
) -> List[HanRiverFeedService]:
    """
    The three Han River feeds in precedence order.

    Args:
        base_url: API host shared by the feeds
        timeout: Request timeout in seconds
        endpoints: Feed type -> endpoint path; missing feeds use their env/default path
    """
    endpoints = endpoints or {}
    return [
        feed_class(base_url=base_url, endpoint=endpoints.get(feed_class.FEED_TYPE), timeout=timeout)
        for feed_class in (WaterLevelFeedService, RealtimeWaterLevelFeedService, FloodForecastFeedService)
    ]


def analyze_feed_quality(
    feed_type: str,
    observations: List[RawObservation],
    now: Optional[datetime] = None,
    max_age_seconds: float = 3600.0
) -> Dict[str, Any]:
    """
    Score a feed batch for completeness and freshness and list data issues.

    Completeness is the average share of required fields present per record.
    Freshness decays linearly from 1 (just observed) to 0 at max_age_seconds.

    Returns:
        dict with record_count, completeness, freshness and issues
    """
    now = now or datetime.now(timezone.utc)
    required = {
        FEED_WATER_LEVEL: ['station_id', 'water_level', 'coordinates'],
        FEED_REALTIME: ['station_id', 'water_level', 'timestamp'],
        FEED_FORECAST: ['forecast_id', 'region', 'alert_label']
    }.get(feed_type, [])

    if not observations:
        return {
            'feed_type': feed_type,
            'record_count': 0,
            'completeness': 0.0,
            'freshness': 0.0,
            'issues': [{'type': 'NO_DATA', 'severity': 'high'}]
        }

    def has_field(observation, name):
        if name == 'coordinates':
            return observation.coordinates is not None
        if name == 'timestamp':
            return observation.timestamp is not None
        return observation.payload.get(name) is not None

    completeness = 1.0
    if required:
        completeness = sum(
            sum(1 for name in required if has_field(o, name)) / len(required)
            for o in observations
        ) / len(observations)

    freshness = sum(
        min(1.0, max(0.0, 1 - (now - o.timestamp).total_seconds() / max_age_seconds))
        for o in observations
    ) / len(observations)

    issues = []
    ids = [o.source_id for o in observations if o.source_id]
    if len(ids) != len(set(ids)):
        issues.append({'type': 'DUPLICATE_DATA', 'severity': 'medium'})

    missing_coords = sum(1 for o in observations if o.coordinates is None)
    if missing_coords > len(observations) * 0.1:
        issues.append({'type': 'MISSING_COORDINATES', 'severity': 'medium', 'count': missing_coords})

    if feed_type in (FEED_WATER_LEVEL, FEED_REALTIME):
        invalid_levels = sum(
            1 for o in observations
            if o.payload.get('water_level') is not None
            and not (MIN_WATER_LEVEL_M <= o.payload['water_level'] <= MAX_WATER_LEVEL_M)
        )
        if invalid_levels:
            issues.append({'type': 'INVALID_WATER_LEVEL', 'severity': 'high', 'count': invalid_levels})

    return {
        'feed_type': feed_type,
        'record_count': len(observations),
        'completeness': round(completeness, 3),
        'freshness': round(freshness, 3),
        'issues': issues
    }
