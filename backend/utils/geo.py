"""
Geospatial utilities for hazard fusion and route checks.
Includes coordinate validation, point/segment/path distances and the
perpendicular offset used to place detour waypoints.

All points are dicts with 'lat' and 'lon' keys in decimal degrees.
Distances are in meters.
"""
import math
from typing import Dict, List, Optional, Tuple

from utils.distance import haversine_distance as _haversine_distance

# Approximate length of one degree of latitude in meters
METERS_PER_DEGREE = 111320.0


def distance(p1: Dict[str, float], p2: Dict[str, float]) -> float:
    """Great-circle distance in meters between two {'lat', 'lon'} points."""
    return _haversine_distance(float(p1['lat']), float(p1['lon']),
                               float(p2['lat']), float(p2['lon']))


def path_length(path: List[Dict[str, float]]) -> float:
    """Sum of consecutive vertex distances. 0 for paths with fewer than 2 vertices."""
    total = 0.0
    for i in range(len(path) - 1):
        total += distance(path[i], path[i + 1])
    return total


def distance_to_segment(
    point: Dict[str, float],
    seg_start: Dict[str, float],
    seg_end: Dict[str, float]
) -> float:
    """
    Distance in meters from a point to a path segment.

    The point is projected onto the line through the segment in lat/lon degree
    space, the projection parameter is clamped to [0, 1], and the haversine
    distance to the clamped point is returned. Accurate for segments of a few
    kilometers, which is what routing providers return.

    Args:
        point: {'lat', 'lon'} point to measure from
        seg_start: First segment endpoint
        seg_end: Second segment endpoint

    Returns:
        Distance in meters. For a zero-length segment this is distance(point, seg_start).

    Examples:
        >>> # Perpendicular foot in the middle of the segment, not an endpoint
        >>> round(distance_to_segment({'lat': 0.01, 'lon': 0.0},
        ...                           {'lat': 0.0, 'lon': -0.01},
        ...                           {'lat': 0.0, 'lon': 0.01}))
        1112
    """
    a_lat, a_lon = float(seg_start['lat']), float(seg_start['lon'])
    b_lat, b_lon = float(seg_end['lat']), float(seg_end['lon'])
    p_lat, p_lon = float(point['lat']), float(point['lon'])

    d_lat = b_lat - a_lat
    d_lon = b_lon - a_lon
    length_sq = d_lat * d_lat + d_lon * d_lon

    if length_sq == 0:
        return distance(point, seg_start)

    t = ((p_lat - a_lat) * d_lat + (p_lon - a_lon) * d_lon) / length_sq
    t = max(0.0, min(1.0, t))

    closest_lat = a_lat + t * d_lat
    closest_lon = a_lon + t * d_lon
    return _haversine_distance(p_lat, p_lon, closest_lat, closest_lon)


def min_distance_to_path(point: Dict[str, float], path: List[Dict[str, float]]) -> float:
    """
    Minimum distance in meters from a point to any segment of a path.

    Returns:
        math.inf when the path has fewer than 2 vertices
    """
    if len(path) < 2:
        return math.inf

    best = math.inf
    for i in range(len(path) - 1):
        d = distance_to_segment(point, path[i], path[i + 1])
        if d < best:
            best = d
    return best


def perpendicular_offset(
    center: Dict[str, float],
    direction_vector: Dict[str, float],
    offset_meters: float
) -> Optional[Dict[str, float]]:
    """
    Displace a point sideways from a direction of travel.

    The direction vector ({'lat': dlat, 'lon': dlon} in degrees) is rotated by
    90 degrees, normalized, and scaled so that the displacement is roughly
    offset_meters on the ground (1 degree ~ 111,320 m, longitude scaled by
    cos(latitude)). This is a heuristic for placing detour waypoints, not a
    geodesic computation.

    Args:
        center: Point to displace
        direction_vector: Travel direction, typically goal minus start
        offset_meters: Displacement distance

    Returns:
        The displaced point, or None for a zero direction vector or a polar center
    """
    d_lat = float(direction_vector['lat'])
    d_lon = float(direction_vector['lon'])

    # Rotate (dlat, dlon) by 90 degrees
    perp_lat = -d_lon
    perp_lon = d_lat
    norm = math.hypot(perp_lat, perp_lon)
    if norm == 0:
        return None

    cos_lat = math.cos(math.radians(float(center['lat'])))
    if abs(cos_lat) < 1e-9:
        return None

    offset_lat = (perp_lat / norm) * offset_meters / METERS_PER_DEGREE
    offset_lon = (perp_lon / norm) * offset_meters / (METERS_PER_DEGREE * cos_lat)

    return {
        'lat': float(center['lat']) + offset_lat,
        'lon': float(center['lon']) + offset_lon
    }


def bounding_box(
    points: List[Dict[str, float]],
    buffer_meters: float = 0.0
) -> Tuple[float, float, float, float]:
    """
    Bounding box of a set of points, expanded by a buffer.

    Args:
        points: Non-empty list of {'lat', 'lon'} points
        buffer_meters: Expansion applied on every side (converted at 111,320 m/degree)

    Returns:
        (min_lon, min_lat, max_lon, max_lat), the order shapely.geometry.box expects

    Raises:
        ValueError: If points is empty
    """
    if not points:
        raise ValueError("Cannot compute bounding box of an empty point list")

    lats = [float(p['lat']) for p in points]
    lons = [float(p['lon']) for p in points]
    buffer_deg = buffer_meters / METERS_PER_DEGREE

    return (
        min(lons) - buffer_deg,
        min(lats) - buffer_deg,
        max(lons) + buffer_deg,
        max(lats) + buffer_deg
    )


def is_valid_coordinates(latitude: float, longitude: float) -> bool:
    """
    Validate geographic coordinates, including edge cases at equator and prime meridian.

    Args:
        latitude: Latitude value (-90 to 90), where 0 is the equator
        longitude: Longitude value (-180 to 180), where 0 is the prime meridian

    Returns:
        True if coordinates are valid, False otherwise

    Examples:
        >>> is_valid_coordinates(0, 0)
        True
        >>> is_valid_coordinates(37.5665, 126.9780)
        True
        >>> is_valid_coordinates(91, 0)
        False
        >>> is_valid_coordinates(float('nan'), 0)
        False
    """
    try:
        lat = float(latitude)
        lon = float(longitude)

        # NaN and infinity checks
        if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
            return False

        return -90 <= lat <= 90 and -180 <= lon <= 180
    except (TypeError, ValueError):
        return False


def is_valid_point(point) -> bool:
    """Validate a {'lat', 'lon'} dict."""
    try:
        return is_valid_coordinates(point['lat'], point['lon'])
    except (KeyError, TypeError):
        return False
