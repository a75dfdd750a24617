"""
Tests for geospatial utilities.

Covers haversine distances, point-to-segment projection, path distances,
perpendicular waypoint offsets and bounding boxes.
"""
import math

import pytest

from utils.distance import haversine_distance
from utils import geo


class TestHaversine:
    """Great-circle distance in meters"""

    def test_same_point_is_zero(self):
        assert haversine_distance(37.5665, 126.9780, 37.5665, 126.9780) == 0.0

    def test_one_degree_latitude(self):
        assert haversine_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(111194.93, rel=1e-4)

    def test_symmetric(self):
        a = haversine_distance(37.5665, 126.9780, 37.4979, 127.0276)
        b = haversine_distance(37.4979, 127.0276, 37.5665, 126.9780)
        assert a == pytest.approx(b)

    def test_repeated_pairs_are_cached(self):
        haversine_distance(1.0, 2.0, 3.0, 4.0)
        haversine_distance(1.0, 2.0, 3.0, 4.0)
        assert haversine_distance.cache_info().hits >= 1


class TestDistanceToSegment:
    """Projection onto the segment, clamped to its endpoints"""

    def test_perpendicular_foot_inside_segment(self):
        """Closest point is mid-segment, not an endpoint (~1112 m, not ~1572 m)"""
        d = geo.distance_to_segment(
            {'lat': 0.01, 'lon': 0.0},
            {'lat': 0.0, 'lon': -0.01},
            {'lat': 0.0, 'lon': 0.01}
        )
        assert d == pytest.approx(1111.95, rel=1e-3)

    def test_projection_clamped_to_endpoint(self):
        start = {'lat': 0.0, 'lon': 0.0}
        end = {'lat': 0.0, 'lon': 0.01}
        point = {'lat': 0.0, 'lon': 0.02}
        assert geo.distance_to_segment(point, start, end) == pytest.approx(geo.distance(point, end))

    def test_zero_length_segment(self):
        a = {'lat': 37.5, 'lon': 127.0}
        p = {'lat': 37.51, 'lon': 127.0}
        assert geo.distance_to_segment(p, a, dict(a)) == pytest.approx(geo.distance(p, a))

    def test_point_on_segment_is_zero(self):
        d = geo.distance_to_segment(
            {'lat': 37.565, 'lon': 126.975},
            {'lat': 37.560, 'lon': 126.970},
            {'lat': 37.570, 'lon': 126.980}
        )
        assert d == pytest.approx(0.0, abs=0.01)


class TestPathDistances:

    def test_min_distance_short_path_is_infinite(self):
        assert geo.min_distance_to_path({'lat': 0, 'lon': 0}, []) == math.inf
        assert geo.min_distance_to_path({'lat': 0, 'lon': 0}, [{'lat': 0, 'lon': 0}]) == math.inf

    def test_min_distance_uses_closest_segment(self):
        path = [
            {'lat': 0.0, 'lon': 0.0},
            {'lat': 0.0, 'lon': 0.01},
            {'lat': 0.01, 'lon': 0.01}
        ]
        point = {'lat': 0.005, 'lon': 0.011}
        expected = geo.distance_to_segment(point, path[1], path[2])
        assert geo.min_distance_to_path(point, path) == pytest.approx(expected)

    def test_path_length(self):
        path = [{'lat': 0.0, 'lon': 0.0}, {'lat': 1.0, 'lon': 0.0}, {'lat': 2.0, 'lon': 0.0}]
        assert geo.path_length(path) == pytest.approx(2 * 111194.93, rel=1e-4)
        assert geo.path_length(path[:1]) == 0.0


class TestPerpendicularOffset:

    def test_offset_is_perpendicular_and_sized(self):
        center = {'lat': 0.0, 'lon': 0.0}
        # Travelling east: offset should move north/south only
        wp = geo.perpendicular_offset(center, {'lat': 0.0, 'lon': 0.2}, 1200)
        assert wp['lon'] == pytest.approx(0.0, abs=1e-12)
        assert geo.distance(center, wp) == pytest.approx(1200, rel=0.01)

    def test_longitude_scaled_by_latitude(self):
        center = {'lat': 60.0, 'lon': 10.0}
        # Travelling north: offset moves along longitude
        wp = geo.perpendicular_offset(center, {'lat': 0.1, 'lon': 0.0}, 1000)
        assert geo.distance(center, wp) == pytest.approx(1000, rel=0.01)

    def test_zero_direction_returns_none(self):
        assert geo.perpendicular_offset({'lat': 1, 'lon': 1}, {'lat': 0, 'lon': 0}, 100) is None


class TestBoundingBox:

    def test_buffer_expands_all_sides(self):
        bbox = geo.bounding_box([{'lat': 37.5, 'lon': 127.0}, {'lat': 37.6, 'lon': 127.1}], 1113.2)
        assert bbox[0] == pytest.approx(126.99)
        assert bbox[1] == pytest.approx(37.49)
        assert bbox[2] == pytest.approx(127.11)
        assert bbox[3] == pytest.approx(37.61)

    def test_empty_points_rejected(self):
        with pytest.raises(ValueError):
            geo.bounding_box([], 100)


class TestCoordinateValidation:

    @pytest.mark.parametrize('lat,lon,expected', [
        (0, 0, True),
        (37.5665, 126.9780, True),
        (90, 180, True),
        (91, 0, False),
        (0, -181, False),
        (float('nan'), 0, False),
        (0, float('inf'), False),
        ('abc', 0, False),
        (None, 0, False),
    ])
    def test_is_valid_coordinates(self, lat, lon, expected):
        assert geo.is_valid_coordinates(lat, lon) is expected

    def test_is_valid_point(self):
        assert geo.is_valid_point({'lat': 1, 'lon': 2})
        assert not geo.is_valid_point({'latitude': 1})
        assert not geo.is_valid_point(None)
