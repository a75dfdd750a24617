"""
Validation utilities for coordinates, hazard classifications and route requests.

Provides centralized validation logic for:
- Coordinate ranges (latitude/longitude)
- Hazard alert types and severity levels
- Safe-route request parameters
"""
from typing import Dict, Tuple, Optional

from utils.geo import is_valid_coordinates


class CoordinateValidator:
    """Validator for geographic coordinates."""

    @staticmethod
    def validate_coordinates(lat: float, lon: float) -> bool:
        """
        Validate latitude and longitude ranges.

        Args:
            lat: Latitude value
            lon: Longitude value

        Returns:
            True if coordinates are valid, False otherwise

        Examples:
            >>> CoordinateValidator.validate_coordinates(37.5665, 126.9780)
            True
            >>> CoordinateValidator.validate_coordinates(91, 0)  # Invalid latitude
            False
            >>> CoordinateValidator.validate_coordinates(0, 181)  # Invalid longitude
            False
        """
        return is_valid_coordinates(lat, lon)

    @staticmethod
    def validate_coordinate_dict(coord: Dict[str, float]) -> bool:
        """
        Validate coordinate dictionary with 'lat' and 'lon' keys.

        Args:
            coord: Dictionary with 'lat' and 'lon' keys

        Returns:
            True if coordinates are valid, False otherwise

        Examples:
            >>> CoordinateValidator.validate_coordinate_dict({'lat': 37.5665, 'lon': 126.9780})
            True
            >>> CoordinateValidator.validate_coordinate_dict({'lat': 91, 'lon': 0})
            False
            >>> CoordinateValidator.validate_coordinate_dict({'invalid': 'keys'})
            False
        """
        try:
            lat = coord['lat']
            lon = coord['lon']
            return CoordinateValidator.validate_coordinates(lat, lon)
        except (KeyError, TypeError):
            return False


class HazardValidator:
    """Validator for hazard alert types and severities."""

    VALID_ALERT_TYPES = ['advisory', 'warning', 'emergency']

    VALID_SEVERITIES = ['low', 'medium', 'high']

    @staticmethod
    def validate_alert_type(alert_type: str) -> bool:
        """
        Validate alert type against allowed values.

        Examples:
            >>> HazardValidator.validate_alert_type('warning')
            True
            >>> HazardValidator.validate_alert_type('critical')
            False
        """
        if not alert_type:
            return False

        return alert_type.lower() in HazardValidator.VALID_ALERT_TYPES

    @staticmethod
    def validate_severity(severity: str) -> bool:
        """
        Validate severity level against allowed values.

        Examples:
            >>> HazardValidator.validate_severity('high')
            True
            >>> HazardValidator.validate_severity('critical')
            False
        """
        if not severity:
            return False

        return severity.lower() in HazardValidator.VALID_SEVERITIES


class RouteRequestValidator:
    """Validator for safe-route request parameters."""

    # Avoidance radius limits in meters
    MIN_RADIUS_M = 1.0
    MAX_RADIUS_M = 50000.0

    @staticmethod
    def validate_radius(radius) -> Tuple[bool, Optional[str]]:
        """
        Validate an avoidance radius.

        Returns:
            Tuple of (is_valid, error_message)

        Examples:
            >>> RouteRequestValidator.validate_radius(1500)
            (True, None)
            >>> RouteRequestValidator.validate_radius(0)
            (False, 'avoidance_radius must be between 1.0 and 50000.0 meters')
        """
        try:
            value = float(radius)
        except (ValueError, TypeError):
            return False, 'avoidance_radius must be a number'

        if not (RouteRequestValidator.MIN_RADIUS_M <= value <= RouteRequestValidator.MAX_RADIUS_M):
            return False, (
                f'avoidance_radius must be between {RouteRequestValidator.MIN_RADIUS_M} '
                f'and {RouteRequestValidator.MAX_RADIUS_M} meters'
            )
        return True, None

    @staticmethod
    def validate_route_request(
        start: Dict[str, float],
        goal: Dict[str, float],
        avoidance_radius: float
    ) -> Tuple[bool, Optional[str]]:
        """
        Validate a complete safe-route request.

        Checks:
        - Start and goal are {'lat', 'lon'} dicts with valid ranges
        - Start and goal differ
        - Avoidance radius is a positive number within limits

        Args:
            start: Route origin
            goal: Route destination
            avoidance_radius: Hazard avoidance radius in meters

        Returns:
            Tuple of (is_valid, error_message)
            - is_valid: True if all validations pass, False otherwise
            - error_message: Description of validation error, or None if valid
        """
        if not CoordinateValidator.validate_coordinate_dict(start):
            return False, 'Invalid start coordinates'

        if not CoordinateValidator.validate_coordinate_dict(goal):
            return False, 'Invalid goal coordinates'

        if float(start['lat']) == float(goal['lat']) and float(start['lon']) == float(goal['lon']):
            return False, 'Start and goal must be different locations'

        return RouteRequestValidator.validate_radius(avoidance_radius)
