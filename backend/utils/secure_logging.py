"""
Secure logging utilities with coordinate and credential redaction.

Route requests carry precise user origins and destinations, and provider error
bodies can echo API credentials. These helpers keep both out of log files.

Usage:
    from utils.secure_logging import redact_point, redact_pii

    logger.info(f"Routing from {redact_point(start)} to {redact_point(goal)}")
    # Output: "Routing from (37.57, 126.98) to (37.50, 127.03)"

    logger.error(redact_pii(f"Provider error: {response.text}"))
"""

import re
from typing import Dict, Optional


def redact_pii(text: str) -> str:
    """
    Redact sensitive values from log messages.

    Redacts:
    - Email addresses → [EMAIL_REDACTED]
    - Precise coordinates (4+ decimal places) → [COORD_REDACTED]
    - API key / secret query or header values → [SECRET_REDACTED]

    Args:
        text: The log message to redact

    Returns:
        str: The redacted log message

    Examples:
        >>> redact_pii("Location: 37.5665, 126.9780")
        'Location: [COORD_REDACTED], [COORD_REDACTED]'

        >>> redact_pii("GET /route?api_key=abc123&profile=fast")
        'GET /route?api_key=[SECRET_REDACTED]&profile=fast'
    """
    if not text:
        return text

    # Redact email addresses
    text = re.sub(
        r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b',
        '[EMAIL_REDACTED]',
        text
    )

    # Redact precise coordinates (4+ decimal places = ~11m accuracy)
    text = re.sub(
        r'-?\d{1,3}\.\d{4,}',
        '[COORD_REDACTED]',
        text
    )

    # Redact credential values in query strings and header dumps
    text = re.sub(
        r'((?:api[_-]?key|apikey|client[_-]?secret|X-NCP-APIGW-API-KEY(?:-ID)?|Authorization)[\'"]?\s*[=:]\s*[\'"]?)[^&\s\'",}]+',
        r'\1[SECRET_REDACTED]',
        text,
        flags=re.IGNORECASE
    )

    return text


def redact_coordinates(lat: Optional[float], lon: Optional[float], precision: int = 2) -> tuple:
    """
    Redact coordinates to a safe precision level for logging.

    Precision levels:
    - 1 decimal: ~11 km (city level)
    - 2 decimals: ~1.1 km (neighborhood level) **RECOMMENDED**
    - 3 decimals: ~110 m (street level)

    Args:
        lat: Latitude coordinate
        lon: Longitude coordinate
        precision: Number of decimal places to keep (default: 2)

    Returns:
        tuple[str, str]: Rounded coordinates as strings, or ('[REDACTED]', '[REDACTED]') if None

    Examples:
        >>> redact_coordinates(37.5665, 126.9780, precision=2)
        ('37.57', '126.98')

        >>> redact_coordinates(None, None)
        ('[REDACTED]', '[REDACTED]')
    """
    if lat is None or lon is None:
        return ('[REDACTED]', '[REDACTED]')

    return (
        f"{lat:.{precision}f}",
        f"{lon:.{precision}f}"
    )


def redact_point(point: Optional[Dict[str, float]], precision: int = 2) -> str:
    """
    Format a {'lat', 'lon'} point for logging at reduced precision.

    Examples:
        >>> redact_point({'lat': 37.5665, 'lon': 126.9780})
        '(37.57, 126.98)'
        >>> redact_point(None)
        '([REDACTED], [REDACTED])'
    """
    if not point:
        lat, lon = redact_coordinates(None, None)
    else:
        lat, lon = redact_coordinates(point.get('lat'), point.get('lon'), precision)
    return f"({lat}, {lon})"


def safe_log_dict(data: dict, redact_keys: Optional[list] = None) -> dict:
    """
    Create a safe version of a dictionary for logging by redacting sensitive keys.

    Args:
        data: Dictionary to sanitize
        redact_keys: List of key fragments to redact (default: credentials and coordinates)

    Returns:
        dict: Dictionary with sensitive values redacted

    Examples:
        >>> safe_log_dict({'api_key': 'secret123', 'profile': 'trafast'})
        {'api_key': '[REDACTED]', 'profile': 'trafast'}
    """
    if redact_keys is None:
        redact_keys = [
            'api_key', 'apikey', 'secret', 'token', 'password', 'authorization',
            'client_id', 'latitude', 'longitude'
        ]

    safe_data = {}
    for key, value in data.items():
        if any(sensitive_key in str(key).lower() for sensitive_key in redact_keys):
            safe_data[key] = '[REDACTED]'
        elif isinstance(value, dict):
            safe_data[key] = safe_log_dict(value, redact_keys)
        elif isinstance(value, list):
            safe_data[key] = [
                safe_log_dict(item, redact_keys) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            safe_data[key] = value

    return safe_data
