"""
Tests for secure logging utilities with coordinate and credential redaction.
"""

import pytest
from utils.secure_logging import (
    redact_pii,
    redact_coordinates,
    redact_point,
    safe_log_dict
)


class TestRedactPII:
    """Tests for log message redaction"""

    def test_redact_email_addresses(self):
        """Email addresses should be redacted"""
        result = redact_pii("Contact ops@example.com")
        assert result == "Contact [EMAIL_REDACTED]"

    def test_redact_precise_coordinates(self):
        """Precise coordinates (4+ decimals) should be redacted"""
        result = redact_pii("Location: 37.5665, 126.9780")
        assert result == "Location: [COORD_REDACTED], [COORD_REDACTED]"

    def test_keep_rough_coordinates(self):
        """Rough coordinates (1-3 decimals) should be preserved for debugging"""
        result = redact_pii("District: 37.56, 126.97")
        assert result == "District: 37.56, 126.97"

    def test_redact_api_key_query_parameter(self):
        result = redact_pii("GET /route?api_key=abc123&profile=fast")
        assert result == "GET /route?api_key=[SECRET_REDACTED]&profile=fast"

    def test_redact_naver_headers(self):
        text = "headers={'X-NCP-APIGW-API-KEY-ID': 'my-id', 'X-NCP-APIGW-API-KEY': 'my-secret'}"
        result = redact_pii(text)
        assert 'my-id' not in result
        assert 'my-secret' not in result

    def test_empty_input(self):
        assert redact_pii("") == ""
        assert redact_pii(None) is None


class TestRedactCoordinates:

    def test_default_precision(self):
        assert redact_coordinates(37.5665, 126.9780) == ('37.57', '126.98')

    def test_custom_precision(self):
        assert redact_coordinates(37.5665, 126.9780, precision=1) == ('37.6', '127.0')

    def test_none_values(self):
        assert redact_coordinates(None, 126.9) == ('[REDACTED]', '[REDACTED]')

    def test_redact_point(self):
        assert redact_point({'lat': 37.5665, 'lon': 126.9780}) == '(37.57, 126.98)'
        assert redact_point(None) == '([REDACTED], [REDACTED])'


class TestSafeLogDict:

    def test_redacts_credentials_and_coordinates(self):
        data = {'api_key': 'secret', 'latitude': 37.5, 'profile': 'trafast'}
        assert safe_log_dict(data) == {
            'api_key': '[REDACTED]',
            'latitude': '[REDACTED]',
            'profile': 'trafast'
        }

    def test_nested_structures(self):
        data = {'request': {'client_secret': 'x', 'count': 2}, 'items': [{'token': 't'}, 5]}
        result = safe_log_dict(data)
        assert result['request'] == {'client_secret': '[REDACTED]', 'count': 2}
        assert result['items'] == [{'token': '[REDACTED]'}, 5]

    def test_custom_keys(self):
        assert safe_log_dict({'station': 'A', 'level': 3}, redact_keys=['station']) == {
            'station': '[REDACTED]',
            'level': 3
        }
