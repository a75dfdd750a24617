"""
Error types raised by the hazard fusion and routing services.

Only RoutingProviderError and RouteCancelledError reach safe-route callers.
Feed, location and store errors are caught by the fusion service, logged,
and turned into smaller results.
"""
from typing import Optional


class HazardRoutingError(Exception):
    """Base class for all hazard fusion and routing errors."""


class FeedUnavailableError(HazardRoutingError):
    """A hazard feed could not be fetched or parsed."""

    def __init__(self, feed_type: str, message: str):
        self.feed_type = feed_type
        super().__init__(f"{feed_type} feed unavailable: {message}")


class UnresolvableLocationError(HazardRoutingError):
    """An observation has neither usable coordinates nor a known region name."""

    def __init__(self, feed_type: str, source_id: Optional[str] = None, region_name: Optional[str] = None):
        self.feed_type = feed_type
        self.source_id = source_id
        self.region_name = region_name
        super().__init__(
            f"Cannot resolve location for {feed_type} observation {source_id or '?'} "
            f"(region: {region_name or 'none'})"
        )


class RoutingProviderError(HazardRoutingError):
    """The routing provider failed or returned no usable path."""

    def __init__(self, provider: str, message: str, code: Optional[str] = None):
        self.provider = provider
        self.code = code
        detail = f" (code {code})" if code is not None else ""
        super().__init__(f"{provider} routing failed{detail}: {message}")


class RouteCancelledError(HazardRoutingError):
    """A route search was cancelled or timed out before any path was computed."""

    def __init__(self, reason: str = 'cancelled'):
        self.reason = reason
        super().__init__(f"Route search {reason} before any route was computed")


class HazardStoreError(HazardRoutingError):
    """The geospatial hazard store failed to read or write."""
