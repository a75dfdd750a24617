"""
Test suite for the flood hazard fusion and safe-route backend.

This package contains:
- test_location_clusterer.py / test_data_fusion_engine.py: per-location fusion
- test_hazard_feed_service.py: Han River feed parsing and quality checks
- test_hazard_store.py: in-memory and Firebase hazard stores
- test_hazard_fusion_service.py: fetch, fuse and store cycle
- test_proximity_engine.py / test_route_avoidance_engine.py: hazard-aware routing
- test_naver_directions_service.py / test_ors_routing_service.py: routing providers

Run tests:
    pip install -e .[test]
    python -m pytest
"""
