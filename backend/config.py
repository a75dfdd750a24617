"""
Configuration file for the flood hazard fusion and safe-route backend.
"""
import json
import logging
import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration"""
    DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Firebase
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH')
    FIREBASE_DATABASE_URL = os.getenv('FIREBASE_DATABASE_URL')
    HAZARD_SITES_PATH = os.getenv('HAZARD_SITES_PATH', 'hazard_sites')

    # Han River flood control feeds
    HANRIVER_BASE_URL = os.getenv('HANRIVER_BASE_URL', 'http://211.188.52.85:9191')
    WATER_LEVEL_ENDPOINT = os.getenv('WATER_LEVEL_ENDPOINT', '/waterlevelinfo/info.json')
    REALTIME_ENDPOINT = os.getenv(
        'REALTIME_ENDPOINT', '/getWaterLevel1D/list/1D/1018683/20230701/20230930.json'
    )
    FORECAST_ENDPOINT = os.getenv('FORECAST_ENDPOINT', '/fldfct/list/20230715.json')
    FEED_TIMEOUT_SECONDS = int(os.getenv('FEED_TIMEOUT_SECONDS', '10'))
    FEED_FETCH_WORKERS = int(os.getenv('FEED_FETCH_WORKERS', '3'))

    # Fusion
    PROXIMITY_THRESHOLD_M = float(os.getenv('PROXIMITY_THRESHOLD_M', '100'))
    REGION_CENTROIDS_FILE = os.getenv('REGION_CENTROIDS_FILE')
    SITE_MAX_AGE_HOURS = int(os.getenv('SITE_MAX_AGE_HOURS', '24'))

    # Routing
    ROUTING_PROVIDER = os.getenv('ROUTING_PROVIDER', 'naver')
    NAVER_CLIENT_ID = os.getenv('NAVER_CLIENT_ID')
    NAVER_CLIENT_SECRET = os.getenv('NAVER_CLIENT_SECRET')
    ORS_API_KEY = os.getenv('ORS_API_KEY')
    ROUTING_TIMEOUT_SECONDS = int(os.getenv('ROUTING_TIMEOUT_SECONDS', '10'))
    # Budget for a whole safe-route search, up to six provider calls
    ROUTE_SEARCH_TIMEOUT_SECONDS = float(os.getenv('ROUTE_SEARCH_TIMEOUT_SECONDS', '60'))
    DEFAULT_AVOIDANCE_RADIUS_M = float(os.getenv('DEFAULT_AVOIDANCE_RADIUS_M', '1500'))
    WAYPOINT_SAFETY_FACTOR = float(os.getenv('WAYPOINT_SAFETY_FACTOR', '1.2'))
    HAZARD_SEARCH_BUFFER_M = float(os.getenv('HAZARD_SEARCH_BUFFER_M', '5000'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def configure_logging(level=None):
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=level or Config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


def load_region_centroids(path=None):
    """
    Load the region name -> centroid table used to place region-only observations.

    The file is a JSON object mapping region names to {"lat": ..., "lon": ...}.
    Key order is preserved and is the matching order.

    Args:
        path: JSON file path. Defaults to REGION_CENTROIDS_FILE.

    Returns:
        dict: Region name to {'lat', 'lon'}; empty when no file is configured
    """
    path = path or Config.REGION_CENTROIDS_FILE
    if not path:
        return {}

    with open(path, 'r', encoding='utf-8') as f:
        raw = json.load(f)

    centroids = {}
    for name, point in raw.items():
        centroids[name] = {'lat': float(point['lat']), 'lon': float(point['lon'])}
    return centroids
