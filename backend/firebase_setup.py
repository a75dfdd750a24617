"""
Firebase credentials setup for multiple deployment environments.

Supports two methods of providing Firebase credentials:
1. Base64-encoded JSON (FIREBASE_CREDENTIALS_BASE64) - for PaaS platforms without file uploads
2. File path (FIREBASE_CREDENTIALS_PATH) - for local development, VPS

The hazard store only needs the Realtime Database, so initialization is lazy:
nothing touches Firebase until a FirebaseHazardStore is requested.
"""

import base64
import json
import logging
import os

import firebase_admin
from firebase_admin import credentials, db

logger = logging.getLogger(__name__)


def get_firebase_credentials():
    """
    Get Firebase credentials from environment.

    Returns:
        firebase_admin.credentials.Certificate: Firebase credentials object

    Raises:
        ValueError: If no valid credentials are found
    """
    base64_creds = os.getenv('FIREBASE_CREDENTIALS_BASE64')
    if base64_creds:
        try:
            json_str = base64.b64decode(base64_creds).decode('utf-8')
            cred_dict = json.loads(json_str)
            return credentials.Certificate(cred_dict)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Failed to decode FIREBASE_CREDENTIALS_BASE64: {e}")

    cred_path = os.getenv('FIREBASE_CREDENTIALS_PATH')
    if cred_path and os.path.exists(cred_path):
        return credentials.Certificate(cred_path)

    raise ValueError(
        "No Firebase credentials found. Set either:\n"
        "  - FIREBASE_CREDENTIALS_BASE64 (base64-encoded service account JSON)\n"
        "  - FIREBASE_CREDENTIALS_PATH (path to service account JSON file)"
    )


def init_firebase(database_url=None):
    """
    Initialize the default Firebase app once and return the database module.

    Args:
        database_url: Realtime Database URL. If None, reads FIREBASE_DATABASE_URL

    Returns:
        firebase_admin.db module, ready for db.reference()

    Raises:
        ValueError: If credentials or the database URL are missing
    """
    database_url = database_url or os.getenv('FIREBASE_DATABASE_URL')
    if not database_url:
        raise ValueError("FIREBASE_DATABASE_URL must be set to use the Firebase hazard store")

    try:
        firebase_admin.get_app()
    except ValueError:
        firebase_admin.initialize_app(get_firebase_credentials(), {
            'databaseURL': database_url
        })
        logger.info("Firebase app initialized")

    return db
