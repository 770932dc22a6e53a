import logging
import os

import firebase_admin
from firebase_admin import credentials, firestore

import config

logger = logging.getLogger(__name__)

_db = None


def get_db():
    """Return a Firestore client, or None when no service account is configured."""
    global _db
    if _db is not None:
        return _db

    cred_path = config.FIREBASE_CREDENTIALS
    if not cred_path or not os.path.exists(cred_path):
        logger.warning("Firebase not configured. Using local storage only.")
        return None

    try:
        try:
            firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(cred_path)
            options = {"storageBucket": config.FIREBASE_STORAGE_BUCKET} if config.FIREBASE_STORAGE_BUCKET else None
            firebase_admin.initialize_app(cred, options)
        _db = firestore.client()
    except Exception as e:
        logger.error("Firebase initialization error: %s", e)
        return None

    logger.info("Firestore client ready")
    return _db
