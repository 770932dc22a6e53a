import logging
import secrets

import config
from firebase_config import get_db

logger = logging.getLogger(__name__)


def verify_user(role: str, username: str, password: str, db=None):
    db = db if db is not None else get_db()

    if db is not None:
        docs = db.collection("users").where("role", "==", role).stream()

        for doc in docs:
            user = doc.to_dict()

            if (
                user.get("username") == username
                and user.get("password") == password
            ):
                user["id"] = doc.id
                return user

    # env fallback so a local-only deployment still has an admin
    if role == "admin" and config.ADMIN_USERNAME and config.ADMIN_PASSWORD:
        if secrets.compare_digest(username, config.ADMIN_USERNAME) and secrets.compare_digest(
            password, config.ADMIN_PASSWORD
        ):
            return {"id": "env-admin", "username": username, "role": "admin"}

    logger.warning("Rejected %s login for %s", role, username)
    return None
