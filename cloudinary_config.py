import logging

import cloudinary
import cloudinary.uploader

import config

logger = logging.getLogger(__name__)

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


def is_configured() -> bool:
    return bool(config.CLOUDINARY_CLOUD_NAME and config.CLOUDINARY_API_KEY)


def upload_attachment(file_obj, folder: str = "campus-access/issues"):
    """Upload a photo and return its secure URL, or None if uploads are unavailable."""
    if not is_configured():
        logger.warning("Cloudinary not configured, attachment dropped")
        return None

    try:
        upload = cloudinary.uploader.upload(file_obj, folder=folder)
    except Exception as e:
        logger.error("Attachment upload failed: %s", e)
        return None

    return upload["secure_url"]
