# Overview: Object storage for identity and product images (Cloudinary).

from __future__ import annotations

import logging
import cloudinary
import cloudinary.uploader
from flask import current_app

from ..validation import MarketplaceError, ValidationError

logger = logging.getLogger(__name__)

FOLDER_IDENTITY = "identity"
FOLDER_PRODUCTS = "products"
FOLDER_PROFILES = "profiles"


class StorageError(MarketplaceError):
    """Upload to object storage failed."""
    status_code = 502
    kind = "storage_error"


def is_data_uri(value) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def _configure() -> None:
    """
    Apply the CLOUDINARY_* credentials from the app config. Without them the
    SDK keeps whatever it loaded from the CLOUDINARY_URL environment variable.
    """
    cfg = current_app.config
    if cfg.get("CLOUDINARY_CLOUD_NAME"):
        cloudinary.config(
            cloud_name=cfg["CLOUDINARY_CLOUD_NAME"],
            api_key=cfg.get("CLOUDINARY_API_KEY"),
            api_secret=cfg.get("CLOUDINARY_API_SECRET"),
            secure=True,
        )
    if not cloudinary.config().cloud_name:
        raise StorageError("Image storage is not configured")


def upload(data: str, folder: str) -> str:
    """Upload a base64 data URI and return its public https URL."""
    if not is_data_uri(data):
        raise ValidationError("Image must be provided as a base64 data URI")

    _configure()
    try:
        result = cloudinary.uploader.upload(data, folder=folder)
    except Exception as e:
        logger.exception("Upload to folder %s failed", folder)
        raise StorageError("Image upload failed") from e

    url = result.get("secure_url") or result.get("url")
    if not url:
        raise StorageError("Image upload returned no URL")
    logger.info("Uploaded image to %s", folder)
    return url


def resolve_image(value, folder: str) -> str | None:
    """
    Image fields accept either a data URI (uploaded here) or an existing
    URL (kept as is). Empty values clear the field.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Image must be a string")
    value = value.strip()
    if not value:
        return None
    if is_data_uri(value):
        return upload(value, folder)
    if value.startswith(("http://", "https://")):
        return value
    raise ValidationError("Image must be a base64 data URI or an http(s) URL")
