import logging

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

from .. import config
from ..errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_TYPES = ["image/jpeg", "image/png", "image/jpg", "image/gif", "image/webp"]
MAX_SIZE = 5 * 1024 * 1024  # 5MB

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


def validate_proof(file: UploadFile):
    if file.content_type not in ALLOWED_TYPES:
        raise ValidationError("Invalid file type. Only images allowed.")

    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    if size == 0:
        raise ValidationError("Empty file")
    if size > MAX_SIZE:
        raise ValidationError("File too large. Max 5MB allowed.")
    return size


def upload_proof(file: UploadFile, uid: str = None):
    """
    Upload a task proof screenshot to Cloudinary
    """
    validate_proof(file)

    folder = "cashbyking-proofs"
    if uid:
        folder = f"{folder}/{uid}"

    try:
        result = cloudinary.uploader.upload(
            file.file,
            folder=folder,
            resource_type="image",
            transformation=[
                {"width": 1280, "height": 1280, "crop": "limit"},
                {"quality": "auto:good"}
            ]
        )
    except cloudinary.exceptions.Error as e:
        logger.error(f"Cloudinary upload failed for {uid}: {e}")
        raise StoreError(f"Proof upload failed: {e}") from e

    logger.info(f"Proof uploaded for {uid}: {result['public_id']}")
    return {
        "url": result["secure_url"],
        "publicId": result["public_id"],
        "format": result.get("format"),
        "size": result.get("bytes"),
    }
