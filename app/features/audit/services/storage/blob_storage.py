import uuid
from pathlib import Path
from typing import Optional

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def save_image(data: bytes, content_type: str, filename: Optional[str] = None) -> Optional[str]:
    """
    Store an uploaded image so reports can link to it.

    Returns the public URL served by the /static mount, or None if the image
    could not be stored. A missing URL only degrades how the report is shown,
    so failures are logged and swallowed.
    """
    upload_dir = Path(settings.UPLOAD_DIR)
    file_ext = MIME_EXTENSIONS.get(content_type)
    if file_ext is None and filename:
        file_ext = Path(filename).suffix.lower() or None
    unique_filename = f"{uuid.uuid4().hex}{file_ext or '.img'}"

    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
        with open(upload_dir / unique_filename, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Blob upload failed for {filename or unique_filename}: {e}")
        return None

    return f"{settings.STATIC_URL_PREFIX.rstrip('/')}/{unique_filename}"
