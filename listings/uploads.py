"""
listings/uploads.py -- Disk storage for uploaded property images.

Files land in <upload_dir>/properties/<property_id>-<epoch ms><ext> and are
served by the /uploads static mount, so the stored URL is
/uploads/properties/<filename>.

Only image/jpeg, image/png, image/gif and image/webp are accepted. The size
cap is enforced by the caller reading at most max_bytes + 1 bytes.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path

logger = logging.getLogger("myassets.uploads")

ALLOWED_CONTENT_TYPES = re.compile(r"^image/(jpeg|png|gif|webp)$", re.IGNORECASE)

_DEFAULT_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

_SAFE_EXT = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


class UploadRejected(ValueError):
    """The uploaded file is missing, too large, or not an allowed image type."""


def property_image_url(filename: str) -> str:
    return f"/uploads/properties/{filename}"


def save_property_image(
    upload_dir: str,
    property_id: str,
    filename: str | None,
    content_type: str | None,
    data: bytes,
    max_bytes: int,
) -> str:
    """Validate and write an image. Returns its public URL.

    Raises UploadRejected for a disallowed type, an empty body, or a body over
    max_bytes. OS errors while writing propagate.
    """
    content_type = (content_type or "").lower()
    if not ALLOWED_CONTENT_TYPES.match(content_type):
        raise UploadRejected("Only images are allowed (jpeg, png, gif, webp).")
    if not data:
        raise UploadRejected("Uploaded file is empty.")
    if len(data) > max_bytes:
        raise UploadRejected(f"Image must be {max_bytes // (1024 * 1024)} MB or smaller.")

    ext = Path(filename or "").suffix.lower()
    if not _SAFE_EXT.match(ext):
        ext = _DEFAULT_EXT.get(content_type, ".jpg")

    target_dir = Path(upload_dir) / "properties"
    target_dir.mkdir(parents=True, exist_ok=True)
    name = f"{property_id}-{int(time.time() * 1000)}{ext}"
    (target_dir / name).write_bytes(data)
    logger.info("Stored image %s (%d bytes)", name, len(data))
    return property_image_url(name)
