# storage.py — On-disk storage for uploaded files
import os
import re
import time
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import UploadFile

from exceptions import ValidationError, UpstreamFailure

logger = logging.getLogger("taskflow.storage")

# Storage directory (configurable via env)
STORAGE_ROOT = os.getenv("FILE_STORAGE_ROOT", "./uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))
PUBLIC_PREFIX = "/uploads"
CHUNK_SIZE = 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class SavedUpload:
    file_name: str
    original_name: str
    file_type: str
    file_size: int

    @property
    def file_url(self) -> str:
        return f"{PUBLIC_PREFIX}/{self.file_name}"


def unique_file_name(original_name: str) -> str:
    """``report.pdf`` -> ``report-1700000000000-1a2b3c4d.pdf``"""
    base, ext = os.path.splitext(os.path.basename(original_name or "upload"))
    base = _UNSAFE_CHARS.sub("_", base).strip("._") or "upload"
    ext = _UNSAFE_CHARS.sub("", ext)
    return f"{base[:100]}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


def path_for(file_name: str) -> str:
    """Absolute disk path for a stored name; rejects anything outside STORAGE_ROOT."""
    root = os.path.abspath(STORAGE_ROOT)
    path = os.path.abspath(os.path.join(root, os.path.basename(file_name)))
    if os.path.dirname(path) != root:
        raise ValidationError.for_field("file_name", "Invalid file name")
    return path


async def save_upload(upload: UploadFile, max_bytes: Optional[int] = None) -> SavedUpload:
    """Stream an upload to disk under a unique name.

    Raises ValidationError (and leaves nothing behind) when the file is
    empty-named or larger than ``max_bytes``.
    """
    limit = max_bytes or MAX_UPLOAD_BYTES
    if not upload.filename:
        raise ValidationError.for_field("file", "No file uploaded")

    os.makedirs(STORAGE_ROOT, exist_ok=True)
    file_name = unique_file_name(upload.filename)
    path = path_for(file_name)

    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise ValidationError.for_field(
                        "file", f"File exceeds the {limit // (1024 * 1024)} MB limit",
                    )
                out.write(chunk)
    except ValidationError:
        remove_stored(file_name)
        raise
    except OSError as e:
        remove_stored(file_name)
        logger.error(f"Failed to store upload {upload.filename}: {e}")
        raise UpstreamFailure("Failed to store file")

    logger.info(f"Stored upload {upload.filename} as {file_name} ({size} bytes)")
    return SavedUpload(
        file_name=file_name,
        original_name=upload.filename,
        file_type=upload.content_type or "application/octet-stream",
        file_size=size,
    )


def remove_stored(file_name: str) -> bool:
    """Best-effort delete; returns whether a file was removed."""
    try:
        path = path_for(file_name)
    except ValidationError:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Could not remove stored file {file_name}: {e}")
        return False
