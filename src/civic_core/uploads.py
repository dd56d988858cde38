"""Upload Store: keeps image attachments and hands back opaque references."""
import logging
import re
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from .errors import UploadError

logger = logging.getLogger("civic-core.uploads")

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class UploadStore(Protocol):
    def store(self, filename: str, content: bytes) -> str: ...


class LocalUploadStore:
    """Writes uploads under a directory and serves them from a base URL."""

    def __init__(self, root: Path, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def store(self, filename: str, content: bytes) -> str:
        """
        Store one file.

        Args:
            filename: Client-supplied file name (only its extension is kept)
            content: Raw bytes

        Returns:
            URL under base_url

        Raises:
            UploadError: Empty, oversized or non-image file, or write failure
        """
        extension = Path(filename).suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise UploadError(f"Unsupported image type '{extension or filename}'.", filename=filename)
        if not content:
            raise UploadError("Empty file.", filename=filename)
        if len(content) > MAX_UPLOAD_BYTES:
            raise UploadError(f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB.", filename=filename)

        stem = _UNSAFE_CHARS.sub("-", Path(filename).stem)[:40] or "image"
        stored_name = f"{uuid4().hex}-{stem}{extension}"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / stored_name).write_bytes(content)
        except OSError as e:
            logger.error(f"Failed to write upload {filename}: {e}")
            raise UploadError(f"Could not store file: {e.strerror or e}", filename=filename) from e

        logger.debug(f"Stored upload {filename} as {stored_name}")
        return f"{self.base_url}/{stored_name}"
