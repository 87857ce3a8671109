import logging
import os
from typing import List, Optional
from uuid import uuid4

from fastapi import UploadFile

from database import new_id
from schemas import ContentFile

logger = logging.getLogger(__name__)

DOCUMENT_MARKERS = ("document", "spreadsheet", "presentation")


def classify_mime(mime_type: Optional[str]) -> str:
    """Coarse file category from the declared MIME type (taken at face value)."""
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("video/"):
        return "video"
    if (
        mime_type.startswith("application/pdf")
        or mime_type.startswith("text/")
        or any(marker in mime_type for marker in DOCUMENT_MARKERS)
    ):
        return "document"
    return "other"


class UploadStore:
    """Uploaded binaries in one directory, exposed under ``url_prefix``."""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = directory
        self.url_prefix = url_prefix.rstrip("/")

    def ensure_dir(self) -> str:
        os.makedirs(self.directory, exist_ok=True)
        return self.directory

    def url_for(self, name: str) -> str:
        return f"{self.url_prefix}/{name}"

    def resolve(self, path: str) -> Optional[str]:
        """Map a public path back to a file inside the uploads directory."""
        if not path.startswith(self.url_prefix + "/"):
            return None
        name = os.path.basename(path)
        if not name or name in (".", ".."):
            return None
        return os.path.join(self.directory, name)

    def save(self, original_name: str, mime_type: Optional[str], data: bytes) -> ContentFile:
        ext = os.path.splitext(original_name or "")[1]
        name = f"{uuid4().hex}{ext}"
        dest = os.path.join(self.ensure_dir(), name)
        with open(dest, "wb") as f:
            f.write(data)
        mime_type = mime_type or "application/octet-stream"
        return ContentFile(
            id=new_id(),
            name=name,
            original_name=original_name or name,
            type=classify_mime(mime_type),
            mime_type=mime_type,
            size=len(data),
            path=self.url_for(name),
        )

    def remove(self, path: str) -> bool:
        """Delete the file behind ``path``; a missing file is not an error."""
        target = self.resolve(path)
        if target is None or not os.path.exists(target):
            logger.info("Upload %s already gone, skipping", path)
            return False
        os.remove(target)
        return True


def store_uploads(uploads: UploadStore, files: List[UploadFile]) -> List[ContentFile]:
    """Persist every multipart part; each is read fully into memory."""
    stored = []
    for file in files:
        data = file.file.read()
        stored.append(uploads.save(file.filename, file.content_type, data))
        logger.info("Stored upload %s (%d bytes)", stored[-1].name, len(data))
    return stored
