import logging
import os
import uuid
from typing import Protocol

from fastapi import UploadFile

from learnhub import config
from learnhub.errors import ValidationError

logger = logging.getLogger(__name__)

PREFIX = "storage/"

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}
IMAGE_MAX_BYTES = 2 * 1024 * 1024
PDF_EXTENSIONS = {".pdf"}
PDF_MAX_BYTES = 50 * 1024 * 1024


class FileStore(Protocol):
    def store(self, data: bytes, folder: str, extension: str) -> str: ...

    def delete(self, path_reference: str | None) -> None: ...


class LocalFileStore:
    """Keeps uploads on disk under ``root`` and hands out ``storage/<folder>/<name>`` references."""

    def __init__(self, root: str | os.PathLike | None = None):
        self.root = os.path.abspath(root or config.STORAGE_ROOT)

    def _resolve(self, path_reference: str) -> str | None:
        if not path_reference.startswith(PREFIX):
            return None
        path = os.path.abspath(os.path.join(self.root, path_reference[len(PREFIX):]))
        if not path.startswith(self.root + os.sep):
            return None
        return path

    def store(self, data: bytes, folder: str, extension: str) -> str:
        os.makedirs(os.path.join(self.root, folder), exist_ok=True)
        name = f"{uuid.uuid4().hex}{extension}"
        with open(os.path.join(self.root, folder, name), "wb") as f:
            f.write(data)
        return f"{PREFIX}{folder}/{name}"

    def delete(self, path_reference: str | None) -> None:
        if not path_reference or path_reference == config.DEFAULT_PHOTO:
            return
        path = self._resolve(path_reference)
        if path and os.path.isfile(path):
            os.remove(path)
            logger.info("Deleted stored file %s", path_reference)


def read_upload(upload: UploadFile, allowed_extensions: set[str], max_bytes: int) -> tuple[bytes, str]:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if ext not in allowed_extensions:
        raise ValidationError(f"{upload.filename} must be one of: {', '.join(sorted(allowed_extensions))}")
    data = upload.file.read()
    if len(data) > max_bytes:
        raise ValidationError(f"{upload.filename} exceeds {max_bytes // (1024 * 1024)} MB")
    return data, ext
