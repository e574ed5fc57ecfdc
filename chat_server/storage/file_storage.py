"""Local file storage for chat attachments.

Files are written under a single directory with a random prefix so two
uploads of ``photo.jpg`` never collide. The returned key is the stored file
name; ``url_for`` turns it into the URL clients put in ``metadata.fileUrl``.
"""
import logging
import os
import uuid
from typing import Iterable, Optional

from werkzeug.utils import secure_filename

from chat_server.exception.ChatError import ValidationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp', 'avif'}


def file_extension(filename: Optional[str]) -> str:
    if not filename or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def is_image(filename: Optional[str]) -> bool:
    return file_extension(filename) in IMAGE_EXTENSIONS


class LocalFileStorage:

    def __init__(self, directory: str, base_url: str = '/uploads/chat',
                 allowed_extensions: Optional[Iterable[str]] = None,
                 max_bytes: int = 10 * 1024 * 1024):
        self.directory = directory
        self.base_url = base_url.rstrip('/')
        self.allowed_extensions = {e.lower().lstrip('.') for e in (allowed_extensions or [])}
        self.max_bytes = max_bytes

    def _check(self, data: bytes, filename: str) -> str:
        safe_name = secure_filename(filename or '')
        if not safe_name:
            raise ValidationError('A file name is required')
        ext = file_extension(safe_name)
        if self.allowed_extensions and ext not in self.allowed_extensions:
            raise ValidationError(f'File type .{ext or "?"} is not allowed')
        if not data:
            raise ValidationError('Uploaded file is empty')
        if len(data) > self.max_bytes:
            raise ValidationError(f'File exceeds the {self.max_bytes // (1024 * 1024)} MB limit')
        return safe_name

    def store(self, data: bytes, content_type: Optional[str], filename: str) -> str:
        """Write ``data`` and return its storage key."""
        safe_name = self._check(data, filename)
        key = f'{uuid.uuid4().hex}_{safe_name}'
        os.makedirs(self.directory, exist_ok=True)
        with open(os.path.join(self.directory, key), 'wb') as fh:
            fh.write(data)
        logger.info("Stored attachment %s (%s, %d bytes)", key, content_type or 'unknown', len(data))
        return key

    def delete(self, key: str) -> bool:
        """Remove a stored file. Returns False if it was already gone."""
        path = os.path.join(self.directory, os.path.basename(key))
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        logger.info("Removed attachment %s", key)
        return True

    def url_for(self, key: str) -> str:
        return f'{self.base_url}/{key}'
