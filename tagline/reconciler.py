"""
One-shot reconciliation between the blob store and photo records.
"""

from __future__ import annotations

import io
import logging
import threading
from contextlib import closing
from dataclasses import asdict, dataclass, field
from typing import Callable

from PIL import Image

from tagline.errors import (
    BackendUnavailableError,
    ConflictError,
    InvalidObjectKeyError,
    NotFoundError,
    RescanInProgressError,
)
from tagline.photos import PhotoLibrary

logger = logging.getLogger(__name__)

DEFAULT_MAX_IMAGE_BYTES = 50 * 1024 * 1024


class InvalidImageError(Exception):
    pass


def validate_image(data: bytes) -> None:
    """Raise InvalidImageError unless ``data`` decodes as an image Pillow understands."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        # Pillow reports unidentified, truncated and corrupt files through these.
        raise InvalidImageError(str(exc)) from exc


@dataclass
class RescanResult:
    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class Reconciler:
    """
    Imports blobs that have no photo record yet.

    Only one pass runs at a time; a second caller fails immediately with
    RescanInProgressError. Keys that fail validation get no record, so the
    next pass retries them.
    """

    def __init__(
        self,
        library: PhotoLibrary,
        validator: Callable[[bytes], None] = validate_image,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ):
        self.library = library
        self.blob_store = library.blob_store
        self.validator = validator
        self.max_image_bytes = max_image_bytes
        self._running = threading.Lock()

    def run(self) -> RescanResult:
        if not self._running.acquire(blocking=False):
            raise RescanInProgressError()
        try:
            return self._scan()
        finally:
            self._running.release()

    def _read_blob(self, key: str) -> bytes:
        """Read ``key`` through the provider stream, giving up past the size cap."""
        data = bytearray()
        with closing(self.blob_store.open_stream(key)) as stream:
            for chunk in stream:
                data.extend(chunk)
                if len(data) > self.max_image_bytes:
                    raise InvalidImageError(f"larger than {self.max_image_bytes} bytes")
        return bytes(data)

    def _scan(self) -> RescanResult:
        result = RescanResult()
        keys = self.blob_store.list_keys()
        known = self.library.object_key_index()

        for key in keys:
            photo_id = known.get(key)
            if photo_id is not None:
                result.skipped.append(photo_id)
                continue
            try:
                self.validator(self._read_blob(key))
            except (
                InvalidImageError,
                NotFoundError,
                BackendUnavailableError,
                InvalidObjectKeyError,
            ) as exc:
                logger.warning("Rescan could not import %s: %s", key, exc)
                result.errors.append(key)
                continue
            try:
                record = self.library.register_photo(key)
            except ConflictError:
                # Registered through another path since the index was read.
                existing = self.library.object_key_index().get(key)
                if existing:
                    result.skipped.append(existing)
                continue
            except BackendUnavailableError as exc:
                logger.warning("Rescan could not register %s: %s", key, exc)
                result.errors.append(key)
                continue
            result.imported.append(record.id)

        logger.info(
            "Rescan finished on %s store: %d imported, %d skipped, %d errors",
            self.blob_store.name,
            len(result.imported),
            len(result.skipped),
            len(result.errors),
        )
        return result
