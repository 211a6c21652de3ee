"""
Unified photo access over the active blob store and the metadata store.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Optional

from tagline.db import PHOTO_NOT_FOUND, MetadataStore, PhotoRecord
from tagline.errors import ConflictError, MetadataValidationError, NotFoundError
from tagline.storage import DEFAULT_CHUNK_SIZE, BlobStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500


def clamp_page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    if limit is None:
        limit = DEFAULT_PAGE_SIZE
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset or 0)


def validate_metadata(metadata: Any) -> dict:
    if not isinstance(metadata, Mapping):
        raise MetadataValidationError("Metadata must be an object")
    for key in metadata:
        if not isinstance(key, str) or not key:
            raise MetadataValidationError("Metadata keys must be non-empty strings")
    if "description" in metadata and not isinstance(metadata["description"], str):
        raise MetadataValidationError("Metadata description must be a string")
    return dict(metadata)


@dataclass(frozen=True)
class PhotoPage:
    items: list[PhotoRecord]
    total: int
    limit: int
    offset: int


class PhotoLibrary:
    """
    The interface the API and the reconciler use for photos.

    Metadata reads never touch the blob store; image bytes are fetched
    separately by object key.
    """

    def __init__(self, blob_store: BlobStore, metadata_store: MetadataStore):
        self.blob_store = blob_store
        self.metadata_store = metadata_store

    def list_photos(
        self, limit: Optional[int] = DEFAULT_PAGE_SIZE, offset: Optional[int] = 0
    ) -> tuple[list[str], int]:
        page = self.list_photo_page(limit, offset)
        return [record.id for record in page.items], page.total

    def list_photo_page(
        self, limit: Optional[int] = DEFAULT_PAGE_SIZE, offset: Optional[int] = 0
    ) -> PhotoPage:
        limit, offset = clamp_page(limit, offset)
        records, total = self.metadata_store.list_photos(limit, offset)
        return PhotoPage(items=records, total=total, limit=limit, offset=offset)

    def get_photo(self, photo_id: str) -> PhotoRecord:
        record = self.metadata_store.get_photo(photo_id)
        if record is None:
            raise NotFoundError(PHOTO_NOT_FOUND)
        return record

    def set_metadata(
        self,
        photo_id: str,
        metadata: Any,
        expected_last_modified: Optional[datetime],
    ) -> PhotoRecord:
        """
        Merge ``metadata`` into the photo if it is unchanged since
        ``expected_last_modified``.

        Raises NotFoundError for an unknown id and ConflictError when the
        timestamp is stale or missing; the stored record is untouched in both
        cases.
        """
        metadata = validate_metadata(metadata)
        if expected_last_modified is None:
            self.get_photo(photo_id)
            raise ConflictError()
        try:
            return self.metadata_store.update_metadata(
                photo_id, metadata, expected_last_modified
            )
        except ConflictError:
            logger.info("Stale metadata update rejected for photo %s", photo_id)
            raise

    def fetch_blob(
        self, object_key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        return self.blob_store.open_stream(object_key, chunk_size)

    def register_photo(
        self, object_key: str, metadata: Optional[dict] = None
    ) -> PhotoRecord:
        if metadata is not None:
            metadata = validate_metadata(metadata)
        record = self.metadata_store.create_photo(object_key, metadata)
        logger.debug("Registered photo %s for %s", record.id, object_key)
        return record

    def object_key_index(self) -> dict[str, str]:
        return self.metadata_store.object_key_index()
