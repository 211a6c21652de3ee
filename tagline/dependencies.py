"""
Dependency wiring for the FastAPI app.

Every component is built once per process from one Settings instance and
shared across requests.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tagline.auth import AuthService
from tagline.config import Settings, get_settings
from tagline.db import InMemoryMetadataStore, MetadataStore, SqlMetadataStore
from tagline.errors import ConfigurationError, UnauthorizedError
from tagline.photos import PhotoLibrary
from tagline.reconciler import Reconciler
from tagline.storage import (
    BlobStore,
    FilesystemBlobStore,
    InMemoryBlobStore,
    NullBlobStore,
    S3BlobStore,
)
from tagline.tokens import InMemoryTokenStore, RedisTokenStore, TokenStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"

_lock = threading.RLock()
_settings: Settings | None = None
_blob_store: BlobStore | None = None
_metadata_store: MetadataStore | None = None
_token_store: TokenStore | None = None
_photo_library: PhotoLibrary | None = None
_reconciler: Reconciler | None = None
_auth_service: AuthService | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def configure(settings: Settings) -> None:
    """Use ``settings`` for every component built from now on."""
    global _settings
    with _lock:
        reset_dependencies()
        _settings = settings


def reset_dependencies() -> None:
    """Drop every cached component (useful in tests)."""
    global _settings, _blob_store, _metadata_store, _token_store
    global _photo_library, _reconciler, _auth_service
    with _lock:
        _settings = None
        _blob_store = None
        _metadata_store = None
        _token_store = None
        _photo_library = None
        _reconciler = None
        _auth_service = None


def get_app_settings() -> Settings:
    with _lock:
        return _settings or get_settings()


def create_blob_store(settings: Settings) -> BlobStore:
    provider = settings.storage_provider
    if provider == "null":
        return NullBlobStore()
    if provider == "memory":
        return InMemoryBlobStore()
    if provider == "filesystem":
        if not settings.storage_root:
            raise ConfigurationError("TAGLINE_STORAGE_ROOT is required for the filesystem provider")
        return FilesystemBlobStore(settings.storage_root)
    if provider == "s3":
        if not settings.s3_bucket:
            raise ConfigurationError("TAGLINE_S3_BUCKET is required for the s3 provider")
        secret = settings.s3_secret_access_key
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint=settings.s3_endpoint,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=secret.get_secret_value() if secret else None,
            prefix=settings.s3_prefix,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown storage provider: {provider}")


def get_blob_store() -> BlobStore:
    global _blob_store
    with _lock:
        if _blob_store is not None:
            return _blob_store
        settings = get_app_settings()
        store = create_blob_store(settings)
        store.initialize()
        logger.info("Using %s blob storage provider", store.name)
        _blob_store = store
        return _blob_store


def get_metadata_store() -> MetadataStore:
    """
    Return a singleton metadata store so photo records persist across requests.
    """
    global _metadata_store
    with _lock:
        if _metadata_store is not None:
            return _metadata_store
        settings = get_app_settings()
        if settings.use_in_memory_backends:
            _metadata_store = InMemoryMetadataStore()
        elif settings.database_url:
            _metadata_store = SqlMetadataStore(settings.database_url)
        else:
            raise ConfigurationError(
                "TAGLINE_DATABASE_URL is required unless in-memory backends are enabled"
            )
        return _metadata_store


def get_token_store() -> TokenStore:
    global _token_store
    with _lock:
        if _token_store is not None:
            return _token_store
        settings = get_app_settings()
        if settings.use_in_memory_backends:
            _token_store = InMemoryTokenStore()
        elif settings.redis_url:
            _token_store = RedisTokenStore(
                url=settings.redis_url,
                key_prefix=settings.redis_key_prefix,
                timeout_seconds=settings.storage_timeout_seconds,
            )
        else:
            raise ConfigurationError(
                "TAGLINE_REDIS_URL is required unless in-memory backends are enabled"
            )
        return _token_store


def get_photo_library() -> PhotoLibrary:
    global _photo_library
    with _lock:
        if _photo_library is None:
            _photo_library = PhotoLibrary(get_blob_store(), get_metadata_store())
        return _photo_library


def get_reconciler() -> Reconciler:
    global _reconciler
    with _lock:
        if _reconciler is None:
            _reconciler = Reconciler(
                get_photo_library(),
                max_image_bytes=get_app_settings().max_image_bytes,
            )
        return _reconciler


def get_auth_service() -> AuthService:
    global _auth_service
    with _lock:
        if _auth_service is None:
            _auth_service = AuthService.from_settings(
                get_app_settings(), get_token_store()
            )
        return _auth_service


def require_access_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> dict:
    """Return the claims of the caller's access token (bearer header or cookie)."""
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError()
    return auth.verify_access_token(token)
