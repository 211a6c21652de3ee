"""
HTTP routes for the tagline API.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from tagline.auth import AuthService, TokenPair
from tagline.config import Settings
from tagline.dependencies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_app_settings,
    get_auth_service,
    get_blob_store,
    get_photo_library,
    get_reconciler,
    require_access_token,
)
from tagline.photos import DEFAULT_PAGE_SIZE, PhotoLibrary
from tagline.reconciler import Reconciler
from tagline.schemas import (
    DetailResponse,
    HealthResponse,
    LoginRequest,
    LogoutRequest,
    MetadataUpdateRequest,
    PhotoListResponse,
    PhotoResponse,
    RefreshRequest,
    RescanResponse,
    TokenResponse,
)
from tagline.storage import BlobStore

logger = logging.getLogger(__name__)

# Public endpoints: login/refresh/logout and health.
router = APIRouter()

# Everything touching photos requires a valid access token.
photos_router = APIRouter(dependencies=[Depends(require_access_token)])


def _set_auth_cookies(
    response: Response, settings: Settings, pair: TokenPair, *, include_refresh: bool = True
) -> None:
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        pair.access_token,
        max_age=settings.access_token_ttl_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    if include_refresh:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            pair.refresh_token,
            max_age=settings.refresh_token_ttl_days * 86400,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
        )


@router.post("/login", response_model=DetailResponse)
def login(
    payload: LoginRequest,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    pair = auth.login(payload.password)
    _set_auth_cookies(response, settings, pair)
    return DetailResponse(detail="Login successful")


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    payload: Optional[RefreshRequest] = None,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_app_settings),
):
    token = (payload.refresh_token if payload else None) or request.cookies.get(
        REFRESH_TOKEN_COOKIE
    )
    pair = auth.refresh(token)
    _set_auth_cookies(response, settings, pair)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
    )


@router.post("/logout", response_model=DetailResponse)
def logout(
    request: Request,
    response: Response,
    payload: Optional[LogoutRequest] = None,
    auth: AuthService = Depends(get_auth_service),
):
    """
    Revoke the refresh token. Access tokens already issued stay valid until
    they expire.
    """
    token = (payload.refresh_token if payload else None) or request.cookies.get(
        REFRESH_TOKEN_COOKIE
    )
    auth.logout(token)
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    response.delete_cookie(REFRESH_TOKEN_COOKIE)
    return DetailResponse(detail="Logout successful")


@router.get("/health", response_model=HealthResponse)
def health(blob_store: BlobStore = Depends(get_blob_store)):
    return HealthResponse(status="ok", storage_provider=blob_store.name)


@photos_router.get("/photos", response_model=PhotoListResponse)
def list_photos(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    offset: int = Query(0, ge=0),
    library: PhotoLibrary = Depends(get_photo_library),
):
    page = library.list_photo_page(limit, offset)
    return PhotoListResponse(
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        items=[PhotoResponse.from_record(record) for record in page.items],
    )


@photos_router.get("/photos/{photo_id}", response_model=PhotoResponse)
def get_photo(photo_id: str, library: PhotoLibrary = Depends(get_photo_library)):
    return PhotoResponse.from_record(library.get_photo(photo_id))


@photos_router.patch("/photos/{photo_id}/metadata", response_model=PhotoResponse)
def update_photo_metadata(
    photo_id: str,
    payload: MetadataUpdateRequest,
    library: PhotoLibrary = Depends(get_photo_library),
):
    record = library.set_metadata(photo_id, payload.metadata, payload.last_modified)
    return PhotoResponse.from_record(record)


@photos_router.get("/photos/{photo_id}/image")
def get_photo_image(photo_id: str, library: PhotoLibrary = Depends(get_photo_library)):
    photo = library.get_photo(photo_id)
    stream = library.fetch_blob(photo.object_key)
    media_type = mimetypes.guess_type(photo.object_key)[0] or "application/octet-stream"
    return StreamingResponse(stream, media_type=media_type)


@photos_router.post("/rescan", response_model=RescanResponse)
def rescan(reconciler: Reconciler = Depends(get_reconciler)):
    result = reconciler.run()
    return RescanResponse(**result.as_dict())
