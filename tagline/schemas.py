"""
Pydantic schemas for the tagline HTTP API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from tagline.db import PhotoRecord


class DetailResponse(BaseModel):
    detail: str


class LoginRequest(BaseModel):
    password: str = Field(..., max_length=1024)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"


class PhotoResponse(BaseModel):
    id: str
    object_key: str
    metadata: dict[str, Any]
    last_modified: datetime

    @classmethod
    def from_record(cls, record: PhotoRecord) -> "PhotoResponse":
        return cls(**record.as_dict())


class PhotoListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    items: list[PhotoResponse]


class MetadataUpdateRequest(BaseModel):
    metadata: dict[str, Any]
    last_modified: Optional[datetime] = None


class RescanResponse(BaseModel):
    imported: list[str]
    skipped: list[str]
    errors: list[str]


class HealthResponse(BaseModel):
    status: Literal["ok"]
    storage_provider: str
