"""
Pydantic schemas for the content API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    error: str
    message: str


class DiagnosticsResponse(BaseModel):
    namespace: str
    config_source: str
    config_valid: bool
    auth_state: str
    authorized: bool
    uid: Optional[str] = None
    is_anonymous: Optional[bool] = None
    error: Optional[ErrorBody] = None


class ContentListResponse(BaseModel):
    collection: str
    records: list[dict]
    error: Optional[ErrorBody] = None


class FeaturedPhotoResponse(BaseModel):
    featured: Optional[dict] = None
    others: list[dict]


class ArchiveMonth(BaseModel):
    month: str
    photos: list[dict]


class ArchiveYear(BaseModel):
    year: str
    months: list[ArchiveMonth]


class ArchiveResponse(BaseModel):
    years: list[ArchiveYear]


class SignInRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=4096)


class IdentityResponse(BaseModel):
    uid: Optional[str] = None
    email: Optional[str] = None
    is_anonymous: bool = False
    authorized: bool
    id_token: Optional[str] = None


class CreateContentResponse(BaseModel):
    collection: str
    id: str


class StatusResponse(BaseModel):
    status: Literal["ok"]
