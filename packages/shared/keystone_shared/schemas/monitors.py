"""Uptime monitor record schemas. Check execution is not part of this service."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, HttpUrl


class HttpMethod(str, Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class CheckStatus(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


class MonitorCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    url: HttpUrl
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    expected_status: int = Field(default=200, ge=100, le=599)
    timeout: int = Field(default=30, ge=1, le=120, description="Seconds")
    interval: int = Field(default=300, ge=30, le=86400, description="Seconds between checks")
    is_active: bool = True


class MonitorUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[HttpUrl] = None
    method: Optional[HttpMethod] = None
    headers: Optional[dict[str, str]] = None
    expected_status: Optional[int] = Field(None, ge=100, le=599)
    timeout: Optional[int] = Field(None, ge=1, le=120)
    interval: Optional[int] = Field(None, ge=30, le=86400)
    is_active: Optional[bool] = None


class MonitorResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    url: str
    method: HttpMethod
    headers: dict[str, str]
    expected_status: int
    timeout: int
    interval: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MonitorListResponse(BaseModel):
    data: List[MonitorResponse]
