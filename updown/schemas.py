from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class UserOut(BaseModel):
    id: int
    created_at: float
    updated_at: float
    model_config = {"from_attributes": True}


class SiteOut(BaseModel):
    id: int
    user_id: int
    url: str
    name: Optional[str] = None
    created_at: float
    updated_at: float
    model_config = {"from_attributes": True}


class ResponseOut(BaseModel):
    id: int
    site_id: int
    status_code: int
    created_at: float
    updated_at: float
    model_config = {"from_attributes": True}


class SiteStatus(SiteOut):
    latest: Optional[ResponseOut] = None


class SignupRequest(BaseModel):
    url: Optional[str] = None
    name: Optional[str] = None


class SignupResponse(BaseModel):
    user: UserOut
    login_code: str
    site: Optional[SiteOut] = None
    first_session: bool


class LoginRequest(BaseModel):
    login_code: str = Field(min_length=1)


class LoginResponse(BaseModel):
    user_id: int
    login_count: int
    first_session: bool


class SiteCreate(BaseModel):
    url: str
    name: Optional[str] = None


# ── Monitoring ────────────────────────────────────────────────────────────────

class ProbeResult(BaseModel):
    url: str
    status_code: int
    duration_ms: int
    error: Optional[str] = None


class SiteCheck(BaseModel):
    site_id: int
    url: str
    status_code: Optional[int] = None
    stored: bool = False
    error: Optional[str] = None


class TickReport(BaseModel):
    started_at: datetime
    duration_ms: int
    sites_checked: int
    responses_stored: int
    probe_failures: int
    errors: List[str]
    results: List[SiteCheck] = []


# ── Admin ─────────────────────────────────────────────────────────────────────

class MigrationStatus(BaseModel):
    version: int
    description: str
    applied: bool
    reversible: bool
    installed_on: Optional[float] = None
    checksum_ok: Optional[bool] = None


class HealthResponse(BaseModel):
    status: str
    database: str
    scheduler: str
    version: str
