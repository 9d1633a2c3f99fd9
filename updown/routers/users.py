from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends

from updown.auth import require_api_key
from updown.dependencies import get_gateway
from updown.exceptions import EmptyUrlError, NotFoundError
from updown.gateway import Database
from updown.schemas import (
    LoginRequest, LoginResponse, ResponseOut, SignupRequest,
    SignupResponse, SiteCreate, SiteOut, SiteStatus, UserOut,
)

router = APIRouter(prefix="/api/v1", tags=["users"], dependencies=[Depends(require_api_key)])


@router.post("/users", response_model=SignupResponse, status_code=201)
async def signup(body: SignupRequest, db: Database = Depends(get_gateway)):
    """Create an account, count it as the first login, and register its first site if given."""
    if body.url is not None and not body.url.strip():
        raise EmptyUrlError("Site url must not be empty")

    user = await db.create_user()
    await db.create_login(user.id)
    site = await db.create_site(user.id, body.url, body.name) if body.url else None
    count = await db.login_count(user.id)
    return SignupResponse(
        user=UserOut.model_validate(user),
        login_code=user.login_code,
        site=SiteOut.model_validate(site) if site else None,
        first_session=count == 1,
    )


@router.post("/logins", response_model=LoginResponse)
async def login(body: LoginRequest, db: Database = Depends(get_gateway)):
    user = await db.user_by_login_code(body.login_code.strip())
    await db.create_login(user.id)
    count = await db.login_count(user.id)
    return LoginResponse(user_id=user.id, login_count=count, first_session=count == 1)


@router.get("/users/{user_id}", response_model=UserOut)
async def get_user(user_id: int, db: Database = Depends(get_gateway)):
    return UserOut.model_validate(await db.user_by_id(user_id))


@router.get("/users/{user_id}/sites", response_model=List[SiteStatus])
async def list_sites(user_id: int, db: Database = Depends(get_gateway)):
    await db.user_by_id(user_id)
    out = []
    for site in await db.sites_by_user(user_id):
        try:
            latest = ResponseOut.model_validate(await db.latest_response_for_site(site.id))
        except NotFoundError:
            latest = None  # not probed yet
        out.append(SiteStatus(**SiteOut.model_validate(site).model_dump(), latest=latest))
    return out


@router.post("/users/{user_id}/sites", response_model=SiteOut, status_code=201)
async def create_site(user_id: int, body: SiteCreate, db: Database = Depends(get_gateway)):
    await db.user_by_id(user_id)
    return SiteOut.model_validate(await db.create_site(user_id, body.url, body.name))


@router.get("/users/{user_id}/sites/{site_id}/responses", response_model=List[ResponseOut])
async def site_responses(user_id: int, site_id: int, db: Database = Depends(get_gateway)):
    if not any(site.id == site_id for site in await db.sites_by_user(user_id)):
        raise NotFoundError(f"Site {site_id} not found", {"site_id": site_id})
    return [ResponseOut.model_validate(r) for r in await db.responses_for_site(site_id)]
