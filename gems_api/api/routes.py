# gems_api/api/routes.py
# HTTP surface: proximity search, gem submission/moderation and session endpoints.
# Domain errors (MalformedInput, Unauthorized, UpstreamUnavailable) propagate to
# the handlers registered in main.py.

from fastapi import APIRouter, Request, HTTPException, status, Depends, Query
from fastapi.responses import Response
import logging
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field

from gems_api.core.config import settings, is_production
from gems_api.core.errors import Unauthorized
from gems_api.models.dto import (
    AuthSessionResponse,
    Coordinates,
    ErrorResponse,
    Gem,
    GemStatus,
    LoginRequest,
    NearbyGemResult,
    NearbyGemsResponse,
    Principal,
    PublicPrincipal,
    RefreshRequest,
    Role,
    RotationResult,
)
from gems_api.services.auth_service import AuthService
from gems_api.services.gem_service import GemService
from gems_api.services.ranker import format_distance

router = APIRouter()
logger = logging.getLogger(__name__)

# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_gem_service(request: Request) -> GemService:
    return request.app.state.gem_service

def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service

async def get_active_user(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    return await auth_service.require_active_user(request.state.access_token)

async def get_admin_user(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    return await auth_service.require_admin(request.state.access_token)

# ----------------------------------------------------------------------
# Cookies
# ----------------------------------------------------------------------
def set_session_cookies(response: Response, access_token: str, refresh_token: Optional[str] = None) -> None:
    response.set_cookie(
        key=settings.ACCESS_TOKEN_COOKIE,
        value=access_token,
        max_age=settings.ACCESS_TOKEN_TTL_SECONDS,
        httponly=True,
        secure=is_production(),
        samesite="lax",
        path="/",
    )
    if refresh_token:
        response.set_cookie(
            key=settings.REFRESH_TOKEN_COOKIE,
            value=refresh_token,
            max_age=settings.REFRESH_TOKEN_TTL_SECONDS,
            httponly=True,
            secure=is_production(),
            samesite="lax",
            path="/",
        )

def clear_session_cookies(response: Response) -> None:
    response.delete_cookie(settings.ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(settings.REFRESH_TOKEN_COOKIE, path="/")

def _public_principal(principal: Principal) -> PublicPrincipal:
    return PublicPrincipal(
        uid=principal.uid,
        email=principal.email,
        display_name=principal.display_name,
        role=principal.role,
        status=principal.status,
    )

def _session_response(response: Response, result: RotationResult) -> AuthSessionResponse:
    set_session_cookies(response, result.access_token, result.refresh_credential)
    return AuthSessionResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_credential,
        user=_public_principal(result.principal),
    )

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

# ----------------------------------------------------------------------
# Proximity search
# ----------------------------------------------------------------------
@router.get("/gems/nearby", response_model=NearbyGemsResponse, responses=_ERROR_RESPONSES)
async def nearby_gems(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.DEFAULT_SEARCH_RADIUS_KM, gt=0, le=settings.MAX_SEARCH_RADIUS_KM),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    gem_service: GemService = Depends(get_gem_service),
):
    """Approved gems within `radius_km` of (lat, lng), nearest first."""
    center = Coordinates(lat=lat, lng=lng)
    ranked, pagination = await gem_service.find_nearby(
        center, radius_km, page=page, page_size=page_size, min_rating=min_rating
    )

    results: List[NearbyGemResult] = []
    for entry in ranked:
        gem = entry.item
        results.append(
            NearbyGemResult(
                id=gem.id,
                name=gem.name,
                island=gem.island,
                lat=gem.coordinates.lat,
                lng=gem.coordinates.lng,
                image_url=gem.images[0] if gem.images else None,
                rating_avg=gem.rating_avg,
                review_count=gem.review_count,
                distance_km=round(entry.distance, 3),
                distance_label=format_distance(entry.distance),
            )
        )

    return NearbyGemsResponse(results=results, pagination=pagination, center=center, radius_km=radius_km)

@router.get("/gems/{gem_id}", response_model=Gem, responses={404: {"model": ErrorResponse}})
async def get_gem(gem_id: str, request: Request, gem_service: GemService = Depends(get_gem_service)):
    gem = await gem_service.get_gem(gem_id)
    # Unapproved gems are only visible to their submitter and to admins.
    payload = request.state.token_payload
    visible = gem is not None and (
        gem.status == GemStatus.APPROVED
        or (payload is not None and (payload.subject_id == gem.submitted_by or payload.role == Role.ADMIN))
    )
    if not visible:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(error="GEM_NOT_FOUND", detail="No such gem.").model_dump(),
        )
    return gem

# ----------------------------------------------------------------------
# Submission and moderation
# ----------------------------------------------------------------------
class GemSubmission(BaseModel):
    name: str = Field(..., min_length=3)
    description: str = Field(..., min_length=10)
    island: str
    coordinates: Coordinates
    images: List[str] = Field(..., min_length=1)

class GemStatusUpdate(BaseModel):
    status: GemStatus

@router.post("/gems", response_model=Gem, status_code=status.HTTP_201_CREATED, responses=_ERROR_RESPONSES)
async def submit_gem(
    data: GemSubmission,
    user: Principal = Depends(get_active_user),
    gem_service: GemService = Depends(get_gem_service),
):
    """New submissions start as pending and are invisible to proximity search."""
    gem = Gem(
        id=uuid.uuid4().hex,
        name=data.name,
        description=data.description,
        island=data.island,
        coordinates=data.coordinates,
        images=data.images,
        status=GemStatus.PENDING,
        submitted_by=user.uid,
    )
    saved = await gem_service.save_gem(gem)
    logger.info(f"Gem {saved.id} submitted by {user.uid}")
    return saved

@router.post("/admin/gems/{gem_id}/status", response_model=Gem, responses={**_ERROR_RESPONSES, 404: {"model": ErrorResponse}})
async def update_gem_status(
    gem_id: str,
    data: GemStatusUpdate,
    admin: Principal = Depends(get_admin_user),
    gem_service: GemService = Depends(get_gem_service),
):
    gem = await gem_service.get_gem(gem_id)
    if gem is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(error="GEM_NOT_FOUND", detail="No such gem.").model_dump(),
        )
    updated = await gem_service.save_gem(gem.model_copy(update={"status": data.status}))
    logger.info(f"Gem {gem_id} moved to {data.status.value} by {admin.uid}")
    return updated

# ----------------------------------------------------------------------
# Session endpoints
# ----------------------------------------------------------------------
@router.post("/auth/login", response_model=AuthSessionResponse, responses=_ERROR_RESPONSES)
async def login(data: LoginRequest, response: Response, auth_service: AuthService = Depends(get_auth_service)):
    result = await auth_service.login(data.id_token)
    return _session_response(response, result)

@router.post("/auth/refresh", response_model=AuthSessionResponse, responses=_ERROR_RESPONSES)
async def refresh(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Renew the access token. The current refresh credential comes from the body
    or the refresh cookie; passing `new_refresh_token` rotates the chain.
    """
    data = data or RefreshRequest()
    existing = data.refresh_token or request.cookies.get(settings.REFRESH_TOKEN_COOKIE)
    if not existing:
        raise Unauthorized()
    result = await auth_service.rotate_refresh(existing, data.new_refresh_token)
    return _session_response(response, result)

@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(request: Request, auth_service: AuthService = Depends(get_auth_service)):
    await auth_service.logout(request.cookies.get(settings.REFRESH_TOKEN_COOKIE))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookies(response)
    return response

@router.get("/auth/me", response_model=PublicPrincipal, responses=_ERROR_RESPONSES)
async def me(user: Principal = Depends(get_active_user)):
    return _public_principal(user)
