"""Portal token management router - Authenticated business-side endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import (
    PortalTokenResponse,
    ResourceType,
    RevokeResponse,
    TokenIssueRequest,
    TokenIssueResponse,
    TokenRegenerateRequest,
)
from .service import IssuedToken, PortalTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portal/tokens", tags=["Portal Tokens"])


def get_token_service(db: Session = Depends(get_db)) -> PortalTokenService:
    """Dependency injection for PortalTokenService"""
    return PortalTokenService(db)


def _issue_response(issued: IssuedToken) -> TokenIssueResponse:
    return TokenIssueResponse(
        token_id=issued.token_id,
        token=issued.token,
        portal_url=issued.url,
        expires_at=issued.expires_at,
        reused=issued.reused,
    )


@router.post("", response_model=TokenIssueResponse)
async def issue_token(
    data: TokenIssueRequest,
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Generate a portal link for a quote or invoice, reusing a valid one if present"""
    issued = service.issue(data.resource_type, data.resource_id, current_user)
    return _issue_response(issued)


@router.get("", response_model=list[PortalTokenResponse])
async def list_tokens(
    resource_type: ResourceType = Query(...),
    resource_id: str = Query(...),
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Active portal links for a resource"""
    return service.list_for_resource(resource_type, resource_id, current_user)


@router.post("/send", response_model=TokenIssueResponse)
async def send_portal_link(
    data: TokenIssueRequest,
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Email the portal link to the resource's customer"""
    issued = await service.send_link(data.resource_type, data.resource_id, current_user)
    return _issue_response(issued)


@router.delete("/{token_id}", response_model=RevokeResponse)
async def revoke_token(
    token_id: str,
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Revoke a portal link before it expires"""
    token = service.revoke(token_id, current_user)
    return RevokeResponse(id=token.id, is_revoked=token.is_revoked)


@router.post("/{token_id}/regenerate", response_model=TokenIssueResponse)
async def regenerate_token(
    token_id: str,
    data: Optional[TokenRegenerateRequest] = Body(default=None),
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Revoke a portal link and issue a replacement"""
    days = data.expires_in_days if data else None
    issued = service.regenerate(token_id, current_user, days=days)
    return _issue_response(issued)


@router.post("/revoke-resource")
async def revoke_resource_tokens(
    data: TokenIssueRequest,
    current_user: User = Depends(get_current_user),
    service: PortalTokenService = Depends(get_token_service),
):
    """Revoke every portal link for a resource"""
    count = service.revoke_for_resource(data.resource_type, data.resource_id, current_user)
    return {"revoked": count}
