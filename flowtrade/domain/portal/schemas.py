"""Portal domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ResourceType = Literal["quote", "invoice"]


class TokenIssueRequest(BaseModel):
    """Schema for issuing (or reusing) a portal link"""

    resource_type: ResourceType
    resource_id: str = Field(min_length=1)


class TokenRegenerateRequest(BaseModel):
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)


class TokenIssueResponse(BaseModel):
    token_id: str
    token: str
    portal_url: str
    expires_at: datetime
    reused: bool


class PortalTokenResponse(BaseModel):
    """Business-side view of an issued token"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    token: str
    token_type: str
    resource_id: str
    customer_id: Optional[str] = None
    expires_at: datetime
    is_revoked: bool
    access_count: int
    last_accessed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class RevokeResponse(BaseModel):
    id: str
    is_revoked: bool


class QuoteDeclineRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class PaymentSessionResponse(BaseModel):
    session_id: str
    url: str


class ValidationResponse(BaseModel):
    valid: bool
    token_type: str
    resource_id: str
    organization: dict
    customer: dict
