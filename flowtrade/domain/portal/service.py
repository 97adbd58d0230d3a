"""Portal token service - Issuance, validation, revocation and access logging"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import PORTAL_BASE_URL, PORTAL_INVOICE_TOKEN_DAYS, PORTAL_QUOTE_TOKEN_DAYS
from ...email_service import EmailDeliveryError, send_portal_link_email
from ...models import User
from ...models_portal import PortalToken, generate_token
from ...shared.clock import utcnow
from ...shared.validators import validate_uuid
from .errors import (
    InvalidState,
    ResourceNotFound,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
    UpstreamFailure,
)
from .repository import RESOURCE_MODELS, PortalRepository

logger = logging.getLogger(__name__)

TOKEN_TYPES = tuple(RESOURCE_MODELS)

DEFAULT_LIFETIME_DAYS = {
    "quote": PORTAL_QUOTE_TOKEN_DAYS,
    "invoice": PORTAL_INVOICE_TOKEN_DAYS,
}


@dataclass(frozen=True)
class TokenContext:
    """What a successfully validated token authorizes"""

    token_id: str
    token: str
    token_type: str
    resource_id: str
    customer_id: Optional[str]
    org_id: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token_id: str
    token: str
    url: str
    expires_at: datetime
    reused: bool


def build_portal_url(token: str, token_type: str, base_url: str = PORTAL_BASE_URL) -> str:
    """Build the shareable customer link for a token"""
    return f"{base_url.rstrip('/')}/portal/{token_type}/{token}"


class AccessLogger:
    """Best-effort audit trail writer

    Runs on its own session so it can be scheduled after the response has been
    sent; failures are logged and discarded.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self.repo = PortalRepository()

    def log(
        self,
        token_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        action: Optional[str],
    ) -> None:
        db = None
        try:
            db = self.session_factory()
            self.repo.add_access_log(db, token_id, ip_address, user_agent, action)
        except Exception as e:
            logger.warning(f"Portal access log write failed (non-fatal) for {action}: {e}")
        finally:
            if db is not None:
                db.close()


class PortalTokenService:
    """Service layer for portal token business logic"""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        lifetime_days: Optional[dict[str, int]] = None,
        base_url: str = PORTAL_BASE_URL,
    ):
        self.db = db
        self.repo = PortalRepository()
        self.clock = clock
        self.lifetime_days = lifetime_days or DEFAULT_LIFETIME_DAYS
        self.base_url = base_url

    def _owner_org_id(self, owner: User) -> str:
        if not owner.org_id:
            raise ResourceNotFound("User organization not found")
        return owner.org_id

    def _get_owned_resource(self, resource_type: str, resource_id: str, org_id: str):
        if resource_type not in TOKEN_TYPES:
            raise InvalidState(f"Invalid resource_type. Must be one of: {', '.join(TOKEN_TYPES)}")

        resource = self.repo.get_resource_for_org(self.db, resource_type, resource_id, org_id)
        if not resource:
            raise ResourceNotFound(f"{resource_type.capitalize()} not found or access denied")
        return resource

    def _issued(self, token: PortalToken, reused: bool) -> IssuedToken:
        return IssuedToken(
            token_id=token.id,
            token=token.token,
            url=build_portal_url(token.token, token.token_type, self.base_url),
            expires_at=token.expires_at,
            reused=reused,
        )

    def _create(self, resource_type: str, resource, days: Optional[int] = None) -> PortalToken:
        days = days if days is not None else self.lifetime_days[resource_type]
        return self.repo.create_token(
            self.db,
            token=generate_token(),
            token_type=resource_type,
            resource_id=resource.id,
            customer_id=resource.customer_id,
            org_id=resource.org_id,
            expires_at=self.clock() + timedelta(days=days),
            created_at=self.clock(),
        )

    def issue(self, resource_type: str, resource_id: str, owner: User) -> IssuedToken:
        """Return the resource's valid token, or create one when none exists"""
        org_id = self._owner_org_id(owner)
        resource = self._get_owned_resource(resource_type, resource_id, org_id)

        existing = self.repo.find_active_token(self.db, resource.id, resource_type, self.clock())
        if existing:
            logger.info(f"Reusing portal token {existing.id} for {resource_type} {resource.id}")
            return self._issued(existing, reused=True)

        token = self._create(resource_type, resource)
        logger.info(
            f"Issued portal token {token.id} for {resource_type} {resource.id} "
            f"(expires {token.expires_at.isoformat()})"
        )
        return self._issued(token, reused=False)

    def validate(self, token: str, expected_type: Optional[str] = None) -> TokenContext:
        """Decide whether a bearer token grants access

        Existence is confirmed first, then expiry, then revocation; an expired
        token reports as expired even if it was also revoked.
        """
        if not validate_uuid(token):
            raise TokenNotFound()

        record = self.repo.get_token(self.db, token)
        if not record or (expected_type and record.token_type != expected_type):
            raise TokenNotFound()

        now = self.clock()
        if record.expires_at <= now:
            raise TokenExpired()
        if record.is_revoked:
            raise TokenRevoked()

        context = TokenContext(
            token_id=record.id,
            token=record.token,
            token_type=record.token_type,
            resource_id=record.resource_id,
            customer_id=record.customer_id,
            org_id=record.org_id,
            expires_at=record.expires_at,
        )

        try:
            self.repo.record_token_access(self.db, record.id, now)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to update access counters for token {record.id}: {e}")

        return context

    def get_token(self, token_id: str, owner: User) -> PortalToken:
        token = self.repo.get_token_by_id(self.db, token_id, self._owner_org_id(owner))
        if not token:
            raise ResourceNotFound("Portal token not found")
        return token

    def revoke(self, token_id: str, owner: User) -> PortalToken:
        """Revoke a single token; revoking twice is harmless"""
        token = self.get_token(token_id, owner)
        if token.is_revoked:
            return token
        logger.info(f"Revoking portal token {token.id}")
        return self.repo.revoke_token(self.db, token)

    def revoke_for_resource(self, resource_type: str, resource_id: str, owner: User) -> int:
        org_id = self._owner_org_id(owner)
        resource = self._get_owned_resource(resource_type, resource_id, org_id)
        count = self.repo.revoke_tokens_for_resource(self.db, resource.id, resource_type, org_id)
        logger.info(f"Revoked {count} portal token(s) for {resource_type} {resource.id}")
        return count

    def regenerate(self, token_id: str, owner: User, days: Optional[int] = None) -> IssuedToken:
        """Revoke a token and issue a fresh one for the same resource"""
        old = self.get_token(token_id, owner)
        resource = self._get_owned_resource(old.token_type, old.resource_id, old.org_id)

        if not old.is_revoked:
            self.repo.revoke_token(self.db, old)

        token = self._create(old.token_type, resource, days)
        logger.info(f"Regenerated portal token {old.id} -> {token.id}")
        return self._issued(token, reused=False)

    def list_for_resource(
        self, resource_type: str, resource_id: str, owner: User
    ) -> list[PortalToken]:
        """Active tokens for a resource the owner's organization holds"""
        org_id = self._owner_org_id(owner)
        resource = self._get_owned_resource(resource_type, resource_id, org_id)
        return self.repo.list_active_tokens(
            self.db, resource.id, resource_type, org_id, self.clock()
        )

    async def send_link(
        self, resource_type: str, resource_id: str, owner: User, email_sender=None
    ) -> IssuedToken:
        """Email the resource's portal link to its customer

        A draft quote or invoice is marked sent once the email has gone out.
        """
        email_sender = email_sender or send_portal_link_email
        org_id = self._owner_org_id(owner)
        resource = self._get_owned_resource(resource_type, resource_id, org_id)

        customer = self.repo.get_customer(self.db, resource.customer_id)
        if not customer or not customer.email:
            raise InvalidState(
                "Customer email address not found. Please add an email to the customer record."
            )

        issued = self.issue(resource_type, resource_id, owner)
        organization = self.repo.get_organization(self.db, org_id)
        business_name = organization.name if organization else "Your Business"
        number = resource.quote_number if resource_type == "quote" else resource.invoice_number

        try:
            await email_sender(
                to=customer.email,
                customer_name=customer.display_name,
                business_name=business_name,
                document_label=f"{resource_type} {number}",
                portal_url=issued.url,
                reply_to=organization.email if organization else None,
            )
        except EmailDeliveryError as e:
            raise UpstreamFailure(str(e)) from e

        if resource.status == "draft":
            if resource_type == "quote":
                moved = self.repo.update_quote_status_if(
                    self.db, resource.id, "draft", "sent", sent_at=self.clock()
                )
            else:
                moved = self.repo.update_invoice_status_if(
                    self.db, resource.id, "draft", "sent", updated_at=self.clock()
                )
            if not moved:
                logger.warning(
                    f"{resource_type.capitalize()} {resource.id} changed status while sending; "
                    "left as is"
                )

        logger.info(f"Portal link for {resource_type} {resource.id} sent to customer")
        return issued
