"""Customer portal router - Public endpoints authorized by a portal token"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...config import PORTAL_RATE_LIMIT, PORTAL_RATE_WINDOW_SECONDS
from ...database import get_db
from ...rate_limiter import create_rate_limiter, get_client_ip
from .gateways import (
    AuditHook,
    InvoicePortalGateway,
    QuotePortalGateway,
    serialize_customer,
    serialize_organization,
)
from .payments import DodoCheckoutService
from .repository import PortalRepository
from .schemas import PaymentSessionResponse, QuoteDeclineRequest, ValidationResponse
from .service import AccessLogger, PortalTokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portal", tags=["Customer Portal"])

portal_rate_limit = create_rate_limiter(
    PORTAL_RATE_LIMIT, PORTAL_RATE_WINDOW_SECONDS, key_prefix="portal"
)
pay_rate_limit = create_rate_limiter(
    PORTAL_RATE_LIMIT, PORTAL_RATE_WINDOW_SECONDS, key_prefix="pay"
)
pdf_rate_limit = create_rate_limiter(
    PORTAL_RATE_LIMIT, PORTAL_RATE_WINDOW_SECONDS, key_prefix="pdf"
)


def get_token_service(db: Session = Depends(get_db)) -> PortalTokenService:
    """Dependency injection for PortalTokenService"""
    return PortalTokenService(db)


def get_access_logger(request: Request) -> AccessLogger:
    return request.app.state.access_logger


def get_payment_service(request: Request) -> Optional[DodoCheckoutService]:
    return getattr(request.app.state, "payment_service", None)


def get_audit_hook(
    request: Request,
    background_tasks: BackgroundTasks,
    access_logger: AccessLogger = Depends(get_access_logger),
) -> AuditHook:
    """Schedule access log writes to run after the response is sent"""
    ip_address = get_client_ip(request)
    user_agent = request.headers.get("user-agent")

    def audit(token_id: str, action: str) -> None:
        background_tasks.add_task(access_logger.log, token_id, ip_address, user_agent, action)

    return audit


def get_quote_gateway(
    request: Request,
    db: Session = Depends(get_db),
    tokens: PortalTokenService = Depends(get_token_service),
    audit: AuditHook = Depends(get_audit_hook),
) -> QuotePortalGateway:
    return QuotePortalGateway(db, tokens, audit, client_ip=get_client_ip(request))


def get_invoice_gateway(
    request: Request,
    db: Session = Depends(get_db),
    tokens: PortalTokenService = Depends(get_token_service),
    audit: AuditHook = Depends(get_audit_hook),
    payments: Optional[DodoCheckoutService] = Depends(get_payment_service),
) -> InvoicePortalGateway:
    return InvoicePortalGateway(
        db, tokens, audit, client_ip=get_client_ip(request), payments=payments
    )


def _pdf_response(filename: str, content: bytes) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ============================================================================
# TOKEN VALIDATION
# ============================================================================


@router.get(
    "/validate/{token}",
    response_model=ValidationResponse,
    dependencies=[Depends(portal_rate_limit)],
)
async def validate_token(
    token: str,
    db: Session = Depends(get_db),
    tokens: PortalTokenService = Depends(get_token_service),
    audit: AuditHook = Depends(get_audit_hook),
):
    """Check a portal link and return the context the portal page needs"""
    ctx = tokens.validate(token)

    repo = PortalRepository()
    organization = serialize_organization(repo.get_organization(db, ctx.org_id))
    customer = serialize_customer(repo.get_customer(db, ctx.customer_id))
    audit(ctx.token_id, "validate")

    return ValidationResponse(
        valid=True,
        token_type=ctx.token_type,
        resource_id=ctx.resource_id,
        organization=organization or {"name": "Unknown"},
        customer=customer or {"name": "Customer", "email": ""},
    )


# ============================================================================
# QUOTES
# ============================================================================


@router.get("/quotes/{token}", dependencies=[Depends(portal_rate_limit)])
async def view_quote(token: str, gateway: QuotePortalGateway = Depends(get_quote_gateway)):
    """Quote with line items, customer and business details"""
    return gateway.view(token)


@router.post("/quotes/{token}/accept")
async def accept_quote(token: str, gateway: QuotePortalGateway = Depends(get_quote_gateway)):
    """Customer accepts a draft or sent quote"""
    return gateway.accept(token)


@router.post("/quotes/{token}/decline")
async def decline_quote(
    token: str,
    data: Optional[QuoteDeclineRequest] = Body(default=None),
    gateway: QuotePortalGateway = Depends(get_quote_gateway),
):
    """Customer declines a draft or sent quote, optionally with a reason"""
    return gateway.decline(token, reason=data.reason if data else None)


@router.get("/quotes/{token}/pdf", dependencies=[Depends(pdf_rate_limit)])
async def download_quote_pdf(
    token: str, gateway: QuotePortalGateway = Depends(get_quote_gateway)
):
    # Rendering is CPU-bound; keep it off the event loop
    filename, content = await asyncio.to_thread(gateway.pdf, token)
    return _pdf_response(filename, content)


# ============================================================================
# INVOICES
# ============================================================================


@router.get("/invoices/{token}", dependencies=[Depends(portal_rate_limit)])
async def view_invoice(token: str, gateway: InvoicePortalGateway = Depends(get_invoice_gateway)):
    """Invoice with items, customer, business details and completed payments"""
    return gateway.view(token)


@router.get("/invoices/{token}/pdf", dependencies=[Depends(pdf_rate_limit)])
async def download_invoice_pdf(
    token: str, gateway: InvoicePortalGateway = Depends(get_invoice_gateway)
):
    filename, content = await asyncio.to_thread(gateway.pdf, token)
    return _pdf_response(filename, content)


@router.post(
    "/invoice-pay/{token}",
    response_model=PaymentSessionResponse,
    dependencies=[Depends(pay_rate_limit)],
)
async def initiate_invoice_payment(
    token: str, gateway: InvoicePortalGateway = Depends(get_invoice_gateway)
):
    """Create a checkout session for the invoice balance"""
    return await gateway.initiate_payment(token)
