"""Portal resource gateways

Each gateway validates the bearer token on every call, loads the single
resource the token authorizes and applies that resource's status guard
before reading or mutating it.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import PORTAL_BASE_URL
from ...models import Customer, Invoice, Organization, Quote
from .errors import InvalidState, ResourceNotFound, UpstreamFailure
from .payments import DodoCheckoutService, PaymentProviderError
from .pdf import render_invoice_pdf, render_quote_pdf
from .repository import PortalRepository
from .service import PortalTokenService, build_portal_url
from .transitions import (
    QUOTE_RESPONDABLE_STATUSES,
    ensure_invoice_payable,
    ensure_quote_transition,
)

logger = logging.getLogger(__name__)

# (token_id, action) -> None; schedules an access log entry
AuditHook = Callable[[str, str], None]


def _iso(value):
    return value.isoformat() if value else None


def serialize_customer(customer: Optional[Customer]) -> Optional[dict]:
    if not customer:
        return None
    return {
        "id": customer.id,
        "name": customer.display_name,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "company_name": customer.company_name,
        "email": customer.email,
    }


def serialize_organization(organization: Optional[Organization]) -> Optional[dict]:
    if not organization:
        return None
    return {
        "id": organization.id,
        "name": organization.name,
        "email": organization.email,
        "phone": organization.phone,
        "address": organization.address,
        "logo_url": organization.logo_url,
        "primary_color": organization.primary_color,
        "abn": organization.abn,
    }


class _BaseGateway:
    token_type = ""

    def __init__(
        self,
        db: Session,
        tokens: PortalTokenService,
        audit: AuditHook,
        client_ip: Optional[str] = None,
    ):
        self.db = db
        self.tokens = tokens
        self.audit = audit
        self.client_ip = client_ip
        self.repo = PortalRepository()

    def _context_parties(self, ctx):
        return (
            self.repo.get_customer(self.db, ctx.customer_id),
            self.repo.get_organization(self.db, ctx.org_id),
        )


class QuotePortalGateway(_BaseGateway):
    """Customer actions on a single quote"""

    token_type = "quote"

    def _load(self, token: str):
        ctx = self.tokens.validate(token, expected_type=self.token_type)
        quote = self.repo.get_quote(self.db, ctx.resource_id)
        if not quote:
            raise ResourceNotFound("Quote not found")
        return ctx, quote

    def view(self, token: str) -> dict:
        ctx, quote = self._load(token)
        customer, organization = self._context_parties(ctx)
        self.audit(ctx.token_id, "view_quote")

        return {
            "quote": {
                "id": quote.id,
                "quote_number": quote.quote_number,
                "status": quote.status,
                "can_respond": quote.status in QUOTE_RESPONDABLE_STATUSES,
                "issue_date": _iso(quote.created_at),
                "valid_until": _iso(quote.valid_until),
                "subtotal": quote.subtotal,
                "gst": quote.gst_amount,
                "total": quote.total,
                "notes": quote.customer_notes,
                "terms": quote.terms_and_conditions,
                "items": [
                    {
                        "id": item.id,
                        "description": item.description,
                        "quantity": item.quantity,
                        "unit": item.unit,
                        "unit_price": item.unit_price,
                        "total": item.line_total,
                    }
                    for item in quote.line_items
                ],
            },
            "customer": serialize_customer(customer),
            "organization": serialize_organization(organization),
        }

    def _respond(self, token: str, target: str, action: str, reason: Optional[str] = None):
        ctx, quote = self._load(token)
        previous = quote.status
        ensure_quote_transition(previous, target)

        moved = self.repo.update_quote_status_if(
            self.db, quote.id, previous, target, updated_at=self.tokens.clock()
        )
        if not moved:
            # Another request changed the quote between our read and write
            raise InvalidState("This quote has already been updated. Please refresh the page.")

        logger.info(f"Quote {quote.id} moved {previous} -> {target} via customer portal")
        self._record_activity(quote, previous, target, reason)
        self.audit(ctx.token_id, action)

    def _record_activity(self, quote: Quote, previous: str, target: str, reason: Optional[str]):
        description = f"Quote {quote.quote_number} {target} by customer via portal"
        if reason:
            description = f"{description}: {reason}"
        details = {
            "old_status": previous,
            "new_status": target,
            "source": "customer_portal",
            "ip_address": self.client_ip,
        }
        if target == "declined":
            details["decline_reason"] = reason

        try:
            self.repo.add_activity(
                self.db,
                org_id=quote.org_id,
                entity_type="quote",
                entity_id=quote.id,
                action="status_changed",
                description=description,
                details=details,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to write activity log for quote {quote.id}: {e}")

    def accept(self, token: str) -> dict:
        self._respond(token, "accepted", "accept_quote")
        return {"success": True, "status": "accepted", "message": "Quote accepted successfully"}

    def decline(self, token: str, reason: Optional[str] = None) -> dict:
        self._respond(token, "declined", "decline_quote", reason)
        return {"success": True, "status": "declined", "message": "Quote declined"}

    def pdf(self, token: str) -> tuple[str, bytes]:
        ctx, quote = self._load(token)
        customer, organization = self._context_parties(ctx)
        content = render_quote_pdf(quote, customer, organization)
        self.audit(ctx.token_id, "download_quote_pdf")
        return f"quote-{quote.quote_number}.pdf", content


class InvoicePortalGateway(_BaseGateway):
    """Customer actions on a single invoice"""

    token_type = "invoice"

    def __init__(
        self,
        db: Session,
        tokens: PortalTokenService,
        audit: AuditHook,
        client_ip: Optional[str] = None,
        payments: Optional[DodoCheckoutService] = None,
        base_url: str = PORTAL_BASE_URL,
    ):
        super().__init__(db, tokens, audit, client_ip)
        self.payments = payments
        self.base_url = base_url

    def _load(self, token: str):
        ctx = self.tokens.validate(token, expected_type=self.token_type)
        invoice = self.repo.get_invoice(self.db, ctx.resource_id)
        if not invoice:
            raise ResourceNotFound("Invoice not found")
        return ctx, invoice

    def view(self, token: str) -> dict:
        ctx, invoice = self._load(token)
        customer, organization = self._context_parties(ctx)
        payments = self.repo.get_completed_payments(self.db, invoice.id)
        self.audit(ctx.token_id, "view_invoice")

        return {
            "invoice": {
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "status": invoice.status,
                "issue_date": _iso(invoice.issue_date),
                "due_date": _iso(invoice.due_date),
                "subtotal": invoice.subtotal,
                "gst": invoice.gst,
                "total": invoice.total,
                "amount_paid": invoice.amount_paid,
                "amount_due": invoice.amount_due,
                "notes": invoice.notes,
                "terms": invoice.terms,
                "paid_at": _iso(invoice.paid_at),
                "items": [
                    {
                        "id": item.id,
                        "description": item.description,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "total": item.total,
                    }
                    for item in invoice.items
                ],
            },
            "customer": serialize_customer(customer),
            "organization": serialize_organization(organization),
            "payments": [
                {
                    "id": p.id,
                    "amount": p.amount,
                    "payment_method": p.payment_method,
                    "status": p.status,
                    "paid_at": _iso(p.paid_at),
                    "created_at": _iso(p.created_at),
                }
                for p in payments
            ],
        }

    async def initiate_payment(self, token: str) -> dict:
        """Start a checkout for the invoice balance

        The checkout session is created first; the local pending payment row is
        then attempted and may fail without affecting the returned URL, since
        the processor webhook reconciles payments.
        """
        ctx, invoice = self._load(token)
        ensure_invoice_payable(invoice.status)

        amount = invoice.amount_due
        if amount <= 0:
            raise InvalidState("This invoice has no balance owing")

        if not self.payments or not self.payments.is_available():
            raise UpstreamFailure("Payment processing is not configured", status_code=503)

        customer, organization = self._context_parties(ctx)
        portal_url = build_portal_url(ctx.token, self.token_type, self.base_url)

        try:
            session = await self.payments.create_checkout_session(
                amount=amount,
                customer_email=customer.email if customer else None,
                customer_name=customer.display_name if customer else None,
                return_url=f"{portal_url}?payment=success",
                metadata={
                    "invoice_id": invoice.id,
                    "invoice_number": invoice.invoice_number,
                    "org_id": invoice.org_id,
                    "portal_token_id": ctx.token_id,
                    "business_name": organization.name if organization else "FlowTrade",
                },
            )
        except PaymentProviderError as e:
            raise UpstreamFailure("Failed to create payment session") from e

        try:
            self.repo.upsert_pending_payment(
                self.db,
                org_id=invoice.org_id,
                invoice_id=invoice.id,
                amount=amount,
                checkout_session_id=session.session_id,
                payment_method="dodo",
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Pending payment write failed for invoice {invoice.id} "
                f"(session {session.session_id}); webhook will reconcile: {e}"
            )

        self.audit(ctx.token_id, "initiate_payment")
        logger.info(f"Checkout session {session.session_id} created for invoice {invoice.id}")
        return {"session_id": session.session_id, "url": session.url}

    def pdf(self, token: str) -> tuple[str, bytes]:
        ctx, invoice = self._load(token)
        customer, organization = self._context_parties(ctx)
        content = render_invoice_pdf(invoice, customer, organization)
        self.audit(ctx.token_id, "download_invoice_pdf")
        return f"invoice-{invoice.invoice_number}.pdf", content
