"""Tests for the quote and invoice portal gateways."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from flowtrade.domain.portal.errors import (
    InvalidState,
    TokenNotFound,
    TokenRevoked,
    UpstreamFailure,
)
from flowtrade.domain.portal.gateways import InvoicePortalGateway, QuotePortalGateway
from flowtrade.domain.portal.payments import PaymentProviderError
from flowtrade.domain.portal.repository import PortalRepository
from flowtrade.models import ActivityLog, Payment, Quote


@pytest.fixture
def audit_calls():
    return []


@pytest.fixture
def audit(audit_calls):
    def _audit(token_id, action):
        audit_calls.append((token_id, action))

    return _audit


@pytest.fixture
def quote_gateway(db_session, token_service, audit):
    return QuotePortalGateway(db_session, token_service, audit, client_ip="203.0.113.7")


@pytest.fixture
def invoice_gateway(db_session, token_service, audit, payment_service):
    return InvoicePortalGateway(
        db_session, token_service, audit, payments=payment_service, base_url="https://portal.test"
    )


def _status(db_session, quote_id):
    db_session.expire_all()
    return db_session.get(Quote, quote_id).status


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class TestQuoteGateway:
    def test_view(self, quote_gateway, token_service, audit_calls, org, customer, owner, make_quote):
        quote = make_quote(org, customer)
        issued = token_service.issue("quote", quote.id, owner)

        body = quote_gateway.view(issued.token)

        assert body["quote"]["quote_number"] == "Q-0001"
        assert body["quote"]["total"] == 1100.0
        assert len(body["quote"]["items"]) == 1
        assert body["customer"]["name"] == "Jane Citizen"
        assert body["organization"]["address"] == "12 Wharf St, Pyrmont, NSW, 2009"
        assert audit_calls == [(issued.token_id, "view_quote")]

    def test_invoice_token_cannot_open_quote(
        self, quote_gateway, token_service, org, customer, owner, make_invoice
    ):
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        with pytest.raises(TokenNotFound):
            quote_gateway.view(issued.token)

    def test_revoked_token_never_returns_body(
        self, quote_gateway, token_service, audit_calls, org, customer, owner, make_quote
    ):
        issued = token_service.issue("quote", make_quote(org, customer).id, owner)
        token_service.revoke(issued.token_id, owner)

        with pytest.raises(TokenRevoked):
            quote_gateway.view(issued.token)
        assert audit_calls == []

    def test_accept_then_accept_again(
        self, quote_gateway, token_service, db_session, audit_calls, org, customer, owner, make_quote
    ):
        quote = make_quote(org, customer, status="sent")
        issued = token_service.issue("quote", quote.id, owner)

        result = quote_gateway.accept(issued.token)
        assert result == {
            "success": True,
            "status": "accepted",
            "message": "Quote accepted successfully",
        }
        assert _status(db_session, quote.id) == "accepted"

        with pytest.raises(InvalidState) as exc_info:
            quote_gateway.accept(issued.token)
        assert exc_info.value.message == "Cannot accept a quote with status: accepted"
        assert [action for _, action in audit_calls] == ["accept_quote"]

    def test_accept_records_activity(
        self, quote_gateway, token_service, db_session, org, customer, owner, make_quote
    ):
        quote = make_quote(org, customer, status="draft")
        quote_gateway.accept(token_service.issue("quote", quote.id, owner).token)

        activity = db_session.query(ActivityLog).one()
        assert activity.entity_id == quote.id
        assert activity.details["old_status"] == "draft"
        assert activity.details["new_status"] == "accepted"
        assert activity.details["ip_address"] == "203.0.113.7"

    def test_decline_with_reason(
        self, quote_gateway, token_service, db_session, org, customer, owner, make_quote
    ):
        quote = make_quote(org, customer)
        issued = token_service.issue("quote", quote.id, owner)

        result = quote_gateway.decline(issued.token, reason="Went with another quote")

        assert result["status"] == "declined"
        assert _status(db_session, quote.id) == "declined"
        activity = db_session.query(ActivityLog).one()
        assert activity.details["decline_reason"] == "Went with another quote"
        assert activity.description.endswith("Went with another quote")

    @pytest.mark.parametrize("status", ["accepted", "declined", "expired", "converted"])
    def test_terminal_quotes_cannot_be_declined(
        self, quote_gateway, token_service, db_session, org, customer, owner, make_quote, status
    ):
        quote = make_quote(org, customer, status=status)
        issued = token_service.issue("quote", quote.id, owner)

        with pytest.raises(InvalidState):
            quote_gateway.decline(issued.token)
        assert _status(db_session, quote.id) == status

    def test_lost_race_is_invalid_state(
        self, quote_gateway, token_service, monkeypatch, org, customer, owner, make_quote
    ):
        issued = token_service.issue("quote", make_quote(org, customer).id, owner)
        monkeypatch.setattr(
            PortalRepository, "update_quote_status_if", staticmethod(lambda *a, **kw: False)
        )

        with pytest.raises(InvalidState) as exc_info:
            quote_gateway.accept(issued.token)
        assert "already been updated" in exc_info.value.message

    def test_activity_failure_does_not_undo_transition(
        self, quote_gateway, token_service, db_session, monkeypatch, org, customer, owner, make_quote
    ):
        quote = make_quote(org, customer)
        issued = token_service.issue("quote", quote.id, owner)

        def broken_activity(db, **data):
            raise OperationalError("INSERT INTO activity_logs", {}, Exception("disk full"))

        monkeypatch.setattr(PortalRepository, "add_activity", staticmethod(broken_activity))

        quote_gateway.accept(issued.token)

        assert _status(db_session, quote.id) == "accepted"

    def test_pdf(self, quote_gateway, token_service, audit_calls, org, customer, owner, make_quote):
        issued = token_service.issue("quote", make_quote(org, customer).id, owner)

        filename, content = quote_gateway.pdf(issued.token)

        assert filename == "quote-Q-0001.pdf"
        assert content.startswith(b"%PDF")
        assert audit_calls[-1][1] == "download_quote_pdf"


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


class TestInvoiceGateway:
    def test_view_lists_completed_payments_only(
        self, invoice_gateway, token_service, db_session, org, customer, owner, make_invoice
    ):
        invoice = make_invoice(org, customer, status="partially_paid", amount_paid=100.0)
        db_session.add_all(
            [
                Payment(org_id=org.id, invoice_id=invoice.id, amount=100.0, status="completed"),
                Payment(org_id=org.id, invoice_id=invoice.id, amount=450.0, status="pending"),
            ]
        )
        db_session.commit()
        issued = token_service.issue("invoice", invoice.id, owner)

        body = invoice_gateway.view(issued.token)

        assert body["invoice"]["amount_due"] == 450.0
        assert [p["amount"] for p in body["payments"]] == [100.0]

    @pytest.mark.asyncio
    async def test_initiate_payment(
        self,
        invoice_gateway,
        token_service,
        payment_service,
        db_session,
        audit_calls,
        org,
        customer,
        owner,
        make_invoice,
    ):
        invoice = make_invoice(org, customer)
        issued = token_service.issue("invoice", invoice.id, owner)

        result = await invoice_gateway.initiate_payment(issued.token)

        assert result == {
            "session_id": "cs_test_123",
            "url": "https://test.checkout.dodopayments.com/cs_test_123",
        }
        kwargs = payment_service.create_checkout_session.await_args.kwargs
        assert kwargs["amount"] == 550.0
        assert kwargs["customer_email"] == "jane@example.com"
        assert kwargs["return_url"] == f"{issued.url}?payment=success"
        assert kwargs["metadata"]["invoice_id"] == invoice.id

        payment = db_session.query(Payment).one()
        assert payment.status == "pending"
        assert payment.amount == 550.0
        assert payment.checkout_session_id == "cs_test_123"
        assert audit_calls[-1] == (issued.token_id, "initiate_payment")

    @pytest.mark.asyncio
    async def test_repeat_session_writes_one_row(
        self, invoice_gateway, token_service, db_session, org, customer, owner, make_invoice
    ):
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        await invoice_gateway.initiate_payment(issued.token)
        await invoice_gateway.initiate_payment(issued.token)

        assert db_session.query(Payment).count() == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,message",
        [
            ("paid", "This invoice has already been paid"),
            ("cancelled", "This invoice is no longer payable"),
            ("void", "This invoice is no longer payable"),
        ],
    )
    async def test_unpayable_status(
        self,
        invoice_gateway,
        token_service,
        payment_service,
        org,
        customer,
        owner,
        make_invoice,
        status,
        message,
    ):
        issued = token_service.issue("invoice", make_invoice(org, customer, status=status).id, owner)

        with pytest.raises(InvalidState) as exc_info:
            await invoice_gateway.initiate_payment(issued.token)

        assert exc_info.value.message == message
        payment_service.create_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_balance_owing(
        self, invoice_gateway, token_service, payment_service, org, customer, owner, make_invoice
    ):
        invoice = make_invoice(org, customer, amount_paid=550.0)
        issued = token_service.issue("invoice", invoice.id, owner)

        with pytest.raises(InvalidState):
            await invoice_gateway.initiate_payment(issued.token)
        payment_service.create_checkout_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payments_not_configured(
        self, db_session, token_service, audit, org, customer, owner, make_invoice
    ):
        gateway = InvoicePortalGateway(db_session, token_service, audit, payments=None)
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        with pytest.raises(UpstreamFailure) as exc_info:
            await gateway.initiate_payment(issued.token)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_provider_failure_writes_nothing(
        self,
        invoice_gateway,
        token_service,
        payment_service,
        db_session,
        audit_calls,
        org,
        customer,
        owner,
        make_invoice,
    ):
        payment_service.create_checkout_session = AsyncMock(
            side_effect=PaymentProviderError("card network down")
        )
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        with pytest.raises(UpstreamFailure) as exc_info:
            await invoice_gateway.initiate_payment(issued.token)

        assert exc_info.value.status_code == 502
        assert db_session.query(Payment).count() == 0
        assert audit_calls == []

    @pytest.mark.asyncio
    async def test_payment_row_failure_still_returns_url(
        self, invoice_gateway, token_service, monkeypatch, org, customer, owner, make_invoice
    ):
        def broken_upsert(db, **data):
            raise OperationalError("INSERT INTO payments", {}, Exception("database is locked"))

        monkeypatch.setattr(PortalRepository, "upsert_pending_payment", staticmethod(broken_upsert))
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        result = await invoice_gateway.initiate_payment(issued.token)

        assert result["url"] == "https://test.checkout.dodopayments.com/cs_test_123"

    def test_pdf(self, invoice_gateway, token_service, org, customer, owner, make_invoice):
        issued = token_service.issue("invoice", make_invoice(org, customer).id, owner)

        filename, content = invoice_gateway.pdf(issued.token)

        assert filename == "invoice-INV-0001.pdf"
        assert content.startswith(b"%PDF")
