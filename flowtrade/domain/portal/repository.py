"""Portal repository - Database operations for tokens, access logs and portal resources"""

from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from ...models import ActivityLog, Customer, Invoice, Organization, Payment, Quote
from ...models_portal import PortalAccessLog, PortalToken

RESOURCE_MODELS = {"quote": Quote, "invoice": Invoice}


class PortalRepository:
    """Repository for portal database operations"""

    # Token Methods
    @staticmethod
    def get_token(db: Session, token: str) -> Optional[PortalToken]:
        """Get a token row by its bearer value"""
        return db.query(PortalToken).filter(PortalToken.token == token).first()

    @staticmethod
    def get_token_by_id(db: Session, token_id: str, org_id: str) -> Optional[PortalToken]:
        """Get a token row by ID, scoped to an organization"""
        return (
            db.query(PortalToken)
            .filter(PortalToken.id == token_id, PortalToken.org_id == org_id)
            .first()
        )

    @staticmethod
    def find_active_token(
        db: Session, resource_id: str, token_type: str, now: datetime
    ) -> Optional[PortalToken]:
        """Get the newest unexpired, unrevoked token for a resource"""
        return (
            db.query(PortalToken)
            .filter(
                PortalToken.resource_id == resource_id,
                PortalToken.token_type == token_type,
                PortalToken.is_revoked.is_(False),
                PortalToken.expires_at > now,
            )
            .order_by(PortalToken.created_at.desc())
            .first()
        )

    @staticmethod
    def list_active_tokens(
        db: Session, resource_id: str, token_type: str, org_id: str, now: datetime
    ) -> list[PortalToken]:
        return (
            db.query(PortalToken)
            .filter(
                PortalToken.resource_id == resource_id,
                PortalToken.token_type == token_type,
                PortalToken.org_id == org_id,
                PortalToken.is_revoked.is_(False),
                PortalToken.expires_at > now,
            )
            .order_by(PortalToken.created_at.desc())
            .all()
        )

    @staticmethod
    def create_token(db: Session, **token_data) -> PortalToken:
        """Create a new token with zeroed access counters"""
        token = PortalToken(access_count=0, is_revoked=False, **token_data)
        db.add(token)
        db.commit()
        db.refresh(token)
        return token

    @staticmethod
    def record_token_access(db: Session, token_id: str, now: datetime) -> None:
        """Increment access counters in a single UPDATE"""
        db.execute(
            update(PortalToken)
            .where(PortalToken.id == token_id)
            .values(access_count=PortalToken.access_count + 1, last_accessed_at=now)
        )
        db.commit()

    @staticmethod
    def revoke_token(db: Session, token: PortalToken) -> PortalToken:
        token.is_revoked = True
        db.commit()
        db.refresh(token)
        return token

    @staticmethod
    def revoke_tokens_for_resource(
        db: Session, resource_id: str, token_type: str, org_id: str
    ) -> int:
        """Revoke every token of a resource; returns the number of rows changed"""
        result = db.execute(
            update(PortalToken)
            .where(
                PortalToken.resource_id == resource_id,
                PortalToken.token_type == token_type,
                PortalToken.org_id == org_id,
                PortalToken.is_revoked.is_(False),
            )
            .values(is_revoked=True)
        )
        db.commit()
        return result.rowcount

    # Access Log Methods
    @staticmethod
    def add_access_log(
        db: Session,
        token_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        action: Optional[str],
    ) -> PortalAccessLog:
        entry = PortalAccessLog(
            token_id=token_id, ip_address=ip_address, user_agent=user_agent, action=action
        )
        db.add(entry)
        db.commit()
        return entry

    # Resource Methods
    @staticmethod
    def get_resource_for_org(db: Session, resource_type: str, resource_id: str, org_id: str):
        """Get a quote or invoice only if it belongs to the organization"""
        model = RESOURCE_MODELS[resource_type]
        return db.query(model).filter(model.id == resource_id, model.org_id == org_id).first()

    @staticmethod
    def get_quote(db: Session, quote_id: str) -> Optional[Quote]:
        return (
            db.query(Quote)
            .options(selectinload(Quote.line_items))
            .filter(Quote.id == quote_id)
            .first()
        )

    @staticmethod
    def get_invoice(db: Session, invoice_id: str) -> Optional[Invoice]:
        return (
            db.query(Invoice)
            .options(selectinload(Invoice.items))
            .filter(Invoice.id == invoice_id)
            .first()
        )

    @staticmethod
    def get_organization(db: Session, org_id: Optional[str]) -> Optional[Organization]:
        if not org_id:
            return None
        return db.query(Organization).filter(Organization.id == org_id).first()

    @staticmethod
    def get_customer(db: Session, customer_id: Optional[str]) -> Optional[Customer]:
        if not customer_id:
            return None
        return db.query(Customer).filter(Customer.id == customer_id).first()

    @staticmethod
    def update_quote_status_if(
        db: Session, quote_id: str, expected_status: str, new_status: str, **extra
    ) -> bool:
        """Compare-and-swap a quote status; False when the row moved underneath us"""
        result = db.execute(
            update(Quote)
            .where(Quote.id == quote_id, Quote.status == expected_status)
            .values(status=new_status, **extra)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    @staticmethod
    def update_invoice_status_if(
        db: Session, invoice_id: str, expected_status: str, new_status: str, **extra
    ) -> bool:
        result = db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status == expected_status)
            .values(status=new_status, **extra)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    # Payment Methods
    @staticmethod
    def get_completed_payments(db: Session, invoice_id: str) -> list[Payment]:
        return (
            db.query(Payment)
            .filter(Payment.invoice_id == invoice_id, Payment.status == "completed")
            .order_by(Payment.created_at.desc())
            .all()
        )

    @staticmethod
    def upsert_pending_payment(
        db: Session,
        org_id: str,
        invoice_id: str,
        amount: float,
        checkout_session_id: str,
        payment_method: str,
    ) -> Payment:
        """Write the local pending payment; repeating the call for a session is a no-op"""
        payment = (
            db.query(Payment).filter(Payment.checkout_session_id == checkout_session_id).first()
        )
        if payment:
            return payment

        payment = Payment(
            org_id=org_id,
            invoice_id=invoice_id,
            amount=amount,
            payment_method=payment_method,
            checkout_session_id=checkout_session_id,
            status="pending",
        )
        db.add(payment)
        db.commit()
        return payment

    # Activity Methods
    @staticmethod
    def add_activity(db: Session, **activity_data) -> ActivityLog:
        activity = ActivityLog(**activity_data)
        db.add(activity)
        db.commit()
        return activity
