"""
Application models owned by the FlowTrade dashboard.

The portal only reads these rows and applies guarded status changes to them;
creation and editing happen in the main application.
"""

import uuid

from sqlalchemy import JSON, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a UUID primary key"""
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    suburb = Column(String(100), nullable=True)
    state = Column(String(10), nullable=True)  # NSW, VIC, QLD ...
    postcode = Column(String(10), nullable=True)
    logo_url = Column(String(500), nullable=True)
    primary_color = Column(String(7), nullable=True)  # e.g., #RRGGBB
    abn = Column(String(20), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    users = relationship("User", back_populates="organization")

    @property
    def address(self):
        parts = [self.address_line1, self.address_line2, self.suburb, self.state, self.postcode]
        return ", ".join(p for p in parts if p) or None


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    organization = relationship("Organization", back_populates="users")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_id)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    company_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    @property
    def display_name(self):
        full_name = " ".join(p for p in [self.first_name, self.last_name] if p)
        return self.company_name or full_name or "Customer"


class Quote(Base):
    __tablename__ = "quotes"

    id = Column(String(36), primary_key=True, default=generate_id)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False)
    quote_number = Column(String(50), nullable=False)
    # draft, sent, accepted, declined, expired, converted
    status = Column(String(20), nullable=False, default="draft")
    job_description = Column(Text, nullable=True)
    valid_until = Column(Date, nullable=True)
    subtotal = Column(Float, default=0)
    gst_amount = Column(Float, default=0)
    total = Column(Float, default=0)
    customer_notes = Column(Text, nullable=True)
    terms_and_conditions = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    line_items = relationship(
        "QuoteLineItem", back_populates="quote", order_by="QuoteLineItem.sort_order"
    )


class QuoteLineItem(Base):
    __tablename__ = "quote_line_items"

    id = Column(String(36), primary_key=True, default=generate_id)
    quote_id = Column(String(36), ForeignKey("quotes.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float, default=1)
    unit = Column(String(20), nullable=True)
    unit_price = Column(Float, default=0)
    line_total = Column(Float, default=0)
    sort_order = Column(Integer, default=0)

    quote = relationship("Quote", back_populates="line_items")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_id)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False)
    invoice_number = Column(String(50), nullable=False)
    # draft, sent, partially_paid, overdue, paid, cancelled, void
    status = Column(String(20), nullable=False, default="draft")
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    subtotal = Column(Float, default=0)
    gst = Column(Float, default=0)
    total = Column(Float, default=0)
    amount_paid = Column(Float, default=0)
    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer")
    organization = relationship("Organization")
    items = relationship("InvoiceItem", back_populates="invoice", order_by="InvoiceItem.sort_order")

    @property
    def amount_due(self):
        return round((self.total or 0) - (self.amount_paid or 0), 2)


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(String(36), primary_key=True, default=generate_id)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float, default=1)
    unit_price = Column(Float, default=0)
    total = Column(Float, default=0)
    sort_order = Column(Integer, default=0)

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    """Payments against an invoice; pending rows are reconciled by the processor webhook"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_id)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    payment_method = Column(String(50), nullable=True)
    checkout_session_id = Column(String(255), unique=True, nullable=True, index=True)
    processor_payment_id = Column(String(255), nullable=True)
    status = Column(String(20), default="pending")  # pending, completed, failed, refunded
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())


class ActivityLog(Base):
    """Business-side activity timeline"""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    org_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(36), nullable=False)
    action = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
