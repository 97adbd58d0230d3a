"""
Customer portal token and access log models
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base
from .shared.clock import utcnow


def generate_token():
    """Generate an opaque bearer token (UUIDv4)"""
    return str(uuid.uuid4())


class PortalToken(Base):
    """Scoped, time-limited, revocable access to a single quote or invoice"""

    __tablename__ = "portal_tokens"

    id = Column(String(36), primary_key=True, default=generate_token)
    token = Column(String(36), unique=True, nullable=False, index=True, default=generate_token)
    token_type = Column(String(20), nullable=False)  # quote, invoice
    resource_id = Column(String(36), nullable=False, index=True)

    # Denormalized owner references (display and scoping only)
    customer_id = Column(String(36), nullable=True)
    org_id = Column(String(36), nullable=False, index=True)

    expires_at = Column(DateTime, nullable=False)
    # One-way flag: false -> true only
    is_revoked = Column(Boolean, default=False, nullable=False)

    access_count = Column(Integer, default=0, nullable=False)
    last_accessed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    access_logs = relationship("PortalAccessLog", back_populates="token")


class PortalAccessLog(Base):
    """Append-only audit trail of portal activity"""

    __tablename__ = "portal_access_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(36), ForeignKey("portal_tokens.id"), nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    action = Column(String(50), nullable=True)  # view_quote, accept_quote, initiate_payment ...
    accessed_at = Column(DateTime, default=utcnow, nullable=False)

    token = relationship("PortalToken", back_populates="access_logs")
