"""Shared validation utilities"""

import ipaddress
import uuid
from typing import Optional


def validate_uuid(value: Optional[str]) -> bool:
    """Validate UUID format"""
    try:
        uuid.UUID(str(value))
        return True
    except (ValueError, AttributeError, TypeError):
        return False


def is_ip_address(value: Optional[str]) -> bool:
    """Check that a header value is a literal IPv4/IPv6 address"""
    if not value:
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False
