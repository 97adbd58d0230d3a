"""Status transition tables for portal-facing resources"""

from .errors import InvalidState

QUOTE_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"sent", "accepted", "declined", "expired"},
    "sent": {"accepted", "declined", "expired"},
    "accepted": {"converted"},
    "declined": set(),
    "expired": set(),
    "converted": set(),
}

# Statuses from which the customer may respond to a quote
QUOTE_RESPONDABLE_STATUSES = frozenset({"draft", "sent"})

INVOICE_UNPAYABLE_STATUSES = frozenset({"paid", "cancelled", "void"})


def can_transition_quote(current: str, target: str) -> bool:
    return target in QUOTE_TRANSITIONS.get(current, set())


def ensure_quote_transition(current: str, target: str) -> None:
    """Raise InvalidState unless a quote may move from current to target"""
    if not can_transition_quote(current, target):
        verb = {"accepted": "accept", "declined": "decline"}.get(target, f"move to {target}")
        raise InvalidState(f"Cannot {verb} a quote with status: {current}")


def ensure_invoice_payable(status: str) -> None:
    if status == "paid":
        raise InvalidState("This invoice has already been paid")
    if status in INVOICE_UNPAYABLE_STATUSES:
        raise InvalidState("This invoice is no longer payable")
