"""
Email delivery through Resend
"""

import html
import logging
from typing import Optional

import resend

from .config import EMAIL_FROM_ADDRESS, EMAIL_REPLY_TO, RESEND_API_KEY

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailDeliveryError(Exception):
    """Raised when the email provider is missing or rejects a message"""

    pass


def get_sender_email(business_name: Optional[str] = None) -> str:
    """Use the business name as display name on the default sending address"""
    if not business_name:
        return EMAIL_FROM_ADDRESS
    address = EMAIL_FROM_ADDRESS.split("<")[-1].rstrip(">").strip()
    return f"{business_name} <{address}>"


async def send_email(
    to: str,
    subject: str,
    html_content: str,
    from_address: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> dict:
    """Send an email via Resend"""
    if not RESEND_API_KEY:
        logger.error("No email service configured - RESEND_API_KEY missing")
        raise EmailDeliveryError("Email service not configured")

    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": [to],
        "subject": subject,
        "html": html_content,
        "reply_to": reply_to or EMAIL_REPLY_TO,
    }

    try:
        logger.info(f"Sending email via Resend to: {to}")
        response = resend.Emails.send(email_data)
        logger.info(f"Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"Email send error to {to}: {e}")
        raise EmailDeliveryError(f"Failed to send email: {str(e)}") from e


async def send_portal_link_email(
    to: str,
    customer_name: str,
    business_name: str,
    document_label: str,
    portal_url: str,
    reply_to: Optional[str] = None,
) -> dict:
    """Send the customer a link to view a quote or invoice in the portal"""
    # Plain message body; branded templates live in the dashboard app
    html_content = (
        f"<p>Hi {html.escape(customer_name)},</p>"
        f"<p>{html.escape(business_name)} has sent you {html.escape(document_label)}.</p>"
        f'<p><a href="{html.escape(portal_url, quote=True)}">View it online</a></p>'
        f"<p>This link is personal to you. Please do not forward it.</p>"
    )
    return await send_email(
        to=to,
        subject=f"{document_label[0].upper()}{document_label[1:]} from {business_name}",
        html_content=html_content,
        from_address=get_sender_email(business_name),
        reply_to=reply_to,
    )
