"""
Plain PDF export of portal documents
Branded layouts are produced by the dashboard; this is the customer download copy.
"""

import io
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...models import Customer, Invoice, Organization, Quote


def _money(value) -> str:
    return f"${(value or 0):,.2f}"


def _render(
    title: str,
    organization: Optional[Organization],
    customer: Optional[Customer],
    meta_rows: list[tuple[str, str]],
    items: list[list[str]],
    totals: list[tuple[str, str]],
    notes: Optional[str],
) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=title)
    styles = getSampleStyleSheet()
    story = []

    if organization:
        story.append(Paragraph(escape(organization.name), styles["Heading2"]))
        if organization.abn:
            story.append(Paragraph(f"ABN {escape(organization.abn)}", styles["Normal"]))
        if organization.address:
            story.append(Paragraph(escape(organization.address), styles["Normal"]))
    story.append(Spacer(1, 12))
    story.append(Paragraph(escape(title), styles["Title"]))

    if customer:
        prepared_for = f"Prepared for: {escape(customer.display_name)}"
        story.append(Paragraph(prepared_for, styles["Normal"]))
    for label, value in meta_rows:
        story.append(Paragraph(f"{escape(label)}: {escape(value)}", styles["Normal"]))
    story.append(Spacer(1, 12))

    table = Table([["Description", "Qty", "Unit price", "Amount"], *items], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 12))

    for label, value in totals:
        story.append(Paragraph(f"{escape(label)}: {escape(value)}", styles["Normal"]))
    if notes:
        story.append(Spacer(1, 12))
        story.append(Paragraph(escape(notes).replace("\n", "<br/>"), styles["Normal"]))

    doc.build(story)
    return buffer.getvalue()


def render_quote_pdf(
    quote: Quote, customer: Optional[Customer], organization: Optional[Organization]
) -> bytes:
    items = [
        [
            item.description,
            f"{(item.quantity or 0):g}",
            _money(item.unit_price),
            _money(item.line_total),
        ]
        for item in quote.line_items
    ]
    meta = [("Status", quote.status)]
    if quote.valid_until:
        meta.append(("Valid until", quote.valid_until.strftime("%d %B %Y")))
    totals = [
        ("Subtotal", _money(quote.subtotal)),
        ("GST", _money(quote.gst_amount)),
        ("Total", _money(quote.total)),
    ]
    return _render(
        f"Quote {quote.quote_number}",
        organization,
        customer,
        meta,
        items,
        totals,
        quote.customer_notes,
    )


def render_invoice_pdf(
    invoice: Invoice, customer: Optional[Customer], organization: Optional[Organization]
) -> bytes:
    items = [
        [
            item.description,
            f"{(item.quantity or 0):g}",
            _money(item.unit_price),
            _money(item.total),
        ]
        for item in invoice.items
    ]
    meta = [("Status", invoice.status)]
    if invoice.issue_date:
        meta.append(("Issued", invoice.issue_date.strftime("%d %B %Y")))
    if invoice.due_date:
        meta.append(("Due", invoice.due_date.strftime("%d %B %Y")))
    totals = [
        ("Subtotal", _money(invoice.subtotal)),
        ("GST", _money(invoice.gst)),
        ("Total", _money(invoice.total)),
        ("Amount due", _money(invoice.amount_due)),
    ]
    return _render(
        f"Tax Invoice {invoice.invoice_number}",
        organization,
        customer,
        meta,
        items,
        totals,
        invoice.notes,
    )
