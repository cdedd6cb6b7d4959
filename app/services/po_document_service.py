from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from app.errors import ValidationError
from app.services.records import OrderRecord, ProductRecord, QuoteRecord, RFQRecord, UserRecord


CENT = Decimal('0.01')
PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
BRAND = HexColor('#1B2A4A')
MUTED = HexColor('#64748B')

TERMS = (
    '1. Payment is due within 30 days of invoice date.',
    '2. This PO is subject to MWRD standard terms and conditions.',
    '3. Please sign, stamp, and return a copy of this PO to confirm the order.',
)


@dataclass(frozen=True)
class PurchaseOrderLine:
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PurchaseOrderDocument:
    po_number: str
    issued_on: datetime
    order: OrderRecord
    rfq: RFQRecord
    quote: QuoteRecord
    client: UserRecord
    lines: tuple[PurchaseOrderLine, ...]
    subtotal: Decimal
    vat_rate_percent: Decimal
    vat: Decimal
    total: Decimal
    currency: str


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def po_number_for(order_id: str) -> str:
    return f'PO-{order_id[:8].upper()}'


def build_purchase_order(
    *,
    order: OrderRecord,
    quote: QuoteRecord,
    rfq: RFQRecord,
    products: dict[str, ProductRecord],
    client: UserRecord,
    vat_rate_percent: Decimal,
    issued_on: datetime | None = None,
) -> PurchaseOrderDocument:
    total_quantity = sum(item.quantity for item in rfq.items)
    if total_quantity <= 0:
        raise ValidationError('Cannot generate PO: total quantity must be greater than zero')

    # The quote carries one price for the whole RFQ; spread it evenly per unit.
    unit_price = quote.final_price / Decimal(total_quantity)
    lines = []
    for item in rfq.items:
        product = products.get(item.product_id)
        name = product.name if product else item.product_id
        lines.append(
            PurchaseOrderLine(
                description=name[:40],
                quantity=item.quantity,
                unit_price=_money(unit_price),
                line_total=_money(unit_price * item.quantity),
            )
        )
    subtotal = _money(sum((line.line_total for line in lines), Decimal('0')))
    vat = _money(subtotal * vat_rate_percent / Decimal('100'))
    return PurchaseOrderDocument(
        po_number=po_number_for(order.id),
        issued_on=issued_on or datetime.now(tz=timezone.utc),
        order=order,
        rfq=rfq,
        quote=quote,
        client=client,
        lines=tuple(lines),
        subtotal=subtotal,
        vat_rate_percent=vat_rate_percent,
        vat=vat,
        total=subtotal + vat,
        currency=order.currency,
    )


def render_purchase_order_pdf(document: PurchaseOrderDocument) -> bytes:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle(f'Purchase Order {document.po_number}')
    pdf.setAuthor('MWRD')

    top = PAGE_HEIGHT - MARGIN
    pdf.setFillColor(BRAND)
    pdf.setFont('Helvetica-Bold', 20)
    pdf.drawString(MARGIN, top, 'MWRD')
    pdf.setFont('Helvetica', 9)
    pdf.setFillColor(MUTED)
    pdf.drawString(MARGIN, top - 14, 'Managed B2B Marketplace')
    pdf.setFillColor(BRAND)
    pdf.setFont('Helvetica-Bold', 12)
    pdf.drawRightString(PAGE_WIDTH - MARGIN, top, document.po_number)
    pdf.setFont('Helvetica', 9)
    pdf.drawRightString(PAGE_WIDTH - MARGIN, top - 14, f'Date: {document.issued_on.date().isoformat()}')

    y = top - 50
    pdf.setFont('Helvetica-Bold', 16)
    pdf.drawCentredString(PAGE_WIDTH / 2, y, 'PURCHASE ORDER')

    y -= 30
    pdf.setFont('Helvetica-Bold', 10)
    pdf.drawString(MARGIN, y, 'BILL TO:')
    pdf.drawString(PAGE_WIDTH / 2, y, 'ORDER DETAILS:')
    pdf.setFont('Helvetica', 9)
    pdf.drawString(MARGIN, y - 14, document.client.company_name or document.client.name)
    pdf.drawString(MARGIN, y - 26, document.client.email)
    pdf.drawString(PAGE_WIDTH / 2, y - 14, f'Order ID: {document.order.id[:12]}')
    pdf.drawString(PAGE_WIDTH / 2, y - 26, f'RFQ ID: {document.rfq.id[:12]}')
    pdf.drawString(PAGE_WIDTH / 2, y - 38, f'Quote ID: {document.quote.id[:12]}')

    y -= 70
    columns = (MARGIN, MARGIN + 90 * mm, MARGIN + 110 * mm, PAGE_WIDTH - MARGIN)
    pdf.setFont('Helvetica-Bold', 9)
    pdf.drawString(columns[0], y, 'Item')
    pdf.drawString(columns[1], y, 'Qty')
    pdf.drawString(columns[2], y, 'Unit Price')
    pdf.drawRightString(columns[3], y, 'Total')
    pdf.line(MARGIN, y - 4, PAGE_WIDTH - MARGIN, y - 4)

    pdf.setFont('Helvetica', 9)
    currency = document.currency
    for line in document.lines:
        y -= 16
        if y < MARGIN + 160:
            pdf.showPage()
            pdf.setFont('Helvetica', 9)
            y = PAGE_HEIGHT - MARGIN
        pdf.drawString(columns[0], y, line.description)
        pdf.drawString(columns[1], y, str(line.quantity))
        pdf.drawString(columns[2], y, f'{currency} {line.unit_price}')
        pdf.drawRightString(columns[3], y, f'{currency} {line.line_total}')

    y -= 28
    totals = (
        ('Subtotal:', document.subtotal),
        (f'VAT ({document.vat_rate_percent}%):', document.vat),
        ('TOTAL:', document.total),
    )
    for label, amount in totals:
        pdf.setFont('Helvetica-Bold' if label == 'TOTAL:' else 'Helvetica', 10)
        pdf.drawString(columns[2], y, label)
        pdf.drawRightString(columns[3], y, f'{currency} {amount}')
        y -= 14

    y -= 20
    pdf.setFont('Helvetica-Bold', 9)
    pdf.drawString(MARGIN, y, 'Terms & Conditions:')
    pdf.setFont('Helvetica', 8)
    for term in TERMS:
        y -= 12
        pdf.drawString(MARGIN, y, term)

    y -= 40
    pdf.setFont('Helvetica', 9)
    pdf.drawString(MARGIN, y, 'Client Signature & Stamp:')
    pdf.drawRightString(PAGE_WIDTH - MARGIN, y, 'Authorized by MWRD:')

    pdf.setFillColor(MUTED)
    pdf.setFont('Helvetica', 7)
    pdf.drawCentredString(PAGE_WIDTH / 2, MARGIN / 2, 'MWRD - Managed B2B Marketplace | www.mwrd.com | support@mwrd.com')

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()
