from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from app.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.models import OrderDocumentType, OrderStatus
from app.services.document_storage import DocumentStorage
from app.services.inventory_service import apply_stock_delta
from app.services.order_status_service import ensure_order_transition
from app.services.po_document_service import build_purchase_order, render_purchase_order_pdf
from app.services.records import OrderDocumentRecord, OrderRecord
from app.services.repository import MarketplaceRepository, MarketplaceUnit

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = 'application/pdf'
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


class POFlowStep(str, Enum):
    CONFIRMATION = 'confirmation'
    DOWNLOAD = 'download'
    UPLOAD = 'upload'
    PENDING = 'pending'


@dataclass(frozen=True)
class GeneratedPurchaseOrder:
    order: OrderRecord
    document: OrderDocumentRecord
    content: bytes
    file_name: str


@dataclass(frozen=True)
class UploadedPurchaseOrder:
    order: OrderRecord
    document: OrderDocumentRecord


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _timestamp_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def derive_step(order: OrderRecord) -> POFlowStep:
    if order.client_po_uploaded:
        return POFlowStep.PENDING
    if order.system_po_generated:
        return POFlowStep.UPLOAD
    if order.client_po_confirmation_submitted_at or (
        order.not_test_order_confirmed_at and order.payment_terms_confirmed_at
    ):
        return POFlowStep.DOWNLOAD
    return POFlowStep.CONFIRMATION


def validate_po_upload(*, content_type: str | None, size: int, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
    if content_type != PDF_CONTENT_TYPE:
        raise ValidationError('Only PDF files are accepted for purchase orders')
    if size <= 0:
        raise ValidationError('Uploaded file is empty')
    if size > max_bytes:
        raise ValidationError(f'File is too large; the limit is {max_bytes // (1024 * 1024)} MB')


def _client_order(uow: MarketplaceUnit, order_id: str, client_id: str) -> OrderRecord:
    order = uow.get_order(order_id, for_update=True)
    if order is None:
        raise NotFoundError('Order', order_id)
    if order.client_id != client_id:
        raise PermissionDeniedError('You can only manage purchase orders for your own orders')
    return order


def _require_step(order: OrderRecord, *allowed: POFlowStep) -> None:
    step = derive_step(order)
    if step not in allowed:
        raise ValidationError(f'Order {order.id} is at PO step {step.value}')


def submit_po_confirmation(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    client_id: str,
    not_test_order: bool,
    payment_terms_accepted: bool,
) -> OrderRecord:
    if not (not_test_order and payment_terms_accepted):
        raise ValidationError('Both confirmations are required before submitting the purchase order')

    with repository.unit_of_work() as uow:
        order = _client_order(uow, order_id, client_id)
        _require_step(order, POFlowStep.CONFIRMATION)
        ensure_order_transition(order.status, OrderStatus.PENDING_ADMIN_CONFIRMATION)
        now = _now()
        updated = uow.save_order(
            replace(
                order,
                status=OrderStatus.PENDING_ADMIN_CONFIRMATION,
                not_test_order_confirmed_at=now,
                payment_terms_confirmed_at=now,
                client_po_confirmation_submitted_at=now,
                updated_at=now,
            )
        )
    logger.info('PO confirmation submitted for order %s', order_id)
    return updated


def generate_system_po(
    repository: MarketplaceRepository,
    storage: DocumentStorage,
    *,
    order_id: str,
    client_id: str,
    vat_rate_percent: Decimal,
) -> GeneratedPurchaseOrder:
    with repository.unit_of_work() as uow:
        order = _client_order(uow, order_id, client_id)
        _require_step(order, POFlowStep.DOWNLOAD, POFlowStep.UPLOAD)
        if not order.quote_id:
            raise ValidationError(f'Order {order.id} has no accepted quote')
        quote = uow.get_quote(order.quote_id)
        rfq = uow.get_rfq(quote.rfq_id) if quote else None
        client = uow.get_user(order.client_id)
        if quote is None or rfq is None or client is None:
            raise NotFoundError('Order details', order.id)
        products = {}
        for item in rfq.items:
            product = uow.get_product(item.product_id)
            if product is not None:
                products[product.id] = product

    now = _now()
    document = build_purchase_order(
        order=order,
        quote=quote,
        rfq=rfq,
        products=products,
        client=client,
        vat_rate_percent=vat_rate_percent,
        issued_on=now,
    )
    content = render_purchase_order_pdf(document)
    file_name = f'system_po_{_timestamp_ms(now)}.pdf'
    file_ref = storage.put(f'{order.id}/{file_name}', content, content_type=PDF_CONTENT_TYPE)

    with repository.unit_of_work() as uow:
        current = _client_order(uow, order_id, client_id)
        record = uow.add_order_document(
            OrderDocumentRecord(
                id=str(uuid4()),
                order_id=order.id,
                document_type=OrderDocumentType.SYSTEM_PO,
                file_ref=file_ref,
                file_name=f'{document.po_number}.pdf',
                uploaded_by=client_id,
                created_at=now,
            )
        )
        updated = current
        if not current.system_po_generated:
            updated = uow.save_order(replace(current, system_po_generated=True, updated_at=now))

    logger.info('System PO %s generated for order %s', document.po_number, order_id)
    return GeneratedPurchaseOrder(order=updated, document=record, content=content, file_name=record.file_name)


def _discard_upload(storage: DocumentStorage, file_ref: str) -> None:
    try:
        storage.delete(file_ref)
    except Exception:
        logger.exception('Could not remove orphaned upload %s', file_ref)


def upload_client_po(
    repository: MarketplaceRepository,
    storage: DocumentStorage,
    *,
    order_id: str,
    client_id: str,
    file_name: str,
    content_type: str | None,
    content: bytes,
    max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
) -> UploadedPurchaseOrder:
    validate_po_upload(content_type=content_type, size=len(content), max_bytes=max_bytes)

    with repository.unit_of_work() as uow:
        order = _client_order(uow, order_id, client_id)
        _require_step(order, POFlowStep.UPLOAD)
        ensure_order_transition(order.status, OrderStatus.PENDING_ADMIN_CONFIRMATION)

    now = _now()
    file_ref = storage.put(f'{order_id}/client_po_{_timestamp_ms(now)}.pdf', content, content_type=PDF_CONTENT_TYPE)

    try:
        with repository.unit_of_work() as uow:
            order = _client_order(uow, order_id, client_id)
            _require_step(order, POFlowStep.UPLOAD)
            ensure_order_transition(order.status, OrderStatus.PENDING_ADMIN_CONFIRMATION)
            record = uow.add_order_document(
                OrderDocumentRecord(
                    id=str(uuid4()),
                    order_id=order.id,
                    document_type=OrderDocumentType.CLIENT_PO,
                    file_ref=file_ref,
                    file_name=(file_name or '').strip() or 'client_po.pdf',
                    uploaded_by=client_id,
                    created_at=now,
                )
            )
            updated = uow.save_order(
                replace(
                    order,
                    status=OrderStatus.PENDING_ADMIN_CONFIRMATION,
                    client_po_uploaded=True,
                    updated_at=now,
                )
            )
    except Exception:
        _discard_upload(storage, file_ref)
        raise

    logger.info('Client PO uploaded for order %s', order_id)
    return UploadedPurchaseOrder(order=updated, document=record)


def verify_client_po(
    repository: MarketplaceRepository,
    *,
    order_id: str,
    admin_id: str,
) -> OrderRecord:
    """Accept the client's signed PO, reserve stock and open the order for payment."""
    with repository.unit_of_work() as uow:
        order = uow.get_order(order_id, for_update=True)
        if order is None:
            raise NotFoundError('Order', order_id)
        if not order.client_po_uploaded:
            raise ValidationError(f'Order {order.id} has no uploaded client PO')
        ensure_order_transition(order.status, OrderStatus.PENDING_PAYMENT)
        if order.status != OrderStatus.PENDING_ADMIN_CONFIRMATION:
            raise ValidationError(f'Order {order.id} is not awaiting PO verification ({order.status.value})')

        documents = uow.list_order_documents(order_id=order.id, document_type=OrderDocumentType.CLIENT_PO)
        if not documents:
            raise NotFoundError('Client PO', order.id)
        uow.save_order_document(replace(documents[0], verified=True))

        quote = uow.get_quote(order.quote_id) if order.quote_id else None
        rfq = uow.get_rfq(quote.rfq_id) if quote else None
        if rfq is not None:
            for item in rfq.items:
                apply_stock_delta(uow, product_id=item.product_id, delta=-item.quantity)

        now = _now()
        updated = uow.save_order(
            replace(order, status=OrderStatus.PENDING_PAYMENT, admin_verified=True, updated_at=now)
        )

    logger.info('Client PO verified for order %s by %s', order_id, admin_id)
    return updated


def read_order_document(
    repository: MarketplaceRepository,
    storage: DocumentStorage,
    *,
    order_id: str,
    document_type: OrderDocumentType,
) -> tuple[OrderDocumentRecord, bytes]:
    with repository.unit_of_work() as uow:
        documents = uow.list_order_documents(order_id=order_id, document_type=document_type)
    if not documents:
        raise NotFoundError('Document', f'{order_id}/{document_type.value}')
    return documents[0], storage.get(documents[0].file_ref)
