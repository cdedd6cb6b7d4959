from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from app.auth import Principal, Role, require_role
from app.dependencies import form_flag, get_store, to_json
from app.errors import NotFoundError
from app.models import OrderDocumentType
from app.security.csrf import verify_csrf
from app.services.bank_transfer_service import generate_payment_reference
from app.services.marketplace_store import MarketplaceStore
from app.services.records import OrderRecord

router = APIRouter(prefix='/client', tags=['client'])
client_access = require_role(Role.CLIENT)


def _own_order(store: MarketplaceStore, principal: Principal, order_id: str) -> OrderRecord:
    order = store.get_order(order_id)
    if order.client_id != principal.id:
        raise NotFoundError('Order', order_id)
    return order


@router.get('/orders')
def orders(principal: Principal = Depends(client_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.list_orders(client_id=principal.id))


@router.get('/orders/{order_id}')
def order_detail(
    order_id: str,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
):
    order = _own_order(store, principal, order_id)
    return {
        'order': to_json(order),
        'payments': to_json(store.list_payments(order_id=order_id)),
        'po_step': store.po_flow_step(order_id).value,
    }


@router.get('/orders/{order_id}/payment-reference')
def suggested_payment_reference(
    order_id: str,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
):
    order = _own_order(store, principal, order_id)
    return {'reference': generate_payment_reference(order.id)}


@router.post('/orders/{order_id}/bank-transfer')
async def submit_bank_transfer(
    order_id: str,
    request: Request,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    order = store.submit_payment_reference(
        order_id=order_id,
        client_id=principal.id,
        reference=str(form.get('reference', '')),
        notes=str(form.get('notes', '')),
    )
    return to_json(order)


@router.get('/orders/{order_id}/po-flow')
def po_flow(
    order_id: str,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
):
    order = _own_order(store, principal, order_id)
    return {'step': store.po_flow_step(order.id).value, 'order': to_json(order)}


@router.post('/orders/{order_id}/po-flow/confirmation')
async def po_flow_confirmation(
    order_id: str,
    request: Request,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    order = store.submit_po_confirmation(
        order_id=order_id,
        client_id=principal.id,
        not_test_order=form_flag(form, 'not_test_order'),
        payment_terms_accepted=form_flag(form, 'payment_terms_accepted'),
    )
    return {'step': store.po_flow_step(order.id).value, 'order': to_json(order)}


@router.post('/orders/{order_id}/po-flow/download')
def po_flow_download(
    order_id: str,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    generated = store.generate_system_po(order_id=order_id, client_id=principal.id)
    return Response(
        content=generated.content,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename="{generated.file_name}"'},
    )


@router.post('/orders/{order_id}/po-flow/upload')
async def po_flow_upload(
    order_id: str,
    request: Request,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    upload = form.get('file')
    if upload is None or isinstance(upload, str):
        raise HTTPException(status_code=400, detail='A PDF file is required')
    content = await upload.read()
    order = store.upload_client_po(
        order_id=order_id,
        client_id=principal.id,
        file_name=upload.filename or '',
        content_type=upload.content_type,
        content=content,
    )
    return {'step': store.po_flow_step(order.id).value, 'order': to_json(order)}


@router.get('/orders/{order_id}/documents/{document_type}')
def order_document(
    order_id: str,
    document_type: OrderDocumentType,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
):
    _own_order(store, principal, order_id)
    document, content = store.read_order_document(order_id=order_id, document_type=document_type)
    return Response(
        content=content,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename="{document.file_name}"'},
    )


@router.get('/payments')
def payments(principal: Principal = Depends(client_access), store: MarketplaceStore = Depends(get_store)):
    return {
        'payments': to_json(store.list_payments(client_id=principal.id)),
        'stats': to_json(store.client_payment_stats(principal.id)),
    }


@router.get('/credit')
def credit(principal: Principal = Depends(client_access), store: MarketplaceStore = Depends(get_store)):
    return {
        'summary': to_json(store.credit_summary(principal.id)),
        'history': to_json(store.credit_limit_history(client_id=principal.id)),
    }


@router.get('/notifications')
def notifications(
    request: Request,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
):
    unread_only = request.query_params.get('unread', '').strip().lower() in {'1', 'true', 'yes'}
    return to_json(store.list_notifications(principal.id, unread_only=unread_only))


@router.post('/notifications/{notification_id}/read')
def notification_read(
    notification_id: str,
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    store.mark_notification_read(principal.id, notification_id)
    return {'ok': True}


@router.post('/notifications/read-all')
def notifications_read_all(
    principal: Principal = Depends(client_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    return {'updated': store.mark_all_notifications_read(principal.id)}
