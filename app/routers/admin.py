from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from app.auth import Principal, Role, require_role
from app.dependencies import get_store, parse_choice, to_json
from app.models import CreditLimitAdjustmentType, OrderDocumentType, OrderStatus, PayoutStatus, UserRole
from app.security.csrf import verify_csrf
from app.services.bank_transfer_service import PENDING_PAYMENT_STATUSES
from app.services.credit_limit_service import DEFAULT_HISTORY_LIMIT
from app.services.marketplace_store import MarketplaceStore
from app.services.order_status_service import allowed_order_status_transitions

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_role(Role.ADMIN)


def _expected_status(form) -> OrderStatus | None:
    raw = str(form.get('expected_status', '')).strip()
    return parse_choice(OrderStatus, raw, 'expected status') if raw else None


def _history_limit(raw: str) -> int:
    if not raw:
        return DEFAULT_HISTORY_LIMIT
    if not raw.isdigit():
        raise HTTPException(status_code=400, detail='Invalid limit')
    return int(raw)


@router.get('/orders')
def orders(
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
):
    status_raw = request.query_params.get('status', '').strip()
    if status_raw == 'pending-payment':
        statuses = PENDING_PAYMENT_STATUSES
    elif status_raw:
        statuses = [parse_choice(OrderStatus, part, 'order status') for part in status_raw.split(',')]
    else:
        statuses = None
    return to_json(store.list_orders(statuses=statuses))


@router.get('/orders/{order_id}')
def order_detail(order_id: str, _: Principal = Depends(admin_access), store: MarketplaceStore = Depends(get_store)):
    order = store.get_order(order_id)
    return {
        'order': to_json(order),
        'allowed_transitions': [status.value for status in allowed_order_status_transitions(order.status)],
        'payments': to_json(store.list_payments(order_id=order_id)),
        'po_step': store.po_flow_step(order_id).value,
    }


@router.post('/orders/{order_id}/status')
async def order_status(
    order_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    status = parse_choice(OrderStatus, form.get('status'), 'order status')
    return to_json(store.change_order_status(order_id=order_id, status=status))


@router.post('/orders/{order_id}/payment-link')
async def payment_link(
    order_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    order = store.set_payment_link(order_id=order_id, payment_link_url=str(form.get('payment_link_url', '')))
    return to_json(order)


@router.get('/orders/{order_id}/payment-audit')
def payment_audit(order_id: str, _: Principal = Depends(admin_access), store: MarketplaceStore = Depends(get_store)):
    store.get_order(order_id)
    return to_json(store.payment_audit_logs(order_id))


@router.post('/orders/{order_id}/payment-review/confirm')
async def payment_review_confirm(
    order_id: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    order = store.confirm_payment(
        order_id=order_id,
        admin_id=principal.id,
        reference=str(form.get('reference', '')),
        notes=str(form.get('notes', '')),
        expected_status=_expected_status(form),
    )
    return to_json(order)


@router.post('/orders/{order_id}/payment-review/reject')
async def payment_review_reject(
    order_id: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    order = store.reject_payment(
        order_id=order_id,
        admin_id=principal.id,
        reason=str(form.get('reason', '')),
        expected_status=_expected_status(form),
    )
    return to_json(order)


@router.post('/orders/{order_id}/po/verify')
def po_verify(
    order_id: str,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    return to_json(store.verify_client_po(order_id=order_id, admin_id=principal.id))


@router.get('/orders/{order_id}/documents/{document_type}')
def order_document(
    order_id: str,
    document_type: OrderDocumentType,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
):
    document, content = store.read_order_document(order_id=order_id, document_type=document_type)
    return Response(
        content=content,
        media_type='application/pdf',
        headers={'Content-Disposition': f'attachment; filename="{document.file_name}"'},
    )


@router.get('/clients')
def clients(_: Principal = Depends(admin_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.list_users(role=UserRole.CLIENT))


@router.post('/clients/{client_id}/credit-limit')
async def credit_limit_adjust(
    client_id: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    result = store.adjust_client_credit_limit(
        client_id=client_id,
        admin_id=principal.id,
        adjustment_type=parse_choice(CreditLimitAdjustmentType, form.get('adjustment_type'), 'adjustment type'),
        amount=str(form.get('amount', '')),
        reason=str(form.get('reason', '')),
    )
    return {'user': to_json(result.user), 'adjustment': to_json(result.adjustment)}


@router.get('/clients/{client_id}/credit-limit/history')
def credit_limit_history(
    client_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
):
    limit = _history_limit(request.query_params.get('limit', '').strip())
    return to_json(store.credit_limit_history(client_id=client_id, limit=limit))


@router.post('/clients/{client_id}/margin')
async def client_margin(
    client_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    return to_json(store.set_client_margin(client_id=client_id, margin_percent=str(form.get('margin_percent', ''))))


@router.post('/quotes/{quote_id}/margin')
async def quote_margin(
    quote_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    return to_json(store.apply_quote_margin(quote_id=quote_id, margin_percent=str(form.get('margin_percent', ''))))


@router.post('/rfqs/{rfq_id}/margin')
async def rfq_margin(
    rfq_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    return to_json(store.apply_rfq_margin(rfq_id=rfq_id, margin_percent=str(form.get('margin_percent', ''))))


@router.get('/payouts')
def payouts(
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
):
    supplier_id = request.query_params.get('supplier_id', '').strip() or None
    return to_json(store.list_payouts(supplier_id=supplier_id))


@router.post('/payouts')
async def payout_create(
    request: Request,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    payout = store.record_supplier_payout(
        supplier_id=str(form.get('supplier_id', '')).strip(),
        order_id=str(form.get('order_id', '')).strip(),
        amount=str(form.get('amount', '')),
        created_by=principal.id,
        payment_method=str(form.get('payment_method', '')),
        reference_number=str(form.get('reference_number', '')),
        notes=str(form.get('notes', '')),
    )
    return to_json(payout)


@router.post('/payouts/{payout_id}/status')
async def payout_status(
    payout_id: str,
    request: Request,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    form = await request.form()
    payout = store.update_payout_status(
        payout_id=payout_id,
        status=parse_choice(PayoutStatus, form.get('status'), 'payout status'),
        reference_number=str(form.get('reference_number', '')),
        notes=str(form.get('notes', '')),
    )
    return to_json(payout)


@router.get('/payments/statistics')
def payment_statistics(_: Principal = Depends(admin_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.payment_statistics())


@router.post('/payments/{payment_id}/refund')
async def payment_refund(
    payment_id: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    refund = store.process_refund(
        payment_id=payment_id,
        amount=str(form.get('amount', '')),
        reason=str(form.get('reason', '')),
        processed_by=principal.id,
    )
    return to_json(refund)


@router.post('/payments/{payment_id}/sync')
def payment_sync(
    payment_id: str,
    _: Principal = Depends(admin_access),
    store: MarketplaceStore = Depends(get_store),
    __: None = Depends(verify_csrf),
):
    return to_json(store.sync_payment(payment_id))
