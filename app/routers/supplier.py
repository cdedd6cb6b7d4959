from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from app.auth import Principal, Role, require_role
from app.dependencies import get_store, to_json
from app.security.csrf import verify_csrf
from app.services.marketplace_store import MarketplaceStore
from app.services.inventory_service import stock_status

router = APIRouter(prefix='/supplier', tags=['supplier'])
supplier_access = require_role(Role.SUPPLIER)


def _optional_int(raw, label: str) -> int | None:
    value = str(raw or '').strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Invalid {label}') from exc


@router.get('/orders')
def orders(principal: Principal = Depends(supplier_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.list_orders(supplier_id=principal.id))


@router.get('/payouts')
def payouts(principal: Principal = Depends(supplier_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.list_payouts(supplier_id=principal.id))


@router.get('/products')
def products(principal: Principal = Depends(supplier_access), store: MarketplaceStore = Depends(get_store)):
    rows = store.list_products(supplier_id=principal.id)
    return {
        'products': [{**to_json(row), 'stock_status': stock_status(row.stock_quantity)} for row in rows],
        'summary': to_json(store.inventory_summary(principal.id)),
    }


@router.post('/products/{product_id}/stock')
async def update_stock(
    product_id: str,
    request: Request,
    principal: Principal = Depends(supplier_access),
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    change = store.adjust_stock(
        product_id=product_id,
        delta=_optional_int(form.get('delta'), 'stock delta'),
        quantity=_optional_int(form.get('quantity'), 'stock quantity'),
        supplier_id=principal.id,
    )
    return {
        'product': to_json(change.product),
        'previous_stock': change.previous_stock,
        'new_stock': change.new_stock,
        'stock_status': stock_status(change.new_stock),
    }


@router.get('/notifications')
def notifications(principal: Principal = Depends(supplier_access), store: MarketplaceStore = Depends(get_store)):
    return to_json(store.list_notifications(principal.id))
