from decimal import Decimal

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder

from app.services.marketplace_store import MarketplaceStore
from app.services.records import UserRecord


def get_store(request: Request) -> MarketplaceStore:
    return request.app.state.store


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def to_json(payload):
    """Money stays exact: Decimals are rendered as strings. Password hashes never leave the server."""
    if isinstance(payload, UserRecord):
        return jsonable_encoder(payload, exclude={'password_hash'}, custom_encoder={Decimal: str})
    if isinstance(payload, list) and payload and isinstance(payload[0], UserRecord):
        return [to_json(item) for item in payload]
    return jsonable_encoder(payload, custom_encoder={Decimal: str})


def form_flag(form, name: str) -> bool:
    return str(form.get(name, '')).strip().lower() in {'1', 'true', 'yes', 'on'}


def parse_choice(enum_cls, raw, label: str):
    try:
        return enum_cls(str(raw or '').strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f'Invalid {label}: {raw}') from exc
