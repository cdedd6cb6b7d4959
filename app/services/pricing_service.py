from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.errors import NotFoundError, ValidationError
from app.models import UserRole
from app.services.records import QuoteRecord, UserRecord
from app.services.repository import MarketplaceRepository


CENT = Decimal('0.01')


def normalize_margin_percent(raw) -> Decimal:
    try:
        margin = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Margin must be between 0 and 100') from exc
    if not margin.is_finite() or margin < 0 or margin > 100:
        raise ValidationError('Margin must be between 0 and 100')
    return margin.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_final_price(supplier_price: Decimal, margin_percent: Decimal) -> Decimal:
    final_price = supplier_price * (Decimal('1') + margin_percent / Decimal('100'))
    return final_price.quantize(CENT, rounding=ROUND_HALF_UP)


def apply_quote_margin(repository: MarketplaceRepository, *, quote_id: str, margin_percent) -> QuoteRecord:
    margin = normalize_margin_percent(margin_percent)
    with repository.unit_of_work() as uow:
        quote = uow.get_quote(quote_id, for_update=True)
        if quote is None:
            raise NotFoundError('Quote', quote_id)
        return uow.save_quote(
            replace(
                quote,
                margin_percent=margin,
                final_price=compute_final_price(quote.supplier_price, margin),
            )
        )


def apply_rfq_margin(repository: MarketplaceRepository, *, rfq_id: str, margin_percent) -> list[QuoteRecord]:
    margin = normalize_margin_percent(margin_percent)
    with repository.unit_of_work() as uow:
        if uow.get_rfq(rfq_id) is None:
            raise NotFoundError('RFQ', rfq_id)
        return [
            uow.save_quote(
                replace(quote, margin_percent=margin, final_price=compute_final_price(quote.supplier_price, margin))
            )
            for quote in uow.list_quotes(rfq_id=rfq_id)
        ]


def set_client_margin(repository: MarketplaceRepository, *, client_id: str, margin_percent) -> UserRecord:
    margin = normalize_margin_percent(margin_percent)
    with repository.unit_of_work() as uow:
        client = uow.get_user(client_id, for_update=True)
        if client is None or client.role != UserRole.CLIENT:
            raise NotFoundError('Client', client_id)
        return uow.save_user(replace(client, client_margin=margin))
