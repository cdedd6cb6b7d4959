from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from app.config import settings
from app.services.document_storage import InMemoryDocumentStorage, LocalDocumentStorage
from app.services.marketplace_store import MarketplaceStore
from app.services.memory_repository import InMemoryRepository
from app.services.moyasar_gateway import MoyasarGateway
from app.services.notification_service import NotificationLog
from app.services.payment_gateway import MockPaymentGateway


@lru_cache(maxsize=1)
def get_repository():
    if settings.uses_database:
        from app.db import SessionLocal
        from app.services.remote_repository import RemoteRepository

        return RemoteRepository(SessionLocal)
    return InMemoryRepository()


@lru_cache(maxsize=1)
def get_payment_gateway():
    gateway = settings.payment_gateway.strip().lower()
    if gateway == 'moyasar':
        return MoyasarGateway()
    return MockPaymentGateway()


@lru_cache(maxsize=1)
def get_document_storage():
    if settings.document_storage_dir:
        return LocalDocumentStorage(settings.document_storage_dir)
    return InMemoryDocumentStorage()


@lru_cache(maxsize=1)
def get_marketplace_store() -> MarketplaceStore:
    return MarketplaceStore(
        get_repository(),
        storage=get_document_storage(),
        gateway=get_payment_gateway(),
        notifications=NotificationLog(cap=settings.notification_cap),
        session_warning_lead=timedelta(minutes=settings.session_warning_lead_minutes),
        vat_rate_percent=settings.vat_rate_percent,
        po_upload_max_bytes=settings.po_upload_max_bytes,
    )
