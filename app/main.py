import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import settings
from app.errors import (
    ConflictError,
    IllegalTransitionError,
    MarketplaceError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    RefundFinalizeError,
    RepositoryError,
    ValidationError,
)
from app.logging_config import setup_logging
from app.routers import admin, auth, client, supplier
from app.security.csrf import install_csrf_cookie_middleware
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware
from app.services.provider_factory import get_marketplace_store, get_payment_gateway

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (IllegalTransitionError, 409),
    (ConflictError, 409),
    (PaymentGatewayError, 502),
    (RepositoryError, 503),
    (RefundFinalizeError, 500),
)


def status_code_for(exc: MarketplaceError) -> int:
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error('%s %s failed: %s', request.method, request.url.path, exc)
        else:
            logger.info('%s %s rejected (%s): %s', request.method, request.url.path, status_code, exc)
        payload = {'detail': str(exc)}
        if isinstance(exc, RefundFinalizeError):
            payload.update(refund_id=exc.refund_id, outcome=exc.outcome)
        return JSONResponse(payload, status_code=status_code)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = app.state.store
    if settings.seed_demo_data:
        from app.seed_example import seed

        seed(store.repository, gateway=get_payment_gateway())
    store.load_all()
    yield
    store.close()


def create_app(store=None) -> FastAPI:
    setup_logging()
    app = FastAPI(title='MWRD Marketplace Portal', lifespan=lifespan)
    app.state.store = store or get_marketplace_store()

    install_security_headers(app)
    install_csrf_cookie_middleware(app)
    install_auth_session_middleware(app)
    install_error_handlers(app)

    app.include_router(auth.router)
    app.include_router(client.router)
    app.include_router(supplier.router)
    app.include_router(admin.router)

    @app.get('/health')
    def health():
        return {'status': 'ok', 'backend': 'database' if settings.uses_database else 'memory'}

    @app.get('/robots.txt', response_class=PlainTextResponse)
    def robots_txt() -> str:
        return 'User-agent: *\nDisallow: /\n'

    return app


app = create_app()
