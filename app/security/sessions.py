from __future__ import annotations

import secrets
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.auth import Principal
from app.config import settings
from app.services.records import WebSessionRecord
from app.services.repository import MarketplaceUnit


AUTH_EXEMPT_PATHS = {'/login', '/robots.txt', '/health'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(uow: MarketplaceUnit, user_id: str, ip: str | None, user_agent: str | None) -> WebSessionRecord:
    now = _now()
    return uow.create_web_session(
        WebSessionRecord(
            session_token=secrets.token_urlsafe(48),
            user_id=user_id,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
            last_seen_at=now,
            expires_at=_session_expiry(),
        )
    )


def revoke_web_session(uow: MarketplaceUnit, token: str) -> None:
    web_session = uow.get_web_session(token)
    if not web_session or web_session.revoked_at is not None:
        return
    uow.save_web_session(replace(web_session, revoked_at=_now()))


def load_principal_from_token(uow: MarketplaceUnit, token: str | None) -> tuple[Principal, WebSessionRecord] | None:
    """Resolve a live session and slide its expiry forward."""
    if not token:
        return None

    web_session = uow.get_web_session(token)
    if not web_session:
        return None
    now = _now()
    if web_session.revoked_at is not None or web_session.expires_at <= now:
        return None
    user = uow.get_user(web_session.user_id)
    if not user:
        return None

    web_session = uow.save_web_session(replace(web_session, last_seen_at=now, expires_at=_session_expiry()))
    principal = Principal(id=user.id, email=user.email, name=user.name, role=user.role, active=user.active)
    return principal, web_session


def _sets_session_cookie(response) -> bool:
    prefix = f'{settings.session_cookie_name}='
    return any(value.startswith(prefix) for value in response.headers.getlist('set-cookie'))


def set_session_cookie(response, token: str, expires_at: datetime) -> None:
    """Cookie lifetime tracks the stored session expiry."""
    max_age = max(0, int((expires_at - _now()).total_seconds()))
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=max_age,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request.cookies.get(settings.session_cookie_name)
        store = request.app.state.store
        with store.repository.unit_of_work() as uow:
            resolved = load_principal_from_token(uow, token)
        request.state.principal = resolved[0] if resolved else None
        request.state.session_expires_at = resolved[1].expires_at if resolved else None

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.principal is None:
            return JSONResponse({'detail': 'Not authenticated'}, status_code=401)

        if resolved:
            # The slid expiry is the single target for cookie and reminder.
            store.session_started(resolved[0].id, resolved[1].expires_at)

        response = await call_next(request)
        if resolved and not _sets_session_cookie(response):
            set_session_cookie(response, token, resolved[1].expires_at)
        return response
