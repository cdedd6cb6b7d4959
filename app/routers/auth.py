from __future__ import annotations

import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.auth import Principal, get_current_principal
from app.config import settings
from app.dependencies import get_client_ip, get_store, to_json
from app.security.csrf import verify_csrf
from app.security.passwords import verify_password
from app.security.sessions import create_web_session, revoke_web_session, set_session_cookie
from app.services.audit_service import log_auth_event
from app.services.marketplace_store import MarketplaceStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

INVALID_LOGIN = {'detail': 'Invalid email or password'}


@router.get('/login')
def login_page(request: Request):
    return {'csrf_token': getattr(request.state, 'csrf_token', '')}


@router.post('/login')
async def login_submit(
    request: Request,
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    email = str(form.get('email', '')).strip().lower()
    password = str(form.get('password', ''))
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    with store.repository.unit_of_work() as uow:
        user = uow.get_user_by_email(email)
        if not user:
            failure = 'UNKNOWN_EMAIL'
        elif not user.active:
            failure = 'INACTIVE_USER'
        else:
            valid, updated_hash = verify_password(password, user.password_hash)
            failure = None if valid else 'BAD_PASSWORD'
            if valid and updated_hash:
                user = uow.save_user(replace(user, password_hash=updated_hash))

        log_auth_event(
            uow,
            attempted_email=email,
            success=failure is None,
            failure_reason=failure,
            user_id=user.id if user else None,
            ip=ip,
            user_agent=user_agent,
        )
        web_session = create_web_session(uow, user.id, ip=ip, user_agent=user_agent) if failure is None else None

    if web_session is None:
        logger.info('Login failed for %s: %s', email, failure)
        return JSONResponse(INVALID_LOGIN, status_code=401)

    store.session_started(user.id, web_session.expires_at)
    response = JSONResponse(
        {
            'user': to_json(user),
            'expires_at': web_session.expires_at.isoformat(),
        }
    )
    set_session_cookie(response, web_session.session_token, web_session.expires_at)
    return response


@router.get('/session')
def session_restore(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    store: MarketplaceStore = Depends(get_store),
):
    expires_at = request.state.session_expires_at
    return {
        'user': to_json(store.get_user(principal.id)),
        'expires_at': expires_at.isoformat() if expires_at else None,
    }


@router.post('/logout')
def logout(
    request: Request,
    store: MarketplaceStore = Depends(get_store),
    _: None = Depends(verify_csrf),
):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        with store.repository.unit_of_work() as uow:
            revoke_web_session(uow, token)
    if principal:
        store.session_ended(principal.id)

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response
