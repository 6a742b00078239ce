from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from coatcheck.auth import Principal, get_current_principal
from coatcheck.config import settings
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip, get_session_store, get_session_token
from coatcheck.schemas import LoginRequest, SessionIdentityOut
from coatcheck.security.oidc import get_oidc_client, new_state
from coatcheck.security.sessions import SessionStore, clear_session_cookie, set_session_cookie
from coatcheck.services.audit_service import log_audit, log_auth_event
from coatcheck.services.auth_service import (
    LoginFailed,
    authenticate_local,
    authenticate_local_admin,
    claims_from_userinfo,
    federated_session_payload,
    identity_for,
)
from coatcheck.services.user_service import upsert_federated_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api', tags=['auth'])


def _principal_id(payload: dict | None) -> str | None:
    if not payload:
        return None
    if payload.get('kind') == 'local':
        return payload.get('id')
    return (payload.get('claims') or {}).get('sub')


def _password_login(authenticate, strategy: str, payload: LoginRequest, request: Request, response: Response, store, db):
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')
    try:
        session_payload = authenticate(db, payload.username, payload.password, ip=ip, user_agent=user_agent)
    except LoginFailed as exc:
        db.commit()
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except Exception as exc:
        db.rollback()
        logger.exception('%s login failed with an internal error', strategy)
        raise HTTPException(status_code=500, detail='Authentication error') from exc

    token = store.regenerate(get_session_token(request), session_payload)
    user_id = _principal_id(session_payload)
    log_audit(db, actor_user_id=user_id, action='AUTH_LOGIN', ip=ip, metadata={'strategy': strategy})
    db.commit()
    set_session_cookie(response, token)
    return {'success': True, 'user': {'id': user_id, 'role': session_payload['role'], 'level': session_payload['level']}}


@router.post('/login')
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    return _password_login(authenticate_local, 'local', payload, request, response, store, db)


@router.post('/login/admin')
def login_local_admin(
    payload: LoginRequest,
    request: Request,
    response: Response,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    return _password_login(authenticate_local_admin, 'local-admin', payload, request, response, store, db)


def _redirect_uri(request: Request) -> str:
    return settings.oidc_redirect_uri or str(request.url_for('oidc_callback'))


@router.get('/login', name='oidc_login')
def oidc_login(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    client = get_oidc_client()
    if client is None:
        raise HTTPException(status_code=404, detail='Federated login is not configured')
    state = new_state()
    nonce = new_state()
    try:
        url = client.authorization_url(redirect_uri=_redirect_uri(request), state=state, nonce=nonce)
    except ValueError as exc:
        logger.error('Could not start federated login: %s', exc)
        raise HTTPException(status_code=502, detail='Identity provider unavailable') from exc
    token = store.regenerate(get_session_token(request), {'kind': 'oidc_pending', 'state': state, 'nonce': nonce})
    db.commit()
    response = RedirectResponse(url, status_code=302)
    set_session_cookie(response, token)
    return response


@router.get('/callback', name='oidc_callback')
def oidc_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    client = get_oidc_client()
    if client is None:
        raise HTTPException(status_code=404, detail='Federated login is not configured')
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')
    old_token = get_session_token(request)
    pending = store.get(old_token) or {}
    expected_state = pending.get('state') if pending.get('kind') == 'oidc_pending' else None
    if not code or not state or not expected_state or not hmac.compare_digest(state, expected_state):
        raise HTTPException(status_code=401, detail='Invalid login state')

    try:
        tokens = client.exchange_code(code=code, redirect_uri=_redirect_uri(request))
        claims = claims_from_userinfo(client.userinfo(tokens.access_token))
    except ValueError as exc:
        logger.warning('Federated login failed: %s', exc)
        log_auth_event(
            db,
            strategy='oidc',
            attempted_username=None,
            success=False,
            failure_reason='PROVIDER_ERROR',
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        raise HTTPException(status_code=401, detail='Authentication failed') from exc

    user = upsert_federated_user(db, claims)
    token = store.regenerate(old_token, federated_session_payload(user, tokens))
    log_auth_event(
        db,
        strategy='oidc',
        attempted_username=claims.get('email'),
        success=True,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', ip=ip, metadata={'strategy': 'oidc'})
    db.commit()
    response = RedirectResponse('/', status_code=302)
    set_session_cookie(response, token)
    return response


def _end_session(request: Request, store: SessionStore, db: Session) -> dict | None:
    token = get_session_token(request)
    payload = store.get(token)
    store.destroy(token)
    log_audit(db, actor_user_id=_principal_id(payload), action='AUTH_LOGOUT', ip=get_client_ip(request))
    db.commit()
    return payload


@router.post('/logout')
def logout(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    _end_session(request, store, db)
    response = JSONResponse({'success': True})
    clear_session_cookie(response)
    return response


@router.get('/logout')
def logout_redirect(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
):
    payload = _end_session(request, store, db) or {}
    target = '/'
    client = get_oidc_client()
    if payload.get('kind') == 'federated' and not payload.get('is_local_admin') and client is not None:
        try:
            target = client.end_session_url(post_logout_redirect_uri=str(request.base_url)) or '/'
        except ValueError as exc:
            logger.warning('Could not build end-session URL: %s', exc)
    response = RedirectResponse(target, status_code=302)
    clear_session_cookie(response)
    return response


@router.get('/user', response_model=SessionIdentityOut)
def current_user(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return identity_for(db, principal)
