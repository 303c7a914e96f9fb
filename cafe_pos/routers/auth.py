from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cafe_pos.auth import Principal, get_current_principal
from cafe_pos.config import settings
from cafe_pos.db import get_db
from cafe_pos.dependencies import get_client_ip
from cafe_pos.schemas import LoginRequest
from cafe_pos.security.csrf import verify_csrf
from cafe_pos.security.sessions import create_web_session, revoke_web_session
from cafe_pos.services.audit_service import log_audit, log_auth_event
from cafe_pos.services.people_service import authenticate

router = APIRouter(tags=['auth'])


@router.get('/login')
def login_page(request: Request):
    return {'csrf_token': getattr(request.state, 'csrf_token', '')}


@router.post('/login')
def login_submit(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    email = payload.email.strip().lower()
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    profile, failure_reason = authenticate(db, email=email, password=payload.password)
    if failure_reason:
        log_auth_event(
            db,
            attempted_email=email,
            success=False,
            failure_reason=failure_reason,
            profile_id=profile.id if profile else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        return JSONResponse({'detail': 'Invalid email or password'}, status_code=401)

    token = create_web_session(db, profile.id, ip=ip, user_agent=user_agent)
    log_auth_event(
        db,
        attempted_email=email,
        success=True,
        failure_reason=None,
        profile_id=profile.id,
        ip=ip,
        user_agent=user_agent,
    )
    log_audit(
        db,
        actor_profile_id=profile.id,
        action='AUTH_LOGIN',
        entity_id=None,
        ip=ip,
        metadata={'email': email},
    )
    db.commit()

    response = JSONResponse(
        {
            'id': profile.id,
            'email': profile.email,
            'full_name': profile.full_name,
            'role': profile.role.value,
        }
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_profile_id=principal.id if principal else None,
        action='AUTH_LOGOUT',
        entity_id=None,
        ip=get_client_ip(request),
        metadata={},
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(principal: Principal = Depends(get_current_principal)):
    return {
        'id': principal.id,
        'email': principal.email,
        'full_name': principal.full_name,
        'display_name': principal.display_name,
        'role': principal.role.value,
    }
