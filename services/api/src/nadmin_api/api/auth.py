"""认证与会话接口。"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.core.security import TokenClaims, clear_session, get_credential_codec, list_sessions
from nadmin_api.core.token_locator import ALL_COOKIE_NAMES, UNIFIED_COOKIE, iter_request_tokens
from nadmin_api.db.session import get_db
from nadmin_api.dependencies import (
    find_request_claims,
    get_current_principal,
    get_permission_evaluator,
    get_tenant_resolution,
    get_token_claims,
    require_super_admin,
)
from nadmin_api.exceptions import DisabledPrincipal, TenantNotFound, UnknownPrincipal
from nadmin_api.models.enums import PermissionStatus, TenantStatus, UserStatus
from nadmin_api.models.permission import Permission
from nadmin_api.models.tenant import Tenant, User
from nadmin_api.schemas.auth import AuthLoginRequest, SessionRevokeScope, SwitchTenantRequest
from nadmin_api.schemas.common import ErrorResponse, SuccessResponse
from nadmin_api.schemas.responses import (
    AuthLoginData,
    AuthLogoutData,
    GrantedPermissionsData,
    SessionData,
    SessionListData,
    SessionRevokeData,
    TenantContextData,
)
from nadmin_api.services import AuditAction, audit_log
from nadmin_api.services.audit import client_ip
from nadmin_api.services.local_auth import find_login_user, issue_access_token, verify_password
from nadmin_api.services.permissions import PermissionEvaluator
from nadmin_api.services.principal_loader import Principal, load_principal
from nadmin_api.services.tenant_bootstrap import serialize_tenant
from nadmin_api.services.tenant_resolver import TenantResolution, lookup_tenant
from nadmin_api.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "INVALID_CREDENTIALS", "message": "账号或密码错误。"},
    )


def _set_auth_cookie(response: Response, token: str, expires_at: datetime) -> None:
    max_age = max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
    response.set_cookie(
        UNIFIED_COOKIE,
        token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=get_settings().auth_cookie_secure,
        path="/",
    )


def _session_meta(request: Request, client_type: str) -> dict[str, object]:
    return {"client_type": client_type, "ip": client_ip(request), "user_agent": request.headers.get("user-agent")}


def _login_payload(token: str, expires_at: datetime, client_type: str) -> dict[str, object]:
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": expires_at,
        "expires_in": max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds())),
        "client_type": client_type,
    }


@router.post(
    "/login",
    summary="本地账号登录",
    description="使用邮箱或用户名加密码登录，写入统一会话 Cookie 并返回 Bearer 访问令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def login(
    payload: AuthLoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """本地账号登录并签发访问令牌。"""
    user = find_login_user(db, account=payload.account)
    if user is None or not user.password_hash or not verify_password(payload.password, user.password_hash):
        raise _invalid_credentials()
    if user.status != UserStatus.ACTIVE:
        raise DisabledPrincipal(principal_id=str(user.id))

    token, expires_at = issue_access_token(
        user,
        remember_me=payload.remember_me,
        session_meta=_session_meta(request, payload.client_type),
    )
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()

    _set_auth_cookie(response, token, expires_at)
    return success(request, _login_payload(token, expires_at, payload.client_type))


@router.post(
    "/logout",
    summary="登出",
    description="无论使用哪个 Cookie 登录，都清理统一 Cookie 与全部历史 Cookie。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLogoutData],
)
def logout(request: Request, response: Response):
    """清理登录态。"""
    claims = find_request_claims(request)
    if claims is not None and claims.session_id:
        clear_session(claims.session_id)
    for cookie_name in ALL_COOKIE_NAMES:
        response.delete_cookie(cookie_name, path="/")
    return success(request, {"logged_out": True, "cleared_cookies": list(ALL_COOKIE_NAMES)})


@router.get(
    "/session",
    summary="查询当前会话",
    description="依次尝试端内 Cookie、Authorization 头、通用 Cookie 提取；均无效时返回 null。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[SessionData | None],
)
def get_session(request: Request, db: Session = Depends(get_db)):
    """返回当前会话用户，租户 ID 以字符串输出。"""
    codec = get_credential_codec()
    for candidate in iter_request_tokens(request):
        verification = codec.verify(candidate.token)
        if not verification.ok:
            continue
        try:
            principal = load_principal(db, verification.claims)
        except (UnknownPrincipal, DisabledPrincipal):
            continue
        return success(
            request,
            {
                "user": {
                    "id": str(principal.user_id),
                    "tenant_id": str(principal.tenant_id),
                    "role_id": str(principal.role_id) if principal.role_id else None,
                    "is_super_admin": principal.is_super_admin,
                    "email": principal.email,
                    "username": principal.username,
                    "display_name": principal.display_name,
                    "tenant_code": principal.tenant_code,
                    "client_type": candidate.client_type.value,
                }
            },
        )
    return success(request, None)


@router.get(
    "/permissions",
    summary="查询当前用户权限",
    description="返回当前主体已授予的全部有效权限编码；超级管理员返回全部有效权限。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[GrantedPermissionsData],
    responses={401: {"model": ErrorResponse}},
)
def get_my_permissions(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    db: Session = Depends(get_db),
):
    """查询当前用户权限编码。"""
    if principal.is_super_admin:
        codes = db.execute(
            select(Permission.code)
            .where(Permission.is_deleted.is_(False))
            .where(Permission.status == PermissionStatus.ACTIVE)
        ).scalars().all()
    else:
        codes = evaluator.granted_codes(principal)
    return success(request, {"is_super_admin": principal.is_super_admin, "permissions": sorted(codes)})


@router.get(
    "/tenant",
    summary="查询当前租户上下文",
    description="返回当前请求的租户解析结果；解析值无法匹配到租户记录时 tenant 为 null。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantContextData],
    responses={401: {"model": ErrorResponse}},
)
def get_current_tenant(
    request: Request,
    resolution: TenantResolution = Depends(get_tenant_resolution),
    db: Session = Depends(get_db),
):
    """查询当前租户上下文。"""
    try:
        tenant = serialize_tenant(lookup_tenant(db, resolution))
    except TenantNotFound:
        tenant = None
    return success(
        request,
        {"tenant_id": resolution.tenant_id, "method": str(resolution.method), "tenant": tenant},
    )


@router.post(
    "/switch-tenant",
    summary="切换租户",
    description="超级管理员重新签发绑定到目标租户的访问令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthLoginData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def switch_tenant(
    payload: SwitchTenantRequest,
    request: Request,
    response: Response,
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """切换当前令牌绑定的租户。"""
    tenant = db.execute(
        select(Tenant).where(Tenant.id == payload.tenant_id).where(Tenant.is_deleted.is_(False))
    ).scalar_one_or_none()
    if tenant is None:
        raise TenantNotFound(tenant=str(payload.tenant_id))
    if tenant.status != TenantStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="tenant is not active")

    user = db.get(User, principal.user_id)
    gate = getattr(request.state, "gate", None)
    client_type = gate.client_type.value if gate is not None else "admin"
    token, expires_at = issue_access_token(
        user, tenant_id=str(tenant.id), session_meta=_session_meta(request, client_type)
    )
    audit_log(
        db=db,
        request=request,
        tenant_id=tenant.id,
        actor_user_id=principal.user_id,
        action=AuditAction.TENANT_SWITCH,
        resource_type="tenant",
        resource_id=str(tenant.id),
        after_json={"tenant_code": tenant.code},
    )
    db.commit()

    _set_auth_cookie(response, token, expires_at)
    return success(request, _login_payload(token, expires_at, client_type))


def _epoch(value: object) -> datetime | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, timezone.utc)
    return None


@router.get(
    "/sessions",
    summary="查询当前用户的登录会话",
    description="列出当前用户未过期的会话；仅在启用会话跟踪时有数据。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[SessionListData],
    responses={401: {"model": ErrorResponse}},
)
def get_my_sessions(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    claims: TokenClaims = Depends(get_token_claims),
):
    """查询当前用户的登录会话。"""
    current = claims.session_id
    entries = list_sessions(str(principal.user_id))
    sessions = [
        {
            "session_id": session_id,
            "client_type": entry.get("client_type"),
            "ip": entry.get("ip"),
            "user_agent": entry.get("user_agent"),
            "issued_at": _epoch(entry.get("issued_at")),
            "expires_at": _epoch(entry.get("expires_at")),
            "is_current": session_id == current,
        }
        for session_id, entry in sorted(entries.items(), key=lambda item: item[1].get("issued_at", 0), reverse=True)
    ]
    return success(request, {"sessions": sessions, "current_session_id": current, "total": len(sessions)})


@router.delete(
    "/sessions",
    summary="撤销登录会话",
    description="按 session_id 撤销单个会话，或按 scope=all/others 批量撤销；只能撤销本人的会话。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[SessionRevokeData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def revoke_my_sessions(
    request: Request,
    session_id: str | None = Query(default=None, description="要撤销的会话 ID。"),
    scope: SessionRevokeScope | None = Query(default=None, description="批量撤销范围：all/others。"),
    principal: Principal = Depends(get_current_principal),
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    """撤销当前用户的登录会话。"""
    principal_id = str(principal.user_id)
    current = claims.session_id
    if scope is not None:
        if scope == SessionRevokeScope.OTHERS and not current:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="current session is not tracked")
        targets = [sid for sid in list_sessions(principal_id) if scope == SessionRevokeScope.ALL or sid != current]
    elif session_id:
        targets = [session_id]
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="session_id or scope is required")

    revoked = [sid for sid in targets if clear_session(sid, principal_id=principal_id)]
    if session_id and scope is None and not revoked:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="session not found")

    audit_log(
        db=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.SESSION_REVOKE,
        resource_type="session",
        resource_id=str(scope) if scope is not None else session_id,
        after_json={"revoked": revoked},
    )
    db.commit()
    return success(request, {"revoked_count": len(revoked), "current_session_id": current})
