"""请求上下文依赖。

职责:
1. 从 Cookie / Authorization 头定位并校验访问令牌。
2. 将令牌声明映射为本地主体（Principal）。
3. 复用请求闸门已解析的租户与主体，避免路由层重复解析。
4. 提供权限判定器与权限依赖。
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from nadmin_api.core.security import TokenClaims, TokenError, TokenVerification, get_credential_codec
from nadmin_api.core.token_locator import iter_request_tokens
from nadmin_api.db.session import get_db
from nadmin_api.exceptions import ExpiredToken, InvalidTokenSignature, MalformedToken
from nadmin_api.middlewares import GateContext
from nadmin_api.services.permissions import PermissionEvaluator
from nadmin_api.services.principal_loader import Principal, load_principal
from nadmin_api.services.tenant_resolver import TenantResolution, resolve_tenant

_TOKEN_ERRORS = {
    TokenError.MALFORMED: MalformedToken,
    TokenError.EXPIRED: ExpiredToken,
    TokenError.INVALID_SIGNATURE: InvalidTokenSignature,
}


def require_claims(verification: TokenVerification) -> TokenClaims:
    """将校验结果转换为声明，失败时抛出对应的令牌异常。"""
    if verification.claims is not None:
        return verification.claims
    raise _TOKEN_ERRORS.get(verification.error, MalformedToken)()


def _gate_context(request: Request) -> GateContext | None:
    context = getattr(request.state, "gate", None)
    return context if isinstance(context, GateContext) else None


def find_request_claims(request: Request) -> TokenClaims | None:
    """逐个校验候选令牌，返回第一个有效令牌的声明。"""
    codec = get_credential_codec()
    for candidate in iter_request_tokens(request):
        verification = codec.verify(candidate.token)
        if verification.ok:
            return verification.claims
    return None


def get_token_claims(request: Request) -> TokenClaims:
    """要求请求携带有效访问令牌。"""
    context = _gate_context(request)
    if context is not None and context.claims is not None:
        return context.claims

    codec = get_credential_codec()
    last_error: TokenVerification | None = None
    for candidate in iter_request_tokens(request):
        verification = codec.verify(candidate.token)
        if verification.ok:
            return verification.claims
        last_error = verification
    if last_error is not None:
        return require_claims(last_error)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")


def get_current_principal(
    request: Request,
    db: Session = Depends(get_db),
) -> Principal:
    """获取当前认证主体；闸门已加载时直接复用。"""
    context = _gate_context(request)
    if context is not None and context.principal is not None:
        return context.principal
    claims = get_token_claims(request)
    return load_principal(db, claims)


def get_tenant_resolution(request: Request) -> TenantResolution:
    """获取当前请求的租户解析结果。"""
    context = _gate_context(request)
    if context is not None and context.resolution is not None:
        return context.resolution
    return resolve_tenant(
        claims=find_request_claims(request),
        headers=request.headers,
        host=request.headers.get("host"),
        query_params=request.query_params,
    )


def get_permission_evaluator(db: Session = Depends(get_db)) -> PermissionEvaluator:
    """每个请求一个判定器实例。"""
    return PermissionEvaluator(db)


def require_permission(code: str):
    """构造要求指定权限的路由依赖，判定为 False 时返回 403。"""

    def _dependency(
        principal: Principal = Depends(get_current_principal),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    ) -> Principal:
        if not evaluator.has(principal, code):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "PERMISSION_DENIED", "message": "缺少所需权限。", "permission": code},
            )
        return principal

    return _dependency


def require_super_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """要求当前主体为超级管理员。"""
    if not principal.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return principal
