"""应用中间件注册。

请求闸门在进入路由前完成租户解析、认证与路由级授权，状态流转：
UNRESOLVED -> TENANT_RESOLVED -> (AUTHENTICATED | ANONYMOUS) -> (AUTHORIZED | FORBIDDEN | REDIRECTED)。
"""

from dataclasses import dataclass
from enum import StrEnum
import logging
from time import perf_counter
from urllib.parse import quote, urlencode
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from nadmin_api.core.config import Settings, get_settings
from nadmin_api.core.security import TokenClaims, get_credential_codec
from nadmin_api.core.token_locator import ClientType, detect_client_type, iter_request_tokens
from nadmin_api.db.session import SessionLocal
from nadmin_api.exceptions import DisabledPrincipal, TenantNotFound, UnknownPrincipal
from nadmin_api.services.permission_catalog import required_route_permissions
from nadmin_api.services.permissions import PermissionEvaluator
from nadmin_api.services.principal_loader import Principal, load_principal
from nadmin_api.services.tenant_resolver import TenantResolution, lookup_tenant, resolve_tenant
from nadmin_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("nadmin_api.gate")

# 下游转发头，客户端自带的同名头一律丢弃。
FORWARDED_TENANT_CODE = "x-tenant-code"
FORWARDED_USER_ID = "x-user-id"
FORWARDED_USER_EMAIL = "x-user-email"
FORWARDED_USER_TENANT_ID = "x-user-tenant-id"
FORWARDED_USER_SYSTEM = "x-user-system"
FORWARDED_HEADERS = (
    FORWARDED_TENANT_CODE,
    FORWARDED_USER_ID,
    FORWARDED_USER_EMAIL,
    FORWARDED_USER_TENANT_ID,
    FORWARDED_USER_SYSTEM,
)
# 转发值统一百分号编码，下游以 unquote 还原；ASCII 邮箱与编码保持原样。
FORWARDED_SAFE_CHARS = "@.+-_~:"


class GateState(StrEnum):
    """请求闸门状态。"""

    UNRESOLVED = "unresolved"
    TENANT_RESOLVED = "tenant_resolved"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"
    REDIRECTED = "redirected"


@dataclass
class GateContext:
    """闸门产出的请求上下文，保存在 `request.state.gate`。"""

    state: GateState = GateState.UNRESOLVED
    client_type: ClientType = ClientType.ADMIN
    resolution: TenantResolution | None = None
    claims: TokenClaims | None = None
    principal: Principal | None = None
    # 转发给下游的租户编码。
    tenant_code: str | None = None


async def request_id_middleware(request: Request, call_next):
    """注入请求追踪 ID，并通过响应头返回。"""
    request.state.request_id = str(uuid.uuid4())
    request.state.request_started_at = perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = request.state.request_id
    elapsed = perf_counter() - request.state.request_started_at
    response.headers["X-Process-Time-Ms"] = str(round(elapsed * 1000, 2))
    return response


def _matches(path: str, prefixes: list[str]) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)


def _is_tenant_id(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def forwarded_tenant_code(db: Session, resolution: TenantResolution, principal: Principal | None = None) -> str:
    """转发头携带租户编码；解析值为租户 ID 时换算为编码，查不到则原样返回。"""
    if not _is_tenant_id(resolution.tenant_id):
        return resolution.tenant_id
    if principal is not None and str(principal.tenant_id) == resolution.tenant_id and principal.tenant_code:
        return principal.tenant_code
    try:
        return lookup_tenant(db, resolution).code
    except TenantNotFound:
        return resolution.tenant_id


class RequestGate:
    """租户解析、认证与路由级授权中间件。"""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def _is_api(self, path: str) -> bool:
        return _matches(path, [self.settings.api_prefix])

    @staticmethod
    def _candidate_claims(request: Request) -> list[TokenClaims]:
        """按定位顺序返回签名有效的全部令牌声明，是否对应有效主体由认证阶段判定。"""
        codec = get_credential_codec()
        verified = (codec.verify(candidate.token) for candidate in iter_request_tokens(request))
        return [verification.claims for verification in verified if verification.ok]

    def _resolve(self, request: Request, claims: TokenClaims | None) -> TenantResolution:
        return resolve_tenant(
            claims=claims,
            headers=request.headers,
            host=request.headers.get("host"),
            query_params=request.query_params,
            default_tenant=self.settings.default_tenant_code,
        )

    @staticmethod
    def _open_session(request: Request) -> Session:
        session_factory = getattr(request.app.state, "session_factory", None) or SessionLocal
        return session_factory()

    @staticmethod
    def _forward(request: Request, context: GateContext) -> None:
        """丢弃客户端伪造的转发头，写入闸门解析出的上下文。"""
        headers = [
            (key, value)
            for key, value in request.scope["headers"]
            if key.decode("latin-1").lower() not in FORWARDED_HEADERS
        ]
        derived: dict[str, str] = {}
        if context.resolution is not None:
            derived[FORWARDED_TENANT_CODE] = context.tenant_code or context.resolution.tenant_id
        principal = context.principal
        if principal is not None:
            derived[FORWARDED_USER_ID] = str(principal.user_id)
            derived[FORWARDED_USER_EMAIL] = principal.email
            derived[FORWARDED_USER_TENANT_ID] = str(principal.tenant_id)
            derived[FORWARDED_USER_SYSTEM] = context.client_type.value
        headers.extend(
            (key.encode("latin-1"), quote(value, safe=FORWARDED_SAFE_CHARS).encode("latin-1"))
            for key, value in derived.items()
        )
        request.scope["headers"] = headers

    def _authenticate(
        self, request: Request, context: GateContext, candidates: list[TokenClaims], path: str
    ) -> tuple[Principal, bool] | None:
        """在线程池中逐个尝试候选令牌，首个能加载出有效主体的令牌生效，会话在返回前关闭。

        用户不存在、已删除或被禁用时继续尝试下一个候选；全部失败返回 None。
        """
        db = self._open_session(request)
        try:
            for claims in candidates:
                try:
                    principal = load_principal(db, claims)
                except (UnknownPrincipal, DisabledPrincipal):
                    continue
                context.claims = claims
                context.resolution = self._resolve(request, claims)
                context.tenant_code = forwarded_tenant_code(db, context.resolution, principal)
                required = required_route_permissions(path)
                allowed = PermissionEvaluator(db).has_all(principal, required) if required else True
                return principal, allowed
            return None
        finally:
            db.close()

    def _public_tenant_code(self, request: Request, resolution: TenantResolution) -> str:
        """公开路由不认证，但转发的租户仍需是编码。"""
        if not _is_tenant_id(resolution.tenant_id):
            return resolution.tenant_id
        db = self._open_session(request)
        try:
            return forwarded_tenant_code(db, resolution)
        except SQLAlchemyError:
            logger.warning("tenant code lookup failed tenant_id=%s route=%s", resolution.tenant_id, request.url.path)
            return resolution.tenant_id
        finally:
            db.close()

    def _unauthenticated(self, request: Request, context: GateContext):
        path = request.url.path
        if self._is_api(path):
            context.state = GateState.ANONYMOUS
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=error_payload(
                    request,
                    code="UNAUTHORIZED",
                    message="未登录或登录状态已失效。",
                    details={"status_code": status.HTTP_401_UNAUTHORIZED, "reason": "unauthorized"},
                ),
            )
        context.state = GateState.REDIRECTED
        login_path = (
            self.settings.gate_h5_login_path if context.client_type == ClientType.H5 else self.settings.gate_admin_login_path
        )
        callback = path + (f"?{request.url.query}" if request.url.query else "")
        return RedirectResponse(
            url=f"{login_path}?{urlencode({'callbackUrl': callback})}",
            status_code=status.HTTP_302_FOUND,
        )

    def _forbidden(self, request: Request, context: GateContext, *, reason: str):
        context.state = GateState.FORBIDDEN
        if self._is_api(request.url.path):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content=error_payload(
                    request,
                    code="FORBIDDEN",
                    message="无权限访问该资源。",
                    details={"status_code": status.HTTP_403_FORBIDDEN, "reason": reason},
                ),
            )
        return RedirectResponse(url=self.settings.gate_forbidden_path, status_code=status.HTTP_302_FOUND)

    async def __call__(self, request: Request, call_next):
        settings = self.settings
        path = request.url.path
        context = GateContext(client_type=detect_client_type(path, request.headers.get("x-client-type")))
        request.state.gate = context

        candidates = self._candidate_claims(request)
        # 认证前先按首个签名有效的候选解析，认证成功后以实际生效的令牌为准。
        context.claims = candidates[0] if candidates else None
        context.resolution = self._resolve(request, context.claims)
        context.state = GateState.TENANT_RESOLVED

        if _matches(path, settings.public_prefixes) or not _matches(path, settings.protected_prefixes):
            context.tenant_code = await run_in_threadpool(self._public_tenant_code, request, context.resolution)
            self._forward(request, context)
            return await call_next(request)

        if not candidates:
            return self._unauthenticated(request, context)

        try:
            authenticated = await run_in_threadpool(self._authenticate, request, context, candidates, path)
        except SQLAlchemyError:
            logger.exception(
                "gate persistence failure principal_id=%s tenant_id=%s route=%s",
                context.claims.principal_id,
                context.resolution.tenant_id,
                path,
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_payload(
                    request,
                    code="INTERNAL_ERROR",
                    message=DEFAULT_ERROR_MESSAGE,
                    details={"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR, "reason": "persistence_error"},
                ),
            )

        if authenticated is None:
            context.claims = None
            return self._unauthenticated(request, context)

        principal, route_allowed = authenticated
        context.principal = principal
        context.state = GateState.AUTHENTICATED

        if _matches(path, settings.admin_only_prefixes) and not principal.is_super_admin:
            return self._forbidden(request, context, reason="super_admin_required")
        if not route_allowed:
            return self._forbidden(request, context, reason="permission_denied")

        context.state = GateState.AUTHORIZED
        self._forward(request, context)
        return await call_next(request)


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件。后注册者位于外层，请求 ID 需先于闸门生成。"""
    app.middleware("http")(RequestGate())
    app.middleware("http")(request_id_middleware)
