"""访问令牌编解码与会话 ID 钩子。

令牌签名密钥在构造 `CredentialCodec` 时注入，进程内只构造一次；
轮换密钥即令所有已签发令牌失效（核心层不做 key-id 间接寻址）。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from functools import lru_cache
import json
import logging
import re
from threading import Lock
from typing import Any

import jwt
from jwt import InvalidSignatureError, InvalidTokenError
from redis import Redis
from redis.exceptions import RedisError

from nadmin_api.core.config import get_settings

logger = logging.getLogger("nadmin_api.security")

_LOCAL_SESSIONS: dict[str, tuple[str, int]] = {}
# 主体 -> 会话 ID -> 登记信息。
_LOCAL_USER_SESSIONS: dict[str, dict[str, dict[str, Any]]] = {}
_LOCAL_LOCK = Lock()
_redis_client: Redis | None = None


class TokenError(StrEnum):
    """令牌校验失败原因。"""

    INVALID_SIGNATURE = "invalid_signature"  # 签名不匹配（密钥错误或内容被篡改）。
    EXPIRED = "expired"  # 已到达或超过过期时间。
    MALFORMED = "malformed"  # 结构非法或缺少必需声明。


@dataclass(frozen=True)
class TokenClaims:
    """访问令牌声明集。"""

    # 主体（用户）ID。
    principal_id: str
    # 所属租户 ID。
    tenant_id: str | None = None
    # 角色 ID。
    role_id: str | None = None
    # 是否超级管理员。
    is_super_admin: bool = False
    # 仅用于展示的邮箱与用户名。
    email: str | None = None
    username: str | None = None
    # 签发与过期时间（Unix 秒），签名时由编解码器写入。
    issued_at: int | None = None
    expires_at: int | None = None
    # 可选会话 ID（sid），供会话钩子使用。
    session_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.principal_id,
            "tenantId": self.tenant_id,
            "roleId": self.role_id,
            "isSuperAdmin": self.is_super_admin,
            "email": self.email,
            "username": self.username,
        }
        if self.session_id:
            payload["sid"] = self.session_id
        return payload


@dataclass(frozen=True)
class TokenVerification:
    """校验结果：成功时携带声明，失败时携带原因，二者互斥。"""

    claims: TokenClaims | None = None
    error: TokenError | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


def _optional_str(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


class CredentialCodec:
    """无状态的令牌签名/校验器。"""

    def __init__(self, secret: str, *, algorithm: str = "HS256", leeway_seconds: int = 0) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._leeway = max(0, leeway_seconds)

    def sign(self, claims: TokenClaims, ttl: timedelta, *, now: datetime | None = None) -> str:
        """签发令牌，过期时间为 now + ttl。"""
        issued = now or datetime.now(timezone.utc)
        payload = claims.to_payload()
        payload["iat"] = int(issued.timestamp())
        payload["exp"] = int((issued + ttl).timestamp())
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str | None, *, now: datetime | None = None) -> TokenVerification:
        """校验令牌；任何失败都以类型化结果返回，不抛异常。"""
        if not isinstance(token, str) or not token.strip():
            return TokenVerification(error=TokenError.MALFORMED)

        try:
            payload = jwt.decode(
                token.strip(),
                key=self._secret,
                algorithms=[self._algorithm],
                # 过期判定在下方按注入时钟完成，保证 t 时刻起即视为过期。
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except InvalidSignatureError:
            return TokenVerification(error=TokenError.INVALID_SIGNATURE)
        except InvalidTokenError:
            return TokenVerification(error=TokenError.MALFORMED)

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return TokenVerification(error=TokenError.MALFORMED)
        now_ts = (now or datetime.now(timezone.utc)).timestamp()
        if now_ts >= exp + self._leeway:
            return TokenVerification(error=TokenError.EXPIRED)

        principal_id = _optional_str(payload.get("id"))
        if principal_id is None:
            return TokenVerification(error=TokenError.MALFORMED)

        iat = payload.get("iat")
        return TokenVerification(
            claims=TokenClaims(
                principal_id=principal_id,
                tenant_id=_optional_str(payload.get("tenantId")),
                role_id=_optional_str(payload.get("roleId")),
                is_super_admin=payload.get("isSuperAdmin") is True,
                email=_optional_str(payload.get("email")),
                username=_optional_str(payload.get("username")),
                issued_at=int(iat) if isinstance(iat, (int, float)) and not isinstance(iat, bool) else None,
                expires_at=int(exp),
                session_id=_optional_str(payload.get("sid")),
            )
        )


@lru_cache
def get_credential_codec() -> CredentialCodec:
    """按启动配置构造进程级编解码器。"""
    settings = get_settings()
    return CredentialCodec(
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
        leeway_seconds=settings.auth_jwt_leeway_seconds,
    )


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None) -> str | None:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        return None
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    for candidate in reversed(tokens):
        token = candidate.strip()
        # 接口调试工具未替换的变量占位符不是令牌。
        if token and not _is_placeholder_token(token):
            return token
    return None


def _get_redis() -> Redis | None:
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def _session_key(session_id: str) -> str:
    return f"{get_settings().auth_session_prefix}{session_id}"


def _user_index_key(principal_id: str) -> str:
    return f"{get_settings().auth_session_prefix}user:{principal_id}"


def _cleanup_local(now_ts: int) -> None:
    expired = [key for key, (_, expires_at) in _LOCAL_SESSIONS.items() if expires_at <= now_ts]
    for key in expired:
        principal_id, _ = _LOCAL_SESSIONS.pop(key)
        _LOCAL_USER_SESSIONS.get(principal_id, {}).pop(key, None)


def activate_session(
    *,
    session_id: str,
    principal_id: str,
    exp_ts: int,
    metadata: dict[str, Any] | None = None,
) -> None:
    """登记会话 ID，有效期与令牌一致；`metadata` 供会话列表展示（登录端、IP 等）。"""
    now_ts = int(datetime.now(timezone.utc).timestamp())
    ttl = max(1, exp_ts - now_ts)
    entry = {**(metadata or {}), "issued_at": now_ts, "expires_at": exp_ts}
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            index_key = _user_index_key(principal_id)
            redis_client.setex(_session_key(session_id), ttl, principal_id)
            redis_client.hset(index_key, session_id, json.dumps(entry))
            # 索引随最晚过期的会话一起过期。
            redis_client.expire(index_key, max(ttl, redis_client.ttl(index_key)))
            return
        except RedisError:
            # Redis 不可用时回退到本地登记。
            logger.warning("session store unavailable, falling back to local map")

    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        _LOCAL_SESSIONS[session_id] = (principal_id, exp_ts)
        _LOCAL_USER_SESSIONS.setdefault(principal_id, {})[session_id] = entry


def clear_session(session_id: str, *, principal_id: str | None = None) -> bool:
    """注销会话 ID，返回是否确有登记。给出 `principal_id` 时只注销属于该主体的会话。"""
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            owner = redis_client.get(_session_key(session_id))
            if owner is None:
                if principal_id is not None:
                    redis_client.hdel(_user_index_key(principal_id), session_id)
                return False
            if principal_id is not None and owner != principal_id:
                return False
            redis_client.delete(_session_key(session_id))
            redis_client.hdel(_user_index_key(owner), session_id)
            return True
        except RedisError:
            logger.warning("session store unavailable, falling back to local map")

    with _LOCAL_LOCK:
        current = _LOCAL_SESSIONS.get(session_id)
        if current is None:
            return False
        owner = current[0]
        if principal_id is not None and owner != principal_id:
            return False
        _LOCAL_SESSIONS.pop(session_id, None)
        _LOCAL_USER_SESSIONS.get(owner, {}).pop(session_id, None)
        return True


def list_sessions(principal_id: str) -> dict[str, dict[str, Any]]:
    """返回主体名下未过期的会话：会话 ID -> 登记信息。"""
    now_ts = int(datetime.now(timezone.utc).timestamp())
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            index_key = _user_index_key(principal_id)
            sessions: dict[str, dict[str, Any]] = {}
            stale: list[str] = []
            for session_id, raw in redis_client.hgetall(index_key).items():
                entry = json.loads(raw)
                if entry.get("expires_at", 0) > now_ts and redis_client.exists(_session_key(session_id)):
                    sessions[session_id] = entry
                else:
                    stale.append(session_id)
            if stale:
                redis_client.hdel(index_key, *stale)
            return sessions
        except RedisError:
            logger.warning("session store unavailable, falling back to local map")

    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        return {key: dict(value) for key, value in _LOCAL_USER_SESSIONS.get(principal_id, {}).items()}


def is_session_active(*, session_id: str, principal_id: str) -> bool:
    """判断会话 ID 是否仍登记在该主体名下。"""
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            return redis_client.get(_session_key(session_id)) == principal_id
        except RedisError:
            logger.warning("session store unavailable, falling back to local map")

    now_ts = int(datetime.now(timezone.utc).timestamp())
    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        current = _LOCAL_SESSIONS.get(session_id)
        return bool(current and current[0] == principal_id)
