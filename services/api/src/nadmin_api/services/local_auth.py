"""本地账号认证服务。"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.core.security import TokenClaims, activate_session, get_credential_codec
from nadmin_api.models.tenant import User


def hash_password(password: str) -> str:
    """使用 PBKDF2-SHA256 生成口令哈希。"""
    iterations = get_settings().auth_password_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"pbkdf2_sha256${iterations}${salt_b64}${digest_b64}"


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配，哈希格式非法时返回 False。"""
    try:
        algorithm, iterations_text, salt_b64, expected_b64 = password_hash.split("$", 3)
        if algorithm != "pbkdf2_sha256":
            return False
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected = base64.b64decode(expected_b64.encode("ascii"))
    except (ValueError, TypeError, binascii.Error):
        return False
    actual = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual, expected)


def find_login_user(db: Session, *, account: str) -> User | None:
    """按邮箱或用户名查找可登录账号，跨租户取最早创建的一条。"""
    normalized = account.strip()
    return db.execute(
        select(User)
        .where(or_(User.email == normalized.lower(), User.username == normalized))
        .where(User.is_deleted.is_(False))
        .order_by(User.created_at)
    ).scalars().first()


def issue_access_token(
    user: User,
    *,
    tenant_id: str | None = None,
    remember_me: bool = False,
    now: datetime | None = None,
    session_meta: dict[str, Any] | None = None,
) -> tuple[str, datetime]:
    """签发访问令牌，返回令牌与过期时间。`tenant_id` 可覆盖令牌绑定的租户。

    启用会话跟踪时 `session_meta`（登录端、IP、客户端标识）随会话登记，供会话列表展示。
    """
    settings = get_settings()
    issued = now or datetime.now(timezone.utc)
    ttl_seconds = settings.auth_remember_me_ttl_seconds if remember_me else settings.auth_access_token_ttl_seconds
    ttl = timedelta(seconds=ttl_seconds)
    session_id = str(uuid4()) if settings.auth_session_tracking else None

    claims = TokenClaims(
        principal_id=str(user.id),
        tenant_id=tenant_id or str(user.tenant_id),
        role_id=str(user.role_id) if user.role_id else None,
        is_super_admin=bool(user.is_super_admin),
        email=user.email,
        username=user.username,
        session_id=session_id,
    )
    token = get_credential_codec().sign(claims, ttl, now=issued)
    expires_at = issued + ttl
    if session_id:
        activate_session(
            session_id=session_id,
            principal_id=str(user.id),
            exp_ts=int(expires_at.timestamp()),
            metadata=session_meta,
        )
    return token, expires_at
