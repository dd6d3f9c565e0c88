"""管理操作审计。

审计记录与业务变更写入同一事务，由调用方统一提交；更新类操作只保留发生变化的字段。
"""

from enum import StrEnum
import logging
from typing import Any
from uuid import UUID

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from nadmin_api.models.audit import AuditLog

logger = logging.getLogger("nadmin_api.audit")


class AuditAction(StrEnum):
    """审计动作标识。"""

    TENANT_SWITCH = "auth.tenant.switch"
    SESSION_REVOKE = "auth.session.revoke"
    PERMISSION_CREATE = "permission.create"
    PERMISSION_UPDATE = "permission.update"
    PERMISSION_DELETE = "permission.delete"
    ROLE_PERMISSION_UPDATE = "role.permission.update"
    TEMPLATE_CREATE = "permission_template.create"
    TEMPLATE_UPDATE = "permission_template.update"
    TEMPLATE_DELETE = "permission_template.delete"
    TEMPLATE_APPLY = "permission_template.apply"
    TENANT_CREATE = "tenant.create"
    TENANT_UPDATE = "tenant.update"
    TENANT_STATUS_UPDATE = "tenant.status.update"
    TENANT_DELETE = "tenant.delete"


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _snapshot(value: dict[str, Any] | None) -> dict[str, Any] | None:
    return jsonable_encoder(value) if value is not None else None


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> list[str]:
    """返回前后快照中取值不同的字段名。"""
    return sorted(key for key in before.keys() | after.keys() if before.get(key) != after.get(key))


def audit_log(
    db: Session,
    request: Request,
    *,
    tenant_id: UUID | None,
    actor_user_id: UUID | None,
    action: AuditAction,
    resource_type: str,
    resource_id: str,
    before_json: dict[str, Any] | None = None,
    after_json: dict[str, Any] | None = None,
) -> AuditLog:
    """登记一条审计记录。"""
    before, after = _snapshot(before_json), _snapshot(after_json)
    if action.endswith(".update") and before is not None and after is not None:
        changed = changed_fields(before, after)
        before = {key: before.get(key) for key in changed}
        after = {key: after.get(key) for key in changed}

    entry = AuditLog(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action=str(action),
        resource_type=resource_type,
        resource_id=resource_id,
        before_json=before,
        after_json=after,
        request_id=getattr(request.state, "request_id", None),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.add(entry)
    logger.info(
        "audit action=%s resource=%s:%s actor=%s tenant_id=%s",
        action,
        resource_type,
        resource_id,
        actor_user_id,
        tenant_id,
    )
    return entry
