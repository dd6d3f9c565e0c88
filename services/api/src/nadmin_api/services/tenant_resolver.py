"""租户解析。

解析本身从不失败：依次尝试令牌声明、请求头、子域名、查询参数，
全部缺失时回落到配置的默认租户编码。只有按 ID/编码显式查找租户时才可能抛出 TenantNotFound。
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
import ipaddress
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.core.security import TokenClaims
from nadmin_api.exceptions import TenantNotFound
from nadmin_api.models.tenant import Tenant

TENANT_ID_HEADER = "x-tenant-id"
TENANT_CODE_HEADER = "x-tenant-code"
TENANT_QUERY_PARAM = "tenant"

# 这些首段标签属于站点本身，不代表租户。
_RESERVED_SUBDOMAINS = frozenset({"www", "app"})


class ResolutionMethod(StrEnum):
    """租户来源。"""

    JWT = "jwt"
    HEADER = "header"
    SUBDOMAIN = "subdomain"
    QUERY = "query"
    DEFAULT = "default"


@dataclass(frozen=True)
class TenantResolution:
    """租户解析结果。`tenant_id` 可能是租户 ID，也可能是租户编码。"""

    tenant_id: str
    method: ResolutionMethod

    @property
    def is_default(self) -> bool:
        return self.method == ResolutionMethod.DEFAULT


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def subdomain_tenant(host: str | None) -> str | None:
    """取主机名最左侧标签作为租户编码。"""
    raw = _clean(host)
    if raw is None:
        return None
    raw = raw.lower()
    if raw.startswith("["):
        # IPv6 字面量，例如 [::1]:8080。
        return None
    hostname = raw.rsplit(":", 1)[0] if raw.count(":") == 1 else raw
    if _is_ip_literal(hostname):
        return None
    labels = [label for label in hostname.split(".") if label]
    if len(labels) < 2:
        return None
    candidate = labels[0]
    if candidate in _RESERVED_SUBDOMAINS:
        return None
    return candidate


def resolve_tenant(
    *,
    claims: TokenClaims | None = None,
    headers: Mapping[str, str] | None = None,
    host: str | None = None,
    query_params: Mapping[str, str] | None = None,
    default_tenant: str | None = None,
) -> TenantResolution:
    """按固定优先级解析租户，首个非空信号生效。

    `claims` 必须来自已校验的令牌。
    """
    if claims is not None:
        tenant_id = _clean(claims.tenant_id)
        if tenant_id:
            return TenantResolution(tenant_id, ResolutionMethod.JWT)

    headers = headers or {}
    for header_name in (TENANT_ID_HEADER, TENANT_CODE_HEADER):
        value = _clean(headers.get(header_name))
        if value:
            return TenantResolution(value, ResolutionMethod.HEADER)

    subdomain = subdomain_tenant(host)
    if subdomain:
        return TenantResolution(subdomain, ResolutionMethod.SUBDOMAIN)

    query_value = _clean((query_params or {}).get(TENANT_QUERY_PARAM))
    if query_value:
        return TenantResolution(query_value, ResolutionMethod.QUERY)

    fallback = default_tenant or get_settings().default_tenant_code
    return TenantResolution(fallback, ResolutionMethod.DEFAULT)


def lookup_tenant(db: Session, resolution: TenantResolution) -> Tenant:
    """将解析结果映射到租户记录；不存在或已删除时抛出 TenantNotFound。"""
    conditions = [Tenant.code == resolution.tenant_id]
    try:
        conditions.append(Tenant.id == UUID(resolution.tenant_id))
    except ValueError:
        pass

    tenant = db.execute(
        select(Tenant).where(or_(*conditions)).where(Tenant.is_deleted.is_(False))
    ).scalars().first()
    if tenant is None:
        raise TenantNotFound(tenant=resolution.tenant_id, method=str(resolution.method))
    return tenant
