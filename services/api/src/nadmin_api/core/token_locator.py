"""请求令牌定位。

系统由两套分别使用独立 Cookie 的子系统演进为一套，历史会话仍分布在
多个 Cookie 名下。查找顺序固定，改变顺序会让某一端已签发的会话失效：

1. 统一 Cookie `auth_token`
2. 端专属旧 Cookie：管理后台 `admin_token` / H5 `h5_token`
3. 通用旧 Cookie `token`

`Authorization: Bearer` 头是独立来源，不依赖 Cookie 是否存在。
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum

from starlette.requests import HTTPConnection

from nadmin_api.core.security import extract_bearer_token


class ClientType(StrEnum):
    """前端端类型。"""

    ADMIN = "admin"  # 浏览器管理后台。
    H5 = "h5"  # 移动端网页。


UNIFIED_COOKIE = "auth_token"
ADMIN_LEGACY_COOKIE = "admin_token"
H5_LEGACY_COOKIE = "h5_token"
GENERIC_LEGACY_COOKIE = "token"

H5_PATH_PREFIXES = ("/h5", "/api/h5")


@dataclass(frozen=True)
class TokenSource:
    """令牌来源描述。`client_type` 为空表示与端无关。"""

    cookie_name: str
    client_type: ClientType | None = None


# 顺序即优先级。
COOKIE_SOURCES: tuple[TokenSource, ...] = (
    TokenSource(UNIFIED_COOKIE),
    TokenSource(ADMIN_LEGACY_COOKIE, ClientType.ADMIN),
    TokenSource(H5_LEGACY_COOKIE, ClientType.H5),
    TokenSource(GENERIC_LEGACY_COOKIE),
)

# 登出时需要清理的全部 Cookie 名。
ALL_COOKIE_NAMES: tuple[str, ...] = tuple(source.cookie_name for source in COOKIE_SOURCES)


@dataclass(frozen=True)
class LocatedToken:
    """定位到的候选令牌。"""

    token: str
    client_type: ClientType
    # 来源：Cookie 名或 `authorization`。
    source: str


def locate(
    cookies: Mapping[str, str],
    client_hint: ClientType | None = None,
    *,
    sources: tuple[TokenSource, ...] = COOKIE_SOURCES,
) -> LocatedToken | None:
    """按来源顺序返回第一个非空 Cookie 令牌。

    指定 `client_hint` 时只考虑该端的专属旧 Cookie；未指定时两端都尝试。
    """
    for source in sources:
        if client_hint is not None and source.client_type not in (None, client_hint):
            continue
        value = (cookies.get(source.cookie_name) or "").strip()
        if not value:
            continue
        client_type = source.client_type or client_hint or ClientType.ADMIN
        return LocatedToken(token=value, client_type=client_type, source=source.cookie_name)
    return None


def locate_bearer(authorization: str | None, client_hint: ClientType | None = None) -> LocatedToken | None:
    """从 Authorization 头定位令牌。"""
    token = extract_bearer_token(authorization)
    if token is None:
        return None
    return LocatedToken(token=token, client_type=client_hint or ClientType.ADMIN, source="authorization")


def detect_client_type(path: str, client_type_header: str | None = None) -> ClientType:
    """识别请求来自哪一端：路径优先，其次显式 `x-client-type` 头，默认管理后台。"""
    normalized = (path or "").lower()
    if any(normalized.startswith(prefix) for prefix in H5_PATH_PREFIXES):
        return ClientType.H5
    header = (client_type_header or "").strip().lower()
    if header in {"h5", "mobile"}:
        return ClientType.H5
    return ClientType.ADMIN


def iter_request_tokens(conn: HTTPConnection) -> Iterator[LocatedToken]:
    """按“当前用户”快捷路径的顺序产出候选令牌。

    顺序：端内 Cookie 会话 → Bearer 头 → 通用提取（不区分端的全部 Cookie）。
    调用方需逐个校验，全部失败才能判定为未登录。
    """
    client_hint = detect_client_type(conn.url.path, conn.headers.get("x-client-type"))
    seen: set[str] = set()
    candidates = (
        locate(conn.cookies, client_hint),
        locate_bearer(conn.headers.get("authorization"), client_hint),
        locate(conn.cookies),
    )
    for candidate in candidates:
        if candidate is None or candidate.token in seen:
            continue
        seen.add(candidate.token)
        yield candidate
