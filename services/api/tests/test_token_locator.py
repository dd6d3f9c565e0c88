from starlette.requests import Request

from nadmin_api.core.token_locator import (
    ALL_COOKIE_NAMES,
    ClientType,
    detect_client_type,
    iter_request_tokens,
    locate,
    locate_bearer,
)


def _request(path: str, *, cookie: str | None = None, authorization: str | None = None) -> Request:
    headers = []
    if cookie:
        headers.append((b"cookie", cookie.encode("latin-1")))
    if authorization:
        headers.append((b"authorization", authorization.encode("latin-1")))
    return Request({"type": "http", "method": "GET", "path": path, "headers": headers, "query_string": b""})


def test_admin_legacy_cookie_used_when_unified_absent():
    found = locate({"admin_token": "legacy-admin"})

    assert found is not None
    assert found.token == "legacy-admin"
    assert found.client_type == ClientType.ADMIN
    assert found.source == "admin_token"


def test_unified_cookie_takes_precedence():
    found = locate({"token": "generic", "admin_token": "legacy-admin", "auth_token": "unified"})

    assert found.token == "unified"
    assert found.source == "auth_token"


def test_client_hint_restricts_surface_specific_cookies():
    cookies = {"admin_token": "legacy-admin", "h5_token": "legacy-h5"}

    assert locate(cookies, ClientType.H5).token == "legacy-h5"
    assert locate(cookies, ClientType.H5).client_type == ClientType.H5
    assert locate(cookies, ClientType.ADMIN).token == "legacy-admin"
    # 未指定端时两端都尝试，管理后台优先。
    assert locate(cookies).token == "legacy-admin"


def test_h5_hint_ignores_admin_cookie_and_falls_back_to_generic():
    found = locate({"admin_token": "legacy-admin", "token": "generic"}, ClientType.H5)

    assert found.token == "generic"
    assert found.client_type == ClientType.H5


def test_blank_cookie_values_are_skipped():
    assert locate({"auth_token": "  ", "token": ""}) is None
    assert locate({}) is None


def test_logout_cookie_names_cover_every_source():
    assert set(ALL_COOKIE_NAMES) == {"auth_token", "admin_token", "h5_token", "token"}


def test_bearer_source_is_independent_of_cookies():
    found = locate_bearer("Bearer header-token", ClientType.H5)

    assert found.token == "header-token"
    assert found.client_type == ClientType.H5
    assert found.source == "authorization"
    assert locate_bearer(None) is None


def test_detect_client_type():
    assert detect_client_type("/h5/home") == ClientType.H5
    assert detect_client_type("/api/h5/profile") == ClientType.H5
    assert detect_client_type("/api/auth/session", "mobile") == ClientType.H5
    assert detect_client_type("/api/auth/session", "H5") == ClientType.H5
    assert detect_client_type("/admin/dashboard") == ClientType.ADMIN
    assert detect_client_type("/api/auth/session", "desktop") == ClientType.ADMIN


def test_request_candidates_follow_cookie_header_generic_order():
    request = _request("/api/auth/session", cookie="admin_token=cookie-a", authorization="Bearer header-b")

    candidates = list(iter_request_tokens(request))

    assert [item.token for item in candidates] == ["cookie-a", "header-b"]
    assert [item.source for item in candidates] == ["admin_token", "authorization"]


def test_generic_extraction_finds_other_surface_cookie():
    request = _request("/h5/home", cookie="admin_token=cookie-a")

    candidates = list(iter_request_tokens(request))

    assert len(candidates) == 1
    assert candidates[0].token == "cookie-a"
    assert candidates[0].client_type == ClientType.ADMIN


def test_duplicate_tokens_are_yielded_once():
    request = _request("/admin/home", cookie="auth_token=same", authorization="Bearer same")

    assert [item.token for item in iter_request_tokens(request)] == ["same"]
