from collections.abc import Generator
from datetime import timedelta
import logging
from urllib.parse import parse_qs, unquote, urlsplit

from fastapi import Request
from fastapi.testclient import TestClient
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from nadmin_api import middlewares
from nadmin_api.main import create_app
from nadmin_api.middlewares import FORWARDED_HEADERS, GateState
from nadmin_api.models.tenant import User

SPOOFED = {
    "x-user-id": "00000000-0000-0000-0000-000000000000",
    "x-user-email": "spoof@example.com",
    "x-user-tenant-id": "spoofed-tenant",
    "x-user-system": "h5",
}


@pytest.fixture
def gate_client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    app = create_app(session_factory=session_factory)

    def _echo(request: Request) -> dict:
        gate = request.state.gate
        return {
            "headers": {name: request.headers.get(name) for name in FORWARDED_HEADERS},
            "state": gate.state.value,
            "tenant": gate.resolution.tenant_id,
            "method": gate.resolution.method.value,
            "principal": str(gate.principal.user_id) if gate.principal else None,
        }

    for path in (
        "/api/_echo",
        "/api/health/_echo",
        "/admin/home",
        "/h5/home",
        "/admin/dashboard/account/tenant",
        "/admin/dashboard/account/user",
        "/admin/dashboard/system/logs",
    ):
        app.add_api_route(path, _echo, methods=["GET"])

    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _cookie(token: str) -> dict[str, str]:
    return {"Cookie": f"auth_token={token}"}


def _redirect_target(response) -> tuple[str, dict[str, list[str]]]:
    parts = urlsplit(response.headers["location"])
    return parts.path, parse_qs(parts.query)


def test_anonymous_admin_page_redirects_to_login_with_callback(gate_client: TestClient, seed):
    response = gate_client.get("/admin/home?tab=users")

    assert response.status_code == 302
    path, query = _redirect_target(response)
    assert path == "/admin/login"
    assert query == {"callbackUrl": ["/admin/home?tab=users"]}


def test_anonymous_h5_page_redirects_to_h5_login(gate_client: TestClient, seed):
    response = gate_client.get("/h5/home")

    assert response.status_code == 302
    path, query = _redirect_target(response)
    assert path == "/h5/login"
    assert query == {"callbackUrl": ["/h5/home"]}


def test_anonymous_api_gets_401_envelope(gate_client: TestClient, seed):
    response = gate_client.get("/api/_echo")

    assert response.status_code == 401
    body = response.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["request_id"] == response.headers["x-request-id"]


def test_expired_and_forged_tokens_are_anonymous(gate_client: TestClient, seed, token_for):
    expired = token_for(seed.operator_id, ttl=timedelta(seconds=-5))

    assert gate_client.get("/api/_echo", headers=_bearer(expired)).status_code == 401
    assert gate_client.get("/api/_echo", headers=_bearer("not-a-token")).status_code == 401


def test_locked_user_is_treated_as_unauthenticated(gate_client: TestClient, seed, token_for):
    token = token_for(seed.locked_id)

    assert gate_client.get("/api/_echo", headers=_bearer(token)).status_code == 401
    response = gate_client.get("/admin/home", headers=_cookie(token))
    assert response.status_code == 302
    assert _redirect_target(response)[0] == "/admin/login"


def test_disabled_cookie_session_falls_through_to_bearer(gate_client: TestClient, seed, token_for):
    locked = token_for(seed.locked_id, tenant_id=str(seed.default_tenant_id))
    headers = {**_cookie(locked), **_bearer(token_for(seed.operator_id))}

    response = gate_client.get("/api/_echo", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["principal"] == str(seed.operator_id)
    # 租户取自实际完成认证的令牌。
    assert body["tenant"] == str(seed.acme_tenant_id)
    assert body["headers"]["x-tenant-code"] == "acme"


def test_unknown_principal_falls_through_to_generic_extraction(gate_client: TestClient, seed, token_for):
    ghost = token_for(seed.operator_id, principal_id="00000000-0000-0000-0000-000000000001")
    # 管理后台路径不读 h5_token，只有通用提取阶段才会取到它。
    headers = {**_bearer(ghost), "Cookie": f"h5_token={token_for(seed.operator_id)}"}

    response = gate_client.get("/admin/dashboard/account/user", headers=headers)

    assert response.status_code == 200
    assert response.json()["principal"] == str(seed.operator_id)


def test_all_candidates_disabled_is_unauthenticated(gate_client: TestClient, seed, token_for):
    locked = token_for(seed.locked_id)
    headers = {**_cookie(locked), **_bearer(locked)}

    assert gate_client.get("/api/_echo", headers=headers).status_code == 401


def test_authenticated_request_is_authorized(gate_client: TestClient, seed, token_for):
    response = gate_client.get("/api/_echo", headers=_bearer(token_for(seed.operator_id)))

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == GateState.AUTHORIZED
    assert body["principal"] == str(seed.operator_id)
    assert body["method"] == "jwt"
    assert body["tenant"] == str(seed.acme_tenant_id)


def test_admin_only_page_requires_super_admin(gate_client: TestClient, seed, token_for):
    response = gate_client.get("/admin/dashboard/account/tenant", headers=_cookie(token_for(seed.operator_id)))
    assert response.status_code == 302
    assert response.headers["location"] == "/403"

    root = _cookie(token_for(seed.superadmin_id))
    assert gate_client.get("/admin/dashboard/account/tenant", headers=root).status_code == 200


def test_admin_only_api_returns_403(gate_client: TestClient, seed, token_for):
    response = gate_client.get("/api/tenants", headers=_bearer(token_for(seed.operator_id)))

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "FORBIDDEN"
    assert error["details"]["reason"] == "super_admin_required"


def test_route_permission_map_is_enforced(gate_client: TestClient, seed, token_for):
    operator = _cookie(token_for(seed.operator_id))

    assert gate_client.get("/admin/dashboard/account/user", headers=operator).status_code == 200
    denied = gate_client.get("/admin/dashboard/system/logs", headers=operator)
    assert denied.status_code == 302
    assert denied.headers["location"] == "/403"

    root = _cookie(token_for(seed.superadmin_id))
    assert gate_client.get("/admin/dashboard/system/logs", headers=root).status_code == 200


def test_forwarded_headers_replace_client_values(gate_client: TestClient, seed, token_for):
    headers = {**_bearer(token_for(seed.operator_id)), **SPOOFED, "x-tenant-code": "evil"}

    forwarded = gate_client.get("/api/_echo", headers=headers).json()["headers"]

    assert forwarded == {
        "x-tenant-code": "acme",
        "x-user-id": str(seed.operator_id),
        "x-user-email": "operator@example.com",
        "x-user-tenant-id": str(seed.acme_tenant_id),
        "x-user-system": "admin",
    }


def test_public_route_strips_identity_headers(gate_client: TestClient, seed):
    body = gate_client.get("/api/health/_echo", headers=SPOOFED).json()

    assert body["state"] == GateState.TENANT_RESOLVED
    assert body["principal"] is None
    assert body["headers"] == {
        "x-tenant-code": "default",
        "x-user-id": None,
        "x-user-email": None,
        "x-user-tenant-id": None,
        "x-user-system": None,
    }


def test_persistence_failure_returns_500_and_logs_context(
    gate_client: TestClient,
    seed,
    token_for,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
):
    def _broken(_db, _claims):
        raise OperationalError("SELECT 1", {}, Exception("database is unavailable"))

    monkeypatch.setattr(middlewares, "load_principal", _broken)
    token = token_for(seed.operator_id)

    with caplog.at_level(logging.ERROR, logger="nadmin_api.gate"):
        response = gate_client.get("/api/_echo", headers=_bearer(token))

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert error["details"]["reason"] == "persistence_error"
    assert str(seed.operator_id) in caplog.text
    assert "/api/_echo" in caplog.text
    assert token not in caplog.text


def test_switched_tenant_is_forwarded_as_code(gate_client: TestClient, seed, token_for):
    token = token_for(seed.superadmin_id, tenant_id=str(seed.acme_tenant_id))

    forwarded = gate_client.get("/api/_echo", headers=_bearer(token)).json()["headers"]

    assert forwarded["x-tenant-code"] == "acme"
    assert forwarded["x-user-tenant-id"] == str(seed.default_tenant_id)


def test_public_route_forwards_code_for_tenant_id_header(gate_client: TestClient, seed):
    body = gate_client.get("/api/health/_echo", headers={"x-tenant-id": str(seed.acme_tenant_id)}).json()

    assert body["method"] == "header"
    assert body["headers"]["x-tenant-code"] == "acme"


def test_non_ascii_email_is_percent_encoded(
    gate_client: TestClient, db_session: Session, seed, token_for
):
    user = User(
        tenant_id=seed.acme_tenant_id,
        role_id=seed.operator_role_id,
        email="张三@example.com",
        username="zhangsan",
    )
    db_session.add(user)
    db_session.commit()

    forwarded = gate_client.get("/api/_echo", headers=_bearer(token_for(user.id))).json()["headers"]

    assert forwarded["x-user-email"].isascii()
    assert unquote(forwarded["x-user-email"]) == "张三@example.com"
