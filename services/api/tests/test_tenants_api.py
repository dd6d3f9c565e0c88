from fastapi.testclient import TestClient
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nadmin_api.models.audit import AuditLog
from nadmin_api.models.permission import RolePermission
from nadmin_api.models.tenant import Tenant


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def root(seed, token_for) -> dict[str, str]:
    return _bearer(token_for(seed.superadmin_id))


def test_list_tenants(client: TestClient, root):
    tenants = client.get("/api/tenants", headers=root).json()["data"]

    by_code = {item["code"]: item for item in tenants}
    assert set(by_code) == {"default", "acme"}
    assert by_code["default"]["is_default"] is True
    assert by_code["acme"]["is_default"] is False

    filtered = client.get("/api/tenants", params={"keyword": "acm"}, headers=root).json()["data"]
    assert [item["code"] for item in filtered] == ["acme"]


def test_create_tenant_and_reject_duplicate_code(client: TestClient, db_session: Session, root):
    created = client.post(
        "/api/tenants",
        json={"name": "Globex", "code": "globex", "settings": {"theme": "dark"}},
        headers=root,
    )

    assert created.status_code == 200
    data = created.json()["data"]
    assert data["code"] == "globex"
    assert data["status"] == "active"
    assert data["settings"] == {"theme": "dark"}
    assert db_session.execute(
        select(func.count(AuditLog.id)).where(AuditLog.resource_id == data["id"])
    ).scalar_one() == 1

    duplicate = client.post("/api/tenants", json={"name": "Globex 2", "code": "globex"}, headers=root)
    assert duplicate.status_code == 409

    invalid = client.post("/api/tenants", json={"name": "Bad", "code": "Not Valid"}, headers=root)
    assert invalid.status_code == 422


def test_default_tenant_is_protected(client: TestClient, seed, root):
    path = f"/api/tenants/{seed.default_tenant_id}"

    renamed = client.put(path, json={"name": "新名称"}, headers=root)
    recoded = client.put(path, json={"code": "other"}, headers=root)
    suspended = client.put(f"{path}/status", json={"status": "inactive"}, headers=root)
    deleted = client.delete(path, headers=root)

    assert renamed.status_code == 200
    assert renamed.json()["data"]["name"] == "新名称"
    for response in (recoded, suspended, deleted):
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "IMMUTABLE_SYSTEM_ENTITY"


def test_update_and_change_status(client: TestClient, seed, root):
    path = f"/api/tenants/{seed.acme_tenant_id}"

    updated = client.put(path, json={"code": "acme-corp"}, headers=root)
    assert updated.json()["data"]["code"] == "acme-corp"

    inactive = client.put(f"{path}/status", json={"status": "inactive"}, headers=root)
    assert inactive.json()["data"]["status"] == "inactive"

    listed = client.get("/api/tenants", params={"status": "inactive"}, headers=root).json()["data"]
    assert [item["code"] for item in listed] == ["acme-corp"]

    switch = client.post("/api/auth/switch-tenant", json={"tenant_id": str(seed.acme_tenant_id)}, headers=root)
    assert switch.status_code == 409


def test_soft_delete_tenant(client: TestClient, db_session: Session, seed, root):
    response = client.delete(f"/api/tenants/{seed.acme_tenant_id}", headers=root)

    assert response.status_code == 200
    assert response.json()["data"] == {"id": str(seed.acme_tenant_id), "deleted": True, "hard": False}
    tenant = db_session.get(Tenant, seed.acme_tenant_id, populate_existing=True)
    assert tenant.is_deleted is True
    assert client.get("/api/tenants", headers=root).json()["data"][0]["code"] == "default"
    assert client.delete(f"/api/tenants/{seed.acme_tenant_id}", headers=root).status_code == 404


def test_hard_delete_tenant_removes_role_links(client: TestClient, db_session: Session, seed, root):
    response = client.delete(f"/api/tenants/{seed.acme_tenant_id}", params={"hard": "true"}, headers=root)

    assert response.status_code == 200
    assert response.json()["data"]["hard"] is True
    assert db_session.execute(select(Tenant).where(Tenant.id == seed.acme_tenant_id)).scalar_one_or_none() is None
    remaining = db_session.execute(
        select(func.count(RolePermission.id)).where(RolePermission.tenant_id == seed.acme_tenant_id)
    ).scalar_one()
    assert remaining == 0


def test_operator_cannot_manage_tenants(client: TestClient, seed, token_for):
    operator = _bearer(token_for(seed.operator_id))

    listed = client.get("/api/tenants", headers=operator)
    created = client.post("/api/tenants", json={"name": "Nope", "code": "nope"}, headers=operator)

    assert listed.status_code == 403
    assert created.status_code == 403
    assert listed.json()["error"]["details"]["reason"] == "super_admin_required"


def test_batch_suspend_then_delete(client: TestClient, db_session: Session, seed, root):
    globex = client.post("/api/tenants", json={"name": "Globex", "code": "globex"}, headers=root).json()["data"]["id"]
    ids = [str(seed.acme_tenant_id), globex]

    suspended = client.post("/api/tenants/batch", json={"operation": "suspend", "tenant_ids": ids}, headers=root)

    assert suspended.status_code == 200
    assert suspended.json()["data"] == {"operation": "suspend", "success": 2, "tenant_ids": ids}
    statuses = {item["code"]: item["status"] for item in client.get("/api/tenants", headers=root).json()["data"]}
    assert statuses == {"default": "active", "acme": "suspended", "globex": "suspended"}
    status_audits = db_session.execute(
        select(func.count(AuditLog.id)).where(AuditLog.action == "tenant.status.update")
    ).scalar_one()
    assert status_audits == 2

    deleted = client.post("/api/tenants/batch", json={"operation": "delete", "tenant_ids": [globex]}, headers=root)

    assert deleted.json()["data"]["success"] == 1
    codes = {item["code"] for item in client.get("/api/tenants", headers=root).json()["data"]}
    assert codes == {"default", "acme"}


def test_batch_is_all_or_nothing(client: TestClient, seed, root):
    with_default = client.post(
        "/api/tenants/batch",
        json={"operation": "deactivate", "tenant_ids": [str(seed.acme_tenant_id), str(seed.default_tenant_id)]},
        headers=root,
    )
    with_missing = client.post(
        "/api/tenants/batch",
        json={"operation": "activate", "tenant_ids": [str(seed.acme_tenant_id), "00000000-0000-0000-0000-000000000009"]},
        headers=root,
    )
    unknown_operation = client.post(
        "/api/tenants/batch", json={"operation": "archive", "tenant_ids": [str(seed.acme_tenant_id)]}, headers=root
    )
    empty = client.post("/api/tenants/batch", json={"operation": "suspend", "tenant_ids": []}, headers=root)

    assert with_default.status_code == 409
    assert with_default.json()["error"]["code"] == "IMMUTABLE_SYSTEM_ENTITY"
    assert with_missing.status_code == 404
    assert with_missing.json()["error"]["code"] == "TENANT_NOT_FOUND"
    assert unknown_operation.status_code == 422
    assert empty.status_code == 422
    statuses = {item["code"]: item["status"] for item in client.get("/api/tenants", headers=root).json()["data"]}
    assert statuses["acme"] == "active"


def test_tenant_overview_counts(client: TestClient, seed, root):
    client.put(f"/api/tenants/{seed.acme_tenant_id}/status", json={"status": "suspended"}, headers=root)

    data = client.get("/api/tenants/stats", headers=root).json()["data"]

    assert data == {
        "total_tenants": 2,
        "active_tenants": 1,
        "inactive_tenants": 0,
        "suspended_tenants": 1,
        "total_users": 3,
        "active_users": 2,
    }


def test_single_tenant_statistics(client: TestClient, seed, root):
    data = client.get(f"/api/tenants/{seed.acme_tenant_id}/statistics", headers=root).json()["data"]

    assert data["tenant"]["code"] == "acme"
    assert data["users"] == {"total": 2, "active": 1, "inactive": 0, "locked": 1, "active_rate": "50.00%"}
    assert data["roles"] == {"total": 1, "super": 0, "regular": 1}
    assert data["role_permission_count"] == 7
    assert data["audit_log_count"] == 0
    assert data["health"] == {"status": "healthy", "issues": []}

    missing = client.get("/api/tenants/00000000-0000-0000-0000-000000000009/statistics", headers=root)
    assert missing.status_code == 404
