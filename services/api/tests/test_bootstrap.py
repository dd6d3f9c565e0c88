from fastapi.testclient import TestClient
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nadmin_api.bootstrap import bootstrap, main
from nadmin_api.exceptions import ImmutableSystemEntity
from nadmin_api.models.permission import Permission, PermissionTemplate, TemplatePermission
from nadmin_api.models.tenant import User
from nadmin_api.services.permission_catalog import PermissionCode, default_catalog
from nadmin_api.services.permission_templates import (
    DEFAULT_TEMPLATES,
    delete_template,
    template_permission_ids,
    update_template,
)


def _template(db: Session, name: str) -> PermissionTemplate:
    return db.execute(select(PermissionTemplate).where(PermissionTemplate.name == name)).scalar_one()


def _codes(db: Session, template: PermissionTemplate) -> set[str]:
    ids = template_permission_ids(db, template.id)
    return set(db.execute(select(Permission.code).where(Permission.id.in_(ids))).scalars().all())


def test_bootstrap_seeds_tenant_catalog_and_templates(db_session: Session):
    summary = bootstrap(db_session)
    db_session.commit()

    assert summary.default_tenant_code == "default"
    assert summary.permissions_created == len(default_catalog())
    assert summary.templates_created == len(DEFAULT_TEMPLATES)
    assert summary.admin_created is False

    full = _template(db_session, "超级管理员模板")
    assert full.is_system is True
    assert full.tenant_id is None
    assert len(template_permission_ids(db_session, full.id)) == len(default_catalog())

    readonly = _template(db_session, "只读用户模板")
    assert readonly.is_system is False
    assert _codes(db_session, readonly) == {
        PermissionCode.USER_READ,
        PermissionCode.ROLE_READ,
        PermissionCode.PERMISSION_READ,
        PermissionCode.ORGANIZATION_READ,
        PermissionCode.LOG_READ,
    }


def test_bootstrap_is_idempotent(db_session: Session):
    bootstrap(db_session)
    db_session.commit()
    links = db_session.execute(select(func.count(TemplatePermission.id))).scalar_one()

    again = bootstrap(db_session)
    db_session.commit()

    assert again.permissions_created == 0
    assert again.templates_created == 0
    assert db_session.execute(select(func.count(PermissionTemplate.id))).scalar_one() == len(DEFAULT_TEMPLATES)
    assert db_session.execute(select(func.count(TemplatePermission.id))).scalar_one() == links


def test_seeded_system_template_is_immutable(db_session: Session):
    bootstrap(db_session)
    full = _template(db_session, "超级管理员模板")

    with pytest.raises(ImmutableSystemEntity):
        update_template(db_session, full, name="renamed")
    with pytest.raises(ImmutableSystemEntity):
        delete_template(db_session, full)


def test_bootstrap_admin_can_log_in(client: TestClient, db_session: Session):
    summary = bootstrap(db_session, admin_email="Owner@Example.com", admin_password="Sup3rSecret!")
    db_session.commit()

    assert summary.admin_created is True
    user = db_session.execute(select(User).where(User.email == "owner@example.com")).scalar_one()
    assert user.is_super_admin is True
    assert user.username == "Owner"

    response = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "Sup3rSecret!"})
    assert response.status_code == 200
    assert client.get("/api/health/ready").status_code == 200

    assert bootstrap(db_session, admin_email="owner@example.com", admin_password="other").admin_created is False


def test_cli_requires_admin_email_and_password_together():
    with pytest.raises(SystemExit) as exc_info:
        main(["--admin-email", "owner@example.com"])

    assert exc_info.value.code == 2
