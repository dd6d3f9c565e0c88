from itertools import product
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from nadmin_api.core.security import TokenClaims
from nadmin_api.models.enums import PermissionStatus, RoleStatus
from nadmin_api.models.permission import Permission, Role, RolePermission
from nadmin_api.services.permission_catalog import PermissionCode
from nadmin_api.services.permissions import PermissionEvaluator, summarize_checks
from nadmin_api.services.principal_loader import Principal, load_principal


def _principal(db: Session, user_id) -> Principal:
    return load_principal(db, TokenClaims(principal_id=str(user_id)))


def _permission(db: Session, code: str) -> Permission:
    return db.execute(select(Permission).where(Permission.code == code)).scalar_one()


def test_super_admin_is_granted_everything_without_queries(db_session: Session, seed):
    principal = _principal(db_session, seed.superadmin_id)
    # 超级管理员判定不触达数据库。
    evaluator = PermissionEvaluator(None)

    assert evaluator.has(principal, "anything.at.all") is True
    assert evaluator.has_any(principal, ["x", "y"]) is True
    assert evaluator.has_all(principal, ["x", "y"]) is True
    assert evaluator.check_many(principal, ["x", "y"]) == {"x": True, "y": True}


def test_operator_grants_follow_role_permissions(db_session: Session, seed):
    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)

    assert evaluator.has(principal, PermissionCode.USER_READ) is True
    assert evaluator.has(principal, PermissionCode.TENANT_UPDATE) is False
    assert evaluator.granted_codes(principal) == frozenset(
        {
            PermissionCode.USER_READ,
            PermissionCode.PERMISSION_READ,
            PermissionCode.PERMISSION_CREATE,
            PermissionCode.PERMISSION_UPDATE,
            PermissionCode.PERMISSION_DELETE,
            PermissionCode.ROLE_READ,
            PermissionCode.ROLE_ASSIGN,
        }
    )


CODES = [PermissionCode.USER_READ, PermissionCode.ROLE_READ, PermissionCode.TENANT_UPDATE, PermissionCode.LOG_READ]


@pytest.mark.parametrize(("first", "second"), list(product(CODES, repeat=2)))
def test_any_and_all_agree_with_single_checks(db_session: Session, seed, first, second):
    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)

    one, two = evaluator.has(principal, first), evaluator.has(principal, second)
    assert evaluator.has_all(principal, [first, second]) is (one and two)
    assert evaluator.has_any(principal, [first, second]) is (one or two)


def test_empty_code_lists(db_session: Session, seed):
    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)

    assert evaluator.has_all(principal, []) is True
    assert evaluator.has_any(principal, []) is False
    assert evaluator.check_many(principal, []) == {}


def test_super_admin_bypass_covers_empty_lists(db_session: Session, seed):
    principal = _principal(db_session, seed.superadmin_id)
    evaluator = PermissionEvaluator(None)

    assert evaluator.has_any(principal, []) is True
    assert evaluator.has_all(principal, []) is True


def test_grants_are_scoped_to_principal_tenant(db_session: Session, seed):
    operator_role = db_session.get(Role, seed.operator_role_id)
    tenant_log = _permission(db_session, PermissionCode.LOG_READ)
    shared_export = _permission(db_session, PermissionCode.LOG_EXPORT)
    # 其他租户下的关联不生效，tenant_id 为空的系统关联生效。
    db_session.add(
        RolePermission(role_id=operator_role.id, permission_id=tenant_log.id, tenant_id=seed.default_tenant_id)
    )
    db_session.add(RolePermission(role_id=operator_role.id, permission_id=shared_export.id, tenant_id=None))
    db_session.commit()

    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)

    assert evaluator.has(principal, PermissionCode.LOG_READ) is False
    assert evaluator.has(principal, PermissionCode.LOG_EXPORT) is True


def test_inactive_and_deleted_permissions_are_not_granted(db_session: Session, seed):
    disabled = _permission(db_session, PermissionCode.PERMISSION_DELETE)
    disabled.status = PermissionStatus.INACTIVE
    removed = _permission(db_session, PermissionCode.PERMISSION_CREATE)
    removed.is_deleted = True
    db_session.commit()

    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)

    assert evaluator.has(principal, PermissionCode.PERMISSION_DELETE) is False
    assert evaluator.has(principal, PermissionCode.PERMISSION_CREATE) is False
    assert evaluator.has(principal, PermissionCode.PERMISSION_READ) is True


def test_inactive_role_grants_nothing(db_session: Session, seed):
    role = db_session.get(Role, seed.operator_role_id)
    role.status = RoleStatus.INACTIVE
    db_session.commit()

    principal = _principal(db_session, seed.operator_id)

    assert PermissionEvaluator(db_session).granted_codes(principal) == frozenset()


def test_granted_codes_are_memoised_per_evaluator(db_session: Session, seed):
    principal = _principal(db_session, seed.operator_id)
    evaluator = PermissionEvaluator(db_session)
    first = evaluator.granted_codes(principal)

    db_session.execute(RolePermission.__table__.delete())
    db_session.commit()

    assert evaluator.granted_codes(principal) is first
    assert PermissionEvaluator(db_session).granted_codes(principal) == frozenset()


def test_principal_without_role_has_no_grants():
    principal = Principal(
        user_id=uuid4(),
        tenant_id=uuid4(),
        role_id=None,
        is_super_admin=False,
        email="nobody@example.com",
        username="nobody",
        status="active",
    )

    assert PermissionEvaluator(None).has(principal, PermissionCode.USER_READ) is False


@pytest.mark.parametrize(
    ("results", "expected"),
    [
        ({"a": True, "b": False}, {"total": 2, "granted": 1, "denied": 1, "grantedRate": "50.00%"}),
        ({}, {"total": 0, "granted": 0, "denied": 0, "grantedRate": "0%"}),
        ({"a": True, "b": False, "c": False}, {"total": 3, "granted": 1, "denied": 2, "grantedRate": "33.33%"}),
        ({"a": True}, {"total": 1, "granted": 1, "denied": 0, "grantedRate": "100.00%"}),
    ],
)
def test_summarize_checks(results, expected):
    assert summarize_checks(results) == expected
