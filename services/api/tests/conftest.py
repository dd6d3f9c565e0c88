import os

# 应用模块在导入时读取配置，必须先于导入设置。
os.environ.setdefault("NADMIN_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("NADMIN_AUTH_JWT_SECRET", "http-test-secret-key-at-least-32-bytes")

from collections.abc import Generator
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.dialects.postgresql import INET, JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import nadmin_api.models  # noqa: F401
from nadmin_api.core import security as security_module
from nadmin_api.core.config import get_settings
from nadmin_api.core.security import TokenClaims, get_credential_codec
from nadmin_api.db.session import get_db
from nadmin_api.main import create_app
from nadmin_api.models.base import Base
from nadmin_api.models.enums import UserStatus
from nadmin_api.models.permission import Permission, Role, RolePermission
from nadmin_api.models.tenant import Tenant, User
from nadmin_api.services.local_auth import hash_password
from nadmin_api.services.permission_catalog import PermissionCode, seed_default_permissions
from nadmin_api.services.tenant_bootstrap import ensure_default_tenant

TEST_SECRET = "http-test-secret-key-at-least-32-bytes"
TEST_PASSWORD = "StrongPassw0rd!"


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(_type_, _compiler, **_kwargs):
    return "JSON"


@compiles(INET, "sqlite")
def _compile_inet_sqlite(_type_, _compiler, **_kwargs):
    return "TEXT"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("NADMIN_AUTH_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("NADMIN_AUTH_PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.setenv("NADMIN_AUTH_SESSION_TRACKING", "false")
    monkeypatch.delenv("NADMIN_REDIS_URL", raising=False)
    get_settings.cache_clear()
    get_credential_codec.cache_clear()
    security_module._LOCAL_SESSIONS.clear()
    security_module._LOCAL_USER_SESSIONS.clear()
    security_module._redis_client = None
    yield
    get_settings.cache_clear()
    get_credential_codec.cache_clear()
    security_module._LOCAL_SESSIONS.clear()
    security_module._LOCAL_USER_SESSIONS.clear()


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@dataclass
class SeedData:
    default_tenant_id: UUID
    acme_tenant_id: UUID
    super_role_id: UUID
    operator_role_id: UUID
    superadmin_id: UUID
    operator_id: UUID
    locked_id: UUID


def _add_user(db: Session, *, tenant: Tenant, role: Role, email: str, username: str, **extra) -> User:
    user = User(
        tenant_id=tenant.id,
        role_id=role.id,
        email=email,
        username=username,
        display_name=username.title(),
        password_hash=hash_password(TEST_PASSWORD),
        **extra,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def seed(db_session: Session) -> SeedData:
    """默认租户、acme 租户、内置权限目录、超级管理员、普通操作员与锁定用户。"""
    default_tenant = ensure_default_tenant(db_session)
    acme = Tenant(name="Acme", code="acme", settings={})
    db_session.add(acme)
    db_session.flush()
    seed_default_permissions(db_session)

    super_role = Role(name="超级管理员", code="super_admin", is_super=True, is_system=True)
    operator_role = Role(tenant_id=acme.id, name="操作员", code="operator")
    db_session.add_all([super_role, operator_role])
    db_session.flush()

    codes = {
        PermissionCode.USER_READ,
        PermissionCode.PERMISSION_READ,
        PermissionCode.PERMISSION_CREATE,
        PermissionCode.PERMISSION_UPDATE,
        PermissionCode.PERMISSION_DELETE,
        PermissionCode.ROLE_READ,
        PermissionCode.ROLE_ASSIGN,
    }
    permission_ids = db_session.execute(select(Permission.id).where(Permission.code.in_(codes))).scalars().all()
    for permission_id in permission_ids:
        db_session.add(RolePermission(role_id=operator_role.id, permission_id=permission_id, tenant_id=acme.id))

    superadmin = _add_user(
        db_session, tenant=default_tenant, role=super_role, email="root@example.com", username="root", is_super_admin=True
    )
    operator = _add_user(db_session, tenant=acme, role=operator_role, email="operator@example.com", username="operator")
    locked = _add_user(
        db_session,
        tenant=acme,
        role=operator_role,
        email="locked@example.com",
        username="locked",
        status=UserStatus.LOCKED,
    )
    db_session.commit()
    return SeedData(
        default_tenant_id=default_tenant.id,
        acme_tenant_id=acme.id,
        super_role_id=super_role.id,
        operator_role_id=operator_role.id,
        superadmin_id=superadmin.id,
        operator_id=operator.id,
        locked_id=locked.id,
    )


def make_token(db: Session, user_id: UUID, *, ttl: timedelta = timedelta(hours=1), **overrides) -> str:
    """按数据库中的用户签发测试令牌。"""
    user = db.get(User, user_id)
    values = {
        "principal_id": str(user.id),
        "tenant_id": str(user.tenant_id),
        "role_id": str(user.role_id),
        "is_super_admin": user.is_super_admin,
        "email": user.email,
        "username": user.username,
    }
    values.update(overrides)
    return get_credential_codec().sign(TokenClaims(**values), ttl)


@pytest.fixture
def client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    app = create_app(session_factory=session_factory)

    def _override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def token_for(db_session: Session):
    """签发测试令牌的工厂。"""

    def _make(user_id: UUID, **overrides) -> str:
        return make_token(db_session, user_id, **overrides)

    return _make
