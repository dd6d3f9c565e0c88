"""租户管理接口，仅超级管理员可用。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from nadmin_api.db.session import get_db
from nadmin_api.dependencies import require_super_admin
from nadmin_api.models.tenant import Tenant
from nadmin_api.schemas.common import ErrorResponse, SuccessResponse
from nadmin_api.schemas.responses import (
    DeletedData,
    TenantBatchData,
    TenantData,
    TenantOverviewData,
    TenantStatisticsData,
)
from nadmin_api.schemas.tenant import (
    TenantBatchRequest,
    TenantCreateRequest,
    TenantStatusUpdateRequest,
    TenantUpdateRequest,
)
from nadmin_api.services import AuditAction, audit_log
from nadmin_api.services.principal_loader import Principal
from nadmin_api.services.tenant_bootstrap import (
    TenantBatchOperation,
    batch_update_tenants,
    change_tenant_status,
    create_tenant,
    delete_tenant,
    get_tenant_or_404,
    serialize_tenant,
    tenant_overview,
    tenant_statistics,
    update_tenant,
)
from nadmin_api.utils.response import success

router = APIRouter(prefix="/tenants", tags=["tenants"])

_MUTATION_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.get(
    "",
    summary="查询租户列表",
    description="返回未删除的租户，可按状态与关键字过滤。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[TenantData]],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def list_tenants(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status", description="租户状态。"),
    keyword: str | None = Query(default=None, description="名称或编码关键字。"),
    _principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """查询租户列表。"""
    stmt = select(Tenant).where(Tenant.is_deleted.is_(False))
    if status_filter:
        stmt = stmt.where(Tenant.status == status_filter)
    if keyword and keyword.strip():
        pattern = f"%{keyword.strip()}%"
        stmt = stmt.where(or_(Tenant.name.ilike(pattern), Tenant.code.ilike(pattern)))
    rows = db.execute(stmt.order_by(Tenant.created_at, Tenant.code)).scalars().all()
    return success(request, [serialize_tenant(item) for item in rows])


@router.post(
    "",
    summary="创建租户",
    description="创建新租户，编码全局唯一。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantData],
    responses=_MUTATION_RESPONSES,
)
def create_tenant_item(
    payload: TenantCreateRequest,
    request: Request,
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """创建租户。"""
    tenant = create_tenant(db, name=payload.name, code=payload.code, settings=payload.settings)
    snapshot = serialize_tenant(tenant)
    audit_log(
        db=db,
        request=request,
        tenant_id=tenant.id,
        actor_user_id=principal.user_id,
        action=AuditAction.TENANT_CREATE,
        resource_type="tenant",
        resource_id=str(tenant.id),
        after_json=snapshot,
    )
    db.commit()
    return success(request, snapshot)


@router.put(
    "/{tenant_id}",
    summary="更新租户",
    description="更新租户名称、编码与配置；默认租户编码不可修改。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantData],
    responses=_MUTATION_RESPONSES,
)
def update_tenant_item(
    payload: TenantUpdateRequest,
    request: Request,
    tenant_id: UUID = Path(description="租户 ID。"),
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """更新租户。"""
    tenant = get_tenant_or_404(db, tenant_id)
    before = serialize_tenant(tenant)
    update_tenant(db, tenant, changes=payload.model_dump(exclude_unset=True, exclude_none=True))
    after = serialize_tenant(tenant)
    audit_log(
        db=db,
        request=request,
        tenant_id=tenant.id,
        actor_user_id=principal.user_id,
        action=AuditAction.TENANT_UPDATE,
        resource_type="tenant",
        resource_id=str(tenant.id),
        before_json=before,
        after_json=after,
    )
    db.commit()
    return success(request, after)


@router.put(
    "/{tenant_id}/status",
    summary="变更租户状态",
    description="默认租户状态不可修改。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantData],
    responses=_MUTATION_RESPONSES,
)
def update_tenant_status(
    payload: TenantStatusUpdateRequest,
    request: Request,
    tenant_id: UUID = Path(description="租户 ID。"),
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """变更租户状态。"""
    tenant = get_tenant_or_404(db, tenant_id)
    before_status = tenant.status
    change_tenant_status(db, tenant, status_value=payload.status)
    audit_log(
        db=db,
        request=request,
        tenant_id=tenant.id,
        actor_user_id=principal.user_id,
        action=AuditAction.TENANT_STATUS_UPDATE,
        resource_type="tenant",
        resource_id=str(tenant.id),
        before_json={"status": before_status},
        after_json={"status": tenant.status},
    )
    db.commit()
    return success(request, serialize_tenant(tenant))


@router.delete(
    "/{tenant_id}",
    summary="删除租户",
    description="默认逻辑删除，hard=true 时物理删除；默认租户不可删除。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DeletedData],
    responses=_MUTATION_RESPONSES,
)
def delete_tenant_item(
    request: Request,
    tenant_id: UUID = Path(description="租户 ID。"),
    hard: bool = Query(default=False, description="是否物理删除。"),
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """删除租户。"""
    tenant = get_tenant_or_404(db, tenant_id)
    before = serialize_tenant(tenant)
    delete_tenant(db, tenant, hard=hard)
    audit_log(
        db=db,
        request=request,
        tenant_id=tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.TENANT_DELETE,
        resource_type="tenant",
        resource_id=str(tenant_id),
        before_json=before,
        after_json={"hard": hard},
    )
    db.commit()
    return success(request, {"id": tenant_id, "deleted": True, "hard": hard})


@router.post(
    "/batch",
    summary="批量操作租户",
    description="批量启用、停用、暂停或逻辑删除租户；任一租户不存在或包含默认租户时整体拒绝。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantBatchData],
    responses=_MUTATION_RESPONSES,
)
def batch_tenants(
    payload: TenantBatchRequest,
    request: Request,
    principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """批量操作租户，每个租户各写一条审计。"""
    before = {
        tenant.id: tenant.status
        for tenant in db.execute(select(Tenant).where(Tenant.id.in_(payload.tenant_ids))).scalars().all()
    }
    tenants = batch_update_tenants(db, tenant_ids=payload.tenant_ids, operation=payload.operation)
    deleting = payload.operation == TenantBatchOperation.DELETE
    for tenant in tenants:
        audit_log(
            db=db,
            request=request,
            tenant_id=tenant.id,
            actor_user_id=principal.user_id,
            action=AuditAction.TENANT_DELETE if deleting else AuditAction.TENANT_STATUS_UPDATE,
            resource_type="tenant",
            resource_id=str(tenant.id),
            before_json={"status": before.get(tenant.id)},
            after_json={"hard": False, "batch": True} if deleting else {"status": tenant.status},
        )
    db.commit()
    return success(
        request,
        {"operation": str(payload.operation), "success": len(tenants), "tenant_ids": [tenant.id for tenant in tenants]},
    )


@router.get(
    "/stats",
    summary="全局租户统计",
    description="按状态统计租户数量，并统计用户总数与正常用户数。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantOverviewData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def get_tenant_overview(
    request: Request,
    _principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """全局租户统计。"""
    return success(request, tenant_overview(db))


@router.get(
    "/{tenant_id}/statistics",
    summary="单个租户统计",
    description="统计租户的用户、角色、角色权限关联与审计记录数量，并给出健康状态。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TenantStatisticsData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_tenant_statistics(
    request: Request,
    tenant_id: UUID = Path(description="租户 ID。"),
    _principal: Principal = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """单个租户统计。"""
    tenant = get_tenant_or_404(db, tenant_id)
    return success(request, tenant_statistics(db, tenant))
