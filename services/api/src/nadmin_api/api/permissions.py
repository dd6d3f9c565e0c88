"""权限检查、权限树与权限配置接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from nadmin_api.db.session import get_db
from nadmin_api.dependencies import get_current_principal, get_permission_evaluator, require_permission
from nadmin_api.models.permission import Permission
from nadmin_api.schemas.common import ErrorResponse, SuccessResponse
from nadmin_api.schemas.permission import (
    PermissionCheckRequest,
    PermissionCreateRequest,
    PermissionUpdateRequest,
    RolePermissionUpdateRequest,
)
from nadmin_api.schemas.responses import (
    DeletedData,
    PermissionCheckData,
    PermissionData,
    PermissionTreeData,
    PermissionUsageData,
    RolePermissionData,
)
from nadmin_api.services import AuditAction, PermissionCode, audit_log
from nadmin_api.services.permission_tree import build_permission_tree, flatten_tree
from nadmin_api.services.permissions import (
    PermissionEvaluator,
    create_permission,
    delete_permission,
    get_permission_or_404,
    get_role_or_404,
    list_role_permission_ids,
    permission_usage,
    resolve_role_scope,
    serialize_permission,
    set_role_permissions,
    summarize_checks,
    update_permission,
)
from nadmin_api.services.principal_loader import Principal
from nadmin_api.utils.response import success

router = APIRouter(prefix="/permissions", tags=["permissions"])


def _check_payload(
    principal: Principal,
    evaluator: PermissionEvaluator,
    codes: list[str],
    resource_id: str | None,
) -> dict[str, object]:
    results = evaluator.check_many(principal, codes)
    return {"permissions": results, "summary": summarize_checks(results), "resource_id": resource_id}


@router.post(
    "/check",
    summary="批量检查权限",
    description="返回每个权限编码的判定结果与汇总统计；超级管理员全部通过。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionCheckData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def check_permissions(
    payload: PermissionCheckRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """批量检查权限。"""
    return success(request, _check_payload(principal, evaluator, payload.permissions, payload.resource_id))


@router.get(
    "/check",
    summary="批量检查权限（查询参数）",
    description="`permissions` 为逗号分隔的权限编码。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionCheckData],
    responses={401: {"model": ErrorResponse}},
)
def check_permissions_by_query(
    request: Request,
    permissions: str = Query(default="", description="逗号分隔的权限编码。"),
    resource_id: str | None = Query(default=None, alias="resourceId", description="可选资源 ID。"),
    principal: Principal = Depends(get_current_principal),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """通过查询参数批量检查权限。"""
    codes = PermissionCheckRequest(permissions=permissions.split(",")).permissions
    return success(request, _check_payload(principal, evaluator, codes, resource_id))


@router.get(
    "/tree",
    summary="查询权限树",
    description="返回按 sort_order、name 排序的权限森林，节点携带 roleUsageCount。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionTreeData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def get_permission_tree(
    request: Request,
    parent_id: UUID | None = Query(default=None, description="只返回该权限下的子树。"),
    _principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_READ)),
    db: Session = Depends(get_db),
):
    """查询权限树。"""
    roots = build_permission_tree(db, parent_id=parent_id)
    return success(
        request,
        {"tree": [node.to_dict() for node in roots], "total": len(flatten_tree(roots))},
    )


@router.get(
    "/roles/{role_id}",
    summary="查询角色权限",
    description="默认返回当前租户作用域下的角色权限；超级管理员可查询系统级或指定租户。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RolePermissionData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_role_permissions(
    request: Request,
    role_id: UUID = Path(description="角色 ID。"),
    tenant_id: UUID | None = Query(default=None, description="作用租户 ID。"),
    system: bool = Query(default=False, description="是否查询系统级关联。"),
    principal: Principal = Depends(require_permission(PermissionCode.ROLE_READ)),
    db: Session = Depends(get_db),
):
    """查询角色权限。"""
    role = get_role_or_404(db, role_id)
    scope = resolve_role_scope(principal, tenant_id=tenant_id, system=system)
    permission_ids = list_role_permission_ids(db, role_id=role.id, tenant_id=scope)
    return success(request, {"role_id": role.id, "tenant_id": scope, "permission_ids": permission_ids})


@router.put(
    "/roles/{role_id}",
    summary="设置角色权限",
    description="覆盖设置角色在作用租户下的权限集合；系统角色不可修改。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RolePermissionData],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def update_role_permissions(
    payload: RolePermissionUpdateRequest,
    request: Request,
    role_id: UUID = Path(description="角色 ID。"),
    tenant_id: UUID | None = Query(default=None, description="作用租户 ID。"),
    system: bool = Query(default=False, description="是否设置系统级关联。"),
    principal: Principal = Depends(require_permission(PermissionCode.ROLE_ASSIGN)),
    db: Session = Depends(get_db),
):
    """设置角色权限。"""
    role = get_role_or_404(db, role_id)
    scope = resolve_role_scope(principal, tenant_id=tenant_id, system=system)
    before = list_role_permission_ids(db, role_id=role.id, tenant_id=scope)
    after = set_role_permissions(db, role=role, tenant_id=scope, permission_ids=payload.permission_ids)
    audit_log(
        db=db,
        request=request,
        tenant_id=scope,
        actor_user_id=principal.user_id,
        action=AuditAction.ROLE_PERMISSION_UPDATE,
        resource_type="role",
        resource_id=str(role.id),
        before_json={"permission_ids": before},
        after_json={"permission_ids": after},
    )
    db.commit()
    return success(request, {"role_id": role.id, "tenant_id": scope, "permission_ids": after})


@router.get(
    "",
    summary="查询权限列表",
    description="按类型、状态、关键字过滤未删除的权限，按 sort_order、name 排序。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PermissionData]],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def list_permissions(
    request: Request,
    permission_type: str | None = Query(default=None, alias="type", description="节点类型。"),
    status_filter: str | None = Query(default=None, alias="status", description="权限状态。"),
    keyword: str | None = Query(default=None, description="编码或名称关键字。"),
    _principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_READ)),
    db: Session = Depends(get_db),
):
    """查询权限列表。"""
    stmt = select(Permission).where(Permission.is_deleted.is_(False))
    if permission_type:
        stmt = stmt.where(Permission.type == permission_type)
    if status_filter:
        stmt = stmt.where(Permission.status == status_filter)
    if keyword and keyword.strip():
        pattern = f"%{keyword.strip()}%"
        stmt = stmt.where(or_(Permission.code.ilike(pattern), Permission.name.ilike(pattern)))
    rows = db.execute(stmt.order_by(Permission.sort_order, Permission.name)).scalars().all()
    return success(request, [serialize_permission(item) for item in rows])


@router.post(
    "",
    summary="新建权限",
    description="新建非系统权限，编码全局唯一，父链不得成环。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_permission_item(
    payload: PermissionCreateRequest,
    request: Request,
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_CREATE)),
    db: Session = Depends(get_db),
):
    """新建权限。"""
    permission = create_permission(db, values=payload.model_dump())
    snapshot = serialize_permission(permission)
    audit_log(
        db=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.PERMISSION_CREATE,
        resource_type="permission",
        resource_id=str(permission.id),
        after_json=snapshot,
    )
    db.commit()
    return success(request, snapshot)


@router.put(
    "/{permission_id}",
    summary="更新权限",
    description="系统权限只允许修改 description 与 sort_order；修改父节点时校验无环。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionData],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def update_permission_item(
    payload: PermissionUpdateRequest,
    request: Request,
    permission_id: UUID = Path(description="权限 ID。"),
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_UPDATE)),
    db: Session = Depends(get_db),
):
    """更新权限。"""
    permission = get_permission_or_404(db, permission_id)
    before = serialize_permission(permission)
    update_permission(db, permission, changes=payload.model_dump(exclude_unset=True))
    after = serialize_permission(permission)
    audit_log(
        db=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.PERMISSION_UPDATE,
        resource_type="permission",
        resource_id=str(permission.id),
        before_json=before,
        after_json=after,
    )
    db.commit()
    return success(request, after)


@router.delete(
    "/{permission_id}",
    summary="删除权限",
    description="逻辑删除非系统权限并解除其角色关联；存在子权限时拒绝删除。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DeletedData],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
def delete_permission_item(
    request: Request,
    permission_id: UUID = Path(description="权限 ID。"),
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_DELETE)),
    db: Session = Depends(get_db),
):
    """删除权限。"""
    permission = get_permission_or_404(db, permission_id)
    before = serialize_permission(permission)
    delete_permission(db, permission)
    audit_log(
        db=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.PERMISSION_DELETE,
        resource_type="permission",
        resource_id=str(permission.id),
        before_json=before,
    )
    db.commit()
    return success(request, {"id": permission.id, "deleted": True})


@router.get(
    "/{permission_id}/usage",
    summary="查询权限使用情况",
    description="列出引用该权限的角色及作用租户。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionUsageData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_permission_usage(
    request: Request,
    permission_id: UUID = Path(description="权限 ID。"),
    _principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_READ)),
    db: Session = Depends(get_db),
):
    """查询权限使用情况。"""
    permission = get_permission_or_404(db, permission_id)
    roles = permission_usage(db, permission.id)
    return success(
        request,
        {
            "permission_id": permission.id,
            "role_count": len({item["role_id"] for item in roles}),
            "roles": roles,
        },
    )
