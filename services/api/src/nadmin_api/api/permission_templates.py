"""权限模板接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.orm import Session

from nadmin_api.db.session import get_db
from nadmin_api.dependencies import require_permission
from nadmin_api.schemas.common import ErrorResponse, SuccessResponse
from nadmin_api.schemas.permission import (
    PermissionTemplateApplyRequest,
    PermissionTemplateCreateRequest,
    PermissionTemplateUpdateRequest,
)
from nadmin_api.schemas.responses import DeletedData, PermissionTemplateData, RolePermissionData
from nadmin_api.services import AuditAction, PermissionCode, audit_log
from nadmin_api.services.permission_templates import (
    apply_template,
    create_template,
    delete_template,
    get_template_or_404,
    list_templates,
    serialize_template,
    update_template,
)
from nadmin_api.services.permissions import get_role_or_404, list_role_permission_ids, resolve_role_scope
from nadmin_api.services.principal_loader import Principal
from nadmin_api.utils.response import success

router = APIRouter(prefix="/permission-templates", tags=["permission-templates"])

_MUTATION_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.get(
    "",
    summary="查询权限模板",
    description="返回平台级模板与当前租户自有模板；超级管理员返回全部模板。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[list[PermissionTemplateData]],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def list_permission_templates(
    request: Request,
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_READ)),
    db: Session = Depends(get_db),
):
    """查询权限模板。"""
    tenant_id = None if principal.is_super_admin else principal.tenant_id
    templates = list_templates(db, tenant_id=tenant_id)
    return success(request, [serialize_template(db, item) for item in templates])


@router.post(
    "",
    summary="新建权限模板",
    description="新建非系统模板；超级管理员可通过 platform=true 创建平台级模板。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionTemplateData],
    responses=_MUTATION_RESPONSES,
)
def create_permission_template(
    payload: PermissionTemplateCreateRequest,
    request: Request,
    platform: bool = Query(default=False, description="是否创建平台级模板。"),
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_CREATE)),
    db: Session = Depends(get_db),
):
    """新建权限模板。"""
    owner_tenant_id = None if platform and principal.is_super_admin else principal.tenant_id
    template = create_template(
        db,
        tenant_id=owner_tenant_id,
        name=payload.name,
        description=payload.description,
        permission_ids=payload.permission_ids,
    )
    snapshot = serialize_template(db, template)
    audit_log(
        db=db,
        request=request,
        tenant_id=owner_tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.TEMPLATE_CREATE,
        resource_type="permission_template",
        resource_id=str(template.id),
        after_json=snapshot,
    )
    db.commit()
    return success(request, snapshot)


@router.put(
    "/{template_id}",
    summary="更新权限模板",
    description="系统模板不可修改。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionTemplateData],
    responses=_MUTATION_RESPONSES,
)
def update_permission_template(
    payload: PermissionTemplateUpdateRequest,
    request: Request,
    template_id: UUID = Path(description="模板 ID。"),
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_UPDATE)),
    db: Session = Depends(get_db),
):
    """更新权限模板。"""
    template = get_template_or_404(db, template_id)
    before = serialize_template(db, template)
    update_template(
        db,
        template,
        name=payload.name,
        description=payload.description,
        permission_ids=payload.permission_ids,
    )
    after = serialize_template(db, template)
    audit_log(
        db=db,
        request=request,
        tenant_id=template.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.TEMPLATE_UPDATE,
        resource_type="permission_template",
        resource_id=str(template.id),
        before_json=before,
        after_json=after,
    )
    db.commit()
    return success(request, after)


@router.delete(
    "/{template_id}",
    summary="删除权限模板",
    description="系统模板不可删除。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DeletedData],
    responses=_MUTATION_RESPONSES,
)
def delete_permission_template(
    request: Request,
    template_id: UUID = Path(description="模板 ID。"),
    principal: Principal = Depends(require_permission(PermissionCode.PERMISSION_DELETE)),
    db: Session = Depends(get_db),
):
    """删除权限模板。"""
    template = get_template_or_404(db, template_id)
    before = serialize_template(db, template)
    delete_template(db, template)
    audit_log(
        db=db,
        request=request,
        tenant_id=template.tenant_id,
        actor_user_id=principal.user_id,
        action=AuditAction.TEMPLATE_DELETE,
        resource_type="permission_template",
        resource_id=str(template.id),
        before_json=before,
    )
    db.commit()
    return success(request, {"id": template.id, "deleted": True})


@router.post(
    "/{template_id}/apply/{role_id}",
    summary="应用权限模板到角色",
    description="默认覆盖角色在作用租户下的权限集合，merge=true 时与已有权限合并。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RolePermissionData],
    responses=_MUTATION_RESPONSES,
)
def apply_permission_template(
    request: Request,
    payload: PermissionTemplateApplyRequest | None = None,
    template_id: UUID = Path(description="模板 ID。"),
    role_id: UUID = Path(description="角色 ID。"),
    tenant_id: UUID | None = Query(default=None, description="作用租户 ID。"),
    system: bool = Query(default=False, description="是否作用于系统级关联。"),
    principal: Principal = Depends(require_permission(PermissionCode.ROLE_ASSIGN)),
    db: Session = Depends(get_db),
):
    """应用权限模板到角色。"""
    template = get_template_or_404(db, template_id)
    role = get_role_or_404(db, role_id)
    scope = resolve_role_scope(principal, tenant_id=tenant_id, system=system)
    merge = payload.merge if payload is not None else False
    before = list_role_permission_ids(db, role_id=role.id, tenant_id=scope)
    after = apply_template(db, template, role, tenant_id=scope, merge=merge)
    audit_log(
        db=db,
        request=request,
        tenant_id=scope,
        actor_user_id=principal.user_id,
        action=AuditAction.TEMPLATE_APPLY,
        resource_type="role",
        resource_id=str(role.id),
        before_json={"permission_ids": before},
        after_json={"permission_ids": after, "template_id": template.id, "merge": merge},
    )
    db.commit()
    return success(request, {"role_id": role.id, "tenant_id": scope, "permission_ids": after})
