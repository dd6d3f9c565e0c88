"""存活与就绪探针。"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from nadmin_api.core.config import get_settings
from nadmin_api.db.session import get_db
from nadmin_api.models.tenant import Tenant
from nadmin_api.schemas.common import ErrorResponse, SuccessResponse
from nadmin_api.schemas.responses import HealthStatusData
from nadmin_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="只反映进程状态，不访问数据库。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
)
def live(request: Request):
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="数据库可达且默认租户已初始化时才视为就绪，否则返回 503。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db)):
    """租户解析的兜底依赖默认租户，缺失时不接收流量。"""
    code = get_settings().default_tenant_code
    found = db.execute(
        select(Tenant.id).where(Tenant.code == code).where(Tenant.is_deleted.is_(False))
    ).scalar_one_or_none()
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "DEFAULT_TENANT_MISSING", "message": "默认租户尚未初始化。", "tenant_code": code},
        )
    return success(request, {"status": "ready"})
