"""业务异常定义与异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nadmin_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("nadmin_api.errors")


class BackOfficeError(Exception):
    """后台业务异常基类，携带错误码与 HTTP 状态。"""

    code = "BACK_OFFICE_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "请求处理失败。"

    def __init__(self, message: str | None = None, **details: object) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class MalformedToken(BackOfficeError):
    code = "MALFORMED_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "访问令牌格式非法。"


class ExpiredToken(BackOfficeError):
    code = "EXPIRED_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "访问令牌已过期。"


class InvalidTokenSignature(BackOfficeError):
    code = "INVALID_TOKEN_SIGNATURE"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "访问令牌签名无效。"


class UnknownPrincipal(BackOfficeError):
    code = "UNKNOWN_PRINCIPAL"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "用户不存在或已删除。"


class DisabledPrincipal(BackOfficeError):
    code = "DISABLED_PRINCIPAL"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "用户已被禁用或锁定。"


class TenantNotFound(BackOfficeError):
    code = "TENANT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    message = "租户不存在或已删除。"


class ImmutableSystemEntity(BackOfficeError):
    """系统权限、系统模板或默认租户被要求修改/删除。"""

    code = "IMMUTABLE_SYSTEM_ENTITY"
    status_code = status.HTTP_409_CONFLICT
    message = "系统内置数据不允许修改或删除。"


class PermissionCycle(BackOfficeError):
    code = "PERMISSION_CYCLE"
    status_code = status.HTTP_409_CONFLICT
    message = "父权限设置会形成循环。"


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_409_CONFLICT:
        return "CONFLICT"
    if status_code == status.HTTP_422_UNPROCESSABLE_CONTENT:
        return "VALIDATION_ERROR"
    return "HTTP_ERROR"


def _default_http_message(status_code: int) -> str:
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "未登录或登录状态已失效。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "无权限访问该资源。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请求资源不存在。"
    if status_code == status.HTTP_409_CONFLICT:
        return "请求与当前数据状态冲突。"
    return "请求处理失败。"


def _parse_http_detail(detail: object, status_code: int) -> tuple[str, str, dict[str, object]]:
    code = _default_http_error_code(status_code)
    message = _default_http_message(status_code)
    details: dict[str, object] = {"status_code": status_code, "reason": code.lower()}

    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or message)
        for key, value in detail.items():
            if key not in {"code", "message"}:
                details[key] = value
        return code, message, details

    if isinstance(detail, str):
        normalized = detail.strip().lower()
        if normalized == "forbidden":
            return code, _default_http_message(status.HTTP_403_FORBIDDEN), details
        if normalized == "unauthorized":
            return code, _default_http_message(status.HTTP_401_UNAUTHORIZED), details
        return code, detail, details

    if detail is not None:
        details["detail"] = detail
    return code, message, details


async def back_office_exception_handler(request: Request, exc: BackOfficeError):
    """业务异常按自身错误码输出。"""
    details: dict[str, object] = {"status_code": exc.status_code, "reason": exc.code.lower()}
    details.update(exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=exc.code, message=exc.message, details=details),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code, message, details = _parse_http_detail(exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="请求参数校验失败。",
            details={"status_code": status.HTTP_422_UNPROCESSABLE_CONTENT, "errors": errors},
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，只记录请求上下文，不向调用方泄露内部细节。"""
    logger.exception(
        "unhandled error request_id=%s method=%s path=%s",
        getattr(request.state, "request_id", None),
        request.method,
        request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
                "reason": "unexpected_exception",
            },
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(BackOfficeError)(back_office_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
