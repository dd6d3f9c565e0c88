"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI
from sqlalchemy.orm import sessionmaker

from nadmin_api.api.router import api_router
from nadmin_api.core.config import get_settings
from nadmin_api.db.session import SessionLocal
from nadmin_api.exceptions import register_exception_handlers
from nadmin_api.middlewares import register_middlewares

settings = get_settings()


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    """创建并配置 FastAPI 应用实例。

    `session_factory` 供请求闸门在线程池中加载主体使用，默认与路由共用 SessionLocal。
    """
    _setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "多租户后台接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "认证：统一 Cookie `auth_token`（兼容历史 Cookie）或 `Authorization: Bearer`。\n"
            "租户上下文：令牌声明 > 请求头 > 子域名 > 查询参数 > 默认租户。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "登录、登出、会话与租户上下文。"},
            {"name": "permissions", "description": "权限检查、权限树、权限与角色权限维护。"},
            {"name": "permission-templates", "description": "权限模板维护与应用。"},
            {"name": "tenants", "description": "租户生命周期管理（仅超级管理员）。"},
        ],
    )
    app.state.session_factory = session_factory or SessionLocal

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
