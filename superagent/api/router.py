"""A2A 总路由配置，按职责注册发现、健康与调用子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from superagent.api.routes.discovery import router as discovery_router
from superagent.api.routes.health import router as health_router
from superagent.api.routes.invoke import router as invoke_router

api_router = APIRouter()
api_router.include_router(discovery_router, tags=["discovery"])
api_router.include_router(health_router, tags=["health"])
api_router.include_router(invoke_router, tags=["invoke"])
