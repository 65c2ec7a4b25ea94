"""ASGI 应用入口：初始化日志与生命周期，装配 A2A 服务应用。"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from superagent.application.container import get_a2a_server, shutdown_container_resources
from superagent.config import get_settings
from superagent.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()
configure_logging(settings, process_role="api")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：启动时记录已注册工作流，关闭时释放依赖资源。"""
    server = get_a2a_server()
    logger.info(
        "api startup ready",
        extra={
            "event": "api.startup.succeeded",
            "op": server.base_url,
            "payload_preview": {"workflows": server.registry.paths(), "auth": server.auth_required},
        },
    )
    try:
        yield
    finally:
        logger.info("api shutdown begin", extra={"event": "api.shutdown.started"})
        shutdown_container_resources()
        shutdown_logging()


app = get_a2a_server().build_app(lifespan=lifespan)


def run() -> None:
    """命令行入口：按配置的主机、端口与证书启动服务。"""
    get_a2a_server().run(app)


if __name__ == "__main__":
    run()
