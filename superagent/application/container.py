"""依赖容器模块，负责单例化创建注册表、引擎、计数存储与 A2A 服务对象。"""

from __future__ import annotations

import importlib
import logging
from functools import lru_cache

from superagent.api.server import A2AServer
from superagent.application.engine import WorkflowEngine
from superagent.application.enqueuer import CeleryJobEnqueuer, JobEnqueuer
from superagent.config import get_settings
from superagent.domain.tasks.registry import TaskRegistry
from superagent.domain.workflow import WorkflowRegistry
from superagent.infra.a2a.cache import get_shared_card_cache
from superagent.infra.cache.counter_store import CounterStore, build_counter_store
from superagent.infra.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_task_registry() -> TaskRegistry:
    """获取任务种类注册中心单例。"""
    return TaskRegistry(settings=get_settings())


@lru_cache(maxsize=1)
def get_workflow_registry() -> WorkflowRegistry:
    """获取工作流注册表单例，并加载配置中声明的工作流模块。
    返回:
    - 已注册全部工作流的注册表；模块缺少 register 函数时抛出 AttributeError。
    """
    registry = WorkflowRegistry(get_task_registry())
    for module_name in get_settings().workflow_modules_list():
        module = importlib.import_module(module_name)
        module.register(registry)
        logger.info(
            "workflow module loaded",
            extra={"event": "workflow.module.loaded", "op": module_name, "payload_preview": registry.paths()},
        )
    return registry


@lru_cache(maxsize=1)
def get_job_enqueuer() -> JobEnqueuer:
    return CeleryJobEnqueuer(queue=get_settings().celery_jobs_queue)


@lru_cache(maxsize=1)
def get_workflow_engine() -> WorkflowEngine:
    """获取工作流引擎单例。"""
    return WorkflowEngine(get_settings(), enqueuer=get_job_enqueuer())


@lru_cache(maxsize=1)
def get_counter_store() -> CounterStore:
    """获取熔断计数存储单例；后端由 counter_store_backend 决定。"""
    return build_counter_store(get_settings())


@lru_cache(maxsize=None)
def get_circuit_breaker(name: str) -> CircuitBreaker:
    """按作业类别获取熔断器，同名共享同一组外部计数。"""
    return CircuitBreaker.from_settings(name, get_counter_store(), get_settings())


@lru_cache(maxsize=1)
def get_a2a_server() -> A2AServer:
    """获取 A2A 服务单例。"""
    return A2AServer(
        get_settings(),
        registry=get_workflow_registry(),
        engine=get_workflow_engine(),
    )


def shutdown_container_resources() -> None:
    """关闭共享连接并清理依赖容器缓存。"""
    if get_counter_store.cache_info().currsize:
        close = getattr(get_counter_store(), "close", None)
        if callable(close):
            try:
                close()
            except Exception as exc:
                logger.warning(
                    "counter store close failed",
                    extra={"event": "container.shutdown.failed", "error_type": type(exc).__name__, "error": str(exc)},
                )
    get_shared_card_cache().clear()

    # 按依赖顺序清理缓存，确保后续请求可重新构建全新实例。
    for provider in (
        get_a2a_server,
        get_circuit_breaker,
        get_counter_store,
        get_workflow_engine,
        get_job_enqueuer,
        get_workflow_registry,
        get_task_registry,
    ):
        provider.cache_clear()
