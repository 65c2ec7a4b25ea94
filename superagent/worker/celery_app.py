"""Celery 应用配置：工作流执行与完成后作业分队列处理，worker 进程退出时回收资源。"""

from __future__ import annotations

import logging
import sys

from celery import Celery
from celery.signals import worker_process_shutdown

from superagent.application.container import shutdown_container_resources
from superagent.config import get_settings
from superagent.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()
logger = logging.getLogger(__name__)

# 只有 `celery ... worker` 进程接管日志；被 API 进程导入时保持原样。
is_worker_process = "worker" in (arg.lower() for arg in sys.argv[1:])
if is_worker_process:
    configure_logging(settings, process_role="worker")

celery_app = Celery("superagent", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    imports=("superagent.worker.tasks",),
    task_default_queue=settings.celery_workflow_queue,
    task_routes={
        "superagent.worker.tasks.run_workflow_task": {"queue": settings.celery_workflow_queue},
        "superagent.jobs.*": {"queue": settings.celery_jobs_queue},
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_connection_retry_on_startup=True,
    task_soft_time_limit=settings.worker_soft_time_limit,
    task_time_limit=settings.worker_time_limit,
    task_track_started=True,
    result_expires=24 * 3600,
)

if settings.celery_task_always_eager:
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

if is_worker_process:
    logger.info(
        "celery app configured",
        extra={
            "event": "celery.config.loaded",
            "external_service": "redis",
            "op": "worker",
            "payload_preview": {
                "queues": [settings.celery_workflow_queue, settings.celery_jobs_queue],
                "always_eager": settings.celery_task_always_eager,
            },
        },
    )


@worker_process_shutdown.connect
def _shutdown_worker_resources(**_: object) -> None:
    shutdown_container_resources()
    shutdown_logging()
