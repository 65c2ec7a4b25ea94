"""异步任务定义：在熔断保护下执行工作流，并对网络异常执行退避重试。"""

from __future__ import annotations

import logging
from typing import Any

from superagent.application.container import get_circuit_breaker, get_workflow_engine, get_workflow_registry
from superagent.domain.context import Context
from superagent.domain.errors import CircuitOpenError, NetworkError, TaskError
from superagent.infra.logging.context import bind_log_context
from superagent.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def execute_workflow(workflow_path: str, parameters: dict[str, Any], run_id: str | None = None) -> dict[str, Any]:
    """执行已注册的工作流；运行失败计入该工作流的熔断器并抛 TaskError。"""
    definition = get_workflow_registry().get(workflow_path)
    engine = get_workflow_engine()

    def _run() -> dict[str, Any]:
        result = engine.execute(definition, Context(parameters), run_id=run_id)
        if not result.completed:
            raise TaskError(result.error or "workflow failed", task_name=result.failed_task_name)
        return result.to_dict()

    return get_circuit_breaker(f"workflow:{workflow_path}").call(_run)


@celery_app.task(bind=True, name="superagent.worker.tasks.run_workflow_task")
def run_workflow_task(
    self, workflow_path: str, parameters: dict[str, Any] | None = None, run_id: str | None = None
) -> dict[str, Any]:
    """执行工作流任务，网络错误时按退避策略重试。"""
    with bind_log_context(request_id=self.request.id, workflow=workflow_path):
        logger.info(
            "worker task started",
            extra={
                "event": "workflow.task.started",
                "retry": self.request.retries,
                "payload_preview": {"workflow_path": workflow_path, "run_id": run_id},
            },
        )
        try:
            result = execute_workflow(workflow_path, dict(parameters or {}), run_id=run_id)
        except CircuitOpenError as exc:
            logger.warning(
                "worker task rejected by circuit breaker",
                extra={"event": "workflow.task.circuit_open", "op": exc.name, "error": str(exc)},
            )
            raise
        except NetworkError as exc:
            countdown = 30 if self.request.retries == 0 else 120
            logger.warning(
                "worker task transient network error",
                extra={
                    "event": "workflow.task.retrying",
                    "retry": self.request.retries,
                    "external_service": "a2a",
                    "op": "engine.execute",
                    "payload_preview": {"countdown": countdown},
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise self.retry(exc=exc, max_retries=2, countdown=countdown)
        except Exception as exc:
            logger.exception(
                "worker task failed",
                extra={"event": "workflow.task.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise
        logger.info(
            "worker task finished",
            extra={"event": "workflow.task.succeeded", "payload_preview": {"run_id": result["run_id"]}},
        )
        return result
