"""作业投递：运行完成后的副作用任务通过 Celery 异步执行。"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class JobEnqueuer(Protocol):
    """即发即弃的作业投递接口，返回作业 ID。"""

    def enqueue(self, job_name: str, **kwargs: Any) -> str | None: ...


class CeleryJobEnqueuer:
    """按任务名投递到 Celery broker，不等待结果。"""

    def __init__(self, queue: str = "jobs") -> None:
        self._queue = queue

    def enqueue(self, job_name: str, **kwargs: Any) -> str | None:
        from superagent.worker.celery_app import celery_app

        result = celery_app.send_task(job_name, kwargs=kwargs, queue=self._queue)
        logger.info(
            "job enqueued",
            extra={
                "event": "job.enqueued",
                "external_service": "celery",
                "op": job_name,
                "payload_preview": {"task_id": result.id, "kwargs": sorted(kwargs)},
            },
        )
        return result.id


class RecordingJobEnqueuer:
    """记录投递请求的内存实现，用于单进程运行与测试。"""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, dict[str, Any]]] = []

    def enqueue(self, job_name: str, **kwargs: Any) -> str | None:
        self.jobs.append((job_name, kwargs))
        return f"local-{len(self.jobs)}"
