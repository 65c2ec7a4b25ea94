"""健康检查与运行统计接口。"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from superagent.api.routes.dependencies import get_server
from superagent.api.schemas import HealthResponse, StatsResponse
from superagent.domain.enums import HealthStatus

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(server=Depends(get_server)) -> JSONResponse:
    """不健康时返回 503，降级仍返回 200。"""
    report = HealthResponse(**server.health())
    status_code = 503 if report.status == HealthStatus.unhealthy.value else 200
    return JSONResponse(report.model_dump(), status_code=status_code)


@router.get("/stats", response_model=StatsResponse)
def stats(server=Depends(get_server)) -> StatsResponse:
    return StatsResponse(**server.stats())
