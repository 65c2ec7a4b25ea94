"""A2A 服务响应模型定义，约束健康检查、统计与服务信息接口返回结构。"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthCheck(BaseModel):
    """单项健康检查结果。"""
    status: str
    message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """健康检查接口响应模型。"""
    status: str
    timestamp: str
    version: str
    uptime_seconds: float
    checks: dict[str, HealthCheck]


class StatsResponse(BaseModel):
    """服务统计接口响应模型。"""
    started_at: str
    uptime_seconds: float
    requests_total: int
    invocations_total: int
    invocations_failed: int
    streams_total: int
    workflows: list[str]
    skills: list[str]


class ServerInfoResponse(BaseModel):
    """根路径服务信息响应模型。"""
    name: str
    description: str
    version: str
    base_url: str
    authentication: str
    endpoints: dict[str, str]
    workflows: list[str]
