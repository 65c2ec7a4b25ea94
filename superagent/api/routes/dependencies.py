"""路由依赖：从应用状态中取出 A2A 服务实例。"""

from __future__ import annotations

from fastapi import Request


def get_server(request: Request):
    """A2AServer.build_app 在应用状态上挂载服务实例。"""
    return request.app.state.a2a_server
