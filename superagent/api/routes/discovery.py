"""发现接口：代理卡片（带 ETag 协商缓存）与根路径服务信息。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from superagent.api.routes.dependencies import get_server
from superagent.api.schemas import ServerInfoResponse

router = APIRouter()

CARD_CACHE_CONTROL = "public, max-age=300"


@router.get("/.well-known/agent.json")
def agent_card(request: Request, server=Depends(get_server)) -> Response:
    """返回代理卡片；If-None-Match 命中时返回 304。"""
    payload, etag = server.agent_card_document()
    headers = {"ETag": etag, "Cache-Control": CARD_CACHE_CONTROL}
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    return JSONResponse(payload, headers=headers)


@router.get("/", response_model=ServerInfoResponse)
def server_info(server=Depends(get_server)) -> ServerInfoResponse:
    return ServerInfoResponse(**server.info())
