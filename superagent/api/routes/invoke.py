"""调用接口：JSON-RPC 2.0 技能调用（阻塞或 SSE 流式）与按工作流路径的便捷入口。"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping
from uuid import uuid4

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from superagent.api.routes.dependencies import get_server
from superagent.domain.a2a.agent_card import AgentCard
from superagent.domain.a2a.validation import A2AJsonValidator
from superagent.domain.errors import InvocationError, SkillNotFoundError

router = APIRouter()
logger = logging.getLogger(__name__)

JSONRPC_INVOCATION_ERROR = -32000


def _error(message: str, code: str, status_code: int = 400, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, "code": code, **extra}, status_code=status_code)


async def _read_json(request: Request) -> tuple[Any, JSONResponse | None]:
    body = await request.body()
    if not body.strip():
        return None, None
    try:
        return json.loads(body), None
    except ValueError as exc:
        logger.warning(
            "invalid json payload",
            extra={"event": "a2a.invoke.invalid_json", "op": request.url.path, "error": str(exc)},
        )
        return None, _error(f"Invalid JSON payload: {exc}", "bad_request")


def _wants_stream(request: Request) -> bool:
    return "text/event-stream" in request.headers.get("accept", "")


@router.post("/invoke")
async def invoke(request: Request, server=Depends(get_server)):
    """校验 JSON-RPC 信封、定位技能并执行所属工作流。"""
    payload, failure = await _read_json(request)
    if failure is not None:
        return failure

    errors = A2AJsonValidator.validate_jsonrpc_request(payload)
    if not errors and payload.get("method") != "invoke":
        errors.append(f"Invalid method: {payload.get('method')} (must be 'invoke')")
    if errors:
        logger.warning(
            "invoke request rejected",
            extra={"event": "a2a.invoke.rejected", "status_code": 400, "payload_preview": errors},
        )
        return _error("Validation failed", "bad_request", errors=errors)

    task = payload["params"]["task"]
    skill = str(task["skill"])
    parameters = task.get("parameters") or {}
    request_id = str(task.get("id") or payload.get("id") or uuid4())

    if _wants_stream(request):
        try:
            frames = server.stream_skill(skill, parameters, request_id)
        except SkillNotFoundError as exc:
            return _error(str(exc), "skill_not_found", available_skills=exc.available_skills)
        return StreamingResponse(frames, media_type="text/event-stream", headers={"Cache-Control": "no-cache"})

    try:
        result = await asyncio.to_thread(server.invoke_skill, skill, parameters, request_id)
    except SkillNotFoundError as exc:
        return _error(str(exc), "skill_not_found", available_skills=exc.available_skills)
    except InvocationError as exc:
        return JSONResponse(
            {"jsonrpc": "2.0", "id": payload["id"], "error": {"code": JSONRPC_INVOCATION_ERROR, "message": str(exc)}}
        )
    return JSONResponse({"jsonrpc": "2.0", "id": payload["id"], "result": result})


def _workflow_or_404(server, path: str):
    try:
        return server.registry.get(path)
    except KeyError:
        return None


@router.get("/agents/{path:path}")
def workflow_info(path: str, server=Depends(get_server)) -> JSONResponse:
    definition = _workflow_or_404(server, path)
    if definition is None:
        return _error(f"Workflow not found: {path}", "not_found", status_code=404, workflows=server.registry.paths())
    card = AgentCard.from_workflow(
        definition, base_url=server.base_url, auth_required=server.auth_required, path=path.strip("/")
    )
    return JSONResponse(
        {
            "name": definition.name,
            "description": definition.description,
            "version": definition.version,
            "path": path.strip("/"),
            "tasks": [
                {
                    "name": item.name,
                    "kind": item.kind.value,
                    "description": item.description(),
                    "inputs": item.required_inputs(),
                    "outputs": item.provided_outputs(),
                }
                for item in definition.tasks
            ],
            "agent_card": card.to_dict(),
        }
    )


@router.post("/agents/{path:path}")
async def workflow_invoke(path: str, request: Request, server=Depends(get_server)):
    """直接执行指定路径的工作流；请求体为参数映射或 {"parameters": {...}}。"""
    definition = _workflow_or_404(server, path)
    if definition is None:
        return _error(f"Workflow not found: {path}", "not_found", status_code=404, workflows=server.registry.paths())
    payload, failure = await _read_json(request)
    if failure is not None:
        return failure
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        return _error("Request body must be a JSON object", "bad_request")
    parameters = payload.get("parameters", payload)
    if not isinstance(parameters, Mapping):
        return _error("parameters must be an object", "bad_request")
    skill = definition.tasks[0].name if definition.tasks else definition.name
    try:
        result = await asyncio.to_thread(
            server.run_workflow, path.strip("/"), definition, parameters, skill=skill
        )
    except InvocationError as exc:
        return _error(str(exc), "workflow_failed", status_code=422)
    return JSONResponse(result)
