"""代理卡片与能力描述：A2A 发现文档的数据模型与 camelCase 编解码。"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from superagent.domain.enums import TaskKind

if TYPE_CHECKING:
    from superagent.domain.tasks.base import Task
    from superagent.domain.workflow import WorkflowDefinition, WorkflowRegistry

DEFAULT_MODALITIES = ("text", "json")
GATEWAY_NAME = "SuperAgent A2A Gateway"
GATEWAY_DESCRIPTION = "Multi-workflow SuperAgent instance with A2A Protocol support"

_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$", re.IGNORECASE)


def utc_now_iso() -> str:
    """返回 ISO8601 格式的当前 UTC 时间。"""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def is_valid_url(value: Any) -> bool:
    return isinstance(value, str) and bool(_URL_PATTERN.match(value))


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(str(item) for item in items))


@dataclass(slots=True)
class Capability:
    """代理对外暴露的一项技能描述。"""
    name: str
    description: str
    parameters: dict[str, dict[str, Any]] = field(default_factory=dict)
    returns: dict[str, Any] = field(default_factory=dict)
    examples: list[dict[str, Any]] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    required_permissions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tags = _dedupe(self.tags)

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if not isinstance(self.name, str) or not self.name.strip():
            errors.append("name can't be blank")
        if not isinstance(self.description, str) or not self.description.strip():
            errors.append("description can't be blank")
        return errors

    def is_valid(self) -> bool:
        return not self.validation_errors()

    def add_parameter(
        self, name: str, *, type: str = "string", description: str = "", required: bool = False
    ) -> None:
        self.parameters[name] = {"type": type, "description": description, "required": required}

    def add_example(self, input: Any, output: Any, description: str | None = None) -> None:
        example: dict[str, Any] = {"input": input, "output": output}
        if description:
            example["description"] = description
        self.examples.append(example)

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def required_parameters(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.get("required")]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "returns": self.returns,
            "examples": self.examples,
            "tags": self.tags,
            "requiredPermissions": self.required_permissions,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Capability:
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            parameters=dict(data.get("parameters") or {}),
            returns=dict(data.get("returns") or {}),
            examples=list(data.get("examples") or []),
            tags=list(data.get("tags") or []),
            required_permissions=list(data.get("requiredPermissions") or data.get("required_permissions") or []),
        )


@dataclass(slots=True)
class AgentCard:
    """远端代理描述，序列化为 /.well-known/agent.json 发现文档。"""
    name: str
    service_endpoint_url: str
    capabilities: list[Capability] = field(default_factory=list)
    description: str = ""
    version: str = "1.0.0"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    supported_modalities: list[str] = field(default_factory=lambda: list(DEFAULT_MODALITIES))
    authentication_requirements: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def validation_errors(self) -> list[str]:
        """返回全部校验错误，而不是遇到第一个就停止。"""
        errors: list[str] = []
        if not self.id:
            errors.append("id can't be blank")
        if not isinstance(self.name, str) or not self.name.strip():
            errors.append("name can't be blank")
        if not isinstance(self.version, str) or not self.version.strip():
            errors.append("version can't be blank")
        if not self.service_endpoint_url:
            errors.append("service_endpoint_url can't be blank")
        elif not is_valid_url(self.service_endpoint_url):
            errors.append("service_endpoint_url is not a valid URL")
        if not isinstance(self.capabilities, list) or not self.capabilities:
            errors.append("capabilities can't be blank")
        else:
            for index, capability in enumerate(self.capabilities):
                if not isinstance(capability, Capability):
                    errors.append(f"capability at index {index} must be a Capability instance")
                    continue
                errors.extend(f"capability at index {index}: {item}" for item in capability.validation_errors())
        return errors

    def is_valid(self) -> bool:
        return not self.validation_errors()

    def add_capability(self, capability: Capability) -> None:
        self.capabilities.append(capability)
        self.updated_at = utc_now_iso()

    def remove_capability(self, name: str) -> None:
        self.capabilities = [item for item in self.capabilities if item.name != name]
        self.updated_at = utc_now_iso()

    def find_capability(self, name: str) -> Capability | None:
        return next((item for item in self.capabilities if item.name == name), None)

    def capability_names(self) -> list[str]:
        return [item.name for item in self.capabilities]

    def supports_modality(self, modality: str) -> bool:
        return str(modality) in self.supported_modalities

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "serviceEndpointURL": self.service_endpoint_url,
            "supportedModalities": self.supported_modalities,
            "authenticationRequirements": self.authentication_requirements,
            "capabilities": [item.to_dict() for item in self.capabilities],
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentCard:
        """按 camelCase 键解析发现文档；缺省字段回落到默认值。"""
        kwargs: dict[str, Any] = {
            "name": data.get("name", ""),
            "service_endpoint_url": data.get("serviceEndpointURL", ""),
            "description": data.get("description") or "",
            "capabilities": [Capability.from_dict(item) for item in data.get("capabilities") or []],
        }
        optional = {
            "id": "id",
            "version": "version",
            "supported_modalities": "supportedModalities",
            "authentication_requirements": "authenticationRequirements",
            "metadata": "metadata",
            "created_at": "createdAt",
            "updated_at": "updatedAt",
        }
        for attr, key in optional.items():
            if data.get(key) is not None:
                kwargs[attr] = data[key]
        return cls(**kwargs)

    @classmethod
    def from_json(cls, text: str) -> AgentCard:
        return cls.from_dict(json.loads(text))

    @classmethod
    def from_workflow(
        cls,
        definition: WorkflowDefinition,
        *,
        base_url: str,
        auth_required: bool = False,
        path: str | None = None,
    ) -> AgentCard:
        """由单个工作流定义生成代理卡片，每个任务对应一项能力。"""
        slug = path or _slugify(definition.name)
        return cls(
            id=f"superagent-{slug}-{uuid.uuid4().hex[:16]}",
            name=_humanize(definition.name),
            description=definition.description or f"SuperAgent workflow: {definition.name}",
            version=definition.version,
            service_endpoint_url=f"{base_url.rstrip('/')}/agents/{slug}",
            supported_modalities=list(DEFAULT_MODALITIES),
            authentication_requirements=_auth_requirements(auth_required),
            capabilities=capabilities_for_workflow(definition),
            metadata={"workflow": definition.name, "created_with": "SuperAgent A2A Integration"},
        )

    @classmethod
    def from_workflow_registry(
        cls,
        registry: WorkflowRegistry,
        *,
        base_url: str,
        auth_required: bool = False,
    ) -> AgentCard:
        """网关卡片：汇总注册表中全部工作流的能力，名称带路径前缀。"""
        capabilities: list[Capability] = []
        for path, definition in registry.items():
            capabilities.extend(capabilities_for_workflow(definition, path_prefix=path))
        return cls(
            name=GATEWAY_NAME,
            description=GATEWAY_DESCRIPTION,
            service_endpoint_url=base_url.rstrip("/"),
            authentication_requirements=_auth_requirements(auth_required),
            capabilities=capabilities,
            metadata={"workflows": registry.paths()},
        )


def capabilities_for_workflow(definition: WorkflowDefinition, *, path_prefix: str | None = None) -> list[Capability]:
    return [capability_for_task(task, path_prefix=path_prefix) for task in definition.tasks]


def capability_for_task(task: Task, *, path_prefix: str | None = None) -> Capability:
    """根据任务的输入/输出声明推导能力参数与返回结构。"""
    name = task.name
    if path_prefix:
        name = f"{path_prefix.strip('/').replace('/', '_')}_{task.name}"

    parameters: dict[str, dict[str, Any]] = {}
    if task.input_keys:
        for key in task.input_keys:
            parameters[key] = {"type": "string", "description": f"Input parameter: {key}", "required": True}
    else:
        parameters["*"] = {"type": "object", "description": "Dynamic parameters based on context", "required": False}

    if task.output_key:
        returns: dict[str, Any] = {
            "type": "object",
            "properties": {task.output_key: {"type": "string", "description": "Task execution result"}},
        }
    else:
        returns = {"type": "object", "description": "Task execution result"}

    tags = [task.kind.value]
    if task.kind is TaskKind.llm:
        tags.append("ai")
    elif task.kind is TaskKind.a2a:
        tags.append("external")

    return Capability(
        name=name,
        description=task.description() or f"Executes {task.name} task",
        parameters=parameters,
        returns=returns,
        tags=tags,
    )


def _auth_requirements(required: bool) -> dict[str, Any]:
    if not required:
        return {}
    return {"type": "bearer", "description": "Bearer token authentication required", "required": True}


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "workflow"


def _humanize(name: str) -> str:
    text = re.sub(r"[_\-]+", " ", name).strip()
    return text[:1].upper() + text[1:] if text else name
