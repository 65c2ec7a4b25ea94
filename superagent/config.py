"""全局配置加载模块：从环境变量构建运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LLM_PROVIDERS = ("openai", "open_router", "anthropic")


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """系统运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "SuperAgent"
    environment: str = "dev"

    llm_provider: str = "openai"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    open_router_api_key: str | None = None
    open_router_base_url: str = "https://openrouter.ai/api/v1"
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    default_llm_model: str = "gpt-4"
    default_llm_timeout: int = 30
    default_llm_temperature: float = 0.7

    workflow_timeout: int = 300
    workflow_modules: str = "superagent.workflows.builtin"

    a2a_server_host: str = "0.0.0.0"
    a2a_server_port: int = 8080
    a2a_auth_token: str | None = None
    a2a_base_url: str | None = None
    a2a_ssl_cert_path: str | None = None
    a2a_ssl_key_path: str | None = None
    a2a_default_timeout: int = 30
    a2a_max_retries: int = 3
    a2a_cache_ttl: int = 300
    a2a_user_agent: str = "SuperAgent-A2A/0.1.0"
    a2a_agent_registry: dict[str, dict[str, Any]] = Field(default_factory=dict)
    cors_allowed_origins: str = "*"

    retry_base_delay: float = 1.0
    retry_max_delay: float = 32.0
    retry_backoff_factor: float = 2.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: int = 60
    counter_store_backend: str = "memory"

    redis_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False
    celery_workflow_queue: str = "workflows"
    celery_jobs_queue: str = "jobs"
    worker_soft_time_limit: int = 10 * 60
    worker_time_limit: int = 15 * 60

    log_dir: Path = Field(default=Path("./logs"))
    log_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_run_ids: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 10

    def cors_allowed_origins_list(self) -> list[str]:
        return _csv_to_list(self.cors_allowed_origins)

    def workflow_modules_list(self) -> list[str]:
        return _csv_to_list(self.workflow_modules)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_run_ids_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_run_ids)

    def a2a_server_ssl_enabled(self) -> bool:
        """证书与私钥同时配置时才启用 TLS。"""
        return bool(self.a2a_ssl_cert_path and self.a2a_ssl_key_path)

    def register_a2a_agent(self, name: str, url: str, **options: Any) -> None:
        """在代理注册表中登记具名远端代理。"""
        self.a2a_agent_registry[name] = {"url": url, **options}

    def a2a_agent(self, name: str) -> dict[str, Any] | None:
        return self.a2a_agent_registry.get(name)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时将相对日志目录解析为绝对路径。"""
    settings = Settings()
    # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
    if not settings.log_dir.is_absolute():
        settings.log_dir = (Path.cwd() / settings.log_dir).resolve()
    return settings
