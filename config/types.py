from typing import Any, Dict
from pydantic import BaseModel, Field


class ServerSettings(BaseModel):
    """Typed snapshot of the settings the orchestration core consumes"""

    host: str = "0.0.0.0"
    port: int = Field(default=5555, ge=0, le=65535)
    log_level: str = "INFO"
    browser_log_level: str = "INFO"

    worker_binary: str = "ansible-rulebook"
    container_image: str = "quay.io/ansible/ansible-rulebook:main"
    default_execution_mode: str = "container"

    stop_grace_seconds: float = Field(default=3.0, ge=0)
    port_release_delay_seconds: float = Field(default=0.5, ge=0)
    kill_wait_timeout_seconds: float = Field(default=5.0, ge=0)
    execution_retention_minutes: int = Field(default=60, ge=0)
    cleanup_interval_seconds: int = Field(default=300, ge=1)

    webhook_request_timeout_seconds: float = Field(default=300.0, gt=0)
    webhook_keepalive_timeout_seconds: float = Field(default=65.0, gt=0)
    forward_timeout_seconds: float = Field(default=60.0, gt=0)
    proxy_timeout_seconds: float = Field(default=30.0, gt=0)

    shutdown_timeout_seconds: float = Field(default=5.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "ServerSettings":
        """Build from a settings dict, ignoring keys the model does not know"""
        known = {k: v for k, v in settings.items() if k in cls.model_fields and v is not None}
        return cls(**known)
