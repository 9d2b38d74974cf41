"""Session protocol: inbound message kinds and their request payloads.

Messages are JSON objects discriminated by ``type``. Request payloads use
camelCase on the wire and are validated with pydantic.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from orchestrator.types import ExecutionMode


class MessageType(str, Enum):
    """Every inbound message kind the router knows"""

    REGISTER_UI = "register-ui"
    WORKER_HELLO = "worker-hello"
    HEARTBEAT = "heartbeat"

    START_EXECUTION = "start-execution"
    STOP_EXECUTION = "stop-execution"

    EVENT = "event"
    JOB = "job"
    ACTION = "action"
    SHUTDOWN = "shutdown"
    SESSION_STATS = "session-stats"

    SEND_WEBHOOK = "send-webhook"
    TEST_TUNNEL = "test-tunnel"
    CREATE_TUNNEL = "create-tunnel"
    DELETE_TUNNEL = "delete-tunnel"
    UPDATE_TUNNEL_FORWARDING = "update-tunnel-forwarding"
    GET_TUNNEL_STATE = "get-tunnel-state"

    CHECK_BINARY = "check-binary"
    CHECK_PREREQUISITES = "check-prerequisites"
    GET_WORKER_VERSION = "get-worker-version"
    GET_COLLECTION_LIST = "get-collection-list"

    @classmethod
    def parse(cls, value: Any) -> Optional["MessageType"]:
        """The known kind for ``value``, or None for anything unrecognized"""
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


WORKER_EVENT_TYPES = frozenset(
    {MessageType.EVENT, MessageType.JOB, MessageType.ACTION, MessageType.SHUTDOWN}
)


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class StartExecutionRequest(RequestModel):
    rule_document: str = ""
    extra_vars: Optional[Dict[str, Any]] = None
    env_vars: Optional[Dict[str, str]] = None
    execution_mode: Optional[ExecutionMode] = None
    container_image: Optional[str] = None
    worker_path: Optional[str] = None
    working_directory: str = ""
    heartbeat: int = Field(default=0, ge=0)
    extra_cli_args: str = ""

    @field_validator("env_vars", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value


class StopExecutionRequest(RequestModel):
    execution_id: str


class WorkerHelloRequest(RequestModel):
    execution_id: str


class CreateTunnelRequest(RequestModel):
    port: int = Field(gt=0, le=65535)
    forward_to: Optional[int] = Field(default=None, ge=0, le=65535)
    provider_token: Optional[str] = None


class DeleteTunnelRequest(RequestModel):
    port: int


class UpdateForwardingRequest(RequestModel):
    port: int
    forward_to: Optional[int] = Field(default=None, ge=0, le=65535)


class SendWebhookRequest(RequestModel):
    port: int = Field(gt=0, le=65535)
    payload: Any = None


class TunnelProbeRequest(RequestModel):
    url: str
    payload: Any = None
    port: Optional[int] = None


class CheckBinaryRequest(RequestModel):
    worker_path: Optional[str] = None


class ToolingRequest(RequestModel):
    execution_mode: Optional[ExecutionMode] = None
    container_image: Optional[str] = None
    worker_path: Optional[str] = None
