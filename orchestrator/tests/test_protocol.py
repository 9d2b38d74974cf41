"""Tests for message kinds and request payload validation."""

import pytest
from pydantic import ValidationError

from orchestrator.protocol import (
    CreateTunnelRequest,
    MessageType,
    StartExecutionRequest,
    WORKER_EVENT_TYPES,
)
from orchestrator.types import ExecutionMode


class TestMessageType:
    def test_parse_known(self):
        assert MessageType.parse("start-execution") is MessageType.START_EXECUTION

    @pytest.mark.parametrize("value", ["nope", None, 5, {"type": "x"}])
    def test_parse_unknown(self, value):
        assert MessageType.parse(value) is None

    def test_worker_event_types(self):
        assert MessageType.SESSION_STATS not in WORKER_EVENT_TYPES
        assert MessageType.JOB in WORKER_EVENT_TYPES


class TestStartExecutionRequest:
    def test_camel_case_fields(self):
        request = StartExecutionRequest.model_validate(
            {
                "type": "start-execution",
                "ruleDocument": "- name: x",
                "extraVars": {"a": 1},
                "envVars": {"PORT": 8080, "EMPTY": None},
                "executionMode": "venv",
                "workerPath": "/venv/bin/ansible-rulebook",
                "heartbeat": 10,
                "extraCliArgs": "-v",
            }
        )

        assert request.rule_document == "- name: x"
        assert request.extra_vars == {"a": 1}
        assert request.env_vars == {"PORT": "8080", "EMPTY": ""}
        assert request.execution_mode is ExecutionMode.VENV
        assert request.worker_path == "/venv/bin/ansible-rulebook"
        assert request.heartbeat == 10
        assert request.extra_cli_args == "-v"

    def test_defaults(self):
        request = StartExecutionRequest.model_validate({})
        assert request.execution_mode is None
        assert request.heartbeat == 0
        assert request.env_vars is None

    def test_rejects_unknown_mode(self):
        with pytest.raises(ValidationError):
            StartExecutionRequest.model_validate({"executionMode": "bogus"})

    def test_rejects_negative_heartbeat(self):
        with pytest.raises(ValidationError):
            StartExecutionRequest.model_validate({"heartbeat": -1})


class TestCreateTunnelRequest:
    def test_fields(self):
        request = CreateTunnelRequest.model_validate(
            {"port": 5000, "forwardTo": 5001, "providerToken": "abc"}
        )
        assert (request.port, request.forward_to, request.provider_token) == (5000, 5001, "abc")

    def test_rejects_out_of_range_port(self):
        with pytest.raises(ValidationError):
            CreateTunnelRequest.model_validate({"port": 70000})
