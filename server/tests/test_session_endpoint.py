"""End-to-end tests of the WebSocket session endpoint."""

from orchestrator.types import ExecutionStatus


class TestSessionEndpoint:
    def test_register_ui(self, client):
        with client.websocket_connect("/") as websocket:
            websocket.send_json({"type": "register-ui"})
            registered = websocket.receive_json()
            log_level = websocket.receive_json()

        assert registered["type"] == "registered"
        assert registered["sessionId"]
        assert log_level == {"type": "log-level-config", "logLevel": "INFO"}

    def test_malformed_and_unknown_messages_keep_connection_open(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_text("not json at all")
            websocket.send_json({"no": "type"})
            websocket.send_json({"type": "does-not-exist"})
            websocket.send_json({"type": "heartbeat"})

            assert websocket.receive_json()["type"] == "heartbeat-ack"

    def test_update_forwarding_without_tunnel(self, ui_session, app_context):
        ui_session.send_json({"type": "update-tunnel-forwarding", "port": 5000, "forwardTo": 5001})
        reply = ui_session.receive_json()

        assert reply["type"] == "tunnel-forwarding-updated"
        assert reply["success"] is False
        assert reply["error"]
        assert app_context.tunnels.routes == {}

    def test_tunnel_state_starts_empty(self, ui_session):
        ui_session.send_json({"type": "get-tunnel-state"})
        assert ui_session.receive_json() == {"type": "tunnel-state", "tunnels": []}

    def test_worker_lifecycle(self, client, ui_session, app_context):
        ui_session.send_json({"type": "start-execution", "ruleDocument": "- name: x\n"})
        started = ui_session.receive_json()
        assert started["type"] == "execution-started"
        assert started["success"] is True
        execution_id = started["executionId"]

        with client.websocket_connect("/ws") as worker:
            worker.send_json({"type": "worker-hello", "executionId": execution_id})
            assert worker.receive_json()["type"] == "rule-document"
            assert worker.receive_json() == {"type": "end-of-response"}
            assert ui_session.receive_json() == {
                "type": "worker-connected",
                "executionId": execution_id,
            }

            worker.send_json({"type": "event", "event": {"meta": {}}})
            event = ui_session.receive_json()
            assert event["type"] == "worker-event"
            assert event["executionId"] == execution_id

        assert ui_session.receive_json() == {
            "type": "worker-disconnected",
            "executionId": execution_id,
        }
        execution = app_context.executions.get(execution_id)
        assert execution.status == ExecutionStatus.RUNNING
        assert execution.worker_connected is False

        ui_session.send_json({"type": "stop-execution", "executionId": execution_id})
        assert ui_session.receive_json() == {
            "type": "execution-stopped",
            "executionId": execution_id,
        }
        assert execution.status == ExecutionStatus.STOPPED

    def test_disconnect_removes_session(self, client, app_context):
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"type": "heartbeat"})
            websocket.receive_json()
            assert len(app_context.sessions) == 1
        assert len(app_context.sessions) == 0
