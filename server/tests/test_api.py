"""Tests for the read-only HTTP API."""


class TestHealthApi:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["executions"] == 0
        assert data["tunnels"] == 0
        assert data["sessions"] == {"ui": 0, "worker": 0, "unclassified": 0}


class TestExecutionsApi:
    def test_list_and_detail(self, client, ui_session):
        ui_session.send_json({"type": "start-execution", "ruleDocument": "- name: x\n"})
        execution_id = ui_session.receive_json()["executionId"]
        ui_session.send_json({"type": "event", "executionId": execution_id, "n": 1})
        ui_session.receive_json()

        listing = client.get("/api/executions").json()
        assert listing["lastExecutionId"] == execution_id
        assert [e["executionId"] for e in listing["executions"]] == [execution_id]
        assert listing["executions"][0]["status"] == "running"

        detail = client.get(f"/api/executions/{execution_id}").json()
        assert detail["command"] == ["sh", "-c", "sleep 30"]
        assert detail["events"][0]["type"] == "event"
        assert detail["events"][0]["data"]["n"] == 1

    def test_unknown_execution(self, client):
        response = client.get("/api/executions/missing")
        assert response.status_code == 404
        assert "missing" in response.json()["error"]


class TestTunnelsApi:
    def test_empty(self, client):
        assert client.get("/api/tunnels").json() == {"tunnels": []}


class TestConfigurationApi:
    def test_configuration(self, client):
        data = client.get("/api/configuration").json()
        assert "worker_binary" in data["settings"]
        assert data["default_settings"]["port"] == {"default_value": 5555, "type": "int"}
        assert data["env_mapping"]["PORT"] == "port"
