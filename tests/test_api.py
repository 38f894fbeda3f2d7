"""
HTTP tests for the processing, schema and telemetry routes.
"""
import uuid

import pytest
from fastapi.testclient import TestClient

from ppz_logalyzer.config.settings import Settings
from ppz_logalyzer.libs.file_processor import FileProcessor
from ppz_logalyzer.main import app
from ppz_logalyzer.routers import processing

from conftest import make_header


@pytest.fixture
def client(monkeypatch, schema_manager):
    monkeypatch.setattr(processing, "schema_manager", schema_manager)
    monkeypatch.setattr(processing, "file_processor", FileProcessor(schema_manager=schema_manager))
    processing.processing_results.clear()
    with TestClient(app) as test_client:
        yield test_client
    processing.processing_results.clear()


def _queue(client, log_path, data_path=None):
    response = client.post(
        "/api/processing/queue",
        json={"log_path": str(log_path), "data_path": str(data_path) if data_path else None},
    )
    assert response.status_code == 200
    return response.json()["task_id"]


def _processed_task(client, sample_pair):
    task_id = _queue(client, *sample_pair)
    response = client.post("/api/processing/process-next")
    assert response.status_code == 200
    return task_id, response.json()


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/health").json() == {"status": "healthy", "queued_tasks": 0}


class TestProcessingRoutes:

    def test_queue_and_process(self, client, sample_pair):
        task_id, result = _processed_task(client, sample_pair)
        assert result["task_id"] == task_id
        assert result["status"] == "completed"
        assert result["schema_used"] == "v6.0-ac38"
        assert result["records_processed"] == 5
        assert result["statistics"]["total_messages"] == 5
        assert result["statistics"]["parse_errors"] == 0
        assert result["metadata"]["aircraft_name"] == "Microjet"
        assert result["metadata"]["aircraft_id"] == 38

        status = client.get(f"/api/processing/status/{task_id}").json()
        assert status["status"] == "completed"
        assert status["progress"] == 1.0
        assert status["records_processed"] == 5

    def test_queue_missing_file(self, client, tmp_path):
        response = client.post("/api/processing/queue", json={"log_path": str(tmp_path / "nope.log")})
        assert response.status_code == 400

    def test_process_next_on_empty_queue(self, client):
        response = client.post("/api/processing/process-next")
        assert response.status_code == 200
        assert response.json() is None

    def test_queue_listing_and_health(self, client, sample_pair):
        task_id = _queue(client, *sample_pair)
        listing = client.get("/api/processing/queue").json()
        assert [task["task_id"] for task in listing] == [task_id]
        assert listing[0]["status"] == "queued"
        assert client.get("/health").json()["queued_tasks"] == 1

    def test_status_errors(self, client):
        assert client.get("/api/processing/status/not-a-uuid").status_code == 400
        assert client.get(f"/api/processing/status/{uuid.uuid4()}").status_code == 404

    def test_cancel(self, client, sample_pair):
        task_id = _queue(client, *sample_pair)
        response = client.delete(f"/api/processing/tasks/{task_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.delete(f"/api/processing/tasks/{task_id}").status_code == 409

    def test_cleanup(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        kept = client.post("/api/processing/cleanup", params={"max_age_hours": 1}).json()
        assert kept == {"removed": 0, "remaining": 1}

        removed = client.post("/api/processing/cleanup", params={"max_age_hours": 0}).json()
        assert removed["removed"] == 1
        assert client.get(f"/api/processing/status/{task_id}").status_code == 404
        assert client.get("/api/telemetry/summary", params={"task_id": task_id}).status_code == 404

    def test_schema_error_status(self, client, write_pair):
        log_path, data_path = write_pair(header=make_header(messages=None))
        _queue(client, log_path, data_path)
        result = client.post("/api/processing/process-next").json()
        assert result["status"] == "schema_error"
        assert result["statistics"] is None


class TestSchemaDetection:

    def test_detect(self, client, sample_pair):
        log_path, _ = sample_pair
        body = client.get("/api/schema/detect", params={"log_path": str(log_path)}).json()
        assert body["schema_found"] is True
        assert body["schema_hash"] == "v6.0-ac38"
        assert body["confidence"] == 1.0
        assert body["source"] == "header"

    def test_detect_bad_header(self, client, write_pair):
        log_path, _ = write_pair(header="garbage")
        body = client.get("/api/schema/detect", params={"log_path": str(log_path)}).json()
        assert body["schema_found"] is False
        assert body["schema_hash"] is None
        assert body["warnings"][0].startswith("Parse error:")


class TestTelemetryRoutes:

    def test_query(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        body = client.get("/api/telemetry", params={"task_id": task_id, "message_type": "ATTITUDE"}).json()
        assert [m["timestamp"] for m in body] == [12.5, 13.25]
        assert body[0]["data"] == {"phi": 0.1, "psi": 1.5, "theta": -0.05}

    def test_summary(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        body = client.get("/api/telemetry/summary", params={"task_id": task_id}).json()
        assert body["ATTITUDE"]["count"] == 2
        assert body["INFO_MSG"]["fields"] == ["msg"]

    def test_aggregate(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        body = client.get(
            "/api/telemetry/aggregate",
            params={"task_id": task_id, "message_type": "ATTITUDE", "field": "psi", "op": "max"},
        ).json()
        assert body["result"] == pytest.approx(1.6)
        assert body["task_id"] == task_id

        missing = client.get(
            "/api/telemetry/aggregate",
            params={"task_id": task_id, "message_type": "ATTITUDE", "field": "nope"},
        )
        assert missing.status_code == 404

    def test_events(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        params = {"task_id": task_id, "message_type": "GPS_INT", "field": "fix", "op": ">=", "value": 3}
        assert len(client.get("/api/telemetry/events", params=params).json()) == 1
        first = client.get("/api/telemetry/events", params={**params, "first": True}).json()
        assert first["data"]["alt"] == 152300

    def test_events_on_string_field(self, client, sample_pair):
        task_id, _ = _processed_task(client, sample_pair)
        params = {"task_id": task_id, "message_type": "INFO_MSG", "field": "msg", "op": "==", "value": "takeoff"}
        body = client.get("/api/telemetry/events", params=params).json()
        assert [m["data"]["msg"] for m in body] == ["takeoff"]

    def test_retained_results_are_capped(self, client, monkeypatch, write_pair):
        monkeypatch.setattr(processing, "get_settings", lambda: Settings(max_retained_results=1))
        first_id = _queue(client, *write_pair(stem="first"))
        client.post("/api/processing/process-next")
        second_id = _queue(client, *write_pair(stem="second"))
        client.post("/api/processing/process-next")

        assert client.get("/api/telemetry/summary", params={"task_id": first_id}).status_code == 404
        assert client.get("/api/telemetry/summary", params={"task_id": second_id}).status_code == 200
        assert client.get(f"/api/processing/status/{first_id}").json()["status"] == "completed"

    def test_unknown_task(self, client):
        assert client.get("/api/telemetry", params={"task_id": str(uuid.uuid4())}).status_code == 404
        assert client.get("/api/telemetry", params={"task_id": "bad"}).status_code == 400
