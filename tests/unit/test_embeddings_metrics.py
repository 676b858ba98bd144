from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from glowrs_server.config import reset_settings
from glowrs_server.main import create_app


class FakeEmbeddingsMetrics:
    def __init__(self) -> None:
        self.records: list[dict[str, object]] = []

    def record(
        self,
        *,
        model: str,
        status: str,
        input_count: int,
        prompt_tokens: int | None,
        duration_ms: float,
    ) -> None:
        self.records.append(
            {
                "model": model,
                "status": status,
                "input_count": input_count,
                "prompt_tokens": prompt_tokens,
                "duration_ms": duration_ms,
            }
        )


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    keys = [
        "GLOWRS_SERVER_EMBEDDING__ENABLED",
        "GLOWRS_SERVER_EMBEDDING__BACKEND",
        "GLOWRS_SERVER_EMBEDDING__MODEL_NAME",
        "GLOWRS_SERVER_EMBEDDING__DIMENSION",
        "GLOWRS_SERVER_QUEUE__CAPACITY",
        "GLOWRS_SERVER_TELEMETRY__ENABLED",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GLOWRS_SERVER_QUEUE__MAX_BATCH_WAIT_MS", "1")
    reset_settings()
    yield
    reset_settings()


def test_embeddings_metrics_recorded_success():
    with TestClient(create_app()) as client:
        fake = FakeEmbeddingsMetrics()
        client.app.state.embeddings_metrics = fake

        response = client.post(
            "/v1/embeddings",
            json={"model": "all-MiniLM-L6-v2", "input": "hello world"},
        )

        assert response.status_code == 200
        assert len(fake.records) == 1
        record = fake.records[0]
        assert record["model"] == "all-MiniLM-L6-v2"
        assert record["status"] == "ok"
        assert record["input_count"] == 1
        assert record["prompt_tokens"] == 2
        assert isinstance(record["duration_ms"], float)
        assert record["duration_ms"] >= 0.0


def test_embeddings_metrics_recorded_invalid_model():
    with TestClient(create_app()) as client:
        fake = FakeEmbeddingsMetrics()
        client.app.state.embeddings_metrics = fake

        response = client.post(
            "/v1/embeddings",
            json={"model": "unsupported-model", "input": "hello world"},
        )

        assert response.status_code == 400
        record = fake.records[0]
        assert record["status"] == "invalid_request"
        assert record["input_count"] == 1
        assert record["prompt_tokens"] is None


def test_embeddings_metrics_recorded_queue_full(monkeypatch):
    monkeypatch.setenv("GLOWRS_SERVER_QUEUE__CAPACITY", "1")
    reset_settings()
    with TestClient(create_app()) as client:
        fake = FakeEmbeddingsMetrics()
        client.app.state.embeddings_metrics = fake

        response = client.post(
            "/v1/embeddings",
            json={"model": "all-MiniLM-L6-v2", "input": ["one two", "three"]},
        )

        assert response.status_code == 429
        record = fake.records[0]
        assert record["status"] == "queue_full"
        assert record["input_count"] == 2
        assert record["prompt_tokens"] == 3
