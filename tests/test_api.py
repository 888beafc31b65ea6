"""Tests for the HTTP API."""
import logging

import pytest
from fastapi.testclient import TestClient

from recall_db.config import Settings
from recall_db.main import create_app
from recall_db.services.database import Database

class FakeProvider:
    """Deterministic 2-d provider: texts mentioning 'ai' point along x."""

    dimension = 2

    def embed(self, text):
        return [1.0, 0.0] if "ai" in text.lower() else [0.0, 1.0]

@pytest.fixture
def client(tmp_path):
    """Create test client backed by a temporary database."""
    db_path = tmp_path / "api.db"
    app_settings = Settings(db_path=db_path, embedding_dimension=2, default_search_limit=5)
    app = create_app(
        database_factory=lambda: Database(db_path, embedding_dimension=2),
        provider=FakeProvider(),
        app_settings=app_settings,
    )
    with TestClient(app) as client:
        yield client

@pytest.fixture
def db(client):
    return client.app.state.db

@pytest.fixture
def seeded(db):
    """Notes A=[1,0], B=[0,1], C=[0.7,0.7]."""
    index = db.notes_index
    return {
        "A": index.insert_with_embedding({"title": "A"}, [1.0, 0.0]),
        "B": index.insert_with_embedding({"title": "B"}, [0.0, 1.0]),
        "C": index.insert_with_embedding({"title": "C"}, [0.7, 0.7]),
    }

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

def test_semantic_search_with_vector(client, seeded):
    """Test vector search returns the closest notes first."""
    response = client.post("/api/search/semantic", json={"vector": [1.0, 0.0], "limit": 2})

    assert response.status_code == 200
    data = response.json()
    assert [r["title"] for r in data["results"]] == ["A", "C"]
    assert data["results"][0]["note_id"] == seeded["A"]
    assert data["results"][0]["similarity_score"] == pytest.approx(1.0)
    assert data["results"][1]["similarity_score"] == pytest.approx(0.7071, abs=1e-4)
    assert data["candidates_ranked"] == 3

def test_semantic_search_with_text(client, seeded):
    """Test that query text is embedded by the configured provider."""
    response = client.post("/api/search/semantic", json={"query": "about AI", "limit": 1})

    assert response.status_code == 200
    assert response.json()["results"][0]["title"] == "A"
    assert response.json()["query"] == "about AI"

def test_semantic_search_default_limit(client, db):
    for i in range(8):
        db.notes_index.insert_with_embedding({"title": f"n{i}"}, [1.0, float(i)])
    response = client.post("/api/search/semantic", json={"vector": [1.0, 0.0]})
    assert len(response.json()["results"]) == 5

def test_semantic_search_title_prefilter(client, seeded):
    response = client.post(
        "/api/search/semantic", json={"vector": [1.0, 0.0], "title_pattern": "B%"}
    )
    data = response.json()
    assert [r["title"] for r in data["results"]] == ["B"]
    assert data["candidates_ranked"] == 1

def test_semantic_search_empty_store(client):
    response = client.post("/api/search/semantic", json={"vector": [1.0, 0.0]})
    assert response.status_code == 200
    assert response.json()["results"] == []

@pytest.mark.parametrize("payload", [
    {},
    {"query": "x", "vector": [1.0, 0.0]},
    {"vector": [1.0, 0.0, 0.0]},
    {"vector": [1.0, 0.0], "limit": 0},
])
def test_semantic_search_rejects_bad_requests(client, payload):
    response = client.post("/api/search/semantic", json=payload)
    assert response.status_code == 422

def test_sync_dirty_and_clear(client, db):
    """Test the sync collaborator round trip over HTTP."""
    key = db.records.insert("notes", {"title": "to sync"})

    response = client.get("/api/sync/dirty")
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    entry = data["records"][0]
    assert entry["table"] == "notes"
    assert entry["key"] == key
    assert entry["operation"] == "insert"

    db.records.update("notes", {"body": "edited"}, "id = ?", [key])
    stale = client.post("/api/sync/clear", json={"table": "notes", "key": key, "revision": entry["revision"]})
    assert stale.json() == {"cleared": False}

    cleared = client.post("/api/sync/clear", json={"table": "notes", "key": key})
    assert cleared.json() == {"cleared": True}
    assert client.get("/api/sync/dirty").json()["count"] == 0

def test_sync_dirty_table_filter(client, db):
    db.records.insert("notes", {"title": "a"})
    response = client.get("/api/sync/dirty", params={"table": "other"})
    assert response.json()["count"] == 0

def test_stats(client, db, seeded):
    db.records.insert("notes", {"title": "no vector"})
    response = client.get("/api/stats/")
    assert response.status_code == 200
    data = response.json()
    assert data["schema_version"] == 4
    assert data["notes_count"] == 4
    assert data["embedded_notes_count"] == 3
    assert data["dirty_count"] == 4
    assert [m["version"] for m in data["migrations"]] == [1, 2, 3, 4]

def test_logs(client):
    response = client.get("/api/logs", params={"lines": 5})
    assert response.status_code == 200
    assert response.json()["count"] <= 5

class CrashingProvider:
    """Provider whose model blows up on every call."""

    dimension = 2

    def embed(self, text):
        raise RuntimeError("model crashed")

def test_semantic_search_provider_failure_is_bad_gateway(tmp_path):
    """Test that a raw provider exception surfaces as 502, not 500."""
    db_path = tmp_path / "crash.db"
    app = create_app(
        database_factory=lambda: Database(db_path, embedding_dimension=2),
        provider=CrashingProvider(),
        app_settings=Settings(db_path=db_path, embedding_dimension=2),
    )
    with TestClient(app) as client:
        client.app.state.db.notes_index.insert_with_embedding({"title": "A"}, [1.0, 0.0])
        response = client.post("/api/search/semantic", json={"query": "hi"})
    assert response.status_code == 502
    assert "model crashed" in response.json()["detail"]

def test_semantic_search_checks_dimension_before_loading(client, db, monkeypatch):
    """Test that a wrong-sized query vector is rejected without scanning candidates."""
    def fail(*args, **kwargs):
        raise AssertionError("candidates should not be loaded")

    monkeypatch.setattr(db.notes_index, "candidates", fail)
    response = client.post("/api/search/semantic", json={"vector": [1.0, 0.0, 0.0]})
    assert response.status_code == 422

def test_logs_level_filter(client):
    logging.getLogger("recall_db.tests").warning("visible warning")
    response = client.get("/api/logs", params={"lines": 50, "level": "WARNING", "logger_name": "recall_db.tests"})
    assert response.status_code == 200
    logs = response.json()["logs"]
    assert logs and all(entry["levelno"] >= logging.WARNING for entry in logs)
    assert logs[-1]["message"].endswith("visible warning")

    assert client.get("/api/logs", params={"level": "LOUD"}).status_code == 422
