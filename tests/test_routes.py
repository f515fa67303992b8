"""
Unit tests for the API routes: in-memory SQLite database, no background runner.
Timestamps are relative to the real clock because the job routes score "now".

Run with: pytest tests/test_routes.py -v
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from trendboard.database import get_db
from trendboard.models import Event, Item, ItemMetricSnapshot, JobRun
from trendboard.routes.pipeline import router

# Minimal test app: no lifespan, no background runner
_app = FastAPI()
_app.include_router(router)


@pytest.fixture
def client(db):
    _app.dependency_overrides[get_db] = lambda: db
    yield TestClient(_app)
    _app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_payload(**kwargs) -> dict:
    """Returns a valid item payload dict, overridable via kwargs."""
    defaults = {
        "platform": "youtube",
        "external_id": "vid-1",
        "url": "https://www.youtube.com/watch?v=vid-1",
        "title": "Big moment in the finale",
        "channel_name": "Some Channel",
        "published_at": (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat(),
        "metrics": {"views": 600, "likes": 30, "comments": 10},
    }
    defaults.update(kwargs)
    return defaults


def make_entity_payload(**kwargs) -> dict:
    defaults = {
        "type": "storyline",
        "canonical_name": "Big Moment",
        "aliases": [{"alias_text": "big moment"}],
    }
    defaults.update(kwargs)
    return defaults


# ---------------------------------------------------------------------------
# POST /ingest
# ---------------------------------------------------------------------------

class TestIngest:
    def test_stores_items_and_snapshots(self, client, db):
        response = client.post("/ingest", json=[make_payload(), make_payload(external_id="vid-2")])

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "received": 2, "stored": 2}
        assert db.query(Item).count() == 2
        assert db.query(ItemMetricSnapshot).count() == 2

    def test_reingest_updates_item_and_appends_snapshot(self, client, db):
        client.post("/ingest", json=[make_payload()])
        client.post("/ingest", json=[make_payload(metrics={"views": 900})])

        item = db.query(Item).one()
        assert item.metrics == {"views": 900}
        assert db.query(ItemMetricSnapshot).filter(ItemMetricSnapshot.item_id == item.id).count() == 2

    def test_unknown_platform_is_rejected(self, client):
        response = client.post("/ingest", json=[make_payload(platform="myspace")])
        assert response.status_code == 422

    def test_empty_batch(self, client):
        response = client.post("/ingest", json=[])
        assert response.json()["stored"] == 0


# ---------------------------------------------------------------------------
# POST /entities
# ---------------------------------------------------------------------------

class TestEntities:
    def test_create_entity(self, client):
        response = client.post("/entities", json=make_entity_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["canonical_name"] == "Big Moment"
        assert data["enabled"] is True

    def test_invalid_match_type_is_rejected(self, client):
        payload = make_entity_payload(aliases=[{"alias_text": "x", "match_type": "fuzzy"}])
        assert client.post("/entities", json=payload).status_code == 422


# ---------------------------------------------------------------------------
# Jobs and reads
# ---------------------------------------------------------------------------

class TestJobs:
    def test_deduplicate_clusters_and_records_run(self, client, db):
        client.post("/ingest", json=[
            make_payload(),
            make_payload(platform="reddit", external_id="post-1", title="That big moment in the finale",
                         url=None, metrics={"upvotes": 40}),
        ])

        response = client.post("/jobs/deduplicate")

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 2
        assert data["created"] == 1
        assert data["attached"] == 1
        assert db.query(Event).count() == 1
        run = db.query(JobRun).filter(JobRun.job_type == "deduplicate").one()
        assert run.status == "completed"

    def test_deduplicate_with_nothing_to_do_is_empty(self, client, db):
        client.post("/jobs/deduplicate")
        assert db.query(JobRun).one().status == "empty"

    def test_score_window_and_read_snapshot(self, client):
        client.post("/ingest", json=[make_payload()])
        client.post("/entities", json=make_entity_payload())

        response = client.post("/jobs/score", params={"window": "now"})

        assert response.status_code == 200
        results = response.json()
        assert [r["window"] for r in results] == ["now"]
        assert results[0]["written"] == 1

        snapshot = client.get("/scores/now").json()
        assert snapshot["window"] == "now"
        assert snapshot["computed_at"] is not None
        assert len(snapshot["rows"]) == 1
        assert snapshot["rows"][0]["rank"] == 1
        assert snapshot["rows"][0]["score"] > 0

    def test_score_all_windows(self, client):
        client.post("/ingest", json=[make_payload()])
        client.post("/entities", json=make_entity_payload())

        results = client.post("/jobs/score").json()

        assert [r["window"] for r in results] == ["now", "24h", "7d"]

    def test_unknown_window_is_404(self, client):
        assert client.post("/jobs/score", params={"window": "1y"}).status_code == 404
        assert client.get("/scores/1y").status_code == 404

    def test_empty_snapshot(self, client):
        snapshot = client.get("/scores/24h").json()
        assert snapshot == {"window": "24h", "computed_at": None, "rows": []}

    def test_events_most_recent_first(self, client):
        now = datetime.now(timezone.utc)
        client.post("/ingest", json=[
            make_payload(external_id="old", title="Older separate story",
                         published_at=(now - timedelta(hours=2)).isoformat()),
            make_payload(external_id="new", title="Newest headline here",
                         published_at=(now - timedelta(minutes=5)).isoformat()),
        ])
        client.post("/jobs/deduplicate")

        events = client.get("/events").json()

        assert [e["title"] for e in events] == ["Newest headline here", "Older separate story"]
        assert events[0]["platform_mix"]["youtube"] is True

    def test_events_limit(self, client):
        client.post("/ingest", json=[
            make_payload(external_id=f"v{i}", title=f"Standalone story number{i}") for i in range(3)
        ])
        client.post("/jobs/deduplicate")

        assert len(client.get("/events", params={"limit": 2}).json()) == 2
