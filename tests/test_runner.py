import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from trendboard.config import Settings
from trendboard.ingest import BaseSource, poll_sources
from trendboard.models import Event, Item, JobRun, Score
from trendboard.runner import PipelineRunner, track_job
from trendboard.schemas import ItemIngest


class StopLoop(BaseException):
    """Escapes the runner loop, which only swallows Exception."""


class FakeSource(BaseSource):
    source_name = "fake"

    def __init__(self, payloads=None, error=None):
        self.payloads = payloads or []
        self.error = error

    def fetch(self):
        if self.error:
            raise self.error
        return self.payloads


def recent_payload(external_id="vid-1", title="Big moment in the finale", **kwargs) -> ItemIngest:
    defaults = {
        "platform": "youtube",
        "external_id": external_id,
        "title": title,
        "published_at": datetime.now(timezone.utc) - timedelta(minutes=20),
        "metrics": {"views": 400},
    }
    defaults.update(kwargs)
    return ItemIngest(**defaults)


# ---------------------------------------------------------------------------
# track_job()
# ---------------------------------------------------------------------------

class TestTrackJob:
    def test_completed(self, db):
        with track_job(db, "demo") as run:
            run.summary = {"n": 1}

        stored = db.query(JobRun).one()
        assert stored.status == "completed"
        assert stored.summary == {"n": 1}
        assert stored.completed_at is not None

    def test_empty_status_is_kept(self, db):
        with track_job(db, "demo") as run:
            run.status = "empty"

        assert db.query(JobRun).one().status == "empty"

    def test_failure_is_recorded_and_reraised(self, db):
        with pytest.raises(RuntimeError):
            with track_job(db, "demo"):
                raise RuntimeError("store unreachable")

        stored = db.query(JobRun).one()
        assert stored.status == "failed"
        assert stored.error_message == "store unreachable"


# ---------------------------------------------------------------------------
# poll_sources()
# ---------------------------------------------------------------------------

class TestPollSources:
    def test_failing_source_does_not_stop_the_others(self, db):
        sources = [FakeSource(error=ConnectionError("timeout")), FakeSource([recent_payload()])]

        assert poll_sources(db, sources) == 1
        assert db.query(Item).count() == 1

    def test_bad_record_is_skipped(self, db):
        good = recent_payload("ok")
        bad = recent_payload("bad")
        with patch("trendboard.ingest.upsert_item", side_effect=[ValueError("broken"), MagicMock()]):
            assert poll_sources(db, [FakeSource([bad, good])]) == 1


# ---------------------------------------------------------------------------
# PipelineRunner
# ---------------------------------------------------------------------------

class TestPipelineRunner:
    def test_run_once_polls_clusters_and_scores(self, db, session_factory, make_entity):
        make_entity("Big Moment", aliases=["big moment"])
        source = FakeSource([
            recent_payload("vid-1"),
            recent_payload("vid-2", title="Big moment in the finale!!"),
        ])
        runner = PipelineRunner(Settings())

        with patch("trendboard.ingest.SOURCES", [source]):
            runner.run_once(session_factory)

        assert db.query(Item).count() == 2
        assert db.query(Event).count() == 1
        assert {s.window for s in db.query(Score)} == {"now", "24h", "7d"}
        statuses = {run.job_type: run.status for run in db.query(JobRun)}
        assert statuses == {"deduplicate": "completed", "score:all": "completed"}

    def test_score_with_no_entities_is_empty(self, db):
        PipelineRunner(Settings()).score(db, "now")
        assert db.query(JobRun).one().status == "empty"

    def test_failed_pass_is_logged_and_loop_continues(self, session_factory):
        runner = PipelineRunner(Settings(run_interval_seconds=0))
        calls = []

        def run_once(db_factory):
            calls.append(db_factory)
            if len(calls) == 1:
                raise RuntimeError("first pass failed")
            raise StopLoop

        with patch.object(runner, "run_once", side_effect=run_once):
            with pytest.raises(StopLoop):
                asyncio.run(runner.run(session_factory))

        assert len(calls) == 2
