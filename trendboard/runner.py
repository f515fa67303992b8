import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trendboard.config import Settings, get_settings
from trendboard.event_store import EventStore
from trendboard.ingest import poll_sources
from trendboard.models import JobRun, utcnow
from trendboard.pipeline import ScoringService

logger = logging.getLogger(__name__)


@contextmanager
def track_job(db: Session, job_type: str) -> Iterator[JobRun]:
    """
    Record a JobRun around a pass. The body may set `run.summary` and mark the
    run "empty"; exceptions mark it "failed" and propagate.
    """
    run = JobRun(job_type=job_type, status="running", started_at=utcnow())
    db.add(run)
    db.commit()
    try:
        yield run
    except Exception as e:
        db.rollback()
        run.status = "failed"
        run.error_message = str(e)
        run.completed_at = utcnow()
        try:
            db.commit()
        except SQLAlchemyError as commit_error:
            db.rollback()
            logger.error(f"Could not record failure of {job_type} job: {commit_error}")
        raise
    else:
        if run.status == "running":
            run.status = "completed"
        run.completed_at = utcnow()
        db.commit()


class PipelineRunner:
    """
    Runs the batch passes in order: poll connectors, cluster new items,
    reselect primary items, score every window. A production deployment
    calls run_once() from its scheduler; run() is the in-process loop.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        event_store: Optional[EventStore] = None,
        scoring: Optional[ScoringService] = None,
    ):
        self.settings = settings or get_settings()
        self.event_store = event_store or EventStore(self.settings)
        self.scoring = scoring or ScoringService(self.settings)

    def deduplicate(self, db: Session):
        with track_job(db, "deduplicate") as run:
            result = self.event_store.deduplicate(db)
            result.primaries_updated = self.event_store.reselect_primaries(db)
            run.summary = result.model_dump()
            if result.processed == 0 and result.failed == 0:
                run.status = "empty"
        return result

    def score(self, db: Session, window: Optional[str] = None):
        with track_job(db, f"score:{window or 'all'}") as run:
            if window is None:
                results = self.scoring.score_all(db)
            else:
                results = [self.scoring.score_window(db, window)]
            run.summary = {"windows": [r.model_dump(mode="json") for r in results]}
            if all(r.written == 0 for r in results):
                run.status = "empty"
        return results

    def run_once(self, db_factory) -> None:
        """One full pass. Each stage gets its own session."""
        logger.info("Starting pipeline pass")

        db: Session = db_factory()
        try:
            stored = poll_sources(db)
            if stored:
                logger.info(f"Stored {stored} items from connectors")
        finally:
            db.close()

        db = db_factory()
        try:
            self.deduplicate(db)
        finally:
            db.close()

        db = db_factory()
        try:
            for result in self.score(db):
                logger.info(
                    f"Window '{result.window}': {result.written} entities ranked from {result.items} items"
                )
        finally:
            db.close()

        logger.info("Pipeline pass complete")

    async def run(self, db_factory):
        """
        Entry point for the background task.
        db_factory: callable that returns a new SQLAlchemy Session (e.g. SessionLocal)
        """
        logger.info(f"PipelineRunner started, running every {self.settings.run_interval_seconds}s")
        while True:
            try:
                await asyncio.to_thread(self.run_once, db_factory)
            except Exception:
                # the pass is recorded as failed; the next tick retries from scratch
                logger.exception("Pipeline pass failed")
            await asyncio.sleep(self.settings.run_interval_seconds)
