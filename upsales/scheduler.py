"""
Daily compensation batch on APScheduler.

The job fetches, computes and writes the report once a day at the
configured Kyiv time. Only one run may be in flight, and runs missed while
the process was busy or asleep are coalesced into one. The outcomes of the
last few runs are kept in memory for inspection.
"""
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from upsales.config import AppConfig, config as default_config
from upsales.observability import get_logger, run_scope
from upsales.runner import RunResult, run_compensation

logger = get_logger(__name__)

JOB_ID = "compensation_daily"

BatchFunc = Callable[[AppConfig], Awaitable[RunResult]]


class JobStatus(Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class RunRecord:
    """Outcome of one scheduled (or missed) batch."""
    started_at: datetime
    status: JobStatus = JobStatus.RUNNING
    finished_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def finish(self, status: JobStatus, tz: ZoneInfo, started: float, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = datetime.now(tz)
        self.duration_ms = round((time.perf_counter() - started) * 1000, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "stats": dict(self.stats),
        }


async def _default_batch(app_config: AppConfig) -> RunResult:
    return await run_compensation(app_config)


class CompensationScheduler:
    """
    Owns the AsyncIOScheduler that triggers the daily batch.

        scheduler = CompensationScheduler(config)
        scheduler.start()      # inside a running event loop
        ...
        scheduler.shutdown()

    batch is injectable so the wiring can run without KeyCRM.
    """

    def __init__(self, app_config: Optional[AppConfig] = None, batch: BatchFunc = _default_batch):
        self.config = app_config or default_config
        self.tz = ZoneInfo(self.config.report.timezone)
        self._batch = batch
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._runs: Deque[RunRecord] = deque(maxlen=self.config.scheduler.max_history)

    @property
    def trigger(self) -> CronTrigger:
        schedule = self.config.scheduler
        return CronTrigger(hour=schedule.hour, minute=schedule.minute, timezone=self.tz)

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Compensation scheduler already started")
            return

        scheduler = AsyncIOScheduler(timezone=self.tz)
        scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        scheduler.add_job(
            self.run_once,
            trigger=self.trigger,
            id=JOB_ID,
            name="Daily manager compensation",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"Compensation scheduled daily at {self.config.scheduler.hour:02d}:{self.config.scheduler.minute:02d}",
            extra={"timezone": str(self.tz)}
        )

    async def run_once(self) -> Dict[str, Any]:
        """Run the batch now; the outcome is recorded whether it succeeds or not."""
        record = RunRecord(started_at=datetime.now(self.tz))
        self._runs.append(record)
        started = time.perf_counter()

        with run_scope():
            try:
                result = await self._batch(self.config)
            except Exception as e:
                record.finish(JobStatus.FAILED, self.tz, started, error=str(e))
                logger.error(f"Scheduled compensation run failed: {e}", exc_info=True)
                raise

        summary = result.to_dict()
        record.stats = summary
        record.finish(JobStatus.SUCCESS, self.tz, started)
        return summary

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        now = datetime.now(self.tz)
        self._runs.append(RunRecord(started_at=now, finished_at=now, status=JobStatus.MISSED))
        logger.warning(
            f"Scheduled compensation run missed ({event.job_id})",
            extra={"job_id": event.job_id}
        )

    def get_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent runs first."""
        return [record.to_dict() for record in list(reversed(self._runs))[:limit]]

    @property
    def next_run(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Compensation scheduler stopped")
