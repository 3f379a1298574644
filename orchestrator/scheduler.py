"""Orchestrator running one scrape task per facility and summarizing the run."""
import logging
import random
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from botocore.exceptions import ClientError

from orchestrator.dispatchers import Dispatch
from processor.exceptions import FacilityTimeout
from processor.models import FacilityResult, SchedulerRun, format_instant
from processor.time_normalizer import utc_now
from storage.dynamodb_manager import DynamoDBManager

logger = logging.getLogger(__name__)


class RunState(Enum):
    IDLE = 'idle'
    DISPATCHING = 'dispatching'
    SUMMARIZING = 'summarizing'


class Orchestrator:
    """
    Fans a cycle out to every configured facility.

    Each facility runs in its own worker thread; a failure or timeout in one
    never affects the others, and the run summary is always produced.

    The splay never blocks the invocation. It is added to the next scheduled
    time, and time-based triggers that arrive before that time are skipped
    (see ``run_if_due``), so the time-based trigger should fire more often
    than ``run_interval_hours``.

    Python threads cannot be killed. A facility that times out keeps running
    in its abandoned worker, possibly across a Lambda freeze; its late result
    is discarded by ``FacilityPipeline`` and never overwrites newer metadata.
    """

    def __init__(
        self,
        facility_ids: Sequence[str],
        dispatch: Dispatch,
        store: DynamoDBManager,
        splay_minutes: float = 60,
        facility_timeout_seconds: float = 300,
        run_interval_hours: float = 6,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.facility_ids = list(dict.fromkeys(facility_ids))
        self.dispatch = dispatch
        self.store = store
        self.splay_minutes = splay_minutes
        self.facility_timeout_seconds = facility_timeout_seconds
        self.run_interval = timedelta(hours=run_interval_hours)
        self.rng = rng or random.Random()
        self.clock = clock
        self.state = RunState.IDLE

    def compute_splay(self) -> float:
        """Random delay in seconds between zero and the configured bound."""
        if self.splay_minutes <= 0:
            return 0.0
        return self.rng.uniform(0, self.splay_minutes * 60)

    def next_due(self) -> Optional[datetime]:
        """Scheduled time of the next cycle, or None when no run is recorded."""
        try:
            previous = self.store.get_scheduler_run()
        except ClientError as e:
            logger.warning(f"Could not read the previous scheduler run: {e}")
            return None
        return previous.next_scheduled if previous is not None else None

    def run_if_due(self) -> Optional[SchedulerRun]:
        """
        Run a splayed cycle when the previous run's next scheduled time has passed.

        Returns:
            SchedulerRun summary, or None when the cycle is not due yet
        """
        due = self.next_due()
        if due is not None and self.clock() < due:
            logger.info(
                f"Skipping scheduled trigger; next cycle due at {format_instant(due)}",
                extra={'next_scheduled': format_instant(due)}
            )
            return None
        return self.run_cycle(apply_splay=True)

    def run_cycle(self, apply_splay: bool = True) -> SchedulerRun:
        """
        Run one scheduling cycle immediately.

        Args:
            apply_splay: Push the next scheduled time out by a random splay
                (time-based triggers only)

        Returns:
            SchedulerRun summary, persisted when the store accepts it
        """
        splay = self.compute_splay() if apply_splay else 0.0

        self.state = RunState.DISPATCHING
        started = self.clock()
        logger.info(f"Dispatching {len(self.facility_ids)} facilities")
        results = self._dispatch_all()

        self.state = RunState.SUMMARIZING
        run = SchedulerRun(
            timestamp=started,
            results=results,
            next_scheduled=self.clock() + self.run_interval + timedelta(seconds=splay),
            splay_seconds=splay
        )

        try:
            self.store.put_scheduler_run(run)
        except ClientError as e:
            logger.error(f"Failed to persist scheduler run: {e}", exc_info=True)

        logger.info(
            f"Cycle complete: {run.successful} succeeded, {run.failed} failed",
            extra={'successful': run.successful, 'failed': run.failed}
        )
        self.state = RunState.IDLE
        return run

    def _dispatch_all(self) -> List[FacilityResult]:
        if not self.facility_ids:
            return []

        executor = ThreadPoolExecutor(max_workers=len(self.facility_ids))
        futures = {
            executor.submit(self._run_one, facility_id): facility_id
            for facility_id in self.facility_ids
        }
        done, not_done = wait(futures, timeout=self.facility_timeout_seconds)

        results: Dict[str, FacilityResult] = {}
        for future in done:
            results[futures[future]] = future.result()

        for future in not_done:
            facility_id = futures[future]
            future.cancel()
            error = FacilityTimeout(facility_id, self.facility_timeout_seconds)
            logger.error(str(error), extra={'facility_id': facility_id})
            results[facility_id] = FacilityResult(
                facility_id=facility_id, success=False, error=str(error)
            )

        executor.shutdown(wait=False)
        return [results[facility_id] for facility_id in self.facility_ids]

    def _run_one(self, facility_id: str) -> FacilityResult:
        try:
            return self.dispatch(facility_id)
        except Exception as e:
            logger.error(
                f"Unexpected error running {facility_id}: {e}",
                exc_info=True,
                extra={'facility_id': facility_id}
            )
            return FacilityResult(facility_id=facility_id, success=False, error=str(e))
