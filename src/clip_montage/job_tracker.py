"""
Job State Tracker

pending -> processing -> completed | failed

Progress only moves up; a lower value is ignored rather than rejected so
parallel stages can report without coordinating. Terminal jobs are purged
once they are older than the retention window.
"""

import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from .core.job_store import JobStore
from .exceptions import InvalidTransitionError, NotFoundError
from .logger import logger
from .models import Job, JobStatus

_ALLOWED = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobTracker:
    """
    Owns every job mutation. All read-modify-write cycles run under one lock
    so concurrent pipeline threads never lose updates.
    """

    def __init__(self, store: JobStore, retention_seconds: int = 3600,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._lock = threading.RLock()

    def create(self, params: Optional[Dict[str, Any]] = None) -> Job:
        now = self.clock()
        job = Job(id=str(uuid.uuid4()), params=dict(params or {}), created_at=now, updated_at=now)
        self.store.set(job)
        return job

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def _mutate(self, job_id: str, fn: Callable[[Job], None]) -> Job:
        with self._lock:
            job = self.get(job_id)
            fn(job)
            job.updated_at = self.clock()
            self.store.set(job)
            return job

    def _transition(self, job: Job, status: JobStatus) -> None:
        if status == job.status:
            return
        if status not in _ALLOWED[job.status]:
            raise InvalidTransitionError(
                f"Job {job.id} cannot move from {job.status.value} to {status.value}"
            )
        job.status = status
        if status.is_terminal:
            job.finished_at = self.clock()

    def start(self, job_id: str, progress: int = 0) -> Job:
        def apply(job: Job) -> None:
            self._transition(job, JobStatus.PROCESSING)
            job.progress = max(job.progress, _clamp(progress))
        return self._mutate(job_id, apply)

    def update_progress(self, job_id: str, progress: int) -> Job:
        def apply(job: Job) -> None:
            if job.status is not JobStatus.PROCESSING:
                raise InvalidTransitionError(
                    f"Job {job.id} is {job.status.value}; progress only changes while processing"
                )
            job.progress = max(job.progress, _clamp(progress))
        return self._mutate(job_id, apply)

    def add_warning(self, job_id: str, message: str) -> Job:
        return self._mutate(job_id, lambda job: job.warnings.append(message))

    def complete(self, job_id: str, download_urls: List[str]) -> Job:
        def apply(job: Job) -> None:
            self._transition(job, JobStatus.COMPLETED)
            job.progress = 100
            job.download_urls = list(download_urls)
        job = self._mutate(job_id, apply)
        logger.info(f"   ✅ Job {job_id} completed with {len(download_urls)} output(s)")
        return job

    def fail(self, job_id: str, error: str) -> Job:
        def apply(job: Job) -> None:
            self._transition(job, JobStatus.FAILED)
            job.error = error
        job = self._mutate(job_id, apply)
        logger.error(f"   ❌ Job {job_id} failed: {error}")
        return job

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Delete terminal jobs finished more than retention_seconds ago."""
        now = self.clock() if now is None else now
        removed = 0
        with self._lock:
            for job_id in list(self.store.ids()):
                job = self.store.get(job_id)
                if job is None or not job.status.is_terminal:
                    continue
                finished = job.finished_at or job.created_at
                if now - finished > self.retention_seconds:
                    self.store.delete(job_id)
                    removed += 1
        if removed:
            logger.debug(f"Purged {removed} expired job(s)")
        return removed


def _clamp(progress: int) -> int:
    return max(0, min(100, int(progress)))


class JobReaper(threading.Thread):
    """Daemon thread calling purge_expired every ``interval`` seconds."""

    def __init__(self, tracker: JobTracker, interval: float = 300):
        super().__init__(name="job-reaper", daemon=True)
        self.tracker = tracker
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.tracker.purge_expired()
            except Exception as exc:
                logger.warning(f"Job purge failed: {exc}")

    def stop(self) -> None:
        self._stop_event.set()
