"""In-memory registry of packaging jobs.

The registry owns every Job record. Background workflows hold only the job id
and mutate the record through the registry methods, which serialize access
with a single lock. Terminal jobs are evicted once they are older than the
retention window.
"""

import time
from threading import Lock
from typing import Any, Dict, Optional

from aatm.config import env
from aatm.core.logger import setup_logger
from aatm.core.models import Job, JobStatus

logger = setup_logger(__name__)


class JobRegistry:
    """Thread-safe store of Job records keyed by id."""

    def __init__(self, retention_seconds: Optional[int] = None, log_tail: Optional[int] = None):
        self._jobs: Dict[str, Job] = {}
        self._lock = Lock()
        self._retention = env.JOB_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        self.log_tail = env.JOB_LOG_TAIL if log_tail is None else log_tail

    def create(
        self,
        source_path: str,
        output_dir: str,
        torrent_path: str,
        nfo_path: str,
        media_type: str,
    ) -> Job:
        """Register a new running job."""
        self.prune()
        job = Job(
            source_path=source_path,
            output_dir=output_dir,
            torrent_path=torrent_path,
            nfo_path=nfo_path,
            media_type=media_type,
        )
        with self._lock:
            self._jobs[job.id] = job
        logger.info(f"Job {job.id}: created for {source_path}")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Consistent copy of the job's reportable state, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot(self.log_tail) if job else None

    def _running_job(self, job_id: str, action: str) -> Optional[Job]:
        # Caller holds the lock
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning(f"Job {job_id}: cannot {action}, job not found")
            return None
        if job.status.is_terminal:
            logger.warning(f"Job {job_id}: cannot {action}, job already {job.status.value}")
            return None
        return job

    def append_log(self, job_id: str, line: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.logs.append(line)

    def set_progress(self, job_id: str, progress: int) -> None:
        with self._lock:
            job = self._running_job(job_id, "update progress")
            if job is None:
                return
            if progress < job.progress:
                logger.warning(
                    f"Job {job_id}: progress went backwards ({job.progress} -> {progress})"
                )
            job.progress = max(0, min(100, int(progress)))

    def mark_completed(self, job_id: str) -> bool:
        with self._lock:
            job = self._running_job(job_id, "complete")
            if job is None:
                return False
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.finished_at = time.time()
        logger.info(f"Job {job_id}: completed")
        return True

    def mark_failed(self, job_id: str, error: str) -> bool:
        with self._lock:
            job = self._running_job(job_id, "fail")
            if job is None:
                return False
            job.status = JobStatus.FAILED
            job.error = error.strip() if error and error.strip() else "Unknown error"
            job.finished_at = time.time()
            message = job.error
        logger.warning(f"Job {job_id}: failed - {message}")
        return True

    def prune(self, now: Optional[float] = None) -> int:
        """Evict terminal jobs that finished more than the retention window ago."""
        if self._retention <= 0:
            return 0
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status.is_terminal
                and job.finished_at is not None
                and now - job.finished_at > self._retention
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished job(s) from registry")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


job_registry = JobRegistry()
