"""Packaging workflow: sandbox check, mktorrent, mediainfo, NFO, history.

``submit`` does the synchronous part of a packaging request (validation,
output layout, job registration) and hands the rest of the workflow to a
thread pool. The request that triggered it never waits on the result;
progress is observable only through the job registry and the broadcaster.
"""

import os
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Any, Dict, Mapping, Optional

from aatm.config import env
from aatm.core.broadcaster import ProgressBroadcaster, broadcaster as default_broadcaster
from aatm.core.config import ConfigStore, config as default_config
from aatm.core.history import HistoryLog, history as default_history
from aatm.core.jobs import JobRegistry, job_registry as default_registry
from aatm.core.logger import setup_logger
from aatm.core.media import build_output_dir, resolve_media_type
from aatm.core.models import Job, PushOutcome
from aatm.core.sandbox import validate_path
from aatm.packaging.mediainfo import inspect_media, try_inspect_media
from aatm.packaging.mktorrent import build_mktorrent_args
from aatm.packaging.nfo import create_nfo_text, write_nfo
from aatm.packaging.process import get_progress_parser, run_with_progress

logger = setup_logger(__name__)

# Parsed progress is capped below 100 while running; 100 means completed
_RUNNING_PROGRESS_CAP = 99


def artifact_paths(output_dir: str, source_path: str) -> Dict[str, str]:
    base_name = os.path.basename(source_path.rstrip(os.sep))
    return {
        "torrent_path": os.path.join(output_dir, f"{base_name}.torrent"),
        "nfo_path": os.path.join(output_dir, f"{base_name}.nfo"),
    }


class PackagingOrchestrator:
    """Runs packaging jobs in the background and records their outcome."""

    def __init__(
        self,
        registry: JobRegistry,
        broadcaster: ProgressBroadcaster,
        history: HistoryLog,
        config_store: ConfigStore,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.history = history
        self.config_store = config_store
        self._executor = executor
        self._owns_executor = executor is None
        self._max_workers = max_workers or env.MAX_CONCURRENT_JOBS
        self._futures: Dict[str, Future] = {}
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the worker pool. Safe to call multiple times."""
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="Packaging",
            )
            self._owns_executor = True
        logger.info(f"Packaging orchestrator started with {self._max_workers} workers")

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        with self._lock:
            executor = self._executor
            if self._owns_executor:
                self._executor = None
        if executor is not None and self._owns_executor:
            executor.shutdown(wait=wait_for_jobs)
            logger.info("Packaging orchestrator stopped")

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job's workflow has finished. Returns False on timeout."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            return True
        done, _ = wait([future], timeout=timeout)
        return bool(done)

    # ------------------------------------------------------------------
    # Packaging
    # ------------------------------------------------------------------

    def submit(self, path: Optional[str], media_type: Optional[str] = None) -> Job:
        """Validate a packaging request, register its job and start the workflow.

        Raises:
            OutOfBoundsError: If path is outside the browse roots (no job is created).
            ValueError: If media_type is not a known media type.
            OSError: If the output directory cannot be created.
        """
        cfg = self.config_store.load()
        source_path = validate_path(path, cfg["browseRoots"])
        resolved_type = resolve_media_type(source_path, media_type)
        output_dir = build_output_dir(cfg["outputDir"], source_path, resolved_type)
        os.makedirs(output_dir, exist_ok=True)

        paths = artifact_paths(output_dir, source_path)
        job = self.registry.create(
            source_path=source_path,
            output_dir=output_dir,
            torrent_path=paths["torrent_path"],
            nfo_path=paths["nfo_path"],
            media_type=resolved_type,
        )

        self.start()
        future = self._executor.submit(self.run_job, job.id, cfg)
        with self._lock:
            self._futures[job.id] = future
        future.add_done_callback(lambda f, job_id=job.id: self._on_job_done(job_id, f))

        logger.info(f"Job {job.id}: queued packaging of {source_path} ({resolved_type})")
        return job

    def _on_job_done(self, job_id: str, future: Future) -> None:
        with self._lock:
            self._futures.pop(job_id, None)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Job {job_id}: workflow raised unexpectedly: {exc}")

    def run_job(self, job_id: str, cfg: Mapping[str, Any]) -> None:
        """The background part of a packaging job. Never raises for job errors."""
        job = self.registry.get(job_id)
        if job is None:
            logger.error(f"Job {job_id}: not found, cannot run")
            return

        torrent_settings = cfg.get("torrent", {})
        record = {
            "sourcePath": job.source_path,
            "outputDir": job.output_dir,
            "torrentPath": job.torrent_path,
            "nfoPath": job.nfo_path,
            "mediaType": job.media_type,
        }

        try:
            self.registry.append_log(job_id, "Creating torrent with mktorrent...")
            self.broadcaster.publish(job_id)

            self._run_packager(job_id, torrent_settings, job.torrent_path, job.source_path)

            media_info = try_inspect_media(job.source_path)
            text = create_nfo_text(
                source_path=job.source_path,
                media_info=media_info,
                announce=torrent_settings.get("announce", ""),
                source=torrent_settings.get("source", ""),
            )
            write_nfo(job.nfo_path, text)
            self.registry.append_log(job_id, "NFO generated")
            self.broadcaster.publish(job_id)

            self.history.append(
                **record,
                torrentCreated=True,
                nfoCreated=True,
                lacaleUpload=PushOutcome.PENDING,
                qbitPush=PushOutcome.PENDING,
            )
            self.registry.mark_completed(job_id)
            self.broadcaster.publish(job_id)

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error_trace(f"Job {job_id}: packaging failed: {message}")
            self.registry.append_log(job_id, message)
            self.registry.mark_failed(job_id, message)
            self.broadcaster.publish(job_id)
            self.history.append(
                **record,
                torrentCreated=False,
                nfoCreated=False,
                lacaleUpload=PushOutcome.KO,
                qbitPush=PushOutcome.KO,
                error=message,
            )

    def _run_packager(
        self,
        job_id: str,
        torrent_settings: Mapping[str, Any],
        torrent_path: str,
        source_path: str,
    ) -> None:
        executable = env.MKTORRENT_BIN
        parser = get_progress_parser(executable)

        def on_output(line: str, progress: Optional[int]) -> None:
            self.registry.append_log(job_id, line)
            if progress is not None:
                self.registry.set_progress(job_id, min(_RUNNING_PROGRESS_CAP, progress))
            self.broadcaster.publish(job_id)

        # mktorrent refuses to overwrite an existing torrent file
        if os.path.exists(torrent_path):
            os.remove(torrent_path)
            self.registry.append_log(job_id, "Removed previous torrent file")

        run_with_progress(
            executable,
            build_mktorrent_args(torrent_settings, torrent_path, source_path),
            on_output,
            progress_parser=parser,
            timeout=env.PROCESS_TIMEOUT,
        )

    # ------------------------------------------------------------------
    # Synchronous helpers
    # ------------------------------------------------------------------

    def create_nfo(
        self,
        path: Optional[str],
        media_type: Optional[str] = None,
        torrent_path: str = "",
    ) -> Dict[str, str]:
        """Write an NFO sidecar for a source without packaging it."""
        cfg = self.config_store.load()
        source_path = validate_path(path, cfg["browseRoots"])
        resolved_type = resolve_media_type(source_path, media_type)
        output_dir = build_output_dir(cfg["outputDir"], source_path, resolved_type)
        os.makedirs(output_dir, exist_ok=True)

        torrent_settings = cfg.get("torrent", {})
        nfo_path = artifact_paths(output_dir, source_path)["nfo_path"]
        text = create_nfo_text(
            source_path=source_path,
            media_info=try_inspect_media(source_path),
            announce=torrent_settings.get("announce", ""),
            source=torrent_settings.get("source", ""),
        )
        write_nfo(nfo_path, text)
        logger.info(f"NFO written to {nfo_path}")

        self.history.append(
            sourcePath=source_path,
            outputDir=output_dir,
            torrentPath=torrent_path or "",
            nfoPath=nfo_path,
            mediaType=resolved_type,
            torrentCreated=bool(torrent_path),
            nfoCreated=True,
            lacaleUpload=PushOutcome.PENDING,
            qbitPush=PushOutcome.PENDING,
        )
        return {"nfoPath": nfo_path, "outputDir": output_dir}

    def inspect(self, path: Optional[str]) -> Dict[str, Any]:
        """Mediainfo report for a sandboxed path.

        Raises:
            OutOfBoundsError, MediainfoUnavailable, ProcessError
        """
        cfg = self.config_store.load()
        target = validate_path(path, cfg["browseRoots"])
        return {"path": target, "report": inspect_media(target)}


orchestrator = PackagingOrchestrator(
    registry=default_registry,
    broadcaster=default_broadcaster,
    history=default_history,
    config_store=default_config,
)
