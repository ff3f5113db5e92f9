"""Push job snapshots to subscribers over long-lived connections.

Each job has its own list of subscriber channels. Publishing takes a snapshot
of the job under the registry lock, then delivers it to a copy of the
subscriber list outside any lock, so a slow or broken subscriber cannot hold
up the others or the workflow that triggered the publish.
"""

import queue
from threading import Event, Lock
from typing import Any, Dict, Iterator, List, Optional, Protocol

from aatm.core.jobs import JobRegistry, job_registry
from aatm.core.logger import setup_logger

logger = setup_logger(__name__)

Snapshot = Dict[str, Any]


class SubscriberChannel(Protocol):
    def send(self, snapshot: Snapshot) -> None: ...

    def close(self) -> None: ...


class QueueChannel:
    """Bounded in-memory channel consumed by a streaming HTTP response.

    ``send`` never blocks: when the consumer falls behind, the oldest pending
    snapshot is dropped, since every snapshot carries the full current state.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: "queue.Queue[Optional[Snapshot]]" = queue.Queue(maxsize=maxsize)
        self._closed = Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, snapshot: Snapshot) -> None:
        if self._closed.is_set():
            return
        while True:
            try:
                self._queue.put_nowait(snapshot)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(None)

    def get(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """Next snapshot, or None once closed. Raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def __iter__(self) -> Iterator[Snapshot]:
        while True:
            item = self._queue.get()
            if item is None:
                return
            yield item


class ProgressBroadcaster:
    """Per-job subscriber lists with snapshot delivery."""

    def __init__(self, registry: JobRegistry):
        self._registry = registry
        self._subscribers: Dict[str, List[SubscriberChannel]] = {}
        self._lock = Lock()

    def _unknown_snapshot(self, job_id: str) -> Snapshot:
        return {
            "id": job_id,
            "status": "unknown",
            "progress": 0,
            "logs": [],
            "error": "Unknown job",
        }

    def subscribe(self, job_id: str, channel: SubscriberChannel) -> bool:
        """Attach channel to a job and send it the current state right away.

        The first snapshot is delivered while the subscriber lock is held, so
        a publish for the same job cannot reach the channel before it.

        Returns True if the channel stays subscribed, False if the job is
        unknown or already finished (the channel got its one snapshot and was
        closed).
        """
        with self._lock:
            snapshot = self._registry.snapshot(job_id)
            terminal = snapshot is None or snapshot["status"] in ("completed", "failed")
            delivered = self._deliver(job_id, channel, snapshot or self._unknown_snapshot(job_id))
            if delivered and not terminal:
                self._subscribers.setdefault(job_id, []).append(channel)

        if terminal or not delivered:
            self._close(channel)
            return False
        logger.debug(f"Job {job_id}: subscriber attached ({self.subscriber_count(job_id)} total)")
        return True

    def unsubscribe(self, job_id: str, channel: SubscriberChannel) -> None:
        with self._lock:
            channels = self._subscribers.get(job_id)
            if not channels:
                return
            self._subscribers[job_id] = [c for c in channels if c is not channel]
            if not self._subscribers[job_id]:
                del self._subscribers[job_id]
        logger.debug(f"Job {job_id}: subscriber detached")

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, []))

    def publish(self, job_id: str) -> None:
        """Send the job's current snapshot to every subscriber.

        After a terminal snapshot has been delivered the job's subscribers are
        closed and forgotten.
        """
        with self._lock:
            snapshot = self._registry.snapshot(job_id)
            if snapshot is None:
                return
            terminal = snapshot["status"] in ("completed", "failed")
            if terminal:
                channels = self._subscribers.pop(job_id, [])
            else:
                channels = list(self._subscribers.get(job_id, []))

        for channel in channels:
            if not self._deliver(job_id, channel, snapshot):
                self.unsubscribe(job_id, channel)
                self._close(channel)

        if terminal:
            for channel in channels:
                self._close(channel)

    def _deliver(self, job_id: str, channel: SubscriberChannel, snapshot: Snapshot) -> bool:
        try:
            channel.send(snapshot)
            return True
        except Exception as e:
            logger.debug(f"Job {job_id}: dropping subscriber after send failure: {e}")
            return False

    @staticmethod
    def _close(channel: SubscriberChannel) -> None:
        try:
            channel.close()
        except Exception as e:
            logger.debug(f"Error closing subscriber channel: {e}")


broadcaster = ProgressBroadcaster(job_registry)
