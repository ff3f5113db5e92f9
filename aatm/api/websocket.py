"""Socket.IO delivery of job progress snapshots."""

from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from aatm.core.broadcaster import ProgressBroadcaster, Snapshot
from aatm.core.logger import setup_logger

logger = setup_logger(__name__)

JOB_PROGRESS_EVENT = "job_progress"


class SocketIOChannel:
    """Subscriber channel bound to one Socket.IO session id."""

    def __init__(self, manager: "WebSocketManager", sid: str):
        self._manager = manager
        self.sid = sid

    def send(self, snapshot: Snapshot) -> None:
        self._manager.emit_to(self.sid, JOB_PROGRESS_EVENT, snapshot)

    def close(self) -> None:
        self._manager.forget(self.sid, self)


class WebSocketManager:
    """Tracks Socket.IO sessions and their job subscriptions."""

    def __init__(self):
        self.socketio = None
        self._enabled = False
        self._channels: Dict[str, List[Tuple[str, SocketIOChannel]]] = {}
        self._lock = Lock()

    def init_app(self, app, socketio) -> None:
        self.socketio = socketio
        self._enabled = True
        logger.info("WebSocket manager initialized")

    def is_enabled(self) -> bool:
        return self._enabled and self.socketio is not None

    def emit_to(self, sid: str, event: str, data: Any) -> None:
        if not self.is_enabled():
            return
        self.socketio.emit(event, data, to=sid)

    def subscribe(self, broadcaster: ProgressBroadcaster, sid: str, job_id: str) -> None:
        channel = SocketIOChannel(self, sid)
        with self._lock:
            self._channels.setdefault(sid, []).append((job_id, channel))
        broadcaster.subscribe(job_id, channel)

    def unsubscribe(self, broadcaster: ProgressBroadcaster, sid: str, job_id: Optional[str] = None) -> None:
        """Drop one job subscription for sid, or all of them when job_id is None."""
        with self._lock:
            entries = self._channels.get(sid, [])
            removed = [(j, c) for j, c in entries if job_id is None or j == job_id]
            remaining = [(j, c) for j, c in entries if not (job_id is None or j == job_id)]
            if remaining:
                self._channels[sid] = remaining
            else:
                self._channels.pop(sid, None)
        for removed_job_id, channel in removed:
            broadcaster.unsubscribe(removed_job_id, channel)

    def forget(self, sid: str, channel: SocketIOChannel) -> None:
        with self._lock:
            entries = [(j, c) for j, c in self._channels.get(sid, []) if c is not channel]
            if entries:
                self._channels[sid] = entries
            else:
                self._channels.pop(sid, None)


ws_manager = WebSocketManager()
