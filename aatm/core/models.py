"""Data structures for packaging jobs and operation history."""

import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    """Packaging job states. COMPLETED and FAILED are terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class PushOutcome(str, Enum):
    PENDING = "pending"
    OK = "ok"
    KO = "ko"


INITIAL_PROGRESS = 2


@dataclass
class Job:
    """One packaging operation, mutated in place by the job registry only."""

    source_path: str
    output_dir: str
    torrent_path: str
    nfo_path: str
    media_type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.RUNNING
    progress: int = INITIAL_PROGRESS
    logs: List[str] = field(default_factory=lambda: ["Job started"])
    error: str = ""
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def snapshot(self, tail: int = 15) -> Dict[str, Any]:
        """Status payload pushed to subscribers."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "logs": list(self.logs[-tail:]) if tail > 0 else [],
            "error": self.error or None,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot(tail=len(self.logs))
        data.update({
            "sourcePath": self.source_path,
            "outputDir": self.output_dir,
            "torrentPath": self.torrent_path,
            "nfoPath": self.nfo_path,
            "mediaType": self.media_type,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
        })
        return data


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable record of one packaging or push operation.

    Field names follow the JSON document the frontend reads.
    """

    sourcePath: str = ""
    outputDir: str = ""
    torrentPath: str = ""
    nfoPath: str = ""
    mediaType: str = ""
    torrentCreated: bool = False
    nfoCreated: bool = False
    lacaleUpload: PushOutcome = PushOutcome.PENDING
    qbitPush: PushOutcome = PushOutcome.PENDING
    error: Optional[str] = None
    target: Optional[str] = None
    pushOutcome: Optional[PushOutcome] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    ts: str = field(default_factory=_utc_now_iso)

    def __post_init__(self):
        # Accept plain strings from callers and stored documents
        for name in ("lacaleUpload", "qbitPush", "pushOutcome"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, PushOutcome):
                object.__setattr__(self, name, PushOutcome(value))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["lacaleUpload"] = self.lacaleUpload.value
        data["qbitPush"] = self.qbitPush.value
        if self.pushOutcome is not None:
            data["pushOutcome"] = self.pushOutcome.value
        return {k: v for k, v in data.items() if v is not None}
