"""
Push adapters deliver an already-built torrent to a downstream service.

This module provides:
- PushRequest / PushResult: adapter input and output
- PushAdapter: abstract base class for adapters
- Adapter registry and factory functions

Adapters register themselves via the @register_adapter decorator. Each one
owns its own authentication and submission protocol and records one history
entry per push attempt; adapters do not know about each other.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from aatm.config import env
from aatm.core.config import ConfigStore, config as default_config
from aatm.core.history import HistoryLog, history as default_history
from aatm.core.logger import setup_logger
from aatm.core.models import PushOutcome
from aatm.core.sandbox import validate_path
from aatm.push.errors import (
    ArtifactError,
    PushAuthError,
    PushConfigError,
    PushError,
    PushRateLimitError,
    parse_retry_after,
)

logger = setup_logger(__name__)

TORRENT_EXTENSION = ".torrent"


@dataclass(frozen=True)
class PushRequest:
    """What to push, and where it came from (for the history entry)."""

    torrent_path: str
    category: str = ""
    tags: str = ""
    title: str = ""
    source_path: str = ""
    nfo_path: str = ""
    media_type: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PushRequest":
        def text(key: str) -> str:
            value = payload.get(key)
            if value is None:
                return ""
            if isinstance(value, (list, tuple)):
                return ",".join(str(v) for v in value)
            return str(value)

        return cls(
            torrent_path=text("torrentPath"),
            category=text("category"),
            tags=text("tags"),
            title=text("title"),
            source_path=text("sourcePath"),
            nfo_path=text("nfoPath"),
            media_type=text("mediaType"),
        )


@dataclass(frozen=True)
class PushResult:
    ok: bool
    message: str
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": self.ok, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


def validate_artifact(torrent_path: Optional[str], roots: Optional[Sequence[str]] = None) -> str:
    """Resolve the artifact path and check it is an existing .torrent file.

    When roots is given the artifact must also resolve inside one of them.

    Raises:
        ArtifactError: If the path is empty, missing, or not a torrent.
        OutOfBoundsError: If the path is outside roots.
    """
    if not torrent_path:
        raise ArtifactError("torrentPath is required")
    if roots is not None:
        resolved = validate_path(torrent_path, roots)
    else:
        resolved = os.path.realpath(os.path.abspath(os.path.expanduser(torrent_path)))
    if not os.path.isfile(resolved):
        raise ArtifactError("torrentPath not found")
    if os.path.splitext(resolved)[1].lower() != TORRENT_EXTENSION:
        raise ArtifactError("Invalid torrentPath: expected a .torrent file")
    return resolved


class PushAdapter(ABC):
    """
    Base class for push adapters.

    Subclasses must define:
    - name: unique adapter identifier (e.g., "qbittorrent", "lacale")
    - config_section: configuration section holding the adapter settings
    - history_field: HistoryEntry outcome column this adapter fills, or None
    """

    name: str
    config_section: str
    history_field: Optional[str] = None

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        history: Optional[HistoryLog] = None,
        timeout: Optional[float] = None,
    ):
        self.config_store = config_store or default_config
        self.history = history or default_history
        self.timeout = timeout if timeout is not None else env.REQUEST_TIMEOUT

    def __init_subclass__(cls, **kwargs):
        """Validate that concrete subclasses define required class attributes."""
        super().__init_subclass__(**kwargs)
        if ABC in cls.__bases__:
            return
        for attr in ("name", "config_section"):
            if not getattr(cls, attr, None):
                raise TypeError(f"{cls.__name__} must define '{attr}' class attribute")

    def settings(self) -> Dict[str, Any]:
        return self.config_store.section(self.config_section)

    def is_enabled(self) -> bool:
        return bool(self.settings().get("enabled"))

    def artifact_roots(self) -> List[str]:
        """Directories a pushed artifact may live in: the output dir, then the browse roots."""
        cfg = self.config_store.load()
        roots = [cfg.get("outputDir", "")] + list(cfg.get("browseRoots") or [])
        return [root for root in roots if root]

    def push(self, request: PushRequest) -> PushResult:
        """Validate the artifact, submit it, and record the outcome.

        Raises:
            OutOfBoundsError: If the artifact is outside the output dir and browse roots.
            PushError (or a subclass) on any other failure.
        """
        try:
            torrent_path = validate_artifact(request.torrent_path, self.artifact_roots())
            result = self.submit(torrent_path, request, self.settings())
        except PushConfigError as e:
            logger.warning(f"{self.name} push rejected: {e}")
            raise
        except ArtifactError as e:
            logger.warning(f"{self.name} push rejected: {e}")
            raise
        except PushError as e:
            logger.warning(f"{self.name} push failed ({type(e).__name__}): {e}")
            self._record(request, PushOutcome.KO, error=e.message)
            raise

        logger.info(f"{self.name} push succeeded for {torrent_path}")
        self._record(request, PushOutcome.OK, torrent_path=torrent_path)
        return result

    def _record(
        self,
        request: PushRequest,
        outcome: PushOutcome,
        torrent_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        fields: Dict[str, Any] = {
            "sourcePath": request.source_path,
            "torrentPath": torrent_path or request.torrent_path,
            "nfoPath": request.nfo_path,
            "mediaType": request.media_type,
            "torrentCreated": True,
            "nfoCreated": bool(request.nfo_path),
            "target": self.name,
            "pushOutcome": outcome,
            "error": error,
        }
        if self.history_field:
            fields[self.history_field] = outcome
        self.history.append(**fields)

    @abstractmethod
    def submit(self, torrent_path: str, request: PushRequest, settings: Mapping[str, Any]) -> PushResult:
        """Send the torrent file to the remote service.

        Args:
            torrent_path: Validated absolute path of the .torrent file
            request: The push request (category, tags, title...)
            settings: This adapter's configuration section

        Raises:
            PushError (or a subclass) on failure.
        """

    def test_connection(self) -> Tuple[bool, str]:
        """Check connectivity without submitting anything."""
        return True, f"{self.name} has no connection test"


# Adapter registry: name -> adapter class
_ADAPTERS: Dict[str, Type[PushAdapter]] = {}


def register_adapter(cls: Type[PushAdapter]) -> Type[PushAdapter]:
    """Class decorator registering a push adapter under its name."""
    _ADAPTERS[cls.name] = cls
    return cls


def get_adapter(name: str, **kwargs: Any) -> PushAdapter:
    """Instantiate the adapter registered under name.

    Raises:
        KeyError: If no adapter is registered with that name.
    """
    return _ADAPTERS[name](**kwargs)


def list_adapters() -> List[str]:
    return sorted(_ADAPTERS)


def classify_http_failure(
    service: str,
    status_code: int,
    body: str,
    retry_after: Optional[str] = None,
) -> PushError:
    """Map a non-2xx response to the matching PushError subclass."""
    if status_code in (401, 403):
        return PushAuthError(f"{service} authentication failed", body)
    if status_code == 429:
        return PushRateLimitError(
            f"{service} rate limit exceeded",
            body,
            retry_after=parse_retry_after(retry_after),
        )
    return PushError(f"{service} request failed ({status_code})", body)


# Import adapter implementations to trigger registration
# These imports are at the bottom to avoid circular imports
from aatm.push import qbittorrent  # noqa: F401, E402
from aatm.push import lacale  # noqa: F401, E402
from aatm.push import transmission  # noqa: F401, E402
from aatm.push import deluge  # noqa: F401, E402
