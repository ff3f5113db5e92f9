"""Runtime configuration persisted as a single JSON document.

Defaults are layered underneath whatever is stored on disk, and the document
is re-read on every access so that an update is visible immediately to every
request and background job (hot reload without restart).
"""

import copy
import json
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Union

from aatm.config import env
from aatm.core.logger import setup_logger

logger = setup_logger(__name__)

REDACTED = "********"
SECRET_KEYS = ("password", "token")

DEFAULT_CONFIG: Dict[str, Any] = {
    "outputDir": "/nas/output",
    "browseRoots": ["/nas/media"],
    "torrent": {
        "pieceSize": 0,
        "privateFlag": True,
        "announce": "",
        "source": "AATM-NAS",
    },
    "qbit": {
        "enabled": True,
        "url": "",
        "username": "",
        "password": "",
        "insecureTls": False,
        "defaultCategory": "Films",
        "defaultTags": "",
    },
    "transmission": {
        "enabled": False,
        "url": "http://127.0.0.1:9091/transmission/rpc",
        "username": "",
        "password": "",
    },
    "deluge": {
        "enabled": False,
        "url": "http://127.0.0.1:8112/json",
        "password": "deluge",
    },
    "lacale": {
        "enabled": False,
        "apiUrl": "",
        "token": "",
    },
    "categoryMapping": {
        "Films": "Films",
        "Series": "series",
        "Ebooks": "ebooks",
        "Jeux": "jeux",
    },
}


class ConfigValidationError(ValueError):
    """Raised when a configuration update is rejected."""


def merge_sections(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Layer override on top of base, one level deep.

    Top-level scalars and lists are replaced wholesale. Top-level dicts
    (per-service sections) are merged key by key so unspecified fields keep
    their previous value.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            section = dict(current)
            section.update(copy.deepcopy(value))
            merged[key] = section
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def redact(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of cfg with every non-empty secret replaced by the mask."""
    result: Dict[str, Any] = {}
    for key, value in cfg.items():
        if isinstance(value, dict):
            result[key] = {
                k: (REDACTED if v else "") if k in SECRET_KEYS else copy.deepcopy(v)
                for k, v in value.items()
            }
        else:
            result[key] = copy.deepcopy(value)
    return result


def secret_values(cfg: Mapping[str, Any]) -> List[str]:
    """Every non-empty configured secret, longest first."""
    values = {
        str(v) for section in cfg.values() if isinstance(section, dict)
        for k, v in section.items() if k in SECRET_KEYS and v and v != REDACTED
    }
    return sorted(values, key=len, reverse=True)


def mask_secrets(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of a configured secret in text with the mask."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _drop_masked_secrets(update: Mapping[str, Any]) -> Dict[str, Any]:
    # A client echoing back the redacted value means "unchanged"
    cleaned: Dict[str, Any] = {}
    for key, value in update.items():
        if isinstance(value, dict):
            cleaned[key] = {
                k: v for k, v in value.items()
                if not (k in SECRET_KEYS and v == REDACTED)
            }
        else:
            cleaned[key] = value
    return cleaned


def _validate(cfg: Mapping[str, Any]) -> None:
    roots = cfg.get("browseRoots")
    if not isinstance(roots, list) or not roots:
        raise ConfigValidationError("browseRoots required")
    if not all(isinstance(root, str) and root.strip() for root in roots):
        raise ConfigValidationError("browseRoots must be a list of non-empty paths")
    if not isinstance(cfg.get("outputDir"), str) or not cfg["outputDir"].strip():
        raise ConfigValidationError("outputDir required")
    for section in ("torrent", "qbit", "transmission", "deluge", "lacale", "categoryMapping"):
        if not isinstance(cfg.get(section), dict):
            raise ConfigValidationError(f"{section} must be an object")
    try:
        int(cfg["torrent"].get("pieceSize") or 0)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError("torrent.pieceSize must be a number") from e


class ConfigStore:
    """Reads and writes the configuration document."""

    def __init__(self, path: Union[str, Path], defaults: Mapping[str, Any] = DEFAULT_CONFIG):
        self._path = Path(path)
        self._defaults = copy.deepcopy(dict(defaults))
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def ensure(self) -> None:
        """Create the config document with defaults if it does not exist yet."""
        with self._lock:
            if self._path.exists():
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._write(self._defaults)
            logger.info(f"Created default configuration at {self._path}")

    def _read_stored(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file {self._path}: {e}")
            return {}
        except OSError as e:
            logger.error(f"Could not read config file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Config file {self._path} does not contain an object, ignoring it")
            return {}
        return data

    def _write(self, cfg: Mapping[str, Any]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(cfg, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self._path)

    def load(self) -> Dict[str, Any]:
        """Current configuration: defaults with the stored document merged on top."""
        return merge_sections(self._defaults, self._read_stored())

    def get(self, key: str, default: Any = None) -> Any:
        return self.load().get(key, default)

    def section(self, name: str) -> Dict[str, Any]:
        value = self.load().get(name)
        return dict(value) if isinstance(value, dict) else {}

    def update(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge changes into the stored configuration and persist the result.

        Raises:
            ConfigValidationError: If changes is not an object or the merged
                configuration is invalid. Nothing is written in that case.
        """
        if not isinstance(changes, Mapping):
            raise ConfigValidationError("Configuration update must be an object")

        with self._lock:
            current = merge_sections(self._defaults, self._read_stored())
            merged = merge_sections(current, _drop_masked_secrets(changes))
            _validate(merged)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._write(merged)

        changed = ", ".join(sorted(changes.keys())) or "nothing"
        logger.info(f"Configuration updated ({changed})")
        return merged

    def redacted(self) -> Dict[str, Any]:
        return redact(self.load())


config = ConfigStore(env.CONFIG_PATH)
