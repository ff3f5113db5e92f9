"""Media inspection through the mediainfo CLI."""

import json
from typing import Any, Dict

from aatm.config import env
from aatm.core.logger import setup_logger
from aatm.packaging.process import ProcessError, is_executable_available, run_command

logger = setup_logger(__name__)


class MediainfoUnavailable(RuntimeError):
    """The mediainfo executable is not installed on this host."""


def is_mediainfo_available() -> bool:
    return is_executable_available(env.MEDIAINFO_BIN, version_args=("--Version",))


def run_mediainfo(target: str) -> Dict[str, Any]:
    """Structured mediainfo report for target.

    Raises:
        ProcessError: If mediainfo fails or prints something that is not JSON.
    """
    output = run_command(env.MEDIAINFO_BIN, ["--Output=JSON", target], timeout=env.PROCESS_TIMEOUT)
    try:
        report = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProcessError("Invalid mediainfo output") from e
    if not isinstance(report, dict):
        raise ProcessError("Invalid mediainfo output")
    return report


def inspect_media(target: str) -> Dict[str, Any]:
    """Mediainfo report, raising MediainfoUnavailable when the tool is missing."""
    if not is_mediainfo_available():
        raise MediainfoUnavailable("mediainfo CLI not installed in container/host")
    return run_mediainfo(target)


def try_inspect_media(target: str) -> Dict[str, Any]:
    """Best-effort report: empty dict when the tool is missing or fails."""
    if not is_mediainfo_available():
        logger.debug("mediainfo not available, skipping inspection")
        return {}
    try:
        return run_mediainfo(target)
    except ProcessError as e:
        logger.warning(f"mediainfo failed for {target}: {e}")
        return {}
