"""Run external executables and observe their output.

The runner knows nothing about what a tool does. Progress extraction is a
per-tool strategy looked up by executable name, so a new packaging tool only
has to register its own parser.
"""

import os
import queue
import re
import shutil
import subprocess
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

from aatm.core.logger import setup_logger

logger = setup_logger(__name__)

ProgressParser = Callable[[str], Optional[int]]
OutputCallback = Callable[[str, Optional[int]], None]

_PERCENT_PATTERN = re.compile(r"(\d{1,3})%")


class ProcessError(RuntimeError):
    """An external command could not be started, timed out or exited nonzero."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


def percent_progress(text: str) -> Optional[int]:
    """First ``NN%`` in text, capped at 100."""
    match = _PERCENT_PATTERN.search(text)
    if not match:
        return None
    return min(100, int(match.group(1)))


def no_progress(text: str) -> Optional[int]:
    return None


_PROGRESS_PARSERS: Dict[str, ProgressParser] = {
    "mktorrent": percent_progress,
}


def register_progress_parser(tool: str, parser: ProgressParser) -> None:
    """Register the progress extraction strategy for an executable name."""
    _PROGRESS_PARSERS[tool] = parser


def get_progress_parser(executable: str) -> ProgressParser:
    """Parser registered for the executable's base name, defaulting to percentages."""
    name = os.path.basename(executable)
    return _PROGRESS_PARSERS.get(name, percent_progress)


def is_executable_available(executable: str, version_args: Sequence[str] = ("--version",), timeout: int = 10) -> bool:
    """True if the executable exists and answers a version query with exit code 0."""
    if shutil.which(executable) is None:
        return False
    try:
        result = subprocess.run(
            [executable, *version_args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"{executable} availability check failed: {e}")
        return False
    return result.returncode == 0


def run_command(executable: str, args: Sequence[str], timeout: Optional[float] = None) -> str:
    """Run a command to completion and return its stdout.

    Raises:
        ProcessError: On spawn failure, timeout or nonzero exit.
    """
    cmd = [executable, *args]
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ProcessError(f"{executable} not found") from e
    except PermissionError as e:
        raise ProcessError(f"{executable} is not executable") from e
    except subprocess.TimeoutExpired as e:
        raise ProcessError(f"{executable} timed out after {timeout}s") from e
    except OSError as e:
        raise ProcessError(f"{executable} could not be started: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise ProcessError(stderr or f"{executable} exited with {result.returncode}", result.returncode)
    return result.stdout


def _pump(stream, name: str, lines: "queue.Queue") -> None:
    try:
        # Text mode with universal newlines splits carriage-return progress updates too
        for line in iter(stream.readline, ""):
            lines.put((name, line))
    finally:
        stream.close()
        lines.put((name, None))


def run_with_progress(
    executable: str,
    args: Sequence[str],
    on_output: OutputCallback,
    progress_parser: Optional[ProgressParser] = None,
    timeout: Optional[float] = None,
) -> None:
    """Run a command, reporting every output line as it arrives.

    Both stdout and stderr are read concurrently; ``on_output(line, progress)``
    is always invoked from the calling thread, in arrival order, with the
    trimmed line and the parser's progress value (None when the line carries
    none).

    Raises:
        ProcessError: On spawn failure, timeout or nonzero exit. The message
            is the last stderr line seen, or a generic exit message.
    """
    parser = progress_parser or get_progress_parser(executable)
    cmd = [executable, *args]
    logger.debug(f"Running with progress: {' '.join(cmd)}")

    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise ProcessError(f"{executable} not found") from e
    except PermissionError as e:
        raise ProcessError(f"{executable} is not executable") from e
    except OSError as e:
        raise ProcessError(f"{executable} could not be started: {e}") from e

    lines: "queue.Queue" = queue.Queue()
    readers: List[threading.Thread] = [
        threading.Thread(target=_pump, args=(proc.stdout, "stdout", lines), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, "stderr", lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    deadline = time.monotonic() + timeout if timeout else None
    open_streams = len(readers)
    last_error = ""

    try:
        while open_streams:
            wait = None
            if deadline is not None:
                wait = deadline - time.monotonic()
                if wait <= 0:
                    raise subprocess.TimeoutExpired(cmd, timeout)
            try:
                name, line = lines.get(timeout=wait)
            except queue.Empty:
                continue

            if line is None:
                open_streams -= 1
                continue

            text = line.strip()
            if not text:
                continue
            if name == "stderr":
                last_error = text
            on_output(text, parser(text))

        remaining = None
        if deadline is not None:
            remaining = max(0.0, deadline - time.monotonic())
        returncode = proc.wait(timeout=remaining)
    except subprocess.TimeoutExpired as e:
        proc.kill()
        proc.wait()
        raise ProcessError(f"{executable} timed out after {timeout}s") from e
    except BaseException:
        # Callback failure or interpreter shutdown: do not leave the child running
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        raise

    if returncode != 0:
        raise ProcessError(last_error or f"{executable} exited with {returncode}", returncode)
