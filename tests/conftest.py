"""Shared fixtures: isolated data directory, fake executables, fake HTTP responses."""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

# Must be set before any aatm module reads the environment
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="aatm-test-data-"))
os.environ.setdefault("JOB_LOG_TAIL", "15")

import pytest
import requests

from aatm.core.broadcaster import ProgressBroadcaster
from aatm.core.config import ConfigStore
from aatm.core.history import HistoryLog
from aatm.core.jobs import JobRegistry


FAKE_MKTORRENT = """#!/bin/sh
out=""
while [ $# -gt 1 ]; do
  case "$1" in
    -o) out="$2"; shift 2 ;;
    -l|-a|-s) shift 2 ;;
    *) shift ;;
  esac
done
echo "Hashing $1"
echo "Hashed 10 of 20 pieces (50%)"
echo "Hashed 20 of 20 pieces (100%)" 1>&2
printf 'd8:announce0:4:infod4:name4:testee' > "$out"
"""

FAILING_MKTORRENT = """#!/bin/sh
echo "Hashed 3 of 20 pieces (15%)"
echo "fatal: cannot read source" 1>&2
exit 1
"""

FAKE_MEDIAINFO = """#!/bin/sh
if [ "$1" = "--Version" ]; then
  echo "MediaInfo Command line, MediaInfoLib - v23.04"
  exit 0
fi
echo '{"media": {"@ref": "file", "track": [{"@type": "General", "Format": "Matroska"}]}}'
"""


def write_script(directory: Path, name: str, body: str) -> str:
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def make_response(
    status_code: int = 200,
    text: str = "",
    headers: Optional[Dict[str, str]] = None,
    json_data: Any = None,
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    if json_data is not None:
        text = json.dumps(json_data)
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    response.headers.update(headers or {})
    return response


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def output_root(tmp_path):
    return tmp_path / "output"


@pytest.fixture
def config_store(tmp_path, media_root, output_root):
    store = ConfigStore(tmp_path / "config.json")
    store.update({
        "browseRoots": [str(media_root)],
        "outputDir": str(output_root),
    })
    return store


@pytest.fixture
def history_log(tmp_path):
    return HistoryLog(tmp_path / "history.json", limit=500)


@pytest.fixture
def registry():
    return JobRegistry(retention_seconds=3600, log_tail=15)


@pytest.fixture
def job_broadcaster(registry):
    return ProgressBroadcaster(registry)


@pytest.fixture
def bin_dir(tmp_path):
    directory = tmp_path / "bin"
    directory.mkdir()
    return directory


@pytest.fixture
def fake_tools(bin_dir, monkeypatch):
    """Point the packaging and inspection tools at shell-script fakes."""
    mktorrent = write_script(bin_dir, "mktorrent", FAKE_MKTORRENT)
    mediainfo = write_script(bin_dir, "mediainfo", FAKE_MEDIAINFO)
    monkeypatch.setattr("aatm.config.env.MKTORRENT_BIN", mktorrent)
    monkeypatch.setattr("aatm.config.env.MEDIAINFO_BIN", mediainfo)
    return {"mktorrent": mktorrent, "mediainfo": mediainfo}


@pytest.fixture
def script(bin_dir):
    """Factory writing executable shell scripts into the fake bin directory."""
    def _script(name: str, body: str) -> str:
        return write_script(bin_dir, name, body)
    return _script


@pytest.fixture
def http_response():
    return make_response


@pytest.fixture
def failing_packager(fake_tools, script, monkeypatch):
    """mktorrent stand-in that reports some progress, then fails."""
    exe = script("mktorrent", FAILING_MKTORRENT)
    monkeypatch.setattr("aatm.config.env.MKTORRENT_BIN", exe)
    return exe


@pytest.fixture
def torrent_file(output_root):
    path = output_root / "Films" / "Movie.2020" / "Movie.2020.mkv.torrent"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"d8:announce0:4:infod4:name4:testee")
    return path
