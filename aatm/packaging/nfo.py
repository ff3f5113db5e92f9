"""Plain-text NFO sidecar written next to each torrent."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

NFO_HEADER = "AATM NAS Edition NFO"


def create_nfo_text(
    source_path: str,
    media_info: Optional[Mapping[str, Any]] = None,
    announce: str = "",
    source: str = "",
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    return "\n".join([
        NFO_HEADER,
        f"Source file: {source_path}",
        f"Tracker announce: {announce or 'N/A'}",
        f"Torrent source: {source or 'N/A'}",
        f"Generated at: {generated_at.isoformat()}",
        "",
        json.dumps(dict(media_info or {}), indent=2, ensure_ascii=False),
    ])


def write_nfo(path: str, text: str) -> None:
    Path(path).write_text(text, encoding="utf-8")
