"""Command line for the mktorrent packaging tool."""

from typing import Any, List, Mapping


def build_mktorrent_args(settings: Mapping[str, Any], torrent_path: str, source_path: str) -> List[str]:
    """Translate the ``torrent`` configuration section into mktorrent flags."""
    args: List[str] = []
    if settings.get("privateFlag"):
        args.append("-p")

    try:
        piece_size = int(settings.get("pieceSize") or 0)
    except (TypeError, ValueError):
        piece_size = 0
    if piece_size > 0:
        args.extend(["-l", str(piece_size)])

    if settings.get("announce"):
        args.extend(["-a", str(settings["announce"])])
    if settings.get("source"):
        args.extend(["-s", str(settings["source"])])

    args.extend(["-o", torrent_path, source_path])
    return args
