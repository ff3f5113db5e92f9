"""Media classification and output layout."""

import os
import re
from typing import Optional

MEDIA_TYPES = ("Films", "Series", "Ebooks", "Jeux")
DEFAULT_MEDIA_TYPE = "Films"

_SERIES_PATTERN = re.compile(r"(s\d{2}e\d{2}|season|episode)", re.IGNORECASE)
_EBOOK_PATTERN = re.compile(r"\.(epub|pdf|mobi|azw3)$", re.IGNORECASE)
_GAME_PATTERN = re.compile(r"\.(iso|exe|pkg|msi)$", re.IGNORECASE)

# Output folder names differ from media types where the NAS layout expects it
_OUTPUT_FOLDERS = {"Series": "Séries"}


def classify_media(name: str) -> str:
    """Guess the media type of a file or directory from its name."""
    lower = (name or "").lower()
    if _SERIES_PATTERN.search(lower):
        return "Series"
    if _EBOOK_PATTERN.search(lower):
        return "Ebooks"
    if _GAME_PATTERN.search(lower):
        return "Jeux"
    return DEFAULT_MEDIA_TYPE


def resolve_media_type(source_path: str, requested: Optional[str] = None) -> str:
    """Return the caller's media type if given, otherwise classify the path.

    Raises:
        ValueError: If an explicit media type is not one of MEDIA_TYPES.
    """
    if requested:
        if requested not in MEDIA_TYPES:
            raise ValueError(
                f"Invalid mediaType '{requested}', expected one of: {', '.join(MEDIA_TYPES)}"
            )
        return requested
    return classify_media(source_path)


def build_output_dir(output_base: str, source_path: str, media_type: str) -> str:
    """Deterministic output directory for a source: <base>/<type folder>/<stem>."""
    base_name = os.path.basename(source_path.rstrip(os.sep))
    stem, _ = os.path.splitext(base_name)
    folder = _OUTPUT_FOLDERS.get(media_type, media_type)
    return os.path.join(output_base, folder, stem or base_name)
