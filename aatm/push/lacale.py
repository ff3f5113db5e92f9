"""La-Cale tracker upload API (bearer token, multipart)."""

import os
from typing import Any, Dict, Mapping

import requests

from aatm.core.logger import setup_logger
from aatm.push import (
    PushAdapter,
    PushRequest,
    PushResult,
    classify_http_failure,
    register_adapter,
)
from aatm.push.errors import PushConfigError, PushError, truncate_details

logger = setup_logger(__name__)

DEFAULT_CATEGORY = "Films"


def default_title(torrent_path: str) -> str:
    base = os.path.basename(torrent_path)
    stem, ext = os.path.splitext(base)
    return stem if ext.lower() == ".torrent" else base


@register_adapter
class LaCaleAdapter(PushAdapter):
    """Uploads torrents to the La-Cale tracker."""

    name = "lacale"
    config_section = "lacale"
    history_field = "lacaleUpload"

    def preview(self, request: PushRequest) -> Dict[str, Any]:
        """What an upload would send, without calling the tracker."""
        title = request.title or (default_title(request.torrent_path) if request.torrent_path else "")
        return {
            "title": title,
            "category": request.category or DEFAULT_CATEGORY,
            "tags": request.tags,
        }

    def submit(self, torrent_path: str, request: PushRequest, settings: Mapping[str, Any]) -> PushResult:
        if not settings.get("enabled"):
            raise PushConfigError("La-Cale disabled in config")
        api_url = settings.get("apiUrl", "")
        token = settings.get("token", "")
        if not api_url or not token:
            raise PushConfigError("La-Cale API settings missing")

        with open(torrent_path, "rb") as f:
            torrent_data = f.read()

        form = {
            "category": request.category or DEFAULT_CATEGORY,
            "tags": request.tags,
            "title": request.title or default_title(torrent_path),
        }

        try:
            response = requests.post(
                api_url,
                headers={"Authorization": f"Bearer {token}"},
                data=form,
                files={"torrent": (os.path.basename(torrent_path), torrent_data, "application/x-bittorrent")},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise PushError("La-Cale upload timed out") from e
        except requests.exceptions.RequestException as e:
            raise PushError(f"Could not connect to La-Cale: {type(e).__name__}") from e

        if not response.ok:
            error = classify_http_failure(
                "La-Cale", response.status_code, response.text, response.headers.get("Retry-After")
            )
            if error.status_code == 502:
                error = PushError("La-Cale upload failed", error.details)
            raise error

        logger.debug(f"La-Cale accepted upload of {form['title']}")
        return PushResult(ok=True, message="Uploaded to La-Cale", details=truncate_details(response.text))
