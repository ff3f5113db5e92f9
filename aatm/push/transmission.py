"""Transmission RPC adapter.

Transmission answers the first request of a session with HTTP 409 and the
session id to use in the ``X-Transmission-Session-Id`` header. That specific
rejection is retried once with the supplied id; any other rejection is final.
"""

import base64
from typing import Any, Dict, Mapping, Optional, Tuple

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

SESSION_HEADER = "X-Transmission-Session-Id"


@register_adapter
class TransmissionAdapter(PushAdapter):
    """Adds torrents to a Transmission daemon."""

    name = "transmission"
    config_section = "transmission"

    def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str], auth: Optional[Tuple[str, str]]) -> requests.Response:
        try:
            return requests.post(url, json=payload, headers=headers, auth=auth, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise PushError("Transmission request timed out") from e
        except requests.exceptions.RequestException as e:
            raise PushError(f"Could not connect to Transmission: {type(e).__name__}") from e

    def rpc(
        self,
        method: str,
        arguments: Dict[str, Any],
        settings: Mapping[str, Any],
        failure: str = "Transmission add failed",
    ) -> Dict[str, Any]:
        url = settings.get("url", "")
        if not url:
            raise PushConfigError("Transmission URL missing")

        username = settings.get("username", "")
        auth = (username, settings.get("password", "")) if username else None
        headers: Dict[str, str] = {}
        payload = {"method": method, "arguments": arguments}

        response = self._post(url, payload, headers, auth)
        if response.status_code == 409:
            session_id = response.headers.get(SESSION_HEADER)
            if not session_id:
                raise PushError("Transmission session negotiation failed", response.text)
            logger.debug("Transmission requested a fresh session id, retrying once")
            headers[SESSION_HEADER] = session_id
            response = self._post(url, payload, headers, auth)

        if not response.ok:
            error = classify_http_failure(
                "Transmission", response.status_code, response.text, response.headers.get("Retry-After")
            )
            if error.status_code == 502:
                error = PushError(failure, error.details)
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise PushError("Invalid Transmission response", response.text) from e
        if data.get("result") != "success":
            raise PushError(failure, str(data.get("result", "")))
        return data

    def submit(self, torrent_path: str, request: PushRequest, settings: Mapping[str, Any]) -> PushResult:
        if not settings.get("enabled"):
            raise PushConfigError("Transmission disabled")

        with open(torrent_path, "rb") as f:
            metainfo = base64.b64encode(f.read()).decode("ascii")

        arguments: Dict[str, Any] = {"metainfo": metainfo}
        if request.category:
            arguments["labels"] = [request.category]

        data = self.rpc("torrent-add", arguments, settings)
        added = data.get("arguments", {}) or {}
        torrent = added.get("torrent-added") or added.get("torrent-duplicate") or {}
        message = "Torrent added to Transmission"
        if "torrent-duplicate" in added:
            message = "Torrent already present in Transmission"
        return PushResult(ok=True, message=message, details=truncate_details(str(torrent.get("hashString", ""))))

    def test_connection(self) -> Tuple[bool, str]:
        try:
            data = self.rpc(
                "session-get",
                {"fields": ["version"]},
                self.settings(),
                failure="Transmission session check failed",
            )
        except PushError as e:
            return False, f"Connection failed: {e.message}"
        version = (data.get("arguments") or {}).get("version", "")
        return True, f"Connected to Transmission {version}".strip()
