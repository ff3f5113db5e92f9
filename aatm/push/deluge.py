"""Deluge Web UI JSON-RPC adapter.

Every push performs its own ``auth.login`` on a fresh HTTP session; the
session cookie returned by the login is what authorizes the following
``core.add_torrent_file`` call. Nothing is cached between pushes.
"""

import base64
import os
from typing import Any, Mapping, Tuple

import requests

from aatm.core.logger import setup_logger
from aatm.push import (
    PushAdapter,
    PushRequest,
    PushResult,
    classify_http_failure,
    register_adapter,
)
from aatm.push.errors import PushAuthError, PushConfigError, PushError, truncate_details

logger = setup_logger(__name__)


class DelugeRpc:
    """One authenticated conversation with the Deluge Web UI."""

    def __init__(self, url: str, timeout: float):
        self._url = url
        self._timeout = timeout
        self._session = requests.Session()
        self._rpc_id = 0

    def call(self, method: str, *params: Any) -> Any:
        self._rpc_id += 1
        payload = {"id": self._rpc_id, "method": method, "params": list(params)}
        try:
            response = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.exceptions.Timeout as e:
            raise PushError("Deluge request timed out") from e
        except requests.exceptions.RequestException as e:
            raise PushError(f"Could not connect to Deluge: {type(e).__name__}") from e

        if not response.ok:
            error = classify_http_failure(
                "Deluge", response.status_code, response.text, response.headers.get("Retry-After")
            )
            if error.status_code == 502:
                error = PushError("Deluge add failed", error.details)
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise PushError("Invalid Deluge response", response.text) from e

        if data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise PushError(f"Deluge {method} failed", message)
        return data.get("result")

    def login(self, password: str) -> None:
        if self.call("auth.login", password) is not True:
            raise PushAuthError("Deluge authentication failed")

    def close(self) -> None:
        self._session.close()


@register_adapter
class DelugeAdapter(PushAdapter):
    """Adds torrents to Deluge through its Web UI."""

    name = "deluge"
    config_section = "deluge"

    def submit(self, torrent_path: str, request: PushRequest, settings: Mapping[str, Any]) -> PushResult:
        if not settings.get("enabled"):
            raise PushConfigError("Deluge disabled")
        url = settings.get("url", "")
        if not url:
            raise PushConfigError("Deluge URL missing")

        with open(torrent_path, "rb") as f:
            data = base64.b64encode(f.read()).decode("ascii")

        rpc = DelugeRpc(url, self.timeout)
        try:
            rpc.login(settings.get("password", ""))
            torrent_id = rpc.call("core.add_torrent_file", os.path.basename(torrent_path), data, {})
        finally:
            rpc.close()

        logger.debug(f"Deluge added torrent {torrent_id}")
        return PushResult(ok=True, message="Torrent added to Deluge", details=truncate_details(str(torrent_id or "")))

    def test_connection(self) -> Tuple[bool, str]:
        """Log in and ask the Web UI whether it is attached to a daemon."""
        settings = self.settings()
        url = settings.get("url", "")
        if not url:
            return False, "Connection failed: Deluge URL missing"

        rpc = DelugeRpc(url, self.timeout)
        try:
            rpc.login(settings.get("password", ""))
            connected = rpc.call("web.connected")
        except PushError as e:
            return False, f"Connection failed: {e.message}"
        finally:
            rpc.close()

        if not connected:
            return False, "Deluge Web UI is not connected to a daemon"
        return True, "Connected to Deluge"
