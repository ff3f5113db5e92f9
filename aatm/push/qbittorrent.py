"""qBittorrent seed-box adapter using the Web API v2.

The login cookie is cached in a QbitSessionManager that the adapter receives
at construction. A request rejected with HTTP 403 triggers exactly one forced
re-login and one retry; any other failure is returned as-is.
"""

import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urljoin

import requests

from aatm.core.logger import setup_logger
from aatm.push import (
    PushAdapter,
    PushRequest,
    PushResult,
    classify_http_failure,
    register_adapter,
)
from aatm.push.errors import PushAuthError, PushConfigError, PushError

logger = setup_logger(__name__)

SESSION_LIFETIME_SECONDS = 25 * 60


@dataclass(frozen=True)
class QbitSession:
    cookie: str
    expiry: float
    url: str = ""
    username: str = ""

    def matches(self, settings: Mapping[str, Any]) -> bool:
        return self.url == settings.get("url", "") and self.username == settings.get("username", "")


class QbitSessionManager:
    """Owns the cached qBittorrent login cookie."""

    def __init__(
        self,
        lifetime: float = SESSION_LIFETIME_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._lifetime = lifetime
        self._clock = clock
        self._session: Optional[QbitSession] = None
        self._lock = Lock()
        self.login_count = 0

    @property
    def session(self) -> Optional[QbitSession]:
        return self._session

    def get_cookie(self, settings: Mapping[str, Any], timeout: float, force: bool = False) -> str:
        """Cached cookie if still valid, otherwise log in and cache a new one.

        A cookie issued for another url or username counts as expired.

        Raises:
            PushConfigError: If URL, username or password are missing.
            PushAuthError: If qBittorrent rejects the credentials.
            PushError: On timeout or connection failure.
        """
        with self._lock:
            now = self._clock()
            session = self._session
            if not force and session and now < session.expiry and session.matches(settings):
                return session.cookie

            cookie = self._login(settings, timeout)
            self._session = QbitSession(
                cookie=cookie,
                expiry=now + self._lifetime,
                url=settings.get("url", ""),
                username=settings.get("username", ""),
            )
            self.login_count += 1
            return cookie

    def _login(self, settings: Mapping[str, Any], timeout: float) -> str:
        url = settings.get("url", "")
        username = settings.get("username", "")
        password = settings.get("password", "")
        if not url or not username or not password:
            raise PushConfigError("qBittorrent configuration missing")

        try:
            response = requests.post(
                urljoin(url, "/api/v2/auth/login"),
                data={"username": username, "password": password},
                timeout=timeout,
                verify=not settings.get("insecureTls", False),
            )
        except requests.exceptions.Timeout as e:
            raise PushError("qBittorrent login timed out") from e
        except requests.exceptions.RequestException as e:
            raise PushError(f"Could not connect to qBittorrent: {type(e).__name__}") from e

        if response.status_code != 200 or response.text.strip() != "Ok.":
            raise PushAuthError(f"qBittorrent login failed ({response.status_code})")

        cookie = response.headers.get("Set-Cookie", "")
        if not cookie:
            raise PushAuthError("qBittorrent cookie missing")

        logger.debug("qBittorrent login succeeded")
        return cookie.split(";")[0]


_default_sessions = QbitSessionManager()


@register_adapter
class QBittorrentAdapter(PushAdapter):
    """Pushes torrents to the qBittorrent seed-box."""

    name = "qbittorrent"
    config_section = "qbit"
    history_field = "qbitPush"

    def __init__(self, sessions: Optional[QbitSessionManager] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.sessions = sessions or _default_sessions

    def _send(
        self,
        method: str,
        url: str,
        cookie: str,
        settings: Mapping[str, Any],
        **kwargs: Any,
    ) -> requests.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Cookie"] = cookie
        try:
            return requests.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout,
                verify=not settings.get("insecureTls", False),
                **kwargs,
            )
        except requests.exceptions.Timeout as e:
            raise PushError("qBittorrent request timed out") from e
        except requests.exceptions.RequestException as e:
            raise PushError(f"Could not connect to qBittorrent: {type(e).__name__}") from e

    def request(self, method: str, endpoint: str, settings: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> requests.Response:
        """Authenticated call with a single re-login on HTTP 403.

        Request bodies must be replayable (bytes, not open file handles).
        """
        settings = settings if settings is not None else self.settings()
        url = urljoin(settings.get("url", ""), endpoint)

        cookie = self.sessions.get_cookie(settings, self.timeout)
        response = self._send(method, url, cookie, settings, **kwargs)
        if response.status_code != 403:
            return response

        logger.info("qBittorrent rejected the session, logging in again")
        cookie = self.sessions.get_cookie(settings, self.timeout, force=True)
        response = self._send(method, url, cookie, settings, **kwargs)
        if response.status_code == 403:
            raise PushAuthError("qBittorrent authentication failed", response.text)
        return response

    def _resolve_category(self, request: PushRequest, settings: Mapping[str, Any]) -> str:
        if request.category:
            return request.category
        mapping = self.config_store.get("categoryMapping", {}) or {}
        if request.media_type and mapping.get(request.media_type):
            return mapping[request.media_type]
        return settings.get("defaultCategory", "")

    def submit(self, torrent_path: str, request: PushRequest, settings: Mapping[str, Any]) -> PushResult:
        if not settings.get("enabled"):
            raise PushConfigError("qBittorrent disabled in config")

        category = self._resolve_category(request, settings)
        if not category:
            raise PushConfigError("category required")
        tags = request.tags or settings.get("defaultTags", "")

        with open(torrent_path, "rb") as f:
            torrent_data = f.read()

        form: Dict[str, str] = {
            "category": category,
            "autoTMM": "true",
            "skip_checking": "false",
        }
        if tags:
            form["tags"] = tags

        response = self.request(
            "POST",
            "/api/v2/torrents/add",
            settings,
            data=form,
            files={"torrents": (os.path.basename(torrent_path), torrent_data, "application/x-bittorrent")},
        )
        if not response.ok:
            raise classify_http_failure(
                "qBittorrent", response.status_code, response.text, response.headers.get("Retry-After")
            )
        if response.text.strip() == "Fails.":
            raise PushError("qBittorrent add failed", "qBittorrent refused the torrent (duplicate or invalid)")

        return PushResult(ok=True, message="Torrent pushed to qBittorrent seedbox")

    def list_categories(self) -> Dict[str, Any]:
        """Categories configured in qBittorrent, keyed by name."""
        settings = self.settings()
        response = self.request("GET", "/api/v2/torrents/categories", settings)
        if not response.ok:
            raise classify_http_failure(
                "qBittorrent", response.status_code, response.text, response.headers.get("Retry-After")
            )
        try:
            data = response.json() if response.text.strip() else {}
        except ValueError as e:
            raise PushError("Invalid qBittorrent categories response") from e
        return data if isinstance(data, dict) else {}

    def test_connection(self) -> Tuple[bool, str]:
        try:
            response = self.request("GET", "/api/v2/app/webapiVersion")
            if response.ok:
                return True, f"Connected to qBittorrent (API v{response.text.strip()})"
            return False, f"qBittorrent answered {response.status_code}"
        except PushError as e:
            return False, f"Connection failed: {e.message}"
