"""Tests for the Deluge Web UI adapter."""

from unittest.mock import MagicMock, patch

import pytest

from aatm.push import PushRequest
from aatm.push.errors import PushAuthError, PushConfigError, PushError
from aatm.push.deluge import DelugeAdapter


@pytest.fixture
def adapter(config_store, history_log):
    config_store.update({
        "deluge": {
            "enabled": True,
            "url": "http://deluge.local:8112/json",
            "password": "deluge",
        }
    })
    return DelugeAdapter(config_store=config_store, history=history_log)


def rpc_result(http_response, result, error=None):
    return http_response(json_data={"id": 1, "result": result, "error": error})


def fake_session(responses):
    session = MagicMock()
    session.post.side_effect = responses
    return session


class TestPush:
    """Tests for adding torrents through the Deluge Web UI."""

    def test_login_then_add(self, adapter, history_log, torrent_file, http_response):
        """The login cookie session carries the add call and is closed afterwards."""
        session = fake_session([rpc_result(http_response, True), rpc_result(http_response, "hash123")])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            result = adapter.push(PushRequest(torrent_path=str(torrent_file)))

        assert result.ok is True
        assert result.details == "hash123"
        login_call, add_call = session.post.call_args_list
        assert login_call[1]["json"]["method"] == "auth.login"
        assert login_call[1]["json"]["params"] == ["deluge"]
        assert add_call[1]["json"]["method"] == "core.add_torrent_file"
        assert add_call[1]["json"]["params"][0] == "Movie.2020.mkv.torrent"
        assert add_call[1]["json"]["params"][2] == {}
        session.close.assert_called_once()
        assert history_log.entries()[0]["target"] == "deluge"

    def test_logs_in_on_every_push(self, adapter, torrent_file, http_response):
        """No session is reused between pushes."""
        sessions = [
            fake_session([rpc_result(http_response, True), rpc_result(http_response, "a")]),
            fake_session([rpc_result(http_response, True), rpc_result(http_response, "b")]),
        ]
        with patch("aatm.push.deluge.requests.Session", side_effect=sessions):
            adapter.push(PushRequest(torrent_path=str(torrent_file)))
            adapter.push(PushRequest(torrent_path=str(torrent_file)))

        for session in sessions:
            assert session.post.call_args_list[0][1]["json"]["method"] == "auth.login"

    def test_bad_password(self, adapter, history_log, torrent_file, http_response):
        """auth.login returning false stops before the add call."""
        session = fake_session([rpc_result(http_response, False)])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            with pytest.raises(PushAuthError):
                adapter.push(PushRequest(torrent_path=str(torrent_file)))

        assert session.post.call_count == 1
        session.close.assert_called_once()
        assert history_log.entries()[0]["pushOutcome"] == "ko"

    def test_rpc_error(self, adapter, torrent_file, http_response):
        """A JSON-RPC error names the failing method and keeps the daemon message."""
        session = fake_session([
            rpc_result(http_response, True),
            rpc_result(http_response, None, {"message": "Torrent already in session", "code": 4}),
        ])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            with pytest.raises(PushError) as exc_info:
                adapter.push(PushRequest(torrent_path=str(torrent_file)))

        assert exc_info.value.message == "Deluge core.add_torrent_file failed"
        assert exc_info.value.details == "Torrent already in session"

    def test_http_failure(self, adapter, torrent_file, http_response):
        """A 5xx from the Web UI is a failed add."""
        session = fake_session([http_response(502, "Bad Gateway")])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            with pytest.raises(PushError, match="Deluge add failed"):
                adapter.push(PushRequest(torrent_path=str(torrent_file)))

    def test_disabled_by_default(self, config_store, history_log, torrent_file):
        """The adapter is off until enabled in config."""
        adapter = DelugeAdapter(config_store=config_store, history=history_log)
        with pytest.raises(PushConfigError, match="Deluge disabled"):
            adapter.push(PushRequest(torrent_path=str(torrent_file)))


class TestConnection:
    """Tests for the Deluge connection check."""

    def test_connected(self, adapter, http_response):
        """A successful login followed by web.connected true."""
        session = fake_session([rpc_result(http_response, True), rpc_result(http_response, True)])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            ok, message = adapter.test_connection()

        assert (ok, message) == (True, "Connected to Deluge")
        methods = [c[1]["json"]["method"] for c in session.post.call_args_list]
        assert methods == ["auth.login", "web.connected"]
        session.close.assert_called_once()

    def test_web_ui_without_daemon(self, adapter, http_response):
        """A reachable Web UI without a daemon is not a working target."""
        session = fake_session([rpc_result(http_response, True), rpc_result(http_response, False)])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            ok, message = adapter.test_connection()

        assert ok is False
        assert message == "Deluge Web UI is not connected to a daemon"

    def test_bad_password(self, adapter, http_response):
        """A rejected login is reported and the HTTP session still closed."""
        session = fake_session([rpc_result(http_response, False)])
        with patch("aatm.push.deluge.requests.Session", return_value=session):
            ok, message = adapter.test_connection()

        assert ok is False
        assert message == "Connection failed: Deluge authentication failed"
        session.close.assert_called_once()
