"""Fixtures for exercising the Flask app through its test clients."""

import pytest

from aatm.packaging.orchestrator import PackagingOrchestrator


@pytest.fixture
def api(monkeypatch, registry, job_broadcaster, history_log, config_store):
    """The Flask app wired to per-test config, history and job state."""
    import aatm.main as main

    orchestrator = PackagingOrchestrator(
        registry=registry,
        broadcaster=job_broadcaster,
        history=history_log,
        config_store=config_store,
        max_workers=1,
    )
    monkeypatch.setattr(main, "app_config", config_store)
    monkeypatch.setattr(main, "history", history_log)
    monkeypatch.setattr(main, "job_registry", registry)
    monkeypatch.setattr(main, "broadcaster", job_broadcaster)
    monkeypatch.setattr(main, "orchestrator", orchestrator)
    main.app.config["TESTING"] = True

    yield main
    orchestrator.shutdown(wait_for_jobs=True)


@pytest.fixture
def client(api):
    return api.app.test_client()


@pytest.fixture
def socket_client(api):
    socket_client = api.socketio.test_client(api.app)
    yield socket_client
    if socket_client.is_connected():
        socket_client.disconnect()
