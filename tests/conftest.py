from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before importing modules that read the cached settings.
os.environ.setdefault("PHONE_NUMBER_ID", "PN123")
os.environ.setdefault("ACCESS_TOKEN", "test-access-token")
os.environ.setdefault("VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("ACCEPT_DELAY_SECONDS", "0")


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def bridge():
    from fakes import build_test_orchestrator
    from signaling.relay import SignalingRelay

    return build_test_orchestrator(relay=SignalingRelay())


@pytest.fixture()
def client(app, bridge):
    # Override bridge dependencies so tests never open real peer connections.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_orchestrator] = lambda: bridge.orchestrator
    app.dependency_overrides[deps.get_relay] = lambda: bridge.relay

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
