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


@pytest.fixture(scope="session")
def app():
    # Must be set before importing modules that read the settings.
    os.environ["ELEVENLABS_API_KEY"] = ""
    os.environ["ELEVENLABS_AGENT_ID"] = ""
    os.environ["CALL_MEDIA_HOST"] = "127.0.0.1"
    # Port 0 lets the OS pick a free port for the call media server.
    os.environ["CALL_MEDIA_PORT"] = "0"

    import importlib

    for module_name in [
        "config.settings",
        "bridge.runtime",
        "bridge.server",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
