from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from sendkindle.dependencies import reset_cached_dependencies
from sendkindle.main import create_app

_SUMMARY_ENV_VARS: tuple[str, ...] = (
    "OPENROUTER_API_KEY",
    "OPENROUTER_SITE_URL",
    "OPENROUTER_APP_NAME",
    "SENDKINDLE_OPENROUTER_API_KEY",
    "SENDKINDLE_OPENROUTER_SITE_URL",
    "SENDKINDLE_OPENROUTER_APP_NAME",
)


@pytest.fixture(autouse=True)
def _isolated_environment(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    for name in _SUMMARY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SENDKINDLE_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("SENDKINDLE_TELEMETRY_SINK", "none")
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()


@pytest.fixture
def client() -> Iterator[TestClient]:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
