from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.project_builder import ProjectBuilder, RecordingProvider

_PROVIDER_ENV = (
    "SKILLC_PROVIDER",
    "SKILLC_MODEL",
    "SKILLC_API_KEY",
    "SKILLC_BASE_URL",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point $HOME at a temp dir and drop provider env vars for every test."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for key in _PROVIDER_ENV:
        monkeypatch.delenv(key, raising=False)
    return home


@pytest.fixture
def project(tmp_path: Path) -> ProjectBuilder:
    """Provide a project directory with helpers for instructions and specs."""
    return ProjectBuilder(tmp_path)


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()
