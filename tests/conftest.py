"""Shared test fixtures for retryguard tests.

Isolates every test from the developer's environment: RETRYGUARD_* variables
are cleared, HOME / XDG_CONFIG_HOME point at empty temp directories, and the
process-wide settings are reset before and after each test.
"""

import pytest

from retryguard.config import ENV_VARS, set_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Run each test with default settings and no config files in reach."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)
    set_settings(None)
    yield
    set_settings(None)


@pytest.fixture
def sleep_recorder():
    """Fake async sleep that records requested delays instead of waiting."""
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    fake_sleep.delays = delays  # type: ignore[attr-defined]
    return fake_sleep
