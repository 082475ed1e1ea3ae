"""Shared fixtures: a fake /proc tree, deterministic probes and API clients."""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from learn_python import metrics as metrics_module
from learn_python.api import create_app
from learn_python.config import Settings
from learn_python.metrics import HostStatsProbe

FIXED_NOW = 1_700_000_000.0

MEMINFO = """MemTotal:       16000000 kB
MemFree:         2000000 kB
MemAvailable:    8000000 kB
Buffers:          300000 kB
Cached:          4000000 kB
"""
# starttime (field 22) is 5000 ticks; the command name contains a space.
PROC_SELF_STAT = "1234 (python worker) S 1 1234 1234 0 -1 4194560 100 0 0 0 10 5 0 0 20 0 1 0 5000 123456 789\n"
PROC_UPTIME = "1000.00 4000.00\n"


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    (tmp_path / "self").mkdir()
    (tmp_path / "meminfo").write_text(MEMINFO, encoding="utf-8")
    (tmp_path / "self" / "stat").write_text(PROC_SELF_STAT, encoding="utf-8")
    (tmp_path / "uptime").write_text(PROC_UPTIME, encoding="utf-8")
    return tmp_path


@pytest.fixture(autouse=True)
def fixed_clock_ticks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(metrics_module, "_clock_ticks_per_second", lambda: 100)


@pytest.fixture
def probe(proc_root: Path) -> HostStatsProbe:
    return HostStatsProbe(proc_root=proc_root, cpu_counter=lambda logical=True: 8, clock=lambda: FIXED_NOW)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(environment="test", log_level="error", app_version="1.2.3", metrics_enabled=False)


@pytest.fixture
def make_client(probe: HostStatsProbe) -> Callable[..., TestClient]:
    def _make_client(settings: Settings, **kwargs) -> TestClient:
        application = create_app(settings, probe=probe, **kwargs)
        return TestClient(application)

    return _make_client


@pytest.fixture
def client(make_client: Callable[..., TestClient], test_settings: Settings) -> TestClient:
    return make_client(test_settings)
