import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

import surflog.main as main  # noqa: E402
from surflog.local import LocalStorage  # noqa: E402


@pytest.fixture(autouse=True)
def disable_db_lifecycle(monkeypatch):
    async def noop():
        return None

    monkeypatch.setattr(main, "startup_db", noop)
    monkeypatch.setattr(main, "shutdown_db", noop)
    yield


@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(tmp_path / "device")
