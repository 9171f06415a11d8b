from __future__ import annotations

import sys
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from beacon.core.config import MonitorConfig, load_config  # noqa: E402
from beacon.core.storage import MemoryStorage  # noqa: E402
from tests.unit._clock import FakeClock  # noqa: E402


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def test_config() -> MonitorConfig:
    """In-memory config that never reaches for the network during enrichment."""

    return load_config(
        app_id="test-app",
        server_url="http://test/api",
        storage={"backend": "memory"},
        processor={"collect_user_ip": False},
    )
