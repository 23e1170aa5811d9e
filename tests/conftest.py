import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.device import DeviceService  # noqa: E402
from core.refresh_scheduler import RefreshScheduler  # noqa: E402
from database.db_manager import DeviceConfigStore  # noqa: E402

from .helpers import FakeClock, RecordingEngine  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "device.db")


@pytest.fixture
def store(db_path) -> DeviceConfigStore:
    return DeviceConfigStore(db_path)


@pytest.fixture
def scheduler(engine, clock):
    sched = RefreshScheduler(engine, clock=clock, interval=None, highlight_seconds=None)
    yield sched
    sched.close()


@pytest.fixture
def service(store, engine, scheduler, clock) -> DeviceService:
    return DeviceService(store=store, engine=engine, scheduler=scheduler, clock=clock)
