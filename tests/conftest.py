from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from notebook_engine.affinity import RunLoopAffinity
from notebook_engine.clock import StepClock
from notebook_engine.fatal import reraise
from notebook_engine.gateway import PersistenceGateway
from notebook_engine.views import RecordingView

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> StepClock:
    return StepClock(start=T0)


@pytest.fixture
def loop() -> RunLoopAffinity:
    return RunLoopAffinity("test-main")


@pytest.fixture
def gateway(tmp_path: Path, loop: RunLoopAffinity, clock: StepClock) -> Iterator[PersistenceGateway]:
    gw = PersistenceGateway(
        data_root=tmp_path, main_affinity=loop, clock=clock, fatal_handler=reraise, busy_timeout=0.2
    )
    loop.run_until(gw.open("test"))
    yield gw
    gw.close()


@pytest.fixture
def view() -> RecordingView:
    return RecordingView()

