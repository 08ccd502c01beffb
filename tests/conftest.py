import json
import random
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from nr5g_analyzer.bridge import SendResult
from nr5g_analyzer.config import EngineSettings
from nr5g_analyzer.dsp.computer import SpectrumComputer, SpectrumRequest, run_request
from nr5g_analyzer.engine import Engine

BRIDGE_URL = "ws://bridge.test/analyzer"


class ManualScheduler:
    """Scheduler double; tests fire the timers by hand."""

    def __init__(self) -> None:
        self.connect_callback: Optional[Callable[[], None]] = None
        self.last_connect_callback: Optional[Callable[[], None]] = None
        self.connect_delay_s: Optional[float] = None
        self.on_capture: Optional[Callable[[], None]] = None
        self.on_heartbeat: Optional[Callable[[], None]] = None
        self.capture_interval_s: Optional[float] = None
        self.heartbeat_interval_s: Optional[float] = None
        self.closed = False

    @property
    def capture_running(self) -> bool:
        return self.on_capture is not None

    def schedule_connect(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.connect_delay_s = delay_s
        self.connect_callback = callback
        self.last_connect_callback = callback

    def cancel_connect(self) -> None:
        self.connect_callback = None

    def fire_connect(self) -> None:
        callback, self.connect_callback = self.connect_callback, None
        assert callback is not None, "no connect pending"
        callback()

    def start_capture(
        self,
        capture_interval_s: float,
        on_capture: Callable[[], None],
        heartbeat_interval_s: float,
        on_heartbeat: Callable[[], None],
    ) -> None:
        self.capture_interval_s = capture_interval_s
        self.heartbeat_interval_s = heartbeat_interval_s
        self.on_capture = on_capture
        self.on_heartbeat = on_heartbeat

    def stop_capture(self) -> None:
        self.on_capture = None
        self.on_heartbeat = None

    def close(self) -> None:
        self.closed = True
        self.cancel_connect()
        self.stop_capture()


class FakeBridge:
    def __init__(self, url: str, on_open, on_message, on_error, on_close, open_timeout: float = 5.0) -> None:
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.open_timeout = open_timeout
        self.sent: list[dict[str, Any]] = []
        self.started = False
        self.closed = False
        self.is_open = False

    def start(self) -> None:
        self.started = True

    def open(self) -> None:
        self.is_open = True
        self.on_open()

    def deliver(self, message: Any) -> None:
        self.on_message(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def send(self, message: dict[str, Any]) -> SendResult:
        if not self.is_open or self.closed:
            return SendResult(ok=False, error="WebSocket not open")
        self.sent.append(message)
        return SendResult(ok=True)

    def close(self) -> None:
        self.closed = True
        self.is_open = False


class FakeBridgeFactory:
    def __init__(self) -> None:
        self.created: list[FakeBridge] = []

    def __call__(self, url: str, **callbacks: Any) -> FakeBridge:
        bridge = FakeBridge(url, **callbacks)
        self.created.append(bridge)
        return bridge

    @property
    def latest(self) -> FakeBridge:
        return self.created[-1]


class FixedClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class ControlledComputer(SpectrumComputer):
    """Offloaded path whose futures resolve only when the test says so."""

    name = "controlled"

    def __init__(self) -> None:
        self.requests: list[tuple[SpectrumRequest, Future]] = []

    def submit(self, request: SpectrumRequest) -> Future:
        future: Future = Future()
        self.requests.append((request, future))
        return future

    def resolve(self, index: int) -> None:
        request, future = self.requests[index]
        future.set_result(run_request(request))

    def fail(self, index: int, exc: Exception) -> None:
        self.requests[index][1].set_exception(exc)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def bridge_factory() -> FakeBridgeFactory:
    return FakeBridgeFactory()


@pytest.fixture
def engine(scheduler: ManualScheduler, clock: FixedClock):
    eng = Engine(EngineSettings(), scheduler=scheduler, clock=clock, rng=random.Random(1234))
    yield eng
    eng.close()


@pytest.fixture
def bridge_engine(scheduler: ManualScheduler, clock: FixedClock, bridge_factory: FakeBridgeFactory):
    eng = Engine(
        EngineSettings(bridge_url=BRIDGE_URL),
        scheduler=scheduler,
        bridge_factory=bridge_factory,
        clock=clock,
        rng=random.Random(1234),
    )
    yield eng
    eng.close()


def connect_simulator(engine: Engine, scheduler: ManualScheduler) -> None:
    engine.connect()
    scheduler.fire_connect()
