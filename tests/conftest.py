import threading
import time

import pytest

from dynamo.codecs import encode
from dynamo.collector import LineCollector
from dynamo.errors import TransportError
from dynamo.sinks import Sink


class FakeClock:
    """Steady clock whose waits advance time instantly"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.waits = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        self.now += timeout
        return False


class ListSink(Sink):
    """Keeps every written record and its encoded line"""

    def __init__(self, fail_after=None):
        super().__init__()
        self.records = []
        self.lines = []
        self.fail_after = fail_after
        self.closed = False

    def write(self, record):
        if self.fail_after is not None and len(self.records) >= self.fail_after:
            raise TransportError("collector went away")
        self.records.append(record)
        self.lines.append(encode(record))

    def close(self):
        self.closed = True


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def list_sink():
    return ListSink()


@pytest.fixture
def collector():
    """A LineCollector on a random port, stopped after the test"""
    shutdown = threading.Event()
    server = LineCollector("127.0.0.1", 0, shutdown)
    t = threading.Thread(target=server.start, daemon=True)
    t.start()
    assert server.wait_ready()
    yield server
    server.stop()
    t.join(timeout=2)


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()
