"""
Emission Session - The tick, generate, send control loop
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from .errors import ConfigurationError, TransportError
from .generator import RecordGenerator
from .models import EmissionSchedule, InjectionSchedule, Scenario, StreamState
from .pacing import Pacer
from .scenarios import get_scenario
from .sinks import Sink, create_sink

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    sent: int = 0
    anomalies: int = 0
    skipped: int = 0
    reanchors: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at


class EmissionSession:
    """
    Runs one scenario against one sink.

    Records reach the sink in exactly the order the generator produced them.
    Setting the shutdown event makes ``run`` return within one tick interval.
    """

    def __init__(
        self,
        scenario: Scenario,
        schedule: EmissionSchedule,
        sink: Sink,
        shutdown: Optional[threading.Event] = None,
        generator: Optional[RecordGenerator] = None,
        pacer: Optional[Pacer] = None,
        status_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        schedule.validate()
        self.scenario = scenario
        self.schedule = schedule
        self.sink = sink
        self.shutdown = shutdown or threading.Event()
        self.generator = generator or RecordGenerator(scenario)
        self.pacer = pacer or Pacer(
            schedule.rate,
            until=schedule.duration,
            stop_event=self.shutdown,
            wait=self._wait,
        )
        self.status_interval = status_interval
        self._clock = clock
        self.stats = SessionStats()
        self._state = StreamState.IDLE

    @property
    def state(self) -> StreamState:
        if self._state in (StreamState.IDLE, StreamState.FAILED):
            return self._state
        return self.sink.state

    def stop(self) -> None:
        self.shutdown.set()

    def _wait(self, timeout: float) -> bool:
        """Pacer wait that polls the sink while idle"""
        interval = self.sink.poll_interval
        if not interval:
            return self.shutdown.wait(timeout)

        deadline = self._clock() + timeout
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return self.shutdown.is_set()
            if self.shutdown.wait(min(remaining, interval)):
                return True
            try:
                self.sink.poll()
            except TransportError:
                if self.shutdown.is_set():
                    return True
                raise

    def _log_status(self) -> None:
        elapsed = self.stats.elapsed or 1.0
        logger.info(
            "[%s] %d sent | %d anomalies | %d skipped | ~%.1f records/sec",
            self.scenario.name,
            self.stats.sent,
            self.stats.anomalies,
            self.generator.skipped,
            self.stats.sent / elapsed,
        )

    def run(self) -> SessionStats:
        """Emit until the schedule is exhausted, shutdown is requested or the sink fails"""
        self.stats.started_at = self._clock()
        last_status = self.stats.started_at

        try:
            self._state = StreamState.CONNECTING
            self.sink.open()
            self._state = StreamState.STREAMING
            logger.info(
                "[%s] streaming at %.1f records/sec", self.scenario.name, self.schedule.rate
            )

            while True:
                if self.schedule.count is not None and self.stats.sent >= self.schedule.count:
                    break
                if not self.pacer.tick():
                    break

                record = self.generator.next_record()
                try:
                    self.sink.poll()
                    self.sink.write(record)
                except TransportError:
                    if self.shutdown.is_set():
                        logger.info("[%s] stopped while delivering", self.scenario.name)
                        break
                    raise

                self.stats.sent += 1
                if record.is_anomaly:
                    self.stats.anomalies += 1

                now = self._clock()
                if self.status_interval and now - last_status >= self.status_interval:
                    self._log_status()
                    last_status = now
        except TransportError:
            self._state = StreamState.FAILED
            raise
        finally:
            self.stats.finished_at = self._clock()
            self.stats.skipped = self.generator.skipped
            self.stats.reanchors = self.pacer.reanchors
            try:
                self.sink.close()
            except TransportError as e:
                if self.shutdown.is_set():
                    logger.warning("[%s] pending records dropped on shutdown: %s", self.scenario.name, e)
                else:
                    self._state = StreamState.FAILED
                    logger.error("[%s] failed to flush on close: %s", self.scenario.name, e)

        if self._state == StreamState.FAILED:
            raise TransportError(f"[{self.scenario.name}] final flush failed")

        self._log_status()
        return self.stats


def build_sessions(settings, shutdown: threading.Event) -> List[EmissionSession]:
    """Build every configured session up front so bad configuration fails before emission"""
    schedule = settings.emission_schedule()
    schedule.validate()

    if not settings.scenarios:
        raise ConfigurationError("no scenarios selected")

    scenarios = []
    for name in settings.scenarios:
        scenario = get_scenario(name, seed=settings.seed)
        injection = InjectionSchedule(
            offset=scenario.schedule.offset if settings.anomaly_offset is None else settings.anomaly_offset,
            every=settings.anomaly_every if settings.anomaly_every is not None else scenario.schedule.every,
        )
        injection.validate()
        scenarios.append(replace(scenario, schedule=injection))

    # sinks are only created once every scenario is known to be valid
    return [
        EmissionSession(
            scenario,
            schedule,
            create_sink(settings, scenario.service, shutdown),
            shutdown=shutdown,
            status_interval=settings.status_interval,
        )
        for scenario in scenarios
    ]


def run_sessions(sessions: List[EmissionSession]) -> List[SessionStats]:
    """
    Run sessions to completion, one thread per extra session.

    The first TransportError is re-raised after every session has stopped.
    """
    if len(sessions) == 1:
        return [sessions[0].run()]

    errors: List[BaseException] = []
    results: List[Optional[SessionStats]] = [None] * len(sessions)

    def _target(index: int, session: EmissionSession):
        try:
            results[index] = session.run()
        except TransportError as e:
            logger.error("[%s] %s", session.scenario.name, e)
            errors.append(e)
            # a failed stream halts the whole process
            session.shutdown.set()

    threads = [
        threading.Thread(target=_target, args=(i, s), name=f"session-{s.scenario.name}", daemon=True)
        for i, s in enumerate(sessions)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    if errors:
        raise errors[0]
    return [r for r in results if r is not None]
