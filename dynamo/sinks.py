"""
Transport Sinks - Deliver encoded records to a collector
"""
import gzip
import json
import logging
import random
import socket
import sys
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, TextIO
from urllib.parse import urlparse

import httpx

from .codecs import encode, to_datadog_event
from .errors import ConfigurationError, TransportError
from .models import LogRecord, StreamState

logger = logging.getLogger(__name__)


def backoff_delays(
    attempts: int,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    jitter: float = 0.3,
) -> Iterator[float]:
    """Exponential backoff with jitter, one delay per retry"""
    for attempt in range(attempts):
        delay = min(base_delay * (2 ** attempt), max_delay)
        yield delay + random.uniform(0, delay * jitter)


class Sink(ABC):
    """Base class for transport sinks"""

    def __init__(self):
        self.state = StreamState.IDLE

    def open(self) -> None:
        """Prepare the sink before the first record"""
        self.state = StreamState.STREAMING

    @abstractmethod
    def write(self, record: LogRecord) -> None:
        """Deliver a single record"""

    def write_batch(self, records: List[LogRecord]) -> None:
        for record in records:
            self.write(record)

    @property
    def poll_interval(self) -> Optional[float]:
        """How often the session should call poll while idle, or None"""
        return None

    def poll(self) -> None:
        """Deliver buffered output that has become due without a new record"""

    @abstractmethod
    def close(self) -> None:
        """Flush pending output and release resources"""


class StdoutSink(Sink):
    """Write lines to standard output"""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self.stream = stream or sys.stdout

    def write(self, record: LogRecord) -> None:
        self.stream.write(encode(record) + "\n")

    def close(self) -> None:
        self.stream.flush()


class TcpSink(Sink):
    """
    Line-delimited TCP sink with reconnect.

    A failed connect or write moves the sink to RECONNECTING and retries with
    exponential backoff up to ``max_retries`` times before it becomes FAILED.
    Backoff waits end early when the shutdown event is set, and no new retry
    starts after shutdown.
    """

    def __init__(
        self,
        host: str,
        port: int,
        shutdown: threading.Event,
        max_retries: int = 5,
        connect_timeout: float = 5.0,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
    ):
        super().__init__()
        self.host = host
        self.port = port
        self._shutdown = shutdown
        self.max_retries = max_retries
        self.connect_timeout = connect_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sock: Optional[socket.socket] = None
        self.reconnects = 0

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def _connect_once(self) -> None:
        sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        sock.settimeout(None)
        self._sock = sock
        logger.info("Connected to %s:%d", self.host, self.port)

    def _drop(self) -> None:
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

    def _with_retry(self, action, description: str) -> None:
        """Run action, reconnecting with backoff on OSError"""
        if self.state == StreamState.FAILED:
            raise TransportError(f"sink to {self.host}:{self.port} has failed")

        delays = backoff_delays(self.max_retries, self.base_delay, self.max_delay)
        last_error: Optional[Exception] = None

        while True:
            try:
                if self._sock is None:
                    if self._shutdown.is_set():
                        raise TransportError(f"shutdown while {description.lower()}")
                    self._connect_once()
                action()
                self.state = StreamState.STREAMING
                return
            except OSError as e:
                last_error = e
                self._drop()
                logger.warning("%s %s:%d failed: %s", description, self.host, self.port, e)

            if self._shutdown.is_set():
                raise TransportError(f"shutdown while {description.lower()}") from last_error

            delay = next(delays, None)
            if delay is None:
                self.state = StreamState.FAILED
                raise TransportError(
                    f"{description} {self.host}:{self.port} failed after "
                    f"{self.max_retries} retries: {last_error}"
                ) from last_error

            self.state = StreamState.RECONNECTING
            self.reconnects += 1
            logger.info("Retrying in %.1fs...", delay)
            if self._shutdown.wait(delay):
                raise TransportError(f"shutdown while {description.lower()}") from last_error

    def open(self) -> None:
        self.state = StreamState.CONNECTING
        self._with_retry(lambda: None, "Connect to")

    def write(self, record: LogRecord) -> None:
        data = (encode(record) + "\n").encode("utf-8")
        # one sendall per line so a line is never split by our own writes
        self._with_retry(lambda: self._sock.sendall(data), "Send to")

    def close(self) -> None:
        if self._sock:
            try:
                self._sock.shutdown(socket.SHUT_WR)
            except OSError:
                pass
        self._drop()


class DatadogAgentSink(Sink):
    """
    Batches records as JSON events and posts them to a Datadog agent
    compatible logs endpoint, such as Vector's ``datadog_agent`` source.
    """

    LOGS_PATH = "/api/v2/logs"

    def __init__(
        self,
        target: str,
        service: str,
        shutdown: threading.Event,
        batch_size: int = 5,
        batch_timeout: float = 5.0,
        max_retries: int = 5,
        hostname: Optional[str] = None,
        client: Optional[httpx.Client] = None,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        clock=time.monotonic,
    ):
        super().__init__()
        self.url = target.rstrip("/") + self.LOGS_PATH
        self.service = service
        self._shutdown = shutdown
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.max_retries = max_retries
        self.hostname = hostname or socket.gethostname()
        self._client = client or httpx.Client(timeout=10.0)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._pending: List[Dict[str, Any]] = []
        self._first_pending_at: Optional[float] = None
        self.batches_sent = 0

    def write(self, record: LogRecord) -> None:
        if self.state == StreamState.FAILED:
            raise TransportError(f"sink to {self.url} has failed")

        if not self._pending:
            self._first_pending_at = self._clock()
        self._pending.append(to_datadog_event(record, self.service, self.hostname))

        if len(self._pending) >= self.batch_size or self._expired():
            self.flush()

    def _expired(self) -> bool:
        return (
            self._first_pending_at is not None
            and self._clock() - self._first_pending_at >= self.batch_timeout
        )

    @property
    def poll_interval(self) -> Optional[float]:
        return self.batch_timeout

    def poll(self) -> None:
        if self.state != StreamState.FAILED and self._pending and self._expired():
            self.flush()

    def flush(self) -> None:
        """Post the pending batch, retrying transient failures"""
        if not self._pending:
            return

        body = gzip.compress(json.dumps(self._pending).encode("utf-8"))
        headers = {"Content-Type": "application/json", "Content-Encoding": "gzip"}
        delays = backoff_delays(self.max_retries, self.base_delay, self.max_delay)

        while True:
            try:
                response = self._client.post(self.url, content=body, headers=headers)
                if response.status_code < 500:
                    response.raise_for_status()
                    break
                error: Exception = TransportError(f"collector returned HTTP {response.status_code}")
            except httpx.HTTPStatusError as e:
                self.state = StreamState.FAILED
                raise TransportError(f"collector rejected batch: {e}") from e
            except httpx.TransportError as e:
                error = e

            logger.warning("Post to %s failed: %s", self.url, error)
            if self._shutdown.is_set():
                raise TransportError("shutdown while posting batch") from error

            delay = next(delays, None)
            if delay is None:
                self.state = StreamState.FAILED
                raise TransportError(
                    f"post to {self.url} failed after {self.max_retries} retries: {error}"
                ) from error

            self.state = StreamState.RECONNECTING
            logger.info("Retrying in %.1fs...", delay)
            if self._shutdown.wait(delay):
                raise TransportError("shutdown while posting batch") from error

        self.state = StreamState.STREAMING
        self.batches_sent += 1
        logger.debug("Posted batch of %d events", len(self._pending))
        self._pending = []
        self._first_pending_at = None

    def close(self) -> None:
        try:
            if self.state != StreamState.FAILED:
                self.flush()
        finally:
            self._client.close()


def parse_target(target: str):
    """Split a target string into (scheme, host, port)"""
    if target in ("-", "stdout"):
        return "stdout", None, None

    parsed = urlparse(target)
    if parsed.scheme not in ("tcp", "http", "https") or not parsed.hostname:
        raise ConfigurationError(
            f"invalid target {target!r}, expected tcp://host:port, http(s)://host:port or '-'"
        )
    try:
        port = parsed.port
    except ValueError as e:
        raise ConfigurationError(f"invalid port in target {target!r}") from e
    if parsed.scheme == "tcp" and port is None:
        raise ConfigurationError(f"tcp target {target!r} needs a port")
    return parsed.scheme, parsed.hostname, port


def create_sink(settings, service: str, shutdown: threading.Event) -> Sink:
    """Factory function to create a sink from settings"""
    scheme, host, port = parse_target(settings.target)

    if scheme == "stdout":
        return StdoutSink()

    if scheme == "tcp":
        return TcpSink(
            host,
            port,
            shutdown,
            max_retries=settings.max_retries,
            connect_timeout=settings.connect_timeout,
        )

    return DatadogAgentSink(
        settings.target,
        service,
        shutdown,
        batch_size=settings.batch_size,
        batch_timeout=settings.batch_timeout,
        max_retries=settings.max_retries,
        hostname=settings.hostname,
        client=httpx.Client(timeout=settings.connect_timeout),
    )
