"""
Local Collector - A minimal downstream listener for demos and tests

Provides a TCP line collector and a FastAPI app exposing the Datadog agent
logs endpoint. Both decode every received line with the canonical codecs and
keep counts per format and of anomalies in the scripted narratives.
"""
import gzip
import json
import logging
import socket
import threading
from collections import Counter, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .codecs import decode_line
from .errors import DecodeError
from .models import FormatKind

logger = logging.getLogger(__name__)


class CollectorStats:
    """Thread-safe tally of decoded lines"""

    def __init__(self, keep: int = 1000):
        self._lock = threading.Lock()
        self.keep = keep
        self.by_kind: Counter = Counter()
        self.errors = 0
        self.received: List[Tuple[FormatKind, Dict[str, Any]]] = []
        self.started_at = datetime.now()

    def ingest(self, line: str) -> Optional[Tuple[FormatKind, Dict[str, Any]]]:
        """Decode a line and count it. Returns None for malformed lines."""
        try:
            kind, fields = decode_line(line)
        except DecodeError as e:
            with self._lock:
                self.errors += 1
            logger.warning("Dropping malformed line: %s", e)
            return None

        with self._lock:
            self.by_kind[kind.value] += 1
            self.received.append((kind, fields))
            if len(self.received) > self.keep:
                del self.received[: len(self.received) - self.keep]
        return kind, fields

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self.by_kind.values())

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total": sum(self.by_kind.values()),
                "by_kind": dict(self.by_kind),
                "errors": self.errors,
                "since": self.started_at.isoformat(),
            }


class LineCollector:
    """
    TCP server that receives newline-delimited log lines.

    Each connection is served on its own thread. The last ``keep`` raw lines
    and decoded records are kept for assertions, and decoded records are
    passed to ``on_record`` if given.
    """

    def __init__(
        self,
        host: str,
        port: int,
        shutdown: threading.Event,
        on_record: Optional[Callable[[FormatKind, Dict[str, Any], str], None]] = None,
        keep: int = 1000,
    ):
        self._host = host
        self._port = port
        self._shutdown = shutdown
        self._on_record = on_record
        self._sock: Optional[socket.socket] = None
        self._server_address: Optional[tuple] = None
        self._ready = threading.Event()
        self.stats = CollectorStats(keep)
        self.raw_lines: Deque[str] = deque(maxlen=keep)
        self._lock = threading.Lock()

    @property
    def server_address(self) -> Optional[tuple]:
        return self._server_address

    def wait_ready(self, timeout: float = 5.0) -> bool:
        return self._ready.wait(timeout)

    def start(self) -> None:
        """Bind, listen and accept connections until shutdown"""
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.settimeout(0.5)
        self._sock.bind((self._host, self._port))
        self._sock.listen(5)
        self._server_address = self._sock.getsockname()
        self._ready.set()
        logger.info("Collector listening on %s:%d", *self._server_address)

        try:
            while not self._shutdown.is_set():
                try:
                    conn, addr = self._sock.accept()
                except socket.timeout:
                    continue
                except OSError:
                    break

                t = threading.Thread(target=self._handle_client, args=(conn, addr), daemon=True)
                t.start()
        finally:
            self._close_listener()

    def stop(self) -> None:
        self._shutdown.set()
        self._close_listener()

    def _close_listener(self) -> None:
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None

    def _handle_client(self, conn: socket.socket, addr: tuple) -> None:
        logger.info("Client connected from %s:%d", *addr[:2])
        buf = b""
        conn.settimeout(0.5)

        try:
            while not self._shutdown.is_set():
                try:
                    data = conn.recv(4096)
                except socket.timeout:
                    continue
                except OSError:
                    break
                if not data:
                    break

                buf += data
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    self._handle_line(line.decode("utf-8", errors="replace"))
        finally:
            if buf:
                logger.warning("Discarding %d bytes of unterminated line from %s", len(buf), addr[0])
            conn.close()
            logger.info("Client disconnected: %s:%d", *addr[:2])

    def _handle_line(self, line: str) -> None:
        with self._lock:
            self.raw_lines.append(line)
        decoded = self.stats.ingest(line)
        if decoded and self._on_record:
            self._on_record(decoded[0], decoded[1], line)


# ============== Datadog agent endpoint ==============

class IngestResponse(BaseModel):
    accepted: int
    rejected: int


def create_app(
    stats: Optional[CollectorStats] = None,
    on_record: Optional[Callable[[FormatKind, Dict[str, Any], str], None]] = None,
) -> FastAPI:
    """FastAPI app accepting batches in the Datadog agent logs format"""
    stats = stats or CollectorStats()

    app = FastAPI(
        title="dynamo collector",
        description="Decodes log events posted in the Datadog agent logs format",
        version="1.0.0",
    )
    app.state.stats = stats

    @app.post("/api/v2/logs", response_model=IngestResponse, tags=["Ingest"])
    async def ingest_logs(request: Request):
        body = await request.body()
        if request.headers.get("content-encoding", "").lower() == "gzip":
            try:
                body = gzip.decompress(body)
            except OSError as e:
                raise HTTPException(status_code=400, detail=f"Invalid gzip body: {e}")

        try:
            events = json.loads(body)
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}")

        if isinstance(events, dict):
            events = [events]
        if not isinstance(events, list):
            raise HTTPException(status_code=400, detail="Expected a JSON array of events")

        accepted = rejected = 0
        for event in events:
            message = event.get("message") if isinstance(event, dict) else None
            decoded = stats.ingest(message) if isinstance(message, str) else None
            if decoded is None:
                rejected += 1
                continue
            accepted += 1
            if on_record:
                on_record(decoded[0], decoded[1], message)

        return IngestResponse(accepted=accepted, rejected=rejected)

    @app.get("/api/stats", tags=["Status"])
    async def get_stats():
        return stats.snapshot()

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    return app


def print_record(kind: FormatKind, fields: Dict[str, Any], line: str) -> None:
    print(f"[{kind.value}] {line}", flush=True)


def run_http_collector(host: str = "0.0.0.0", port: int = 8282) -> None:
    """Run the Datadog agent compatible collector"""
    import uvicorn
    uvicorn.run(create_app(on_record=print_record), host=host, port=port)
