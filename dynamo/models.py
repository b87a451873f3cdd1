"""
Record Models - Data classes for emitted log records and scenarios
"""
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Optional, Dict, Any, Callable, Mapping, Tuple
from enum import Enum
import json

from .errors import ConfigurationError


class FormatKind(Enum):
    HTTP = "http"
    VPC_FLOW = "vpc_flow"


class StreamState(Enum):
    """Process-level emission state"""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


# Canonical field order of each format, used for text rendering
FIELD_ORDER: Dict[FormatKind, Tuple[str, ...]] = {
    FormatKind.HTTP: (
        "remote_host", "ident", "user", "time", "method", "path",
        "protocol", "status", "size", "referer", "user_agent",
    ),
    FormatKind.VPC_FLOW: (
        "version", "account_id", "interface_id", "srcaddr", "dstaddr",
        "srcport", "dstport", "protocol", "packets", "bytes",
        "start", "end", "action", "log_status",
    ),
}

# Fields filled from the emission timestamp rather than the template
TIME_FIELDS: Dict[FormatKind, Tuple[str, ...]] = {
    FormatKind.HTTP: ("time",),
    FormatKind.VPC_FLOW: ("start", "end"),
}

# Extra template-only keys consumed while stamping
STAMP_FIELDS: Dict[FormatKind, Tuple[str, ...]] = {
    FormatKind.HTTP: (),
    FormatKind.VPC_FLOW: ("duration",),
}


def template_fields(kind: FormatKind) -> Tuple[str, ...]:
    """Keys a template (normal or narrative) must provide for a format"""
    fields = tuple(f for f in FIELD_ORDER[kind] if f not in TIME_FIELDS[kind])
    return fields + STAMP_FIELDS[kind]


@dataclass
class LogRecord:
    """A single emitted event"""
    kind: FormatKind
    timestamp: datetime
    fields: Dict[str, Any]
    is_anomaly: bool = False
    scenario: str = ""
    sequence: int = 0

    def to_dict(self, include_labels: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        result = {
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "fields": dict(self.fields),
        }

        if include_labels:
            result["_labels"] = {
                "is_anomaly": self.is_anomaly,
                "scenario": self.scenario,
                "sequence": self.sequence,
            }

        return result

    def to_json(self, include_labels: bool = True) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(include_labels))


@dataclass(frozen=True)
class InjectionSchedule:
    """
    Where anomaly narratives sit relative to normal traffic.

    The first narrative block starts after ``offset`` normal records. With
    ``every`` set, another block follows after each further ``every`` normal
    records; otherwise the narrative plays exactly once.
    """
    offset: int = 0
    every: Optional[int] = None

    def validate(self) -> None:
        if self.offset < 0:
            raise ConfigurationError(f"anomaly offset must be >= 0, got {self.offset}")
        if self.every is not None and self.every < 0:
            raise ConfigurationError(f"anomaly interval must be >= 0, got {self.every}")


@dataclass(frozen=True)
class EmissionSchedule:
    """Target rate and optional bounds of a session"""
    rate: float
    duration: Optional[float] = None
    count: Optional[int] = None

    def validate(self) -> None:
        if self.rate <= 0:
            raise ConfigurationError(f"rate must be > 0 records/sec, got {self.rate}")
        if self.duration is not None and self.duration <= 0:
            raise ConfigurationError(f"duration must be > 0 seconds, got {self.duration}")
        if self.count is not None and self.count < 1:
            raise ConfigurationError(f"count must be >= 1, got {self.count}")

    @property
    def interval(self) -> float:
        return 1.0 / self.rate


@dataclass(frozen=True)
class Scenario:
    """A named, scripted combination of log format and anomaly narrative"""
    name: str
    kind: FormatKind
    service: str
    normal_template: Callable[[], Dict[str, Any]]
    anomaly_sequence: Tuple[Mapping[str, Any], ...]
    schedule: InjectionSchedule = field(default_factory=InjectionSchedule)
    description: str = ""

    @property
    def narrative_length(self) -> int:
        return len(self.anomaly_sequence)


def freeze_sequence(records) -> Tuple[Mapping[str, Any], ...]:
    """Turn a list of field dicts into an immutable narrative"""
    return tuple(MappingProxyType(dict(r)) for r in records)
