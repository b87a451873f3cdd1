"""
Record Generator - Turns a scenario into a lazy stream of log records
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generator, Mapping, Optional

from .errors import GenerationError
from .models import (
    FIELD_ORDER,
    FormatKind,
    LogRecord,
    Scenario,
)
from .scenarios import validate_scenario

logger = logging.getLogger(__name__)

HTTP_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def stamp_fields(kind: FormatKind, values: Mapping[str, Any], timestamp: datetime) -> Dict[str, Any]:
    """Fill the time fields and put the mapping into canonical order"""
    values = dict(values)

    try:
        if kind == FormatKind.HTTP:
            values["time"] = timestamp.strftime(HTTP_TIME_FORMAT)
        elif kind == FormatKind.VPC_FLOW:
            duration = values.pop("duration")
            end = timestamp
            values["end"] = int(end.timestamp())
            values["start"] = int((end - timedelta(seconds=duration)).timestamp())
        return {name: values[name] for name in FIELD_ORDER[kind]}
    except KeyError as e:
        raise GenerationError(f"missing field {e} for {kind.value} record") from e
    except (TypeError, ValueError, OverflowError) as e:
        raise GenerationError(f"bad time field for {kind.value} record: {e}") from e


class RecordGenerator:
    """Produces the records of one scenario in scripted order"""

    def __init__(self, scenario: Scenario, clock: Optional[Callable[[], datetime]] = None):
        validate_scenario(scenario)
        self.scenario = scenario
        self.clock = clock or utc_now
        self.position = 0
        self.skipped = 0

    def reset(self) -> None:
        """Restart the stream from position zero"""
        self.position = 0
        self.skipped = 0

    def narrative_index(self, position: int) -> Optional[int]:
        """Index into the anomaly narrative for a position, or None if normal"""
        schedule = self.scenario.schedule
        length = self.scenario.narrative_length

        offset = position - schedule.offset
        if offset < 0:
            return None

        if schedule.every is None:
            return offset if offset < length else None

        offset %= length + schedule.every
        return offset if offset < length else None

    def record_at(self, position: int) -> LogRecord:
        """Build the record that belongs at a given position"""
        timestamp = self.clock()
        index = self.narrative_index(position)

        if index is not None:
            fields = stamp_fields(self.scenario.kind, self.scenario.anomaly_sequence[index], timestamp)
        else:
            try:
                fields = stamp_fields(self.scenario.kind, self.scenario.normal_template(), timestamp)
            except GenerationError:
                raise
            except Exception as e:
                raise GenerationError(
                    f"{self.scenario.name} template failed at position {position}: "
                    f"{type(e).__name__}: {e}"
                ) from e

        return LogRecord(
            kind=self.scenario.kind,
            timestamp=timestamp,
            fields=fields,
            is_anomaly=index is not None,
            scenario=self.scenario.name,
            sequence=position,
        )

    def next_record(self) -> LogRecord:
        """Return the next record, skipping normal records that fail to build"""
        while True:
            position = self.position
            self.position += 1
            try:
                return self.record_at(position)
            except GenerationError as e:
                if self.narrative_index(position) is not None:
                    raise
                self.skipped += 1
                logger.warning("Skipping record: %s", e)

    def records(self, limit: Optional[int] = None) -> Generator[LogRecord, None, None]:
        """Generate a stream of records"""
        count = 0
        while limit is None or count < limit:
            yield self.next_record()
            count += 1


def create_generator(scenario: Scenario, clock: Optional[Callable[[], datetime]] = None) -> RecordGenerator:
    """Factory function to create a record generator"""
    return RecordGenerator(scenario, clock)
