"""
Codecs - Canonical text encodings of each format kind

Encoders render a record as one line of its format's grammar. Decoders are
the collector-side counterpart and recover the exact field mapping, with
numeric fields converted back to ints.
"""
import re
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import DecodeError
from .models import FIELD_ORDER, FormatKind, LogRecord


# Apache combined: %h %l %u [%t] "%r" %>s %b "%{Referer}i" "%{User-agent}i"
_HTTP_RE = re.compile(
    r'^(?P<remote_host>\S+) (?P<ident>\S+) (?P<user>\S+) '
    r'\[(?P<time>[^\]]+)\] '
    r'"(?P<method>[A-Z]+) (?P<path>\S+) (?P<protocol>[^"\s]+)" '
    r'(?P<status>\d{3}) (?P<size>\d+) '
    r'"(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)"$'
)

_HTTP_INTS = {"status", "size"}

_VPC_INTS = {"version", "srcport", "dstport", "protocol", "packets", "bytes", "start", "end"}


def encode_http(fields: Dict[str, Any]) -> str:
    return (
        f'{fields["remote_host"]} {fields["ident"]} {fields["user"]} '
        f'[{fields["time"]}] '
        f'"{fields["method"]} {fields["path"]} {fields["protocol"]}" '
        f'{fields["status"]} {fields["size"]} '
        f'"{fields["referer"]}" "{fields["user_agent"]}"'
    )


def decode_http(line: str) -> Dict[str, Any]:
    m = _HTTP_RE.match(line)
    if not m:
        raise DecodeError(f"not an access log line: {line[:120]!r}")
    return {
        name: int(m.group(name)) if name in _HTTP_INTS else m.group(name)
        for name in FIELD_ORDER[FormatKind.HTTP]
    }


def encode_vpc_flow(fields: Dict[str, Any]) -> str:
    return " ".join(str(fields[name]) for name in FIELD_ORDER[FormatKind.VPC_FLOW])


def decode_vpc_flow(line: str) -> Dict[str, Any]:
    names = FIELD_ORDER[FormatKind.VPC_FLOW]
    parts = line.split(" ")
    if len(parts) != len(names):
        raise DecodeError(f"expected {len(names)} flow fields, got {len(parts)}: {line[:120]!r}")

    result = {}
    for name, value in zip(names, parts):
        if name in _VPC_INTS:
            try:
                result[name] = int(value)
            except ValueError:
                raise DecodeError(f"flow field {name} is not numeric: {value!r}") from None
        else:
            result[name] = value
    return result


CODECS: Dict[FormatKind, Tuple[Callable[[Dict[str, Any]], str], Callable[[str], Dict[str, Any]]]] = {
    FormatKind.HTTP: (encode_http, decode_http),
    FormatKind.VPC_FLOW: (encode_vpc_flow, decode_vpc_flow),
}


def encode(record: LogRecord) -> str:
    """Render a record as a single line without the trailing newline"""
    encoder, _ = CODECS[record.kind]
    return encoder(record.fields)


def decode(kind: FormatKind, line: str) -> Dict[str, Any]:
    """Parse one line of a known format back into its field mapping"""
    _, decoder = CODECS[kind]
    return decoder(line.rstrip("\r\n"))


def detect_kind(line: str) -> Optional[FormatKind]:
    """Guess the format of a line, or None if it matches neither grammar"""
    line = line.rstrip("\r\n")
    if _HTTP_RE.match(line):
        return FormatKind.HTTP
    try:
        decode_vpc_flow(line)
    except DecodeError:
        return None
    return FormatKind.VPC_FLOW


def decode_line(line: str) -> Tuple[FormatKind, Dict[str, Any]]:
    """Auto-detect the format of a line and decode it"""
    kind = detect_kind(line)
    if kind is None:
        raise DecodeError(f"unrecognised log line: {line[:120]!r}")
    return kind, decode(kind, line)


def to_datadog_event(record: LogRecord, service: str, hostname: str) -> Dict[str, Any]:
    """JSON event accepted by the Datadog agent logs API (and Vector's datadog_agent source)"""
    return {
        "message": encode(record),
        "service": service,
        "ddsource": "dynamo",
        "hostname": hostname,
        "status": "INFO",
        "ddtags": "kube_namespace:test",
        "timestamp": int(record.timestamp.timestamp() * 1000),
    }
