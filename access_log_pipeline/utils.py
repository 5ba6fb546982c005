"""
Utilities : types, errors, the access-log parser and config constants.
This module defines the AccessLogRecord dataclass, the error kinds shared by the
pipeline, and the strict line parser used by the parse tasks.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Union
import re
from datetime import datetime, timedelta, timezone
import logging

logger = logging.getLogger("utils")

DEFAULT_CONFIG = {
    "ray": {
        "num_partitions": 4,  # Partitions the snapshot is split into
        "lines_per_batch": 10000,  # Raw lines handed to one parse task
    },
    "queries": {
        "response_code_limit": 100,  # Max distinct response codes reported
        "ip_min_count": 10,  # Report IPs seen strictly more often than this
        "ip_limit": 100,  # Max IPs reported by the threshold query
        "top_n": 10,  # Length of the top endpoint / top IP rankings
        "excluded_ip": "192.33.215.254",  # Dropped from the per-hour breakdown
    },
}


class LogAnalysisError(Exception):
    """Base class for errors raised by the pipeline."""


class MalformedLogLine(LogAnalysisError, ValueError):
    """
    A raw line that does not follow the access-log grammar.

    The parser returns instances of this class instead of raising them, so a
    driver can decide whether one bad line should abort a run.

    Attributes:
        line: The offending raw line, verbatim.
    """

    def __init__(self, line: str) -> None:
        super().__init__(f"Malformed access log line: {line!r}")
        self.line = line

    def __reduce__(self):
        return (self.__class__, (self.line,))


class EmptyInput(LogAnalysisError):
    """A statistic that needs at least one record was asked of zero records."""


class InvalidParameter(LogAnalysisError, ValueError):
    """An operator received a negative n, min_count, limit or partition count."""


@dataclass(frozen=True)
class AccessLogRecord:
    """
    Structured representation of one parsed access-log line.

    Attributes:
        ip_address: Client address or hostname token.
        client_identd: RFC 1413 identity, "-" when unknown.
        user_id: Authenticated user, "-" when unknown.
        date_time: Timezone-aware request timestamp.
        date_time_hour: date_time in UTC truncated to the hour ("YYYY-MM-DD HH:00").
        method: HTTP method from the request line.
        endpoint: Requested path, query string included.
        protocol: Protocol from the request line, e.g. "HTTP/1.1".
        response_code: HTTP status code in [100, 599].
        content_size: Response size in bytes ("-" is stored as 0).
    """

    ip_address: str
    client_identd: str
    user_id: str
    date_time: datetime
    date_time_hour: str
    method: str
    endpoint: str
    protocol: str
    response_code: int
    content_size: int

    def to_dict(self) -> Dict[str, Any]:
        """Return as JSON-serializable dict."""
        d = asdict(self)
        d["date_time"] = self.date_time.isoformat()
        return d


# IP IDENTD USER [TIMESTAMP] "METHOD ENDPOINT PROTOCOL" STATUS SIZE, optionally
# followed by the combined-format "REFERER" "USER-AGENT" pair.
_LOG_RE = re.compile(
    r'^(?P<ip>\S+) (?P<identd>\S+) (?P<user>\S+) \[(?P<ts>[^\]]+)\] '
    r'"(?P<method>\S+) (?P<endpoint>\S+) (?P<protocol>\S+)" '
    r'(?P<status>\d{3}) (?P<size>\d+|-)'
    r'(?: "[^"]*" "[^"]*")?$',
    re.ASCII,
)

_TS_RE = re.compile(
    r"^(?P<day>\d{2})/(?P<month>[A-Za-z]{3})/(?P<year>\d{4})"
    r":(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
    r" (?P<sign>[+\-])(?P<tz_hours>\d{2})(?P<tz_minutes>\d{2})$",
    re.ASCII,
)

# strptime's %b follows the process locale; access logs always use English.
_MONTHS = {
    name: index
    for index, name in enumerate(
        ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
         "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
        start=1,
    )
}

HOUR_FORMAT = "%Y-%m-%d %H:00"


def parse_timestamp(text: str) -> datetime:
    """
    Parse an access-log timestamp such as "21/Jul/2009:02:48:13 -0700".

    Raises:
        ValueError: if the text does not match the format or names no real instant.
    """
    match = _TS_RE.match(text)
    if not match:
        raise ValueError(f"Bad timestamp: {text!r}")
    month = _MONTHS.get(match.group("month").title())
    if month is None:
        raise ValueError(f"Bad month in timestamp: {text!r}")
    offset = timedelta(
        hours=int(match.group("tz_hours")), minutes=int(match.group("tz_minutes"))
    )
    if match.group("sign") == "-":
        offset = -offset
    return datetime(
        int(match.group("year")),
        month,
        int(match.group("day")),
        int(match.group("hour")),
        int(match.group("minute")),
        int(match.group("second")),
        tzinfo=timezone(offset),
    )


def hour_bucket(date_time: datetime) -> str:
    """Truncate a timestamp to its UTC hour, rendered as "YYYY-MM-DD HH:00"."""
    return date_time.astimezone(timezone.utc).strftime(HOUR_FORMAT)


def parse_log_line(line: str) -> Union[AccessLogRecord, MalformedLogLine]:
    """
    Parse one access-log line.

    Args:
        line: Raw log line string. One trailing newline is ignored.

    Returns:
        AccessLogRecord if parsing succeeded, otherwise a MalformedLogLine
        carrying the raw line. Never raises for bad input.
    """
    match = _LOG_RE.match(line.rstrip("\r\n"))
    if not match:
        logger.debug("Failed to parse line: %s", line)
        return MalformedLogLine(line)

    status = int(match.group("status"))
    if not 100 <= status <= 599:
        logger.debug("Status code out of range in line: %s", line)
        return MalformedLogLine(line)

    try:
        date_time = parse_timestamp(match.group("ts"))
        date_time_hour = hour_bucket(date_time)
    except (ValueError, OverflowError) as e:
        logger.debug("Bad timestamp (%s) in line: %s", e, line)
        return MalformedLogLine(line)

    size = match.group("size")
    return AccessLogRecord(
        ip_address=match.group("ip"),
        client_identd=match.group("identd"),
        user_id=match.group("user"),
        date_time=date_time,
        date_time_hour=date_time_hour,
        method=match.group("method"),
        endpoint=match.group("endpoint"),
        protocol=match.group("protocol"),
        response_code=status,
        content_size=0 if size == "-" else int(size),
    )
