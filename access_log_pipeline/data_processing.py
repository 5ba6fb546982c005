"""
data_processing.py

Log source readers, batching helpers and a simulated access-log generator.

Produces log lines in the Apache common log format:
  10.0.0.1 - - [21/Jul/2009:02:48:13 -0700] "GET /index.html HTTP/1.1" 200 2326

Functions:
- read_log_lines: yields raw lines from a (possibly gzipped) log file.
- batch_logs: yields batches (lists) of lines for the parse tasks.
- chunkify: splits a sequence into disjoint partitions.
- LogGenerator: yields log lines with configurable distributions.
"""

from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar
import gzip
import random
from datetime import datetime, timedelta, timezone
from itertools import islice
import logging

from access_log_pipeline.utils import InvalidParameter

logger = logging.getLogger("data_processing")

T = TypeVar("T")

_MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def read_log_lines(path: str) -> Iterator[str]:
    """
    Yield the lines of a log file without their line terminators.

    Args:
        path: Path to a plain-text or ``.gz`` compressed log file.

    Raises:
        FileNotFoundError: if the path does not exist.
    """
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "rt", encoding="utf-8", errors="replace") as fh:
        for line in fh:
            yield line.rstrip("\r\n")


def batch_logs(lines: Iterable[str], lines_per_batch: int = 10000) -> Iterator[List[str]]:
    """
    Group lines into batches.

    Args:
        lines: Any iterable of raw lines.
        lines_per_batch: Number of lines per batch (the last one may be shorter).

    Yields:
        Lists of raw log lines.
    """
    if lines_per_batch < 1:
        raise InvalidParameter(f"lines_per_batch must be positive, got {lines_per_batch}")
    it = iter(lines)
    while True:
        batch = list(islice(it, lines_per_batch))
        if not batch:
            return
        yield batch


def chunkify(items: Sequence[T], num_partitions: int) -> List[List[T]]:
    """
    Split items into at most ``num_partitions`` contiguous, disjoint chunks
    whose sizes differ by at most one. Empty chunks are not returned.
    """
    if num_partitions < 1:
        raise InvalidParameter(f"num_partitions must be positive, got {num_partitions}")
    num_items = len(items)
    per_chunk, remainder = divmod(num_items, num_partitions)

    result = []
    start = 0
    for idx in range(num_partitions):
        end = start + per_chunk + (1 if idx < remainder else 0)
        if start < end:
            result.append(list(items[start:end]))
        start = end
    return result


class LogGenerator:
    """
    Simple probabilistic access-log generator to simulate traffic.

    Supports configurable client addresses and endpoints, a server error rate,
    and an optional rate of deliberately malformed lines.
    """

    def __init__(
        self,
        *,
        ip_addresses: Optional[list[str]] = None,
        endpoints: Optional[list[str]] = None,
        seed: Optional[int] = None,
        error_rate: float = 0.02,
        malformed_rate: float = 0.0,
        start: Optional[datetime] = None,
    ) -> None:
        """
        Initialize generator.

        Args:
            ip_addresses: Client addresses to draw from.
            endpoints: Endpoints to request; "{id}" is replaced by a number.
            seed: Random seed for reproducible results.
            error_rate: Probability of generating a server error (5xx).
            malformed_rate: Probability of emitting a line that does not parse.
            start: Timestamp of the first line (defaults to now, UTC).
        """
        self._random = random.Random(seed)
        self.ip_addresses = ip_addresses or [
            "10.0.0.1",
            "10.0.0.2",
            "192.168.1.15",
            "172.16.4.20",
            "192.33.215.254",
        ]
        self.endpoints = endpoints or [
            "/",
            "/index.html",
            "/api/v1/items",
            "/api/v1/items/{id}",
            "/search?q=logs",
            "/login",
        ]
        self.error_rate = error_rate
        self.malformed_rate = malformed_rate
        start = start or datetime.now(timezone.utc).replace(microsecond=0)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._clock = start

    def _next_timestamp(self) -> str:
        self._clock += timedelta(seconds=self._random.randint(0, 90))
        ts = self._clock
        return (
            f"{ts.day:02d}/{_MONTH_NAMES[ts.month - 1]}/{ts.year}"
            f":{ts:%H:%M:%S} {ts:%z}"
        )

    def _random_endpoint(self) -> str:
        """Return endpoint pattern, possibly with id substituted."""
        ep = self._random.choice(self.endpoints)
        if "{id}" in ep:
            return ep.replace("{id}", str(self._random.randint(1, 10000)))
        return ep

    def _random_status(self) -> int:
        """Return HTTP status."""
        r = self._random.random()
        if r < self.error_rate:
            return self._random.choice([500, 502, 503, 504])
        # client errors are less common
        if r < self.error_rate + 0.05:
            return self._random.choice([301, 304, 401, 403, 404])
        return 200

    def _random_size(self, status: int) -> str:
        if status in (304, 204):
            return "-"
        return str(self._random.randint(0, 50000))

    def generate(self, count: int = 1000) -> Iterator[str]:
        """
        Generate `count` log lines.

        Args:
            count: Number of lines to produce.

        Yields:
            Raw log line strings.
        """
        for _ in range(count):
            if self._random.random() < self.malformed_rate:
                yield f"garbage line {self._random.randint(0, 10 ** 6)}"
                continue
            ip = self._random.choice(self.ip_addresses)
            ts = self._next_timestamp()
            method = self._random.choice(["GET", "GET", "GET", "POST"])
            endpoint = self._random_endpoint()
            status = self._random_status()
            size = self._random_size(status)
            yield f'{ip} - - [{ts}] "{method} {endpoint} HTTP/1.1" {status} {size}'
