"""
core_logic.py

Contains the Ray remote functions and the driver-side LogAnalyzer:

- parse_logs_remote: stateless parser that runs in parallel over batch slices.
- content_size_stats_remote / count_by_key_remote / count_by_key_pair_remote:
  partition-local reducers; their partials are merged on the driver.
- LogAnalyzer: holds the loaded partitions as Ray object refs (the snapshot)
  and answers queries by fanning out reducers and merging their partials.
"""

from typing import Any, Dict, Hashable, Iterable, List, Optional, Set, Tuple
import logging

import ray

from access_log_pipeline import aggregation
from access_log_pipeline.aggregation import ContentSizeStats, KeyFunc
from access_log_pipeline.data_processing import batch_logs, chunkify
from access_log_pipeline.utils import (
    AccessLogRecord,
    DEFAULT_CONFIG,
    InvalidParameter,
    MalformedLogLine,
    parse_log_line,
)

logger = logging.getLogger("core_logic")


@ray.remote
def parse_logs_remote(
    raw_batch: List[str], start: Optional[int] = None, end: Optional[int] = None
) -> Tuple[List[AccessLogRecord], List[MalformedLogLine]]:
    """
    Stateless remote function that parses raw log lines into records.

    Args:
        raw_batch: List of raw log line strings (the entire batch may be passed as an object ref).
        start: Start index in raw_batch to parse (inclusive).
        end: End index in raw_batch to parse (exclusive). If None, parse to end.

    Returns:
        (records, malformed): parsed records in input order, and one
        MalformedLogLine per rejected line.
    """
    sl = raw_batch if start is None and end is None else raw_batch[start:end]
    records = []
    malformed = []
    for line in sl:
        obj = parse_log_line(line)
        if isinstance(obj, MalformedLogLine):
            malformed.append(obj)
        else:
            records.append(obj)
    return records, malformed


@ray.remote
def content_size_stats_remote(partition: List[AccessLogRecord]) -> ContentSizeStats:
    return aggregation.content_size_stats_partial(partition)


@ray.remote
def count_by_key_remote(partition: List[AccessLogRecord], key_of: KeyFunc) -> Dict[Hashable, int]:
    return aggregation.count_by_key_partial(partition, key_of)


@ray.remote
def count_by_key_pair_remote(
    partition: List[AccessLogRecord],
    primary_key_of: KeyFunc,
    secondary_key_of: KeyFunc,
    exclude: Any = aggregation.NO_EXCLUSION,
) -> Dict[Tuple[Hashable, Hashable], int]:
    return aggregation.count_by_key_pair_partial(
        partition, primary_key_of, secondary_key_of, exclude
    )


class LogAnalyzer:
    """
    Read-only query facade over a snapshot of partitioned records.

    The snapshot is a tuple of Ray object refs, one per partition. It is
    written once at construction and never modified, so any number of queries
    (from any number of threads) may run against the same analyzer.

    Usage:
        analyzer, malformed = LogAnalyzer.from_lines(lines, num_partitions=4)
        stats = analyzer.content_size_stats()
        top = analyzer.top_n_by_count(by_endpoint, 10)
    """

    def __init__(self, partition_refs: Iterable[ray.ObjectRef]) -> None:
        """
        Args:
            partition_refs: Object refs, each resolving to a list of AccessLogRecord.
        """
        self._partitions: Tuple[ray.ObjectRef, ...] = tuple(partition_refs)

    @classmethod
    def from_records(
        cls,
        records: List[AccessLogRecord],
        num_partitions: int = DEFAULT_CONFIG["ray"]["num_partitions"],
    ) -> "LogAnalyzer":
        """Split already-parsed records into partitions and put them in the object store."""
        return cls(ray.put(chunk) for chunk in chunkify(records, num_partitions))

    @classmethod
    def from_lines(
        cls,
        lines: Iterable[str],
        num_partitions: int = DEFAULT_CONFIG["ray"]["num_partitions"],
        lines_per_batch: int = DEFAULT_CONFIG["ray"]["lines_per_batch"],
    ) -> Tuple["LogAnalyzer", List[MalformedLogLine]]:
        """
        Parse raw lines in parallel and build a snapshot from the results.

        Each batch of lines is parsed by one parse_logs_remote task. Parsed
        records keep input order before being split into partitions.

        Args:
            lines: Raw log lines.
            num_partitions: Number of partitions of the resulting snapshot.
            lines_per_batch: Lines handed to each parse task.

        Returns:
            (analyzer, malformed): the analyzer and every rejected line, in
            input order. What to do with rejected lines is the caller's policy.
        """
        if num_partitions < 1:
            raise InvalidParameter(f"num_partitions must be positive, got {num_partitions}")
        if lines_per_batch < 1:
            raise InvalidParameter(f"lines_per_batch must be positive, got {lines_per_batch}")
        refs = [
            parse_logs_remote.remote(batch)
            for batch in batch_logs(lines, lines_per_batch)
        ]
        records: List[AccessLogRecord] = []
        malformed: List[MalformedLogLine] = []
        for parsed, rejected in ray.get(refs):
            records.extend(parsed)
            malformed.extend(rejected)
        logger.info(
            "Parsed %d records (%d malformed lines) in %d batches",
            len(records),
            len(malformed),
            len(refs),
        )
        return cls.from_records(records, num_partitions), malformed

    @property
    def num_partitions(self) -> int:
        return len(self._partitions)

    def _gather(self, remote_fn, *args) -> list:
        return ray.get([remote_fn.remote(ref, *args) for ref in self._partitions])

    def content_size_stats(self) -> ContentSizeStats:
        """
        Sum/count/min/max of content sizes over the whole snapshot.

        Raises:
            EmptyInput: if the snapshot holds no records.
        """
        partials = self._gather(content_size_stats_remote)
        return aggregation.finalize_content_size_stats(
            aggregation.merge_content_size_stats(partials)
        )

    def _merged_counts(self, key_of: KeyFunc) -> Dict[Hashable, int]:
        return aggregation.merge_counts(self._gather(count_by_key_remote, key_of))

    def count_by_key(self, key_of: KeyFunc, limit: Optional[int] = None) -> Dict[Hashable, int]:
        aggregation.check_non_negative("limit", limit)
        return aggregation.finalize_count_by_key(self._merged_counts(key_of), limit)

    def filter_groups_above_threshold(
        self, key_of: KeyFunc, min_count: int, limit: Optional[int] = None
    ) -> Set[Hashable]:
        aggregation.check_non_negative("min_count", min_count)
        aggregation.check_non_negative("limit", limit)
        return aggregation.finalize_threshold(self._merged_counts(key_of), min_count, limit)

    def top_n_by_count(self, key_of: KeyFunc, n: int) -> List[Tuple[Hashable, int]]:
        aggregation.check_non_negative("n", n)
        return aggregation.finalize_top_n(self._merged_counts(key_of), n)

    def two_key_grouped_counts(
        self,
        primary_key_of: KeyFunc,
        secondary_key_of: KeyFunc,
        exclude: Any = aggregation.NO_EXCLUSION,
        sort_by_secondary: bool = True,
    ) -> List[Tuple[Hashable, Hashable, int]]:
        partials = self._gather(
            count_by_key_pair_remote, primary_key_of, secondary_key_of, exclude
        )
        return aggregation.finalize_grouped_counts(
            aggregation.merge_counts(partials), sort_by_secondary
        )
