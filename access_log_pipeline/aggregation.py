"""
aggregation.py

Mergeable reducers over AccessLogRecord collections.

Every operator is built from three pieces:

- a partition-local reducer (``*_partial``) that runs over one partition,
- an associative, commutative merge over partials (``merge_*``),
- a finalizer that turns the merged partial into the result value.

The single-sequence operators below are the same composition applied to one
partition, so processing the collection whole or as disjoint partitions merged
in any order gives identical results. core_logic.py runs the partial reducers
as Ray tasks and reuses the merge and finalize functions on the driver.
"""

from collections import Counter
from dataclasses import dataclass
from functools import reduce
from operator import attrgetter
import enum
import math
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Set, Tuple, Union

from access_log_pipeline.utils import AccessLogRecord, EmptyInput, InvalidParameter

KeyFunc = Callable[[AccessLogRecord], Hashable]

# attrgetter objects pickle cleanly, so they can be shipped to Ray workers.
by_ip_address = attrgetter("ip_address")
by_endpoint = attrgetter("endpoint")
by_response_code = attrgetter("response_code")
by_date_time_hour = attrgetter("date_time_hour")


class _NoExclusion(enum.Enum):
    TOKEN = 0


# Default for `exclude`; enum members keep their identity across pickling.
NO_EXCLUSION = _NoExclusion.TOKEN


def check_non_negative(name: str, value: Optional[int]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidParameter(f"{name} must be non-negative, got {value}")


def _natural(key: Any) -> str:
    """Tie-break form of a key: its natural string rendering."""
    return str(key)


# ---------------------------------------------------------------------------
# Content size statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentSizeStats:
    """
    Sum/count/min/max of content sizes. Forms a commutative monoid under merge().

    The identity element has count 0, minimum +inf and maximum -inf; any real
    partial replaces those bounds on merge.
    """

    total: int
    count: int
    minimum: Union[int, float]
    maximum: Union[int, float]

    @classmethod
    def identity(cls) -> "ContentSizeStats":
        return cls(total=0, count=0, minimum=math.inf, maximum=-math.inf)

    @classmethod
    def of(cls, size: int) -> "ContentSizeStats":
        return cls(total=size, count=1, minimum=size, maximum=size)

    def merge(self, other: "ContentSizeStats") -> "ContentSizeStats":
        return ContentSizeStats(
            total=self.total + other.total,
            count=self.count + other.count,
            minimum=min(self.minimum, other.minimum),
            maximum=max(self.maximum, other.maximum),
        )

    @property
    def average(self) -> int:
        """Integer average (floor division), as access-log reports print it."""
        if self.count == 0:
            raise EmptyInput("average of zero content sizes is undefined")
        return self.total // self.count

    @property
    def mean(self) -> float:
        if self.count == 0:
            raise EmptyInput("mean of zero content sizes is undefined")
        return self.total / self.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sum": self.total,
            "count": self.count,
            "min": self.minimum,
            "max": self.maximum,
        }


def content_size_stats_partial(records: Iterable[AccessLogRecord]) -> ContentSizeStats:
    """Partition-local stats; the identity element for an empty partition."""
    stats = ContentSizeStats.identity()
    for rec in records:
        stats = stats.merge(ContentSizeStats.of(rec.content_size))
    return stats


def merge_content_size_stats(partials: Iterable[ContentSizeStats]) -> ContentSizeStats:
    return reduce(ContentSizeStats.merge, partials, ContentSizeStats.identity())


def finalize_content_size_stats(stats: ContentSizeStats) -> ContentSizeStats:
    """
    Reject the identity element.

    Raises:
        EmptyInput: if no record contributed to the stats.
    """
    if stats.count == 0:
        raise EmptyInput("content size statistics need at least one record")
    return stats


def content_size_stats(records: Iterable[AccessLogRecord]) -> ContentSizeStats:
    """
    Compute sum, count, min and max of content sizes.

    Args:
        records: Records to summarize.

    Returns:
        ContentSizeStats for the whole input.

    Raises:
        EmptyInput: if records is empty.
    """
    return finalize_content_size_stats(
        merge_content_size_stats([content_size_stats_partial(records)])
    )


# ---------------------------------------------------------------------------
# Keyed counts
# ---------------------------------------------------------------------------


def count_by_key_partial(records: Iterable[AccessLogRecord], key_of: KeyFunc) -> Counter:
    """Partition-local count per key."""
    return Counter(key_of(rec) for rec in records)


def merge_counts(partials: Iterable[Dict[Hashable, int]]) -> Counter:
    """Merge per-key counts by summing counts of equal keys."""
    merged: Counter = Counter()
    for partial in partials:
        merged.update(partial)
    return merged


def finalize_count_by_key(
    counts: Dict[Hashable, int], limit: Optional[int] = None
) -> Dict[Hashable, int]:
    """
    Turn merged counts into the result mapping.

    When more than ``limit`` keys exist, the first ``limit`` keys in ascending
    natural-string order are kept.
    """
    check_non_negative("limit", limit)
    if limit is None or len(counts) <= limit:
        return dict(counts)
    kept = sorted(counts, key=_natural)[:limit]
    return {key: counts[key] for key in kept}


def count_by_key(
    records: Iterable[AccessLogRecord], key_of: KeyFunc, limit: Optional[int] = None
) -> Dict[Hashable, int]:
    """
    Count records per grouping key.

    Args:
        records: Records to count.
        key_of: Projection from a record to its grouping key.
        limit: Optional cap on the number of distinct keys returned, applied
            after all counts are merged.

    Returns:
        Dict mapping key -> count.

    Raises:
        InvalidParameter: if limit is negative.
    """
    check_non_negative("limit", limit)
    return finalize_count_by_key(
        merge_counts([count_by_key_partial(records, key_of)]), limit
    )


def finalize_threshold(
    counts: Dict[Hashable, int], min_count: int, limit: Optional[int] = None
) -> Set[Hashable]:
    """Keys of fully merged counts whose count is strictly greater than min_count."""
    check_non_negative("min_count", min_count)
    check_non_negative("limit", limit)
    keys = [key for key, count in counts.items() if count > min_count]
    if limit is not None and len(keys) > limit:
        keys = sorted(keys, key=_natural)[:limit]
    return set(keys)


def filter_groups_above_threshold(
    records: Iterable[AccessLogRecord],
    key_of: KeyFunc,
    min_count: int,
    limit: Optional[int] = None,
) -> Set[Hashable]:
    """
    Keys that occur strictly more than ``min_count`` times.

    Inclusion is always decided on the complete merged count. Filtering
    partials before the merge would drop keys spread across partitions.

    Raises:
        InvalidParameter: if min_count or limit is negative.
    """
    check_non_negative("min_count", min_count)
    check_non_negative("limit", limit)
    return finalize_threshold(
        merge_counts([count_by_key_partial(records, key_of)]), min_count, limit
    )


def finalize_top_n(counts: Dict[Hashable, int], n: int) -> List[Tuple[Hashable, int]]:
    """Rank merged counts: count descending, then key ascending by string form."""
    check_non_negative("n", n)
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], _natural(kv[0])))
    return ranked[:n]


def top_n_by_count(
    records: Iterable[AccessLogRecord], key_of: KeyFunc, n: int
) -> List[Tuple[Hashable, int]]:
    """
    The n most frequent keys with their counts.

    Ties on count are broken by the key's string form, ascending, so the result
    does not depend on partitioning or processing order.

    Returns:
        List of (key, count) of length min(n, number of distinct keys).

    Raises:
        InvalidParameter: if n is negative.
    """
    check_non_negative("n", n)
    return finalize_top_n(merge_counts([count_by_key_partial(records, key_of)]), n)


# ---------------------------------------------------------------------------
# Two-key grouping
# ---------------------------------------------------------------------------


def count_by_key_pair_partial(
    records: Iterable[AccessLogRecord],
    primary_key_of: KeyFunc,
    secondary_key_of: KeyFunc,
    exclude: Any = NO_EXCLUSION,
) -> Counter:
    """Partition-local counts per (primary, secondary) pair, excluded primaries dropped."""
    counts: Counter = Counter()
    for rec in records:
        primary = primary_key_of(rec)
        if exclude is not NO_EXCLUSION and primary == exclude:
            continue
        counts[(primary, secondary_key_of(rec))] += 1
    return counts


def finalize_grouped_counts(
    counts: Dict[Tuple[Hashable, Hashable], int], sort_by_secondary: bool = True
) -> List[Tuple[Hashable, Hashable, int]]:
    """Flatten pair counts into (primary, secondary, count) rows in a total order."""
    first, second = (1, 0) if sort_by_secondary else (0, 1)
    rows = [(primary, secondary, count) for (primary, secondary), count in counts.items()]
    return sorted(rows, key=lambda row: (_natural(row[first]), _natural(row[second])))


def two_key_grouped_counts(
    records: Iterable[AccessLogRecord],
    primary_key_of: KeyFunc,
    secondary_key_of: KeyFunc,
    exclude: Any = NO_EXCLUSION,
    sort_by_secondary: bool = True,
) -> List[Tuple[Hashable, Hashable, int]]:
    """
    Count records per (primary, secondary) key pair.

    Args:
        records: Records to group.
        primary_key_of: Projection for the primary key (e.g. by_ip_address).
        secondary_key_of: Projection for the secondary key (e.g. by_date_time_hour).
        exclude: Records whose primary key equals this value are dropped
            before grouping. Any value, None included, can be excluded;
            NO_EXCLUSION keeps every record.
        sort_by_secondary: Order rows by secondary then primary key (default),
            otherwise by primary then secondary key.

    Returns:
        List of (primary, secondary, count) rows.
    """
    return finalize_grouped_counts(
        merge_counts(
            [count_by_key_pair_partial(records, primary_key_of, secondary_key_of, exclude)]
        ),
        sort_by_secondary,
    )
