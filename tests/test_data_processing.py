"""
Unit tests for log readers, batching, partitioning and the sample generator.
"""

import gzip
from datetime import datetime, timezone

import pytest

from access_log_pipeline.data_processing import (
    LogGenerator,
    batch_logs,
    chunkify,
    read_log_lines,
)
from access_log_pipeline.utils import AccessLogRecord, InvalidParameter, MalformedLogLine, parse_log_line


def test_chunkify_is_disjoint_and_complete():
    items = list(range(10))
    chunks = chunkify(items, 3)
    assert chunks == [[0, 1, 2, 3], [4, 5, 6], [7, 8, 9]]
    assert [x for chunk in chunks for x in chunk] == items


def test_chunkify_more_partitions_than_items():
    assert chunkify([1, 2], 5) == [[1], [2]]
    assert chunkify([], 3) == []


def test_chunkify_rejects_non_positive():
    with pytest.raises(InvalidParameter):
        chunkify([1], 0)


def test_batch_logs():
    batches = list(batch_logs(iter(str(i) for i in range(7)), lines_per_batch=3))
    assert batches == [["0", "1", "2"], ["3", "4", "5"], ["6"]]
    assert list(batch_logs([], 3)) == []
    with pytest.raises(InvalidParameter):
        list(batch_logs(["x"], 0))


def test_read_log_lines_plain_and_gzip(tmp_path):
    content = "line one\nline two\r\nline three"
    plain = tmp_path / "access.log"
    plain.write_text(content, encoding="utf-8")
    packed = tmp_path / "access.log.gz"
    with gzip.open(packed, "wt", encoding="utf-8") as fh:
        fh.write(content)

    expected = ["line one", "line two", "line three"]
    assert list(read_log_lines(str(plain))) == expected
    assert list(read_log_lines(str(packed))) == expected


def test_read_log_lines_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        list(read_log_lines(str(tmp_path / "missing.log")))


def test_generator_lines_parse():
    gen = LogGenerator(seed=7, start=datetime(2020, 5, 1, tzinfo=timezone.utc))
    lines = list(gen.generate(200))
    assert len(lines) == 200
    assert all(isinstance(parse_log_line(line), AccessLogRecord) for line in lines)


def test_generator_is_reproducible():
    start = datetime(2020, 5, 1, tzinfo=timezone.utc)
    a = list(LogGenerator(seed=1, start=start).generate(50))
    b = list(LogGenerator(seed=1, start=start).generate(50))
    assert a == b


def test_generator_malformed_rate():
    gen = LogGenerator(seed=3, malformed_rate=1.0)
    assert all(isinstance(parse_log_line(line), MalformedLogLine) for line in gen.generate(20))
