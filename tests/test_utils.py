"""
Unit tests for the access-log line parser and the record type.
"""

import dataclasses
import pickle
from datetime import datetime, timedelta, timezone

import pytest

from access_log_pipeline.utils import (
    AccessLogRecord,
    LogAnalysisError,
    MalformedLogLine,
    hour_bucket,
    parse_log_line,
    parse_timestamp,
)

LINE = (
    '64.242.88.10 - - [07/Mar/2004:16:05:49 -0800] '
    '"GET /twiki/bin/edit/Main/Double_bounce_sender?topicparent=Main.ConfigurationVariables HTTP/1.1" '
    "401 12846"
)


def test_parse_common_log_line():
    """A well-formed common-log line yields a fully populated record."""
    rec = parse_log_line(LINE)
    assert isinstance(rec, AccessLogRecord)
    assert rec.ip_address == "64.242.88.10"
    assert rec.client_identd == "-"
    assert rec.user_id == "-"
    assert rec.method == "GET"
    assert rec.endpoint == (
        "/twiki/bin/edit/Main/Double_bounce_sender?topicparent=Main.ConfigurationVariables"
    )
    assert rec.protocol == "HTTP/1.1"
    assert rec.response_code == 401
    assert rec.content_size == 12846
    assert rec.date_time == datetime(
        2004, 3, 7, 16, 5, 49, tzinfo=timezone(-timedelta(hours=8))
    )


def test_date_time_hour_is_utc_hour():
    """The hour bucket is the UTC hour of the timestamp."""
    rec = parse_log_line(LINE)
    # 16:05 at -0800 is 00:05 UTC on the next day.
    assert rec.date_time_hour == "2004-03-08 00:00"
    assert hour_bucket(rec.date_time) == rec.date_time_hour


def test_same_instant_in_different_offsets_shares_hour():
    a = parse_timestamp("01/Jan/2020:10:15:00 +0000")
    b = parse_timestamp("01/Jan/2020:12:15:00 +0200")
    assert hour_bucket(a) == hour_bucket(b) == "2020-01-01 10:00"


def test_dash_content_size_maps_to_zero():
    rec = parse_log_line('10.0.0.1 - frank [10/Oct/2000:13:55:36 -0700] "GET /a.gif HTTP/1.0" 304 -')
    assert rec.content_size == 0
    assert rec.user_id == "frank"


def test_combined_format_trailer_is_accepted():
    line = (
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 2326 '
        '"http://example.com/start.html" "Mozilla/4.08 [en] (Win98; I ;Nav)"'
    )
    rec = parse_log_line(line)
    assert isinstance(rec, AccessLogRecord)
    assert rec.endpoint == "/a"


def test_trailing_newline_is_ignored():
    assert isinstance(parse_log_line(LINE + "\n"), AccessLogRecord)
    assert isinstance(parse_log_line(LINE + "\r\n"), AccessLogRecord)


def test_invalid_line_returns_malformed_with_raw_text():
    """A non-log line is reported, not raised, and carries the exact text."""
    result = parse_log_line("not a valid log line")
    assert isinstance(result, MalformedLogLine)
    assert isinstance(result, LogAnalysisError)
    assert result.line == "not a valid log line"


@pytest.mark.parametrize(
    "line",
    [
        # missing size token
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200',
        # extra token
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12 extra',
        # non-numeric status
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" OK 12',
        # non-numeric size
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12kb',
        # status out of range
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 700 12',
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 099 12',
        # missing bracket
        '10.0.0.1 - - 10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12',
        # unquoted request
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] GET /a HTTP/1.0 200 12',
        # request with two tokens only
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a" 200 12',
        # impossible date
        '10.0.0.1 - - [31/Feb/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12',
        # unknown month
        '10.0.0.1 - - [10/Foo/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12',
        # double space
        '10.0.0.1  - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12',
        # non-ASCII digits in status and size
        '10.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" \u0662\u0660\u0660 \u0661',
        # non-ASCII digits in the timestamp
        '10.0.0.1 - - [\u0661\u0660/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.0" 200 12',
        # UTC conversion leaves the datetime range
        '1.2.3.4 - - [31/Dec/9999:23:30:00 -0100] "GET /a HTTP/1.1" 200 1',
        '1.2.3.4 - - [01/Jan/0001:00:30:00 +0100] "GET /a HTTP/1.1" 200 1',
        "",
    ],
)
def test_grammar_violations_are_rejected(line):
    result = parse_log_line(line)
    assert isinstance(result, MalformedLogLine)
    assert result.line == line


def test_record_is_immutable():
    rec = parse_log_line(LINE)
    with pytest.raises(dataclasses.FrozenInstanceError):
        rec.response_code = 200


def test_to_dict_is_json_friendly():
    d = parse_log_line(LINE).to_dict()
    assert d["date_time"] == "2004-03-07T16:05:49-08:00"
    assert d["content_size"] == 12846


def test_malformed_line_survives_pickling():
    """Errors travel back from Ray workers, so they must pickle with their line."""
    err = pickle.loads(pickle.dumps(MalformedLogLine("bad line")))
    assert err.line == "bad line"
