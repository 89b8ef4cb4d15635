import json

import pytest

from tallyrank.errors import InvalidEvent, InvalidTableName, InvalidWindow
from tallyrank.utils.buckets import (
    BucketKey,
    bucket_start,
    now_ms,
    parse_retention,
    parse_window,
    serialize_event,
    validate_table_name,
    value_label,
    walk_back,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1s", 1000),
        ("45s", 45_000),
        ("2m", 120_000),
        ("3h", 10_800_000),
        ("4d", 345_600_000),
        (1500, 1500),
        (1500.0, 1500),
    ],
)
def test_parse_window_units(value, expected):
    assert parse_window(value) == expected


@pytest.mark.parametrize("value", [0, -1, -1000, "0s", "5x", "1.5h", "h", "", " 1h", True, 2.5, None])
def test_parse_window_rejects(value):
    with pytest.raises(InvalidWindow):
        parse_window(value)


def test_parse_retention_disabled_values():
    assert parse_retention(None) is None
    assert parse_retention(0) is None
    assert parse_retention(-5) is None
    assert parse_retention("1d") == 86_400_000


def test_bucket_start_properties():
    size = 60_000
    for t in (0, 1, 59_999, 60_000, 123_456_789, 1_700_000_000_123):
        start = bucket_start(t, size)
        assert start <= t
        assert t - start < size
        assert start % size == 0
        assert bucket_start(start, size) == start


def test_bucket_start_defaults_to_now():
    before = now_ms()
    start = bucket_start(None, 1000)
    assert start <= now_ms()
    assert before - start < 1000


def test_walk_back_is_newest_first():
    assert list(walk_back(5000, 1000, 3)) == [5000, 4000, 3000]
    assert list(walk_back(5000, 1000, 0)) == []


def test_bucket_key_round_trip():
    key = BucketKey("tallyrank", "requests", 1_700_000_000_000)
    assert str(key) == "tallyrank:requests:1700000000000"
    assert BucketKey.parse(str(key)) == key
    assert BucketKey.pattern("tallyrank", "requests") == "tallyrank:requests:*"


@pytest.mark.parametrize("raw", ["a:b", "a:b:c:1", "a:b:later"])
def test_bucket_key_parse_rejects(raw):
    with pytest.raises(ValueError):
        BucketKey.parse(raw)


def test_table_name_validation():
    assert validate_table_name("foo-bar_1") == "foo-bar_1"
    for bad in ("foo bar", "foo/bar", "", "foo:bar", "ünïcode"):
        with pytest.raises(InvalidTableName):
            validate_table_name(bad)


def test_serialize_event_strips_time_and_sorts_keys():
    timestamp, member = serialize_event({"time": 1234, "success": True, "identifier": "abc", "skip": None})
    assert timestamp == 1234
    assert member == '{"identifier":"abc","success":true}'

    _, other = serialize_event({"success": True, "identifier": "abc", "time": 9999})
    assert other == member


def test_serialize_event_rejects_non_scalars():
    with pytest.raises(InvalidEvent):
        serialize_event({"tags": ["a", "b"]})
    with pytest.raises(InvalidEvent):
        serialize_event({"time": "yesterday", "identifier": "abc"})


@pytest.mark.parametrize("timestamp", [float("inf"), float("-inf"), float("nan")])
def test_serialize_event_rejects_non_finite_time(timestamp):
    with pytest.raises(InvalidEvent):
        serialize_event({"time": timestamp, "identifier": "abc"})


def test_serialize_event_without_time():
    timestamp, member = serialize_event({"country": "DE", "hits": 2})
    assert timestamp is None
    assert json.loads(member) == {"country": "DE", "hits": 2}


def test_value_label():
    assert value_label(True) == "true"
    assert value_label(False) == "false"
    assert value_label(None) == "null"
    assert value_label(3.0) == "3"
    assert value_label(2.5) == "2.5"
    assert value_label("denied") == "denied"
