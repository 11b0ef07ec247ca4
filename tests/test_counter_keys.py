from __future__ import annotations

import pytest

from buffering.errors import InvalidCounterKeyError
from buffering.flusher import parse_entries
from buffering.types import CounterKey, IncrementOperation


def test_counter_key_survives_separators_in_ids():
    key = CounterKey("tenant:42:user", "stats.daily:cu")

    assert CounterKey.decode(key.encode()) == key


def test_counter_key_encoding_is_stable():
    assert CounterKey("u1", "stats.totalCU").encode() == '["u1","stats.totalCU"]'


@pytest.mark.parametrize("raw", ["u1:stats.totalCU", '["u1"]', '{"a": 1}', '["u1", 3]'])
def test_decode_rejects_foreign_formats(raw):
    with pytest.raises(InvalidCounterKeyError):
        CounterKey.decode(raw)


def test_parse_entries_drops_zero_totals_and_sorts():
    entries = {
        CounterKey("u2", "counter").encode(): "4",
        CounterKey("u1", "stats.totalCU").encode(): "-7",
        CounterKey("u1", "noop").encode(): "0",
    }

    operations, skipped = parse_entries(entries)

    assert skipped == 0
    assert operations == [
        IncrementOperation("u1", "stats.totalCU", -7),
        IncrementOperation("u2", "counter", 4),
    ]


def test_parse_entries_counts_undecodable_entries():
    entries = {
        "legacy:field": "3",
        CounterKey("u1", "counter").encode(): "not-a-number",
        CounterKey("u1", "ok").encode(): "2",
    }

    operations, skipped = parse_entries(entries)

    assert skipped == 2
    assert operations == [IncrementOperation("u1", "ok", 2)]
