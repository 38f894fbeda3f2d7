"""Tests for in-memory telemetry queries."""
import asyncio

import pytest

from ppz_logalyzer.libs.errors import QueryError
from ppz_logalyzer.libs.telemetry_query import (
    aggregate_field,
    find_events,
    message_to_dict,
    query_messages,
    summarize_message_types,
)

from conftest import SAMPLE_DATA


@pytest.fixture
def parsed(schema_manager, write_pair):
    data = SAMPLE_DATA + "14.0 38 ATTITUDE phi=0.4 psi=1.7 theta=0.01\n"
    log_path, data_path = write_pair(data=data)
    return asyncio.run(schema_manager.parse_log_file_with_data(log_path, data_path))


def test_message_to_dict(parsed):
    assert message_to_dict(parsed.messages[1]) == {
        "message_type": "GPS_INT",
        "message_id": 155,
        "sender_id": 38,
        "timestamp": 12.75,
        "data": {"alt": 152300, "fix": 3},
    }


class TestQueryMessages:

    def test_by_type(self, parsed):
        messages = query_messages(parsed, "ATTITUDE")
        assert [m.timestamp for m in messages] == [12.5, 13.25, 14.0]

    def test_time_window(self, parsed):
        messages = query_messages(parsed, start_time=13.0, end_time=13.5)
        assert [m.message_name for m in messages] == ["ALIVE", "ATTITUDE", "INFO_MSG"]

    def test_limit(self, parsed):
        assert len(query_messages(parsed, limit=2)) == 2


def test_summarize_message_types(parsed):
    summary = summarize_message_types(parsed)
    assert summary["ATTITUDE"] == {"count": 3, "fields": ["phi", "psi", "theta"]}
    assert summary["GPS_INT"]["fields"] == ["alt", "fix"]


class TestAggregate:

    @pytest.mark.parametrize("op,expected", [
        ("max", 0.4),
        ("min", 0.1),
        ("sum", 0.7),
        ("count", 3),
    ])
    def test_ops(self, parsed, op, expected):
        result = aggregate_field(parsed, "ATTITUDE", "phi", op)
        assert result["result"] == pytest.approx(expected)
        assert result["count"] == 3

    def test_avg_with_window(self, parsed):
        result = aggregate_field(parsed, "ATTITUDE", "phi", "avg", start_time=13.0)
        assert result["result"] == pytest.approx(0.3)
        assert result["count"] == 2

    def test_invalid_op(self, parsed):
        with pytest.raises(QueryError):
            aggregate_field(parsed, "ATTITUDE", "phi", "median")

    def test_non_numeric_field(self, parsed):
        with pytest.raises(QueryError):
            aggregate_field(parsed, "INFO_MSG", "msg")


class TestFindEvents:

    def test_all_matches(self, parsed):
        matches = find_events(parsed, "ATTITUDE", "psi", ">", 1.55)
        assert [m.timestamp for m in matches] == [13.25, 14.0]

    def test_first_and_last(self, parsed):
        assert find_events(parsed, "ATTITUDE", "psi", ">", 1.55, first=True)[0].timestamp == 13.25
        assert find_events(parsed, "ATTITUDE", "psi", ">", 1.55, last=True)[0].timestamp == 14.0

    def test_no_match(self, parsed):
        assert find_events(parsed, "ATTITUDE", "psi", ">", 10, first=True) == []

    def test_incomparable_values_are_skipped(self, parsed):
        assert find_events(parsed, "INFO_MSG", "msg", ">", 1.0) == []

    def test_invalid_op(self, parsed):
        with pytest.raises(QueryError):
            find_events(parsed, "ATTITUDE", "psi", "~", 1.0)
