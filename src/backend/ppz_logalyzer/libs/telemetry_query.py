# Telemetry queries over parsed log data
# Filtering, per-type summaries, numeric aggregates and event search on in-memory messages

import operator
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from ppz_logalyzer.libs.errors import QueryError
from ppz_logalyzer.libs.log_parser import TelemetryMessage
from ppz_logalyzer.libs.schema_manager import ParsedLogData

COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}

AGGREGATES: Dict[str, Callable[[np.ndarray], float]] = {
    "max": np.max,
    "min": np.min,
    "avg": np.mean,
    "sum": np.sum,
    "count": np.size,
}


def message_to_dict(message: TelemetryMessage) -> Dict[str, Any]:
    return {
        "message_type": message.message_name,
        "message_id": message.message_id,
        "sender_id": message.sender_id,
        "timestamp": message.timestamp,
        "data": message.values(),
    }


def _in_window(message: TelemetryMessage, start_time: Optional[float], end_time: Optional[float]) -> bool:
    if start_time is not None and message.timestamp < start_time:
        return False
    if end_time is not None and message.timestamp > end_time:
        return False
    return True


def query_messages(
    data: ParsedLogData,
    message_type: Optional[str] = None,
    start_time: Optional[float] = None,
    end_time: Optional[float] = None,
    limit: int = 100,
) -> List[TelemetryMessage]:
    """Messages by type and optional time range, ordered by timestamp."""
    selected = [
        m for m in data.messages
        if (message_type is None or m.message_name == message_type) and _in_window(m, start_time, end_time)
    ]
    selected.sort(key=lambda m: m.timestamp)
    return selected[:limit]


def summarize_message_types(data: ParsedLogData) -> Dict[str, Dict[str, Any]]:
    """Count and field names for every message type in the log."""
    summary: Dict[str, Dict[str, Any]] = {}
    for message in data.messages:
        entry = summary.setdefault(message.message_name, {"count": 0, "fields": set()})
        entry["count"] += 1
        entry["fields"].update(message.fields.keys())
    for entry in summary.values():
        entry["fields"] = sorted(entry["fields"])
    return summary


def _numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def aggregate_field(
    data: ParsedLogData,
    message_type: str,
    field: str,
    op: str = "max",
    start_time: Optional[float] = None,
    end_time: Optional[float] = None,
) -> Dict[str, Any]:
    """Aggregate a numeric field (max, min, avg, sum, count) of one message type."""
    if op not in AGGREGATES:
        raise QueryError(f"Invalid aggregation operator: {op}")
    values = [
        m.fields[field].to_python()
        for m in data.messages
        if m.message_name == message_type and field in m.fields and _in_window(m, start_time, end_time)
    ]
    values = np.array([v for v in values if _numeric(v)], dtype=float)
    if values.size == 0:
        raise QueryError(f"No numeric values found for field '{field}'")
    return {
        "message_type": message_type,
        "field": field,
        "op": op,
        "result": float(AGGREGATES[op](values)),
        "count": int(values.size),
    }


def find_events(
    data: ParsedLogData,
    message_type: str,
    field: str,
    op: str,
    value: Union[int, float, str],
    first: bool = False,
    last: bool = False,
) -> List[TelemetryMessage]:
    """Messages whose field satisfies ``field <op> value``, optionally only the first or last."""
    compare = COMPARISONS.get(op)
    if compare is None:
        raise QueryError(f"Invalid comparison operator: {op}")
    matches = []
    for message in sorted(data.messages, key=lambda m: m.timestamp):
        if message.message_name != message_type or field not in message.fields:
            continue
        current = message.fields[field].to_python()
        try:
            if compare(current, value):
                matches.append(message)
        except TypeError:
            continue
    if first and matches:
        return matches[:1]
    if last and matches:
        return matches[-1:]
    return matches
