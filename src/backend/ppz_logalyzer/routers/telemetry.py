from fastapi import APIRouter, Query, HTTPException
from typing import Optional, Union

from ppz_logalyzer.libs.errors import QueryError
from ppz_logalyzer.libs.schema_manager import ParsedLogData
from ppz_logalyzer.libs.telemetry_query import (
    aggregate_field,
    find_events,
    message_to_dict,
    query_messages,
    summarize_message_types,
)
from ppz_logalyzer.routers.processing import parse_task_id, processing_results

router = APIRouter()


def _parsed_data(task_id: str) -> ParsedLogData:
    result = processing_results.get(parse_task_id(task_id))
    if result is None or result.parsed_data is None:
        raise HTTPException(status_code=404, detail="No parsed data for this task")
    return result.parsed_data


def _query_value(value: str) -> Union[float, str]:
    """Numeric query values compare against numeric fields, anything else as text."""
    try:
        return float(value)
    except ValueError:
        return value


@router.get("/telemetry")
def get_telemetry(
    task_id: str,
    message_type: Optional[str] = None,
    start_time: Optional[float] = None,
    end_time: Optional[float] = None,
    limit: int = Query(100, ge=1, le=1000)
):
    """
    Query telemetry messages by task, message_type, and optional time range.
    """
    data = _parsed_data(task_id)
    return [
        message_to_dict(message)
        for message in query_messages(data, message_type, start_time, end_time, limit)
    ]


@router.get("/telemetry/aggregate")
def aggregate_telemetry(
    task_id: str,
    message_type: str,
    field: str,
    op: str = Query("max", enum=["max", "min", "avg", "sum", "count"]),
    start_time: Optional[float] = None,
    end_time: Optional[float] = None
):
    """
    Aggregate a numeric field for a given message type (max, min, avg, sum, count).
    """
    data = _parsed_data(task_id)
    try:
        result = aggregate_field(data, message_type, field, op, start_time, end_time)
    except QueryError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"task_id": task_id, **result}


@router.get("/telemetry/summary")
def telemetry_summary(task_id: str):
    """
    Return available message types, field names, and count for each type for a given task.
    """
    return summarize_message_types(_parsed_data(task_id))


@router.get("/telemetry/events")
def telemetry_events(
    task_id: str,
    message_type: str,
    field: str,
    op: str = Query("==", enum=["==", "!=", ">", "<", ">=", "<="]),
    value: str = Query(...),
    first: bool = False,
    last: bool = False
):
    """
    Find messages where a field matches a condition. Optionally return only the first or last match.
    """
    data = _parsed_data(task_id)
    try:
        matches = find_events(data, message_type, field, op, _query_value(value), first=first, last=last)
    except QueryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    results = [message_to_dict(message) for message in matches]
    if (first or last) and results:
        return results[0]
    return results
