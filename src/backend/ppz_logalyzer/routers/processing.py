from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
import uuid

from ppz_logalyzer.config.settings import get_settings
from ppz_logalyzer.libs.file_processor import FileProcessor, ProcessingResult, ProcessingTask
from ppz_logalyzer.libs.schema_manager import SchemaManager

router = APIRouter()

# Initialize services
schema_manager = SchemaManager()
file_processor = FileProcessor(schema_manager=schema_manager)

# Results of processed tasks, kept for the telemetry endpoints
processing_results: Dict[uuid.UUID, ProcessingResult] = {}


# Pydantic models for REST endpoints
class QueueRequest(BaseModel):
    log_path: str
    data_path: Optional[str] = None


class QueueResponse(BaseModel):
    task_id: str
    status: str


class TaskResponse(BaseModel):
    task_id: str
    log_file_path: str
    data_file_path: Optional[str]
    status: str
    progress: float
    schema_hash: Optional[str]
    created_at: str
    started_at: Optional[str]
    completed_at: Optional[str]
    error_message: Optional[str]
    records_processed: Optional[int] = None


class ProcessingResultResponse(BaseModel):
    task_id: str
    status: str
    schema_used: Optional[str]
    warnings: List[str]
    errors: List[str]
    processing_time_ms: int
    records_processed: int
    metadata: Optional[Dict[str, Any]] = None
    statistics: Optional[Dict[str, Any]] = None


class SchemaDetectionResponse(BaseModel):
    schema_found: bool
    confidence: float
    source: str
    warnings: List[str]
    schema_hash: Optional[str]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def task_to_response(task: ProcessingTask) -> TaskResponse:
    result = processing_results.get(task.id)
    return TaskResponse(
        task_id=str(task.id),
        log_file_path=str(task.log_file_path),
        data_file_path=str(task.data_file_path) if task.data_file_path else None,
        status=task.status.value,
        progress=task.progress,
        schema_hash=task.schema_hash,
        created_at=task.created_at.isoformat(),
        started_at=_iso(task.started_at),
        completed_at=_iso(task.completed_at),
        error_message=task.error_message,
        records_processed=result.records_processed if result else None,
    )


def result_to_response(result: ProcessingResult) -> ProcessingResultResponse:
    metadata = statistics = None
    if result.parsed_data is not None:
        meta = result.parsed_data.metadata
        stats = result.parsed_data.statistics
        metadata = {
            "aircraft_name": meta.aircraft_name,
            "aircraft_id": meta.aircraft_id,
            "flight_time": _iso(meta.flight_time),
            "duration_seconds": meta.duration_seconds,
            "paparazzi_version": meta.paparazzi_version,
            "build_version": meta.build_version,
            "airframe_config": meta.airframe_config,
            "flight_plan": meta.flight_plan,
            "data_file": meta.data_file,
        }
        statistics = {
            "total_messages": stats.total_messages,
            "message_type_counts": dict(stats.message_type_counts),
            "unique_senders": stats.unique_senders,
            "unique_message_types": stats.unique_message_types,
            "time_span": stats.time_span,
            "message_rate": stats.message_rate,
            "bytes_processed": stats.bytes_processed,
            "parse_errors": stats.parse_errors,
            "warnings": stats.warnings,
        }
    return ProcessingResultResponse(
        task_id=str(result.task_id),
        status=result.status.value,
        schema_used=result.schema_used,
        warnings=result.warnings,
        errors=result.errors,
        processing_time_ms=result.processing_time_ms,
        records_processed=result.records_processed,
        metadata=metadata,
        statistics=statistics,
    )


def retain_result(result: ProcessingResult):
    """Keep a result for the telemetry routes, dropping the oldest beyond the configured cap."""
    processing_results.pop(result.task_id, None)
    processing_results[result.task_id] = result
    limit = max(1, get_settings().max_retained_results)
    while len(processing_results) > limit:
        del processing_results[next(iter(processing_results))]


def parse_task_id(task_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(task_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid task id: {task_id}")


@router.post("/processing/queue", response_model=QueueResponse)
async def queue_file_pair(request: QueueRequest):
    """Queue a .log/.data pair already present in storage."""
    try:
        task_id = await file_processor.queue_file_pair(request.log_path, request.data_path)
    except FileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return QueueResponse(task_id=str(task_id), status="queued")


@router.post("/processing/process-next", response_model=Optional[ProcessingResultResponse])
async def process_next_queued():
    """Process the oldest queued task; returns null when the queue is empty."""
    result = await file_processor.process_next()
    if result is None:
        return None
    retain_result(result)
    return result_to_response(result)


@router.get("/processing/status/{task_id}", response_model=TaskResponse)
async def get_processing_status(task_id: str):
    task = await file_processor.get_task(parse_task_id(task_id))
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task_to_response(task)


@router.get("/processing/queue", response_model=List[TaskResponse])
async def get_queue_status():
    return [task_to_response(task) for task in await file_processor.get_queue_status()]


@router.delete("/processing/tasks/{task_id}")
async def cancel_task(task_id: str):
    """Remove a task that is still queued."""
    if not await file_processor.cancel_task(parse_task_id(task_id)):
        raise HTTPException(status_code=409, detail="Task not found or already started")
    return {"task_id": task_id, "status": "cancelled"}


@router.post("/processing/cleanup")
async def cleanup_tasks(max_age_hours: Optional[float] = Query(None, ge=0)):
    """Remove finished tasks older than max_age_hours (defaults to the configured age)."""
    hours = max_age_hours if max_age_hours is not None else get_settings().task_max_age_hours
    removed = await file_processor.cleanup_completed_tasks(timedelta(hours=hours))
    remaining = {task.id for task in await file_processor.get_queue_status()}
    for task_id in list(processing_results):
        if task_id not in remaining:
            del processing_results[task_id]
    return {"removed": removed, "remaining": len(remaining)}


@router.get("/schema/detect", response_model=SchemaDetectionResponse)
async def detect_schema(log_path: str):
    """Detect the schema of a .log header without parsing its data file."""
    detection = await schema_manager.detect_schema(log_path)
    return SchemaDetectionResponse(**detection.to_summary())
