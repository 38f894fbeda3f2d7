# File processing pipeline for PaparazziUAV log file pairs
# Queues .log/.data pairs, runs schema detection, parsing and validation, and tracks task status

import asyncio
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import structlog

from ppz_logalyzer.libs.errors import LogalyzerError, SchemaError
from ppz_logalyzer.libs.schema import PaparazziSchema
from ppz_logalyzer.libs.schema_manager import (
    ParsedLogData,
    SchemaManager,
    default_data_path,
)

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


class ProcessingStatus(Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SCHEMA_ERROR = "schema_error"
    VALIDATION_ERROR = "validation_error"

    @property
    def is_terminal(self) -> bool:
        return self not in (ProcessingStatus.QUEUED, ProcessingStatus.PROCESSING)


@dataclass
class ProcessingTask:
    id: uuid.UUID
    log_file_path: Path
    data_file_path: Optional[Path]
    status: ProcessingStatus
    created_at: datetime
    schema_hash: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    progress: float = 0.0


@dataclass
class ProcessingResult:
    task_id: uuid.UUID
    status: ProcessingStatus
    parsed_data: Optional[ParsedLogData] = None
    schema_used: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    processing_time_ms: int = 0
    records_processed: int = 0


def validate_parsed_data(data: ParsedLogData, schema: PaparazziSchema) -> List[str]:
    """Check parsed messages against the catalog; returns warnings, never raises.

    Unknown message types produce one warning per occurrence, as does every
    declared field missing from a message instance. Extra fields are allowed.
    """
    warnings = []
    for message in data.messages:
        if message.message_name not in schema:
            warnings.append(f"Unknown message type: {message.message_name}")

    for message in data.messages:
        definition = schema.get(message.message_name)
        if definition is None:
            continue
        for field_def in definition.fields:
            if field_def.name not in message.fields:
                warnings.append(f"Missing field '{field_def.name}' in message '{message.message_name}'")
    return warnings


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class FileProcessor:
    """FIFO queue of processing tasks; one task is processed at a time per instance."""

    def __init__(self, schema_manager: Optional[SchemaManager] = None):
        self.schema_manager = schema_manager or SchemaManager()
        self._queue: List[ProcessingTask] = []
        self._queue_lock = asyncio.Lock()
        self._processing_lock = asyncio.Lock()

    async def queue_file_pair(self, log_path: PathLike, data_path: Optional[PathLike] = None) -> uuid.UUID:
        """Add a .log/.data pair to the queue and return the new task id."""
        log_path = Path(log_path)
        if not log_path.exists():
            raise FileNotFoundError(f"Log file does not exist: {log_path}")
        if data_path is not None:
            data_path = Path(data_path)
            if not data_path.exists():
                raise FileNotFoundError(f"Data file does not exist: {data_path}")

        task = ProcessingTask(
            id=uuid.uuid4(),
            log_file_path=log_path,
            data_file_path=data_path,
            status=ProcessingStatus.QUEUED,
            created_at=_now(),
        )
        async with self._queue_lock:
            self._queue.append(task)
        logger.info("Queued file processing task", task_id=str(task.id), log_path=str(log_path))
        return task.id

    async def process_next(self) -> Optional[ProcessingResult]:
        """Process the oldest queued task. Returns None when nothing is queued."""
        async with self._processing_lock:
            async with self._queue_lock:
                task = next((t for t in self._queue if t.status is ProcessingStatus.QUEUED), None)
                if task is None:
                    return None
                task.status = ProcessingStatus.PROCESSING
                task.started_at = _now()

            start = time.monotonic()
            try:
                result = await self._process_file_task(task)
            except Exception as e:
                logger.error("File processing task failed", task_id=str(task.id), error=str(e), exc_info=True)
                result = ProcessingResult(
                    task_id=task.id,
                    status=ProcessingStatus.FAILED,
                    schema_used=task.schema_hash,
                    errors=[str(e)],
                    processing_time_ms=_elapsed_ms(start),
                )

            async with self._queue_lock:
                task.status = result.status
                task.completed_at = _now()
                task.progress = 1.0
                if result.schema_used:
                    task.schema_hash = result.schema_used
                if result.errors:
                    task.error_message = "; ".join(result.errors)
            logger.info(
                "Finished file processing task",
                task_id=str(task.id),
                status=result.status.value,
                records=result.records_processed,
            )
            return result

    async def process_all(self) -> List[ProcessingResult]:
        """Drain the queue in FIFO order."""
        results = []
        while True:
            result = await self.process_next()
            if result is None:
                return results
            results.append(result)

    async def _process_file_task(self, task: ProcessingTask) -> ProcessingResult:
        start = time.monotonic()
        logger.info("Processing file task", task_id=str(task.id))

        # Step 1: detect schema
        detection = await self.schema_manager.detect_schema_from_log(task.log_file_path)
        task.schema_hash = detection.schema_hash
        try:
            schema = detection.require()
        except SchemaError as e:
            logger.warning("No schema detected", log_path=str(task.log_file_path))
            return ProcessingResult(
                task_id=task.id,
                status=ProcessingStatus.SCHEMA_ERROR,
                schema_used=detection.schema_hash,
                warnings=detection.warnings,
                errors=[str(e)],
                processing_time_ms=_elapsed_ms(start),
            )

        # Step 2: parse the pair with the detected schema
        data_path = task.data_file_path or default_data_path(task.log_file_path)

        def report_progress(fraction: float):
            task.progress = round(fraction, 4)

        try:
            parsed = await self.schema_manager.parse_log_file_with_data(
                task.log_file_path, data_path, schema=schema, progress=report_progress
            )
        except (OSError, LogalyzerError) as e:
            logger.error("Failed to parse log file", task_id=str(task.id), error=str(e))
            return ProcessingResult(
                task_id=task.id,
                status=ProcessingStatus.FAILED,
                schema_used=detection.schema_hash,
                warnings=detection.warnings,
                errors=[f"Parse error: {e}"],
                processing_time_ms=_elapsed_ms(start),
            )

        # Step 3: validate against the catalog
        validation = validate_parsed_data(parsed, schema)
        status = ProcessingStatus.VALIDATION_ERROR if validation else ProcessingStatus.COMPLETED
        if validation:
            logger.warning("Validation warnings", task_id=str(task.id), count=len(validation))

        elapsed = _elapsed_ms(start)
        parsed = replace(
            parsed, statistics=replace(parsed.statistics, warnings=len(validation), processing_time_ms=elapsed)
        )
        return ProcessingResult(
            task_id=task.id,
            status=status,
            parsed_data=parsed,
            schema_used=detection.schema_hash,
            warnings=detection.warnings + validation,
            processing_time_ms=elapsed,
            records_processed=len(parsed.messages),
        )

    async def get_task(self, task_id: uuid.UUID) -> Optional[ProcessingTask]:
        """Snapshot of one task, or None."""
        async with self._queue_lock:
            for task in self._queue:
                if task.id == task_id:
                    return replace(task)
        return None

    async def get_queue_status(self) -> List[ProcessingTask]:
        async with self._queue_lock:
            return [replace(task) for task in self._queue]

    async def cancel_task(self, task_id: uuid.UUID) -> bool:
        """Remove a task that has not started yet."""
        async with self._queue_lock:
            for index, task in enumerate(self._queue):
                if task.id == task_id and task.status is ProcessingStatus.QUEUED:
                    del self._queue[index]
                    logger.info("Cancelled queued task", task_id=str(task_id))
                    return True
        return False

    async def cleanup_completed_tasks(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Drop terminal tasks completed before ``now - max_age``; returns how many were removed.

        A task completed exactly at the cutoff is kept.
        """
        cutoff = (now or _now()) - max_age

        def keep(task: ProcessingTask) -> bool:
            if not task.status.is_terminal or task.completed_at is None:
                return True
            return task.completed_at >= cutoff

        async with self._queue_lock:
            before = len(self._queue)
            self._queue = [task for task in self._queue if keep(task)]
            removed = before - len(self._queue)
        if removed:
            logger.info("Cleaned up completed tasks", removed=removed)
        return removed
