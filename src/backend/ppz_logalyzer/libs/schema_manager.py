# SchemaManager for PPZ Logalyzer
# Resolves the message catalog for a .log/.data pair, parses the pair and derives statistics

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

import structlog

from ppz_logalyzer.config.settings import Settings, get_settings
from ppz_logalyzer.libs.errors import LogalyzerError, SchemaError
from ppz_logalyzer.libs.log_parser import (
    LineParseOutcome,
    TelemetryLineParser,
    TelemetryMessage,
    parse_log_configuration,
)
from ppz_logalyzer.libs.schema import (
    LogConfiguration,
    MessageDefinition,
    PaparazziSchema,
    parse_message_catalog,
)

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]
ProgressCallback = Callable[[float], None]

CONFIDENCE_HEADER = 1.0
CONFIDENCE_REGISTERED = 0.8
CONFIDENCE_DEFAULT = 0.5


@dataclass
class CacheEntry:
    """Write-once cache slot with an optional expiry."""
    value: Any
    created_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))


@dataclass
class SchemaDetectionResult:
    schema: Optional[PaparazziSchema]
    schema_hash: Optional[str]
    confidence: float
    source: str
    warnings: List[str] = field(default_factory=list)
    configuration: Optional[LogConfiguration] = None

    @property
    def schema_found(self) -> bool:
        return self.schema is not None

    def require(self) -> PaparazziSchema:
        if self.schema is None:
            raise SchemaError("No schema could be detected or loaded")
        return self.schema

    def to_summary(self) -> Dict[str, Any]:
        return {
            "schema_found": self.schema_found,
            "confidence": self.confidence,
            "source": self.source,
            "warnings": list(self.warnings),
            "schema_hash": self.schema_hash,
        }


@dataclass(frozen=True)
class LogFileMetadata:
    aircraft_name: Optional[str] = None
    aircraft_id: Optional[int] = None
    flight_time: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    paparazzi_version: Optional[str] = None
    build_version: Optional[str] = None
    airframe_config: Optional[str] = None
    flight_plan: Optional[str] = None
    data_file: Optional[str] = None


@dataclass(frozen=True)
class LogStatistics:
    total_messages: int
    message_type_counts: Dict[str, int]
    unique_senders: int
    unique_message_types: int
    time_span: float
    message_rate: float
    bytes_processed: int = 0
    parse_errors: int = 0
    warnings: int = 0
    processing_time_ms: int = 0


ProcessingStatistics = LogStatistics


@dataclass(frozen=True)
class ParsedLogData:
    configuration: LogConfiguration
    metadata: LogFileMetadata
    messages: Tuple[TelemetryMessage, ...]
    statistics: LogStatistics
    line_errors: Tuple[str, ...] = ()


def compute_statistics(
    messages: Tuple[TelemetryMessage, ...], bytes_processed: int = 0, parse_errors: int = 0
) -> LogStatistics:
    """Aggregate counts, time span and message rate for a list of messages."""
    total = len(messages)
    type_counts: Dict[str, int] = {}
    for message in messages:
        type_counts[message.message_name] = type_counts.get(message.message_name, 0) + 1

    time_span = messages[-1].timestamp - messages[0].timestamp if total > 1 else 0.0
    if time_span < 0:
        logger.warning("Telemetry timestamps are out of order", time_span=time_span)
    message_rate = total / time_span if time_span > 0 else 0.0

    return LogStatistics(
        total_messages=total,
        message_type_counts=type_counts,
        unique_senders=len({m.sender_id for m in messages}),
        unique_message_types=len(type_counts),
        time_span=time_span,
        message_rate=message_rate,
        bytes_processed=bytes_processed,
        parse_errors=parse_errors,
    )


def default_data_path(log_path: PathLike) -> Path:
    """The .data file sitting next to a .log header."""
    return Path(log_path).with_suffix(".data")


def _flight_time(time_of_day: float) -> Optional[datetime]:
    if time_of_day <= 0:
        return None
    try:
        return datetime.fromtimestamp(time_of_day, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


class SchemaManager:
    """Owns schema resolution, caching and parsing of .log/.data pairs.

    Schemas derived from headers are cached by schema hash and never replaced;
    parsed results are cached by ``"<log>|<data>"`` with a TTL checked on read.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._schemas: Dict[str, CacheEntry] = {}
        self._parsed: Dict[Tuple[str, str, FrozenSet[MessageDefinition]], CacheEntry] = {}
        self._registered: Dict[str, Dict[str, MessageDefinition]] = {}
        self._default_catalog: Optional[Dict[str, MessageDefinition]] = None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Load the default catalog configured in settings, if any."""
        if self.settings.messages_xml:
            await self.load_catalog(self.settings.messages_xml)

    @staticmethod
    def get_schema_hash(configuration: LogConfiguration) -> str:
        version = configuration.paparazzi_version or "unknown"
        if not version.startswith("v"):
            version = f"v{version}"
        return f"{version}-ac{configuration.aircraft.ac_id}"

    async def load_configuration(self, log_path: PathLike) -> Tuple[LogConfiguration, str]:
        """Read a .log header and parse its configuration."""
        try:
            content = await asyncio.to_thread(Path(log_path).read_text, encoding="utf-8", errors="replace")
        except OSError as e:
            raise OSError(f"Failed to read log file {log_path}: {e}") from e
        return parse_log_configuration(content), content

    async def load_catalog(self, path: PathLike, schema_hash: Optional[str] = None) -> List[str]:
        """Load a messages.xml catalog, for one schema hash or as the default fallback."""
        text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8", errors="replace")
        messages, warnings = parse_message_catalog(text, self.settings.message_class)
        if schema_hash is None:
            self._default_catalog = messages
        else:
            self.register_schema(schema_hash, messages)
        logger.info("Loaded message catalog", path=str(path), messages=len(messages), schema_hash=schema_hash)
        return warnings

    def register_schema(self, schema_hash: str, messages: Union[PaparazziSchema, Dict[str, MessageDefinition]]):
        """Make a catalog available to headers whose hash is ``schema_hash``."""
        if isinstance(messages, PaparazziSchema):
            messages = dict(messages.messages)
        self._registered[schema_hash] = dict(messages)

    async def detect_schema_from_log(self, log_path: PathLike) -> SchemaDetectionResult:
        """Resolve the schema for a header. Header and I/O errors propagate."""
        configuration, content = await self.load_configuration(log_path)
        return await self._resolve_schema(configuration, content)

    async def detect_schema(self, log_path: PathLike) -> SchemaDetectionResult:
        """Lightweight detection for callers that only need schema identity; never raises."""
        try:
            return await self.detect_schema_from_log(log_path)
        except (LogalyzerError, OSError) as e:
            logger.warning("Schema detection failed", log_path=str(log_path), error=str(e))
            return SchemaDetectionResult(
                schema=None,
                schema_hash=None,
                confidence=0.0,
                source="Failed to parse",
                warnings=[f"Parse error: {e}"],
            )

    async def _resolve_schema(self, configuration: LogConfiguration, content: str) -> SchemaDetectionResult:
        schema_hash = self.get_schema_hash(configuration)
        aircraft = configuration.aircraft

        async with self._lock:
            cached = self._schemas.get(schema_hash)
        if cached is not None:
            return SchemaDetectionResult(cached.value, schema_hash, CONFIDENCE_HEADER, "cache", [], configuration)

        embedded, warnings = parse_message_catalog(content, self.settings.message_class)
        if embedded:
            schema = PaparazziSchema(aircraft=aircraft, messages=embedded)
            async with self._lock:
                # first writer wins; cached schemas are never replaced
                entry = self._schemas.setdefault(
                    schema_hash, CacheEntry(schema, datetime.now(timezone.utc))
                )
            return SchemaDetectionResult(entry.value, schema_hash, CONFIDENCE_HEADER, "header", warnings, configuration)

        registered = self._registered.get(schema_hash)
        if registered is not None:
            schema = PaparazziSchema(aircraft=aircraft, messages=registered)
            return SchemaDetectionResult(
                schema, schema_hash, CONFIDENCE_REGISTERED, f"catalog:{schema_hash}", warnings, configuration
            )

        if self._default_catalog is not None:
            schema = PaparazziSchema(aircraft=aircraft, messages=self._default_catalog)
            return SchemaDetectionResult(
                schema, schema_hash, CONFIDENCE_DEFAULT, "default catalog", warnings, configuration
            )

        warnings.append(f"No message catalog found for schema {schema_hash}")
        logger.warning("No schema resolved", schema_hash=schema_hash)
        return SchemaDetectionResult(None, schema_hash, 0.0, "none", warnings, configuration)

    async def parse_log_file(self, log_path: PathLike) -> ParsedLogData:
        """Parse a header together with the .data file next to it."""
        data_path = default_data_path(log_path)
        if not data_path.exists():
            raise FileNotFoundError(f"Data file not found: {data_path}")
        return await self.parse_log_file_with_data(log_path, data_path)

    async def parse_log_file_with_data(
        self,
        log_path: PathLike,
        data_path: PathLike,
        schema: Optional[PaparazziSchema] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ParsedLogData:
        """Parse a .log header and stream its .data file through the line parser.

        Only I/O and header errors raise; bad telemetry lines are counted in
        ``statistics.parse_errors`` and skipped. Cached results are keyed by the
        file pair and the catalog used to decode it.
        """
        configuration, content = await self.load_configuration(log_path)
        if schema is None:
            detection = await self._resolve_schema(configuration, content)
            schema = detection.schema or PaparazziSchema(aircraft=configuration.aircraft)

        cache_key = (str(log_path), str(data_path), schema.catalog_key())
        async with self._lock:
            entry = self._parsed.get(cache_key)
            if entry is not None and entry.is_expired():
                del self._parsed[cache_key]
                entry = None
        if entry is not None:
            logger.debug("Parsed log cache hit", log_path=str(log_path), data_path=str(data_path))
            if progress:
                progress(1.0)
            return entry.value

        logger.info("Parsing PaparazziUAV log file", log_path=str(log_path), data_path=str(data_path))

        try:
            raw = await asyncio.to_thread(Path(data_path).read_bytes)
        except OSError as e:
            raise OSError(f"Failed to read data file {data_path}: {e}") from e
        lines = raw.decode("utf-8", errors="replace").splitlines()

        parser = TelemetryLineParser(schema, keep_unknown=True, max_errors_kept=self.settings.max_line_errors)
        outcome = LineParseOutcome()
        interval = max(1, self.settings.progress_interval)
        for start in range(0, len(lines), interval):
            parser.parse_lines(lines[start:start + interval], outcome)
            if progress:
                progress(min(1.0, (start + interval) / len(lines)))
            await asyncio.sleep(0)

        messages = tuple(outcome.messages)
        statistics = compute_statistics(messages, len(raw), outcome.parse_errors)
        parsed = ParsedLogData(
            configuration=configuration,
            metadata=self._build_metadata(configuration, messages, outcome.annotations),
            messages=messages,
            statistics=statistics,
            line_errors=tuple(outcome.errors),
        )
        logger.info(
            "Parsed telemetry messages",
            data_path=str(data_path),
            messages=statistics.total_messages,
            parse_errors=statistics.parse_errors,
        )

        ttl = self.settings.parsed_cache_ttl_seconds
        if ttl > 0:
            now = datetime.now(timezone.utc)
            async with self._lock:
                self._parsed.setdefault(cache_key, CacheEntry(parsed, now, now + timedelta(seconds=ttl)))
        return parsed

    def get_log_statistics(self, parsed: ParsedLogData) -> LogStatistics:
        return compute_statistics(
            parsed.messages, parsed.statistics.bytes_processed, parsed.statistics.parse_errors
        )

    async def clear_cache(self):
        async with self._lock:
            self._parsed.clear()
            self._schemas.clear()

    @staticmethod
    def _build_metadata(
        configuration: LogConfiguration, messages: Tuple[TelemetryMessage, ...], annotations: Dict[str, str]
    ) -> LogFileMetadata:
        aircraft = configuration.aircraft
        duration = messages[-1].timestamp - messages[0].timestamp if messages else None
        return LogFileMetadata(
            aircraft_name=annotations.get("AIRCRAFT", aircraft.name),
            aircraft_id=aircraft.ac_id,
            flight_time=_flight_time(configuration.time_of_day),
            duration_seconds=duration,
            paparazzi_version=annotations.get("VERSION", configuration.paparazzi_version),
            build_version=configuration.build_version,
            airframe_config=aircraft.airframe,
            flight_plan=aircraft.flight_plan,
            data_file=configuration.data_file or None,
        )
