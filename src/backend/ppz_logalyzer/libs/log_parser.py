# PaparazziUAV log parsing
# Header (.log) configuration extraction and line-by-line telemetry (.data) decoding

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from ppz_logalyzer.libs.errors import ConfigParseError, FieldDecodeError, LineParseError
from ppz_logalyzer.libs.field_values import STRING_TYPE, FieldValue, decode_value
from ppz_logalyzer.libs.schema import (
    AircraftInfo,
    LogConfiguration,
    MessageDefinition,
    PaparazziSchema,
    extract_attribute,
)

logger = structlog.get_logger(__name__)

VERSION_MARKER = "paparazzi_version"
BUILD_MARKER = "build_version"

# In-stream annotations found on non-message lines of a .data file
ANNOTATION_PATTERN = re.compile(r"^#?\s*(AIRCRAFT|VERSION):\s*(.+?)\s*$")


def _is_ascii_number(text: str) -> bool:
    text = text.strip()
    return text.isascii() and text.isdecimal()


def _find_element(text: str, tag: str) -> str:
    match = re.search(r"<{}\b".format(tag), text)
    if match is None:
        raise ConfigParseError(f"No <{tag}> element found in log file")
    end = text.find(">", match.start())
    if end == -1:
        raise ConfigParseError(f"Malformed <{tag}> element")
    return text[match.start():end + 1]


def _find_marker(text: str, marker: str) -> Optional[str]:
    """Value following ``marker`` on the first line that carries it, e.g. a comment."""
    for line in text.splitlines():
        start = line.find(marker)
        if start == -1:
            continue
        rest = line[start + len(marker):]
        if not rest.startswith((" ", "=", ":")):
            continue
        value = rest.lstrip(" =:").strip()
        if value.endswith("-->"):
            value = value[:-3].strip()
        return value.strip('"') or None
    return None


def parse_log_configuration(log_content: str) -> LogConfiguration:
    """Extract aircraft identity, versions and data-file linkage from a .log header."""
    config_element = _find_element(log_content, "configuration")

    raw_time = extract_attribute(config_element, "time_of_day")
    if raw_time is None:
        raise ConfigParseError("Attribute 'time_of_day' not found in <configuration>")
    try:
        time_of_day = float(raw_time)
    except ValueError:
        raise ConfigParseError(f"Invalid time_of_day format: {raw_time!r}")

    data_file = extract_attribute(config_element, "data_file") or ""

    aircraft_element = _find_element(log_content, "aircraft")
    raw_ac_id = extract_attribute(aircraft_element, "ac_id")
    if raw_ac_id is None:
        raise ConfigParseError("Attribute 'ac_id' not found in <aircraft>")
    if not _is_ascii_number(raw_ac_id):
        raise ConfigParseError(f"Invalid ac_id format: {raw_ac_id!r}")
    ac_id = int(raw_ac_id)

    firmware = None
    if re.search(r"<firmware\b", log_content):
        firmware = extract_attribute(_find_element(log_content, "firmware"), "name")

    aircraft = AircraftInfo(
        ac_id=ac_id,
        name=extract_attribute(aircraft_element, "name") or f"Aircraft_{ac_id}",
        flight_plan=extract_attribute(aircraft_element, "flight_plan"),
        airframe=extract_attribute(aircraft_element, "airframe"),
        firmware=firmware,
    )

    return LogConfiguration(
        time_of_day=time_of_day,
        data_file=data_file,
        aircraft=aircraft,
        paparazzi_version=_find_marker(log_content, VERSION_MARKER),
        build_version=_find_marker(log_content, BUILD_MARKER),
    )


@dataclass(frozen=True)
class TelemetryMessage:
    """One decoded line of a .data file. Never mutated after creation."""
    timestamp: float
    sender_id: int
    message_id: Optional[int]
    message_name: str
    fields: Dict[str, FieldValue] = field(default_factory=dict)
    line_number: int = 0

    def values(self) -> Dict[str, object]:
        return {name: value.to_python() for name, value in self.fields.items()}


ParsedMessage = TelemetryMessage


class LineDialect(Enum):
    NAMED = "named"
    POSITIONAL = "positional"
    AUTO = "auto"


@dataclass
class LineParseOutcome:
    """Accumulated result of feeding many lines through a TelemetryLineParser."""
    messages: List[TelemetryMessage] = field(default_factory=list)
    parse_errors: int = 0
    errors: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    lines_seen: int = 0


def parse_annotation(line: str) -> Optional[Tuple[str, str]]:
    match = ANNOTATION_PATTERN.match(line.strip())
    if match is None:
        return None
    return match.group(1), match.group(2)


class TelemetryLineParser:
    """Decode .data lines into TelemetryMessage values using a resolved schema.

    Line format: ``[(]timestamp sender_id MESSAGE field...[)]`` where MESSAGE is
    either a numeric message id or a message name. Field tokens are ``name=value``
    in the named dialect or bare values in the positional (compact) dialect.

    With ``keep_unknown`` a message *name* missing from the catalog still yields a
    message (no id, string fields ``field_<n>``) so that validation can report it.
    """

    def __init__(
        self,
        schema: PaparazziSchema,
        dialect: LineDialect = LineDialect.AUTO,
        keep_unknown: bool = False,
        max_errors_kept: int = 100,
    ):
        self.schema = schema
        self.dialect = dialect
        self.keep_unknown = keep_unknown
        self.max_errors_kept = max_errors_kept

    def parse_line(self, line: str, line_number: int = 0) -> Optional[TelemetryMessage]:
        """Return a message, None for a line that is not a message, or raise LineParseError."""
        content = line.strip()
        if not content or content.startswith("#"):
            return None
        if content.startswith("(") and content.endswith(")"):
            content = content[1:-1]

        parts = content.split()
        if len(parts) < 3:
            return None

        try:
            timestamp = float(parts[0])
        except ValueError:
            raise LineParseError(f"Invalid timestamp: {parts[0]}", line_number)

        try:
            sender_id = int(parts[1], 10)
        except ValueError:
            raise LineParseError(f"Invalid sender_id: {parts[1]}", line_number)
        if not 0 <= sender_id <= 255:
            raise LineParseError(f"sender_id out of range: {sender_id}", line_number)

        identifier = parts[2]
        tokens = parts[3:]
        definition = self._resolve(identifier, line_number)

        try:
            if definition is None:
                fields = self._untyped_fields(tokens)
                return TelemetryMessage(timestamp, sender_id, None, identifier, fields, line_number)
            if self._is_named(tokens):
                fields = self._named_fields(tokens, definition)
            else:
                fields = self._positional_fields(tokens, definition)
        except FieldDecodeError as e:
            raise LineParseError(f"{identifier}: {e}", line_number)

        return TelemetryMessage(timestamp, sender_id, definition.id, definition.name, fields, line_number)

    def parse_lines(self, lines: Iterable[str], outcome: Optional[LineParseOutcome] = None) -> LineParseOutcome:
        """Parse the lines of a data file; a bad line is counted and skipped, never fatal.

        Blank and comment lines are skipped, annotation lines feed ``annotations``.
        Any other line that does not yield a message counts as a parse error.
        """
        outcome = outcome or LineParseOutcome()
        for line in lines:
            outcome.lines_seen += 1
            line_number = outcome.lines_seen
            annotation = parse_annotation(line)
            if annotation is not None:
                key, value = annotation
                outcome.annotations[key] = value
                continue
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            try:
                message = self.parse_line(line, line_number)
                if message is None:
                    raise LineParseError("Not a telemetry message: too few fields", line_number)
            except LineParseError as e:
                outcome.parse_errors += 1
                if len(outcome.errors) < self.max_errors_kept:
                    outcome.errors.append(f"line {line_number}: {e}")
                logger.debug("Failed to parse telemetry line", line=line_number, error=str(e))
                continue
            outcome.messages.append(message)
        return outcome

    def _resolve(self, identifier: str, line_number: int) -> Optional[MessageDefinition]:
        if identifier.isdigit():
            # unicode digits such as "²" pass isdigit() but are not base-10 ids
            if not (identifier.isascii() and identifier.isdecimal()):
                raise LineParseError(f"Invalid message ID: {identifier}", line_number)
            definition = self.schema.get_by_id(int(identifier))
            if definition is None:
                raise LineParseError(f"Unknown message ID: {identifier}", line_number)
            return definition
        definition = self.schema.get(identifier)
        if definition is None and not self.keep_unknown:
            raise LineParseError(f"Unknown message name: {identifier}", line_number)
        return definition

    def _is_named(self, tokens: List[str]) -> bool:
        if self.dialect is LineDialect.AUTO:
            return bool(tokens) and all("=" in token for token in tokens)
        return self.dialect is LineDialect.NAMED

    @staticmethod
    def _named_fields(tokens: List[str], definition: MessageDefinition) -> Dict[str, FieldValue]:
        fields = {}
        for token in tokens:
            name, sep, raw = token.partition("=")
            if not sep:
                continue
            field_def = definition.field(name)
            if field_def is not None:
                fields[name] = decode_value(raw, field_def.type)
        return fields

    @staticmethod
    def _positional_fields(tokens: List[str], definition: MessageDefinition) -> Dict[str, FieldValue]:
        fields = {}
        for index, raw in enumerate(tokens):
            if index < len(definition.fields):
                field_def = definition.fields[index]
                fields[field_def.name] = decode_value(raw, field_def.type)
            else:
                fields[f"field_{index}"] = FieldValue(STRING_TYPE, raw)
        return fields

    @staticmethod
    def _untyped_fields(tokens: List[str]) -> Dict[str, FieldValue]:
        return {f"field_{index}": FieldValue(STRING_TYPE, raw) for index, raw in enumerate(tokens)}
