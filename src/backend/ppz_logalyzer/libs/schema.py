# Schema model for PaparazziUAV logs
# Message/field catalog and aircraft identity, plus the markup scanner that builds them

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

import structlog

from ppz_logalyzer.libs.errors import FieldTypeError
from ppz_logalyzer.libs.field_values import STRING_TYPE, FieldType

logger = structlog.get_logger(__name__)

_MESSAGE_PATTERN = re.compile(r"<message\b([^>]*?)(?:/>|>(.*?)</message\s*>)", re.DOTALL)
_FIELD_PATTERN = re.compile(r"<field\b([^>]*?)/?>", re.DOTALL)
_MSG_CLASS_PATTERN = re.compile(r"<msg_class\b([^>]*)>(.*?)</msg_class\s*>", re.DOTALL)


def extract_attribute(element: str, attr_name: str) -> Optional[str]:
    """Return the value of ``attr_name="..."`` inside ``element``, or None."""
    match = re.search(r'(?<![\w-]){}="([^"]*)"'.format(re.escape(attr_name)), element)
    return match.group(1) if match else None


@dataclass(frozen=True)
class AircraftInfo:
    ac_id: int
    name: str
    flight_plan: Optional[str] = None
    airframe: Optional[str] = None
    firmware: Optional[str] = None


@dataclass(frozen=True)
class LogConfiguration:
    """Configuration extracted from a .log header; derived once per file."""
    time_of_day: float
    data_file: str
    aircraft: AircraftInfo
    paparazzi_version: Optional[str] = None
    build_version: Optional[str] = None


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: FieldType
    unit: Optional[str] = None


@dataclass(frozen=True)
class MessageDefinition:
    """One message type; field order is the positional order on the wire."""
    id: int
    name: str
    fields: Tuple[FieldDefinition, ...] = ()

    def field(self, name: str) -> Optional[FieldDefinition]:
        for definition in self.fields:
            if definition.name == name:
                return definition
        return None

    @property
    def field_names(self) -> List[str]:
        return [definition.name for definition in self.fields]


@dataclass(frozen=True)
class PaparazziSchema:
    """Message catalog for one aircraft configuration. Read-only once built."""
    aircraft: Optional[AircraftInfo] = None
    messages: Mapping[str, MessageDefinition] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "messages", MappingProxyType(dict(self.messages)))
        object.__setattr__(
            self, "_by_id", MappingProxyType({m.id: m for m in reversed(list(self.messages.values()))})
        )

    def get(self, name: str) -> Optional[MessageDefinition]:
        return self.messages.get(name)

    def get_by_id(self, message_id: int) -> Optional[MessageDefinition]:
        return self._by_id.get(message_id)

    def __contains__(self, name: str) -> bool:
        return name in self.messages

    def __len__(self) -> int:
        return len(self.messages)

    def catalog_key(self) -> FrozenSet[MessageDefinition]:
        """Hashable identity of the message catalog, independent of insertion order."""
        return frozenset(self.messages.values())


def _catalog_sections(text: str, msg_class: Optional[str]) -> Iterator[str]:
    if msg_class is None:
        yield text
        return
    classes = [(extract_attribute(attrs, "name"), body) for attrs, body in _MSG_CLASS_PATTERN.findall(text)]
    selected = [body for name, body in classes if name == msg_class]
    if selected:
        yield from selected
    else:
        yield text


def _parse_fields(body: str, message_name: str, warnings: List[str]) -> Tuple[FieldDefinition, ...]:
    fields = []
    for attrs in _FIELD_PATTERN.findall(body or ""):
        name = extract_attribute(attrs, "name")
        if not name:
            warnings.append(f"Field without name in message '{message_name}'")
            continue
        type_name = extract_attribute(attrs, "type") or "string"
        try:
            field_type = FieldType.parse(type_name)
        except FieldTypeError as e:
            warnings.append(f"{e} in {message_name}.{name}, treating as string")
            field_type = STRING_TYPE
        fields.append(FieldDefinition(name=name, type=field_type, unit=extract_attribute(attrs, "unit")))
    return tuple(fields)


def parse_message_catalog(
    text: str, msg_class: Optional[str] = None
) -> Tuple[Dict[str, MessageDefinition], List[str]]:
    """Scan ``<message>``/``<field>`` markup into message definitions.

    Works on the ``<protocol>`` section embedded in a .log header as well as on a
    standalone messages.xml. When ``msg_class`` is given and the markup has a
    matching ``<msg_class>`` block only that block is read. Returns the definitions
    keyed by name and a list of warnings for skipped or coerced entries.
    """
    messages: Dict[str, MessageDefinition] = {}
    warnings: List[str] = []
    for section in _catalog_sections(text, msg_class):
        for attrs, body in _MESSAGE_PATTERN.findall(section):
            name = extract_attribute(attrs, "name")
            raw_id = extract_attribute(attrs, "id")
            if not name:
                warnings.append("Message without name skipped")
                continue
            if raw_id is None or not (raw_id.strip().isascii() and raw_id.strip().isdecimal()):
                warnings.append(f"Message '{name}' has no numeric id, skipped")
                continue
            if name in messages:
                warnings.append(f"Duplicate message '{name}' ignored")
                continue
            messages[name] = MessageDefinition(
                id=int(raw_id), name=name, fields=_parse_fields(body, name, warnings)
            )
    if warnings:
        logger.warning("Message catalog issues", count=len(warnings))
    return messages, warnings
