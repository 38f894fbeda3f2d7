# Typed field values for PaparazziUAV telemetry
# Converts textual tokens from .data files into typed values according to the message catalog

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ppz_logalyzer.libs.errors import FieldDecodeError, FieldTypeError


class FieldKind(Enum):
    UINT8 = "uint8"
    INT8 = "int8"
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    UINT64 = "uint64"
    INT64 = "int64"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    ARRAY = "array"


# Inclusive value range per integer kind
INTEGER_RANGES: Dict[FieldKind, Tuple[int, int]] = {
    FieldKind.UINT8: (0, 2**8 - 1),
    FieldKind.INT8: (-(2**7), 2**7 - 1),
    FieldKind.UINT16: (0, 2**16 - 1),
    FieldKind.INT16: (-(2**15), 2**15 - 1),
    FieldKind.UINT32: (0, 2**32 - 1),
    FieldKind.INT32: (-(2**31), 2**31 - 1),
    FieldKind.UINT64: (0, 2**64 - 1),
    FieldKind.INT64: (-(2**63), 2**63 - 1),
}

FLOAT_KINDS = {FieldKind.FLOAT, FieldKind.DOUBLE}

_ARRAY_PATTERN = re.compile(r"^(\w+)\[(\d*)\]$")


@dataclass(frozen=True)
class FieldType:
    """Type of a message field; arrays carry their element type and optional fixed size."""
    kind: FieldKind
    element_type: Optional["FieldType"] = None
    size: Optional[int] = None

    @classmethod
    def array(cls, element_type: "FieldType", size: Optional[int] = None) -> "FieldType":
        return cls(FieldKind.ARRAY, element_type=element_type, size=size)

    @classmethod
    def parse(cls, text: str) -> "FieldType":
        """Parse a catalog type name such as ``uint8``, ``float[3]`` or ``char[]``."""
        name = text.strip().lower()
        match = _ARRAY_PATTERN.match(name)
        if match:
            base, size = match.groups()
            if base == "char":
                return cls(FieldKind.STRING)
            return cls.array(cls.parse(base), int(size) if size else None)
        try:
            kind = FieldKind(name)
        except ValueError:
            raise FieldTypeError(f"Unknown field type: {text!r}")
        if kind is FieldKind.ARRAY:
            raise FieldTypeError("Array types need an element type, e.g. 'uint8[]'")
        return cls(kind)

    def __str__(self) -> str:
        if self.kind is FieldKind.ARRAY:
            size = "" if self.size is None else str(self.size)
            return f"{self.element_type}[{size}]"
        return self.kind.value


@dataclass(frozen=True)
class FieldValue:
    """A decoded field value tagged with the type it was decoded against."""
    field_type: FieldType
    value: Any

    @property
    def kind(self) -> FieldKind:
        return self.field_type.kind

    def to_python(self) -> Any:
        """Plain Python value, arrays become lists."""
        if self.kind is FieldKind.ARRAY:
            return [element.to_python() for element in self.value]
        return self.value


def _decode_integer(text: str, kind: FieldKind) -> int:
    try:
        value = int(text, 10)
    except ValueError:
        raise FieldDecodeError(f"Invalid {kind.value} value: {text!r}")
    low, high = INTEGER_RANGES[kind]
    if not low <= value <= high:
        raise FieldDecodeError(f"Value {value} out of range for {kind.value}")
    return value


def _decode_float(text: str, kind: FieldKind) -> float:
    try:
        return float(text)
    except ValueError:
        raise FieldDecodeError(f"Invalid {kind.value} value: {text!r}")


def _decode_string(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


def decode_value(text: str, field_type: FieldType) -> FieldValue:
    """Decode one textual token against ``field_type``.

    Array tokens are comma separated; the whole field fails if any element fails.
    """
    kind = field_type.kind
    if kind in INTEGER_RANGES:
        return FieldValue(field_type, _decode_integer(text, kind))
    if kind in FLOAT_KINDS:
        return FieldValue(field_type, _decode_float(text, kind))
    if kind is FieldKind.STRING:
        return FieldValue(field_type, _decode_string(text))
    if kind is FieldKind.ARRAY:
        elements = tuple(
            decode_value(part.strip(), field_type.element_type)
            for part in text.split(",")
        )
        return FieldValue(field_type, elements)
    raise FieldDecodeError(f"Unsupported field type: {field_type}")


STRING_TYPE = FieldType(FieldKind.STRING)
