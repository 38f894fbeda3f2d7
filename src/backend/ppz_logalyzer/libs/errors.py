# Exception hierarchy for the PPZ Logalyzer parsing core


class LogalyzerError(Exception):
    """Base class for every error raised by the parsing core."""


class ConfigParseError(LogalyzerError):
    """The header file is missing a required element or attribute."""


class FieldTypeError(LogalyzerError):
    """A field type name in a message catalog is not recognised."""


class FieldDecodeError(LogalyzerError):
    """A textual token could not be decoded into its declared field type."""


class LineParseError(LogalyzerError):
    """A single telemetry line could not be turned into a message."""

    def __init__(self, message: str, line_number: int = 0):
        super().__init__(message)
        self.line_number = line_number


class SchemaError(LogalyzerError):
    """No schema could be resolved for a log file."""


class QueryError(LogalyzerError):
    """An in-memory telemetry query was malformed."""
