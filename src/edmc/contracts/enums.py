"""Versions, formats, severities and kinds shared by every compiler layer."""

from enum import StrEnum


class ODataVersion(StrEnum):
    """Protocol version the model is prepared for."""

    V2 = "v2"
    V4 = "v4"


class ODataFormat(StrEnum):
    """Output shape for structured elements.

    FLAT expands structured elements into underscore-joined scalar
    properties. STRUCTURED keeps them as complex types and addresses
    nested members with '/' paths.
    """

    FLAT = "flat"
    STRUCTURED = "structured"


class Severity(StrEnum):
    """Diagnostic severity, ordered from most to least severe."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    MESSAGE = "message"


class DefinitionKind(StrEnum):
    """Kind of a schema graph definition.

    REFERENCE is synthesized by the proxy generator for cross-service
    schema references and never appears in input models.
    """

    SERVICE = "service"
    CONTEXT = "context"
    ENTITY = "entity"
    TYPE = "type"
    ASPECT = "aspect"
    ACTION = "action"
    FUNCTION = "function"
    EVENT = "event"
    REFERENCE = "reference"
