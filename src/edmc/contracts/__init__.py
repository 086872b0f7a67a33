"""Shared contracts: enums, diagnostics and exceptions.

These types cross every layer boundary and must not import from passes,
the engine or the annotation translator.
"""

from edmc.contracts.diagnostics import MESSAGES, Diagnostic, Location, MessageSink, format_message
from edmc.contracts.enums import DefinitionKind, ODataFormat, ODataVersion, Severity
from edmc.contracts.errors import CompilationError, CompilerAssertion, ModelLoadError

__all__ = [
    "MESSAGES",
    "CompilationError",
    "CompilerAssertion",
    "DefinitionKind",
    "Diagnostic",
    "Location",
    "MessageSink",
    "ModelLoadError",
    "ODataFormat",
    "ODataVersion",
    "Severity",
    "format_message",
]
