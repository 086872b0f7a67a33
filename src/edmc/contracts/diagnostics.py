# src/edmc/contracts/diagnostics.py
"""Diagnostics and the message sink every pass reports through.

Compilation never stops at the first problem. Passes record diagnostics
on a MessageSink and continue with the next definition; the caller
decides via throw_if_errors() whether the recorded errors abort document
production.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from edmc.contracts.enums import Severity
from edmc.contracts.errors import CompilationError
from edmc.core.logging import get_logger

logger = get_logger(__name__)

# Path into the schema graph, e.g. ("definitions", "S.E", "elements", "x").
type Location = tuple[str, ...]


# Message templates keyed by diagnostic id. A nested mapping selects the
# text by variant, "std" being the default variant.
MESSAGES: dict[str, str | dict[str, str]] = {
    "odata-duplicate-definition": "Generated definition {name} conflicts with an existing definition",
    "odata-duplicate-proxy": "No proxy entity created due to name collision with existing definition {name} of kind {kind}",
    "odata-proxy-registered": "Proxy EDM entity type {name} has already been registered",
    "odata-proxy-created": "Created proxy EDM entity type {name}",
    "odata-proxy-unmanaged-key": (
        "Unmanaged associations are not supported as primary keys "
        "for proxy entity type {name} of unexposed association target {target}"
    ),
    "odata-schema-reference": "Created EDM namespace reference {name}",
    "odata-unexpected-comparison": (
        "Expected association {name} to point back to {target}; backlink partnership dropped"
    ),
    "odata-unresolved-backlink": "Can't resolve backlink to {name} from {target}",
    "odata-incomplete-constraints": "Partial referential constraints are generated for OData version {version}",
    "odata-unexpected-cardinality": (
        "Explicit source cardinality {value} of {name} conflicts with target cardinality {othervalue}"
    ),
    "odata-navigation": {
        "std": "No OData navigation property generated, target {target} is outside of service {service}",
        "onCond": (
            "No OData navigation property generated for unmanaged association, "
            "target {target} is outside of service {service}"
        ),
    },
    "odata-key-recursive": {
        "std": "Key paths of {name} recursively refer to themselves",
        "key": "Association {name} used as primary key refers back to its own definition",
    },
    "odata-unexpected-nullable-key": {
        "std": "Key element {name} must not be nullable",
        "scalar": "Element {name} used in a key path must not be nullable",
    },
    "odata-unexpected-arrayed-key": "Key element {name} must not be arrayed",
    "odata-invalid-key-type": "Type {type} of key element {name} is not a legal OData key type for version {version}",
    "odata-enum-missing-value": "Enum symbol {name} of type {type} requires a value",
    "odata-ignoring-param-default": {
        "std": "Default value of parameter {name} is ignored",
        "xpr": "Expression default value of parameter {name} is ignored",
        "colitem": "Default value of structured or arrayed parameter {name} is ignored",
    },
    "odata-parameter-order": "Mandatory parameter {name} must not follow an optional parameter of function {target}",
    "ref-unsupported-type": "Type {type} is not supported for OData version {version}",
    "ref-undefined-def": "Artifact {name} has not been found",
    "odata-invalid-name": "Name {id} of term {anno} must start with a letter or underscore, followed by at most 127 letters, digits or underscores",
    "odata-invalid-qualifier": "Qualifier {id} must start with a letter or underscore, followed by at most 127 letters, digits or underscores",
    "odata-unexpected-edm-type": "Unexpected EDM type {type} for OData {version} in {anno}",
    "odata-invalid-scale": "Expected scale {number} to be less than or equal to precision {rawvalue} in {anno}",
    "odata-anno-def": {
        "std": "{anno} is not a known annotation of its vocabulary",
        "deprecated": "{anno} is deprecated. {depr}",
        "notapplied": "{anno} is not applied (AppliesTo: {rawvalues})",
    },
    "odata-anno-dict": {
        "std": "Type {type} not found in the vocabulary dictionary for {anno}",
        "experimental": "{anno} is experimental and can be changed or removed at any time",
    },
    "odata-anno-vocref": {
        "redef": "Vocabulary reference {id} is the alias of the vocabulary {type} and can't be redefined, reference is ignored",
        "service": "Vocabulary reference collides with service {name}, reference is ignored",
    },
    "odata-anno-type": {
        "std": "{name} is not a known property for {anno} of type {type}",
        "unknown": "{type} is not a known vocabulary type for {anno}",
        "abstract": "Unexpected abstract type {type} for {anno}, use {code} to specify a concrete type",
        "derived": "Expected specified {type} to be derived from {name} for {anno}",
        "literal": "Expected value {rawvalue} of specified {code} to be a string literal for {anno}",
    },
    "odata-anno-value": {
        "std": "Unexpected value {value} for {anno} of type {type}",
        "enum": "Value {value} is not one out of {rawvalues} for {anno} of type {type}",
        "incompval": "Unexpected {str} value for {anno} of type {type}",
        "nested": "Missing nested annotation for {anno}",
        "base": "Missing base value for the nested annotations of {anno}",
        "nestedCollection": "Nested collections are not supported for {anno}",
        "enuminCollection": "Enum inside collection is not supported for {anno}",
        "multexpr": "EDM JSON code contains more than one dynamic expression: {rawvalues} for {anno}",
    },
    "odata-anno-xpr": {
        "std": "Unexpected expression in {anno}",
        "notadynexpr": "{op} is not a renderable dynamic expression in {anno}",
        "use": "Function {op} is not a renderable dynamic expression in {anno}, use {code} instead",
        "canonfuncalias": "Expected function name {code} to be of the form namespace.function for {op} in {anno}",
    },
    "odata-anno-xpr-type": {
        "std": "Expected one qualified type name for {op} in {anno}",
        "edm": "Expected a qualified EDM type name for {op} in {anno} but found {type}",
    },
    "odata-anno-xpr-args": {
        "std": "Unexpected arguments for {op} in {anno}",
        "exactly": "Expected exactly {count} argument(s) for {op} in {anno}",
        "atleast": "Expected at least {count} argument(s) for {op} in {anno}",
        "atmost": "Expected at most {count} argument(s) for {op} in {anno}",
        "wrongcount": "Expected exactly one {prop} for {op} in {anno}",
        "wrongval_meta": "Expected value for {op} to be a {meta} in {anno}",
        "wrongval_meta_list": "Expected value for {op} to be a {meta} or {rawvalues} in {anno}",
    },
    "odata-anno-xpr-ref": {
        "args": "Unexpected arguments or filters in {elemref} in {anno}",
        "notrendered": "Path {elemref} of {anno} refers to an element that is not rendered (step {count})",
    },
}


class _KeepMissing(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _render_arg(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def format_message(msg_id: str, args: Mapping[str, Any], variant: str | None = None) -> str:
    """Resolve a message template and substitute its arguments.

    Unknown ids yield the id itself; unknown placeholders are left as-is.
    """
    template = MESSAGES.get(msg_id)
    if template is None:
        text = msg_id
    elif isinstance(template, dict):
        text = template.get(variant or "std") or template.get("std") or msg_id
    else:
        text = template
    return text.format_map(_KeepMissing({k: _render_arg(v) for k, v in args.items()}))


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One recorded compiler diagnostic.

    msg_id is the stable identifier; location points into the schema graph
    and is resolved to a source position by whoever owns source mapping.
    """

    severity: Severity
    msg_id: str
    location: Location
    message: str
    args: Mapping[str, Any] = field(default_factory=dict)
    variant: str | None = None

    def __str__(self) -> str:
        where = "/".join(self.location)
        return f"{self.severity.value}[{self.msg_id}] {where}: {self.message}"


class MessageSink:
    """Accumulates diagnostics for one compilation run.

    Every recorded diagnostic is also logged, errors and warnings at their
    own level, infos and plain messages at debug.
    """

    def __init__(self) -> None:
        self._diagnostics: list[Diagnostic] = []

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)

    def _record(
        self,
        severity: Severity,
        msg_id: str,
        location: Location,
        args: Mapping[str, Any] | None,
        variant: str | None,
        text: str | None,
    ) -> Diagnostic:
        bag = dict(args or {})
        message = text.format_map(_KeepMissing({k: _render_arg(v) for k, v in bag.items()})) if text else format_message(msg_id, bag, variant)
        diagnostic = Diagnostic(
            severity=severity,
            msg_id=msg_id,
            location=tuple(location),
            message=message,
            args=bag,
            variant=variant,
        )
        self._diagnostics.append(diagnostic)
        log = {
            Severity.ERROR: logger.error,
            Severity.WARNING: logger.warning,
        }.get(severity, logger.debug)
        log("diagnostic", msg_id=msg_id, severity=severity.value, location="/".join(diagnostic.location), text=message)
        return diagnostic

    def error(
        self,
        msg_id: str,
        location: Location,
        args: Mapping[str, Any] | None = None,
        *,
        variant: str | None = None,
        text: str | None = None,
    ) -> Diagnostic:
        return self._record(Severity.ERROR, msg_id, location, args, variant, text)

    def warning(
        self,
        msg_id: str,
        location: Location,
        args: Mapping[str, Any] | None = None,
        *,
        variant: str | None = None,
        text: str | None = None,
    ) -> Diagnostic:
        return self._record(Severity.WARNING, msg_id, location, args, variant, text)

    def info(
        self,
        msg_id: str,
        location: Location,
        args: Mapping[str, Any] | None = None,
        *,
        variant: str | None = None,
        text: str | None = None,
    ) -> Diagnostic:
        return self._record(Severity.INFO, msg_id, location, args, variant, text)

    def message(
        self,
        msg_id: str,
        location: Location,
        args: Mapping[str, Any] | None = None,
        *,
        variant: str | None = None,
        text: str | None = None,
    ) -> Diagnostic:
        return self._record(Severity.MESSAGE, msg_id, location, args, variant, text)

    @property
    def has_errors(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self._diagnostics)

    def errors(self) -> list[Diagnostic]:
        return [d for d in self._diagnostics if d.severity is Severity.ERROR]

    def by_id(self, msg_id: str) -> list[Diagnostic]:
        """All diagnostics recorded with the given id, in recording order."""
        return [d for d in self._diagnostics if d.msg_id == msg_id]

    def throw_if_errors(self) -> None:
        """Raise CompilationError if any error has been recorded."""
        errors = self.errors()
        if errors:
            raise CompilationError(errors)
