# src/edmc/annotations/translator.py
"""Vocabulary annotations of one service.

The translator visits every annotation carrier of a service (the service
itself, entities, types, actions and functions, their elements,
parameters and return types), regroups the flattened annotation names of
a carrier into a prefix tree, translates each term value into output
nodes guided by the vocabulary dictionary, and places the result at the
standard or alternative target of the carrier.

Flattened names are regrouped like this:

    @UI.HeaderInfo.TypeName        -> UI / HeaderInfo / TypeName
    @UI.HeaderInfo.Title.Value     -> UI / HeaderInfo / Title / Value
    @Common.Text.@UI.TextArrangement
                                   -> Common / Text / @UI.TextArrangement
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from edmc.annotations.context import MessageContext
from edmc.annotations.nodes import Annotation, Annotations, Collection, Node, PropertyValue, Record, ValueThing
from edmc.annotations.placement import (
    CallableCarrier,
    Carrier,
    ElementCarrier,
    EntityCarrier,
    ServiceCarrier,
    TypeCarrier,
    place,
)
from edmc.annotations.vocabulary import (
    TermDefinition,
    TypeDefinition,
    VocabularyDictionary,
    VocabularyReference,
    VocabularyUsage,
    merge_vocabulary_references,
)
from edmc.contracts.diagnostics import Location, MessageSink
from edmc.contracts.enums import DefinitionKind
from edmc.core.logging import get_logger
from edmc.engine.types import PreparedModel
from edmc.expressions.dynamic import xpr_to_edm_json
from edmc.expressions.edm_json import EdmJsonTranslator
from edmc.expressions.parser import Ref, is_annotation_expression, iter_refs, parse_annotation_expression
from edmc.model.builtins import EDM_PATH_TYPES, fallback_edm_type, is_builtin_type, is_simple_identifier, map_cds_to_edm
from edmc.model.schema import Definition, Element

logger = get_logger(__name__)

OMITTED_TERMS = frozenset({"Aggregation.default"})
# Terms rendered even with a null value
NULL_TERMS = frozenset({"Core.OperationAvailable", "Core.OptionalParameter"})
_NULL_ANNOTATIONS = frozenset({"@Core.OperationAvailable", "@Core.OptionalParameter.DefaultValue"})
_NULL_VALUES = frozenset(
    {
        ("Core.OperationAvailable", "Edm.Boolean"),
        ("Core.OptionalParameter", "Edm.String"),
        ("Validation.AllowedValues", "Edm.PrimitiveType"),
    }
)
DEFAULT_RECORD_TYPES = {
    "UI.DataFieldAbstract": "UI.DataField",
    "Common.SemanticObjectMappingAbstract": "Common.SemanticObjectMappingType",
}
# Rendered as String values in XML
_XML_STRING_TYPES = frozenset({"Edm.PrimitiveType", "Edm.Stream", "Edm.Untyped"})
PARAMETERS_QUALIFIER = "#$parameters"


def strip_collection(type_name: str | None) -> tuple[str | None, bool]:
    """'Collection(X)' -> ('X', True); anything else -> (name, False)."""
    if type_name and type_name.startswith("Collection(") and type_name.endswith(")"):
        return type_name[len("Collection(") : -1], True
    return type_name, False


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def _is_integer(value: int | float) -> bool:
    return isinstance(value, int) or value.is_integer()


def _iter_expressions(value: Any) -> Iterator[Mapping[str, Any]]:
    if is_annotation_expression(value):
        yield value
    elif isinstance(value, Mapping):
        for inner in value.values():
            yield from _iter_expressions(inner)
    elif isinstance(value, list):
        for inner in value:
            yield from _iter_expressions(inner)


@dataclass(slots=True)
class AnnotationResult:
    """Annotation groups of one service and the vocabularies they reference."""

    service: str
    groups: list[Annotations] = field(default_factory=list)
    used_vocabularies: list[VocabularyReference] = field(default_factory=list)

    @property
    def targets(self) -> list[str]:
        return [group.target for group in self.groups if not group.schema_level]

    def group(self, target: str) -> Annotations | None:
        return next((g for g in self.groups if g.target == target and not g.schema_level), None)

    def to_json(self) -> dict[str, Any]:
        """Schema level annotations plus the $Annotations member of a CSDL JSON schema."""
        result: dict[str, Any] = {}
        for group in self.groups:
            if group.schema_level:
                result.update(group.to_json())
        targets = {g.target: g.to_json() for g in self.groups if not g.schema_level}
        targets = {target: body for target, body in targets.items() if body}
        if targets:
            result["$Annotations"] = targets
        return result


class AnnotationTranslator:
    """Translates the annotations of one service.

    Args:
        prepared: Schema graph and side table after all passes ran
        service: Name of the service root
        dictionary: Term and type definitions
        sink: Receives every diagnostic
    """

    def __init__(
        self, prepared: PreparedModel, service: str, dictionary: VocabularyDictionary, sink: MessageSink
    ) -> None:
        self.prepared = prepared
        self.graph = prepared.graph
        self.state = prepared.state
        self.options = prepared.options
        self.service = service
        self.dictionary = dictionary
        self.sink = sink
        self.references = merge_vocabulary_references(self.options, sink, service)
        self.usage = VocabularyUsage(self.references)
        self.edm_json = EdmJsonTranslator(self.options, sink, self.handle_term)
        self._groups: dict[tuple[str, bool], Annotations] = {}
        # Annotations moved from an entity to its parameters entity
        self._moved: dict[str, set[str]] = {}
        self._parameter_origins: dict[str, Definition] = {}
        for name, def_state in self.state.definitions.items():
            origin = self.graph.get(name)
            if def_state.origin and origin is not None:
                self._parameter_origins[def_state.origin] = origin

    def translate(self) -> AnnotationResult:
        definitions = self.prepared.definitions_of(self.service)
        extras = {
            d.name: self._parameter_annotations(d, self._parameter_origins[d.name])
            for d in definitions
            if self.state.of(d).is_param_entity and d.name in self._parameter_origins
        }
        service = self.graph.get(self.service)
        if service is not None:
            self._handle_carrier(ServiceCarrier(self.service), service, service.location)
        for definition in definitions:
            match definition.kind:
                case DefinitionKind.ENTITY:
                    self._handle_entity(definition, extras.get(definition.name))
                case DefinitionKind.TYPE:
                    self._handle_type(definition)
                case DefinitionKind.ACTION | DefinitionKind.FUNCTION:
                    self._handle_callable(definition, None)
        result = AnnotationResult(
            service=self.service,
            groups=list(self._groups.values()),
            used_vocabularies=self.usage.used_references(),
        )
        logger.debug(
            "annotations translated",
            service=self.service,
            groups=len(result.groups),
            vocabularies=[ref.alias for ref in result.used_vocabularies],
        )
        return result

    # Carriers ---------------------------------------------------------------

    def _handle_entity(self, entity: Definition, extra: dict[str, Any] | None) -> None:
        def_state = self.state.of(entity)
        target = def_state.edm_name or entity.name
        alternative = None
        if def_state.has_entity_set:
            set_name = (def_state.entity_set_name or target).rsplit(".", 1)[-1]
            alternative = f"{self.service}.EntityContainer/{set_name}"
        carrier = EntityCarrier(target=target, alternative_target=alternative, singleton=self.state.is_singleton(entity))
        self._handle_carrier(carrier, entity, entity.location, base=entity, extra=extra)
        self._handle_members(target, entity)
        for action in (entity.actions or {}).values():
            self._handle_callable(action, entity)

    def _handle_type(self, definition: Definition) -> None:
        members = definition.elements or (definition.items.elements if definition.items is not None else None)
        if not members and self.options.is_v2:
            # Derived scalar types are not rendered in V2
            return
        carrier = TypeCarrier(target=definition.name, structured=bool(members))
        self._handle_carrier(carrier, definition, definition.location, base=definition)
        self._handle_members(definition.name, definition)

    def _handle_members(self, target: str, definition: Definition) -> None:
        members = definition.elements
        if not members and definition.items is not None:
            members = definition.items.elements or {}
        for name, element in members.items():
            self._handle_element(f"{target}/{name}", element, base=definition)

    def _handle_element(
        self, target: str, element: Element, *, base: Definition | None = None, is_return: bool = False
    ) -> None:
        if not self.state.is_rendered(element):
            return
        if is_return:
            role = "return"
        elif element.is_association:
            role = "navigation"
        else:
            role = "member"
        carrier = ElementCarrier(
            target=target,
            role=role,
            to_many=element.cardinality is not None and element.cardinality.max == "*",
            is_collection=element.items is not None or self.state.element(element).is_collection,
            managed_association=element.is_managed,
        )
        self._handle_carrier(carrier, element, element.location, base=base)

    def _handle_callable(self, action: Definition, bound_to: Definition | None) -> None:
        kind = "Action" if action.kind is DefinitionKind.ACTION else "Function"
        short_name = action.name.rsplit(".", 1)[-1]
        if bound_to is not None:
            entity_name = bound_to.name.rsplit(".", 1)[-1]
            short_name = f"{entity_name}_{short_name}" if self.options.is_v2 else short_name
        if self.options.is_v2:
            target = f"{self.service}.EntityContainer/{short_name}"
            alternative = None
        else:
            qualified = action.name if bound_to is None else f"{self.service}.{short_name}"
            target = f"{qualified}({','.join(self._parameter_types(action, bound_to))})"
            alternative = f"{self.service}.EntityContainer/{short_name}"
        carrier = CallableCarrier(target=target, kind=kind, bound=bound_to is not None, alternative_target=alternative)
        self._handle_carrier(carrier, action, action.location)
        for name, param in (action.params or {}).items():
            if self.options.is_v2 and _is_binding_parameter(param):
                continue
            self._handle_element(f"{target}/{name}", param)
        if action.returns is not None:
            self._handle_element(f"{target}/$ReturnType", action.returns, is_return=True)

    def _parameter_types(self, action: Definition, bound_to: Definition | None) -> list[str]:
        """Type list of a V4 action or function annotation target."""
        types: list[str] = []
        params = action.params or {}
        binding = next((p for p in params.values() if _is_binding_parameter(p)), None)
        if bound_to is not None:
            arrayed = binding is not None and binding.items is not None
            types.append(f"Collection({bound_to.name})" if arrayed else bound_to.name)
        if action.kind is DefinitionKind.FUNCTION:
            types.extend(self._parameter_type(p) for p in params.values() if p is not binding)
        return types

    def _parameter_type(self, param: Element) -> str:
        carrier = param.items if param.type is None and param.items is not None else param
        if is_builtin_type(carrier.type):
            name = map_cds_to_edm(carrier.type or "", is_v2=False) or fallback_edm_type(is_v2=False)
        else:
            name = carrier.type or ""
            schema = self.prepared.services.schema_of(name)
            if schema and schema != self.service:
                name = name.removeprefix(f"{self.service}.")
        return f"Collection({name})" if carrier is not param else name

    # One carrier ------------------------------------------------------------

    def _handle_carrier(
        self,
        carrier: Carrier,
        node: Definition | Element,
        location: Location,
        *,
        base: Definition | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        annotations = self._known_annotations(node, extra)
        if not annotations:
            return
        self._rewrite_inner_annotations(annotations)
        for name in list(annotations):
            if ".$edmJson." in name:
                continue
            self._check_refs(annotations[name], name, base, location)
            value, ok = xpr_to_edm_json(
                annotations[name],
                anno=name,
                location=location,
                options=self.options,
                graph=self.graph,
                sink=self.sink,
            )
            if ok:
                annotations[name] = value
            else:
                del annotations[name]

        standard: list[Annotation] = []
        alternative: list[Annotation] = []
        for vocabulary, terms in self._prefix_tree(annotations).items():
            for term_name, value in terms.items():
                full_name = f"{vocabulary}.{term_name}"
                context = MessageContext(term=full_name, location=(*location, f"@{full_name}"))
                annotation = self.handle_term(full_name, value, context)
                if annotation is None or annotation.invalid:
                    continue
                term = full_name.split("#", 1)[0]
                definition = self._dict_term(term, context)
                applies_to = definition.applies_to if definition is not None else None
                placement = place(carrier, applies_to, is_v2=self.options.is_v2)
                if placement.alternative:
                    alternative.append(annotation)
                if placement.standard:
                    standard.append(annotation)
                if not placement.applied and applies_to:
                    self.sink.info(
                        "odata-anno-def",
                        location,
                        {"anno": term, "rawvalues": list(applies_to)},
                        variant="notapplied",
                    )

        match carrier:
            case ServiceCarrier():
                self._add_group(carrier.target, standard)
                self._add_group(carrier.alternative_target, alternative, schema_level=True)
            case EntityCarrier(alternative_target=str() as set_target) | CallableCarrier(
                alternative_target=str() as set_target
            ):
                self._add_group(carrier.target, standard)
                self._add_group(set_target, alternative)
            case _:
                self._add_group(carrier.target, standard)

    def _add_group(self, target: str, annotations: list[Annotation], *, schema_level: bool = False) -> None:
        if not annotations:
            return
        key = (target, schema_level)
        group = self._groups.get(key)
        if group is None:
            group = self._groups[key] = Annotations(target=target, schema_level=schema_level)
        group.annotations.extend(annotations)

    def _known_annotations(self, node: Definition | Element, extra: dict[str, Any] | None = None) -> dict[str, Any]:
        """Annotations of known vocabularies; null only where a null value is meaningful."""
        merged = self.state.annotations_of(node)
        for name, value in (extra or {}).items():
            if merged.get(name) is None:
                merged[name] = value
        moved = self._moved.get(node.name, set()) if isinstance(node, Definition) else set()
        known: dict[str, Any] = {}
        for name, value in merged.items():
            if name in moved or self._vocabulary_of(name[1:].split(".@", 1)[0]) is None:
                continue
            if value is None and name not in _NULL_ANNOTATIONS:
                continue
            known[name] = copy.deepcopy(value)
        return known

    @staticmethod
    def _rewrite_inner_annotations(annotations: dict[str, Any]) -> bool:
        """Move the base value of annotated annotations to '<prefix>.$value'.

        @a.@b is annotating @a: @a becomes @a.$value and @a.$edmJson
        becomes @a.$value.$edmJson.
        """
        changed = False
        for name in list(annotations):
            prefix, sep, _ = name.partition(".@")
            if not sep:
                continue
            if annotations.get(prefix) is not None:
                annotations[f"{prefix}.$value"] = annotations.pop(prefix)
                changed = True
            edm_json = f"{prefix}.$edmJson"
            if annotations.get(edm_json) is not None:
                annotations[f"{prefix}.$value.$edmJson"] = annotations.pop(edm_json)
                changed = True
        return changed

    def _prefix_tree(self, annotations: Mapping[str, Any]) -> dict[str, Any]:
        tree: dict[str, Any] = {}
        for name, value in annotations.items():
            prefix, sep, inner = name.partition(".@")
            vocabulary = self._vocabulary_of(prefix[1:])
            if vocabulary is None:
                continue
            steps = [vocabulary, *prefix[len(vocabulary) + 2 :].split(".")]
            if "$edmJson" in steps:
                last = len(steps) - 1 - steps[::-1].index("$edmJson")
                at = next((i for i in range(last + 1, len(steps)) if "@" in steps[i]), None)
                if at is not None:
                    steps[at:] = [".".join(steps[at:])]
            if sep:
                if inner.startswith("sap."):
                    steps.append(f"@{inner}")
                else:
                    # Vocabulary and term form the annotation, the rest are record steps
                    parts = inner.split(".")
                    steps.extend([f"@{'.'.join(parts[:2])}", *parts[2:]])
            _merge_steps(tree, steps, value)
        return tree

    def _parameter_annotations(self, parameters: Definition, origin: Definition) -> dict[str, Any]:
        """Annotations of an entity that belong to its parameters entity.

        These are the ones qualified with '#$parameters' (moved) and the
        ones applicable to entity sets or singletons (copied).
        """
        copied: dict[str, Any] = {}
        for name, value in self.state.annotations_of(origin).items():
            prefix, sep, inner = name.partition(".@")
            vocabulary = self._vocabulary_of(prefix[1:])
            if vocabulary is None:
                continue
            steps = prefix[len(vocabulary) + 2 :].split(".")
            term, marker, rest = steps[0].partition(PARAMETERS_QUALIFIER)
            definition = self.dictionary.term(f"{vocabulary}.{term}")
            applies_to = definition.applies_to if definition is not None else None
            if not (marker or (applies_to and ("Singleton" in applies_to or "EntitySet" in applies_to))):
                continue
            steps[0] = term + rest
            renamed = "@" + ".".join((vocabulary, *steps))
            if sep:
                renamed = f"{renamed}.@{inner}"
            copied[renamed] = value
            if marker:
                self._moved.setdefault(origin.name, set()).add(name)
        return copied

    def _check_refs(self, value: Any, anno: str, base: Definition | None, location: Location) -> None:
        """Paths in expressions must only traverse rendered elements."""
        if base is None:
            return
        for expression in _iter_expressions(value):
            for ref in iter_refs(parse_annotation_expression(expression)):
                if not ref.is_param:
                    self._check_ref(ref, anno, base, location)

    def _check_ref(self, ref: Ref, anno: str, base: Definition, location: Location) -> None:
        offset = 1 if ref.steps and ref.steps[0] == "$self" else 0
        members = self.graph.structured_elements(base)
        for index, step in enumerate(ref.steps[offset:]):
            element = (members or {}).get(step)
            if element is None:
                return
            if not self.state.is_rendered(element):
                self.sink.error(
                    "odata-anno-xpr-ref",
                    location,
                    {"anno": anno, "elemref": ref.text, "count": index + offset + 1},
                    variant="notrendered",
                )
                return
            target = self.graph.get(element.target) if element.is_association else None
            members = target.elements if target is not None else self.graph.structured_elements(element)

    # Dictionary access -------------------------------------------------------

    def _vocabulary_of(self, name: str) -> str | None:
        """Longest vocabulary alias the (unprefixed) annotation name starts with."""
        candidates = [alias for alias in self.references if name.startswith(f"{alias}.")]
        return max(candidates, key=len) if candidates else None

    def _dict_term(self, name: str, context: MessageContext) -> TermDefinition | None:
        self.usage.mark(name)
        definition = self.dictionary.term(name)
        if definition is not None:
            self.usage.note_term(name, definition, context, self.sink)
        return definition

    def _type(self, name: str | None) -> TypeDefinition | None:
        if name:
            self.usage.mark(name)
        return self.dictionary.type(name)

    def _is_complex(self, name: str | None) -> bool:
        definition = self._type(name)
        return definition is not None and definition.is_complex

    def _is_enum(self, name: str | None) -> bool:
        definition = self._type(name)
        return definition is not None and definition.is_enum

    def _resolve_type_definition(self, name: str | None) -> str | None:
        definition = self._type(name)
        if definition is not None and definition.kind == "TypeDefinition" and definition.underlying_type:
            return definition.underlying_type
        return name

    # Values -----------------------------------------------------------------

    def _value_warning(self, context: MessageContext, variant: str = "std", **args: Any) -> None:
        self.sink.warning("odata-anno-value", context.location, {"anno": context.anno(), **args}, variant=variant)

    def handle_term(self, name: str, value: Any, context: MessageContext) -> Annotation | None:
        """Translate one term application, qualifier included ("UI.LineItem#q")."""
        if not ((value is not None and name not in OMITTED_TERMS) or name in NULL_TERMS):
            return None
        term, _, qualifier = name.partition("#")
        for part in term.split("."):
            if not is_simple_identifier(part):
                self.sink.error("odata-invalid-name", context.location, {"id": part, "anno": context.anno()})
        if qualifier and not is_simple_identifier(qualifier):
            self.sink.error("odata-invalid-qualifier", context.location, {"id": qualifier})
        annotation = Annotation(term=term, qualifier=qualifier or None)

        definition = self._dict_term(term, context)
        type_name = definition.type if definition is not None else None
        if definition is None:
            vocabulary = self._vocabulary_of(term)
            reference = self.references.get(vocabulary) if vocabulary else None
            if reference is None or (reference.builtin and self.dictionary.covers(reference.alias)):
                self.sink.info("odata-anno-def", context.location, {"anno": term})

        self._handle_value(value, annotation, term, type_name, context)
        return annotation

    def _handle_value(
        self,
        value: Any,
        target: Annotation | PropertyValue,
        term: str,
        type_name: str | None,
        context: MessageContext,
    ) -> None:
        expected, is_collection = strip_collection(type_name)
        if isinstance(value, list):
            definition = self._type(expected)
            if definition is not None and definition.is_enum:
                self._check_flags(value, expected, definition, context)
                members = " ".join(f"{expected}/{v['#']}" for v in value if isinstance(v, Mapping) and v.get("#"))
                target.value = ValueThing("EnumMember", members, expected)
            else:
                target.value = self._collection(value, term, expected, is_collection, context)
        elif isinstance(value, Mapping):
            if "=" in value:
                if is_collection:
                    self._value_warning(context, "incompval", str="path", type=expected)
                target.value = self._path(value["="], expected)
            elif value.get("#") is not None:
                target.value = self._enum_symbol(str(value["#"]), term, expected, context)
            elif "$value" in value:
                self._handle_value(value["$value"], target, term, type_name, context)
                nested = [key for key in value if key.startswith("@")]
                if not nested:
                    self._value_warning(context, "nested")
                for key in nested:
                    annotation = self.handle_term(key[1:], value[key], context)
                    if annotation is not None:
                        target.annotations.append(annotation)
            elif value.get("$edmJson"):
                target.value = self.edm_json.translate(value["$edmJson"], context)
            elif value and all(key.startswith("@") for key in value):
                if isinstance(target, Annotation):
                    target.invalid = True
                self._value_warning(context, "base")
            else:
                if is_collection:
                    self._value_warning(context, "incompval", str="structured", type=expected)
                target.value = self._record(value, term, expected, is_collection, context)
        elif value is None and (term, expected) in _NULL_VALUES:
            target.value = ValueThing("Null")
        else:
            kind, json_type, rendered = self._simple_value(value, expected, context)
            target.value = ValueThing(kind, rendered, json_type)

    @staticmethod
    def _path(path: Any, expected: str | None) -> ValueThing:
        kind = EDM_PATH_TYPES.get(expected or "", "Path")
        if isinstance(path, str):
            head, at, tail = path.partition("@")
            path = head.replace(".", "/") + at + tail
        return ValueThing(kind, path)

    def _enum_symbol(self, symbol: str, term: str, expected: str | None, context: MessageContext) -> ValueThing | None:
        if expected is None:
            return ValueThing("EnumMember", f"{term}Type/{symbol}")
        definition = self._type(expected)
        if definition is not None and definition.allowed is not None and definition.members is None:
            allowed = definition.allowed.symbols.get(symbol)
            if allowed is None:
                self._value_warning(
                    context,
                    "enum",
                    type=expected,
                    value=f'"#{symbol}"',
                    rawvalues=[f"#{s}" for s in definition.allowed.symbols],
                )
                return None
            kind = (definition.underlying_type or "Edm.String").removeprefix("Edm.")
            allowed_value = allowed.get("Value") if isinstance(allowed, Mapping) else allowed
            return ValueThing(kind, symbol if allowed_value is None else allowed_value)
        if self._check_enum_value(symbol, expected, context):
            return ValueThing("EnumMember", f"{expected}/{symbol}")
        return ValueThing("String", symbol)

    def _check_enum_value(self, symbol: str, expected: str, context: MessageContext) -> bool:
        """Whether '#symbol' is rendered as an enum member of the expected type."""
        definition = self._type(expected)
        primitive = expected.startswith("Edm.")
        if definition is None and not primitive:
            self.sink.warning("odata-anno-dict", context.location, {"anno": context.anno(), "type": expected})
            return True
        if primitive or definition is None or not definition.is_enum:
            self._value_warning(context, type=expected, value=f'"#{symbol}"')
            return False
        if symbol not in (definition.members or ()):
            self._value_warning(
                context,
                "enum",
                type=expected,
                value=f'"#{symbol}"',
                rawvalues=[f"#{m}" for m in definition.members or ()],
            )
        return True

    def _check_flags(self, values: list[Any], expected: str, definition: TypeDefinition, context: MessageContext) -> None:
        if not definition.is_flags:
            self._value_warning(context, "incompval", str="collection", type=expected)
        for index, value in enumerate(values):
            with context.step(f"[{index}]"):
                if isinstance(value, Mapping) and value.get("#"):
                    self._check_enum_value(str(value["#"]), expected, context)
                else:
                    shown = value.get("=", value) if isinstance(value, Mapping) else value
                    self._value_warning(
                        context,
                        "enum",
                        type=expected,
                        value=shown,
                        rawvalues=[f"#{m}" for m in definition.members or ()],
                    )

    def _simple_value(self, value: Any, expected: str | None, context: MessageContext) -> tuple[str, str | None, Any]:
        """(XML kind, JSON type, rendered value) of a scalar annotation value."""
        definition = self._type(expected)
        resolved = self._resolve_type_definition(expected)
        resolved_definition = self._type(resolved)
        if resolved_definition is not None and resolved_definition.is_enum:
            self._value_warning(
                context,
                "enum",
                value=value,
                type=resolved,
                rawvalues=[f"#{m}" for m in resolved_definition.members or ()],
            )
        if definition is not None and definition.allowed is not None and str(value) not in definition.allowed.values:
            self._value_warning(context, "enum", value=value, type=resolved, rawvalues=list(definition.allowed.values))

        kind = "String"
        if isinstance(value, str):
            if resolved == "Edm.Boolean":
                kind = "Bool"
                if value not in ("true", "false"):
                    self._value_warning(context, value=value, type=resolved)
            elif resolved == "Edm.Decimal":
                kind = "Decimal"
                if not _is_number(value):
                    self._value_warning(context, value=value, type=resolved)
            elif resolved in ("Edm.Double", "Edm.Single"):
                kind = "Float"
                if not _is_number(value):
                    self._value_warning(context, value=value, type=resolved)
            elif self._is_complex(resolved):
                self._value_warning(context, value=value, type=resolved)
            elif self._is_enum(resolved):
                self._value_warning(context, value=value, type=resolved)
                kind = "EnumMember"
            elif resolved is not None and resolved.startswith("Edm.") and resolved not in _XML_STRING_TYPES:
                kind = resolved[len("Edm.") :]
            elif resolved is None or resolved in _XML_STRING_TYPES:
                resolved = "Edm.String"
        elif isinstance(value, bool):
            if resolved in (None, "Edm.Boolean", "Edm.PrimitiveType"):
                kind = "Bool"
                resolved = "Edm.Boolean"
            if resolved == "Edm.Boolean":
                value = "true" if value else "false"
            elif resolved != "Edm.String":
                self._value_warning(context, value=value, type=resolved)
        elif isinstance(value, (int, float)):
            if self._is_complex(resolved) or resolved in ("Edm.PropertyPath", "Edm.Boolean"):
                self._value_warning(context, value=value, type=resolved)
            elif resolved == "Edm.String":
                pass
            elif resolved == "Edm.Decimal":
                kind = "Decimal"
            elif resolved == "Edm.Double":
                kind = "Float"
            elif _is_integer(value):
                kind = "Int"
                if resolved is None or resolved == "Edm.PrimitiveType" or not resolved.startswith("Edm."):
                    resolved = "Edm.Int64"
            else:
                kind = "Float"
                if resolved is None or resolved == "Edm.PrimitiveType" or not resolved.startswith("Edm."):
                    resolved = "Edm.Double"
        elif value is None:
            if resolved in (None, "Edm.PrimitiveType", "Edm.String"):
                resolved = "Edm.String"
            else:
                self._value_warning(context, value=value, type=resolved)

        if resolved in EDM_PATH_TYPES:
            if resolved == "Edm.AnyPropertyPath":
                kind = "PropertyPath"
            resolved = EDM_PATH_TYPES[resolved]
        return kind, resolved, value

    def _collection(
        self, values: list[Any], term: str, expected: str | None, is_collection: bool, context: MessageContext
    ) -> Collection:
        collection = Collection()
        if expected and not is_collection:
            self._value_warning(context, "incompval", str="collection", type=expected)
        for index, value in enumerate(values):
            with context.step(f"[{index}]"):
                item: Node | None = None
                if isinstance(value, list):
                    self._value_warning(context, "nestedCollection")
                elif isinstance(value, Mapping):
                    if value.get("="):
                        item = self._path(value["="], expected)
                    elif value.get("#"):
                        self._value_warning(context, "enuminCollection")
                    elif value.get("$edmJson"):
                        item = self.edm_json.translate(value["$edmJson"], context)
                    else:
                        item = self._record(value, term, expected, is_collection, context)
                elif value is None:
                    self._simple_value(value, expected, context)
                    item = ValueThing("Null")
                else:
                    kind, json_type, rendered = self._simple_value(value, expected, context)
                    item = ValueThing(kind, rendered, json_type)
                if item is not None:
                    collection.items.append(item)
        return collection

    def _record(
        self,
        value: Mapping[str, Any],
        term: str,
        expected: str | None,
        is_collection: bool,
        context: MessageContext,
    ) -> Record:
        record = Record()
        if expected and not self._is_complex(expected):
            if self._type(expected) is None and not expected.startswith("Edm.") and not is_collection:
                self.sink.warning("odata-anno-dict", context.location, {"anno": context.anno(), "type": expected})
            else:
                self._value_warning(context, "incompval", str="structured", type=expected)
            return record

        actual: str | None = None
        explicit = value.get("$Type")
        if explicit:
            if not isinstance(explicit, str) or self._type(explicit) is None:
                if isinstance(explicit, str):
                    actual = explicit
                    self.sink.warning(
                        "odata-anno-type", context.location, {"anno": context.anno(), "type": actual}, variant="unknown"
                    )
                else:
                    actual = json.dumps(explicit)
                    self.sink.warning(
                        "odata-anno-type",
                        context.location,
                        {"anno": context.anno(), "code": "$Type", "rawvalue": actual},
                        variant="literal",
                    )
                record.type = record.json_type = actual
            else:
                actual = explicit
                definition = self._type(actual)
                if definition is not None and definition.abstract:
                    self.sink.warning(
                        "odata-anno-type",
                        context.location,
                        {"anno": context.anno(), "type": actual, "code": "$Type"},
                        variant="abstract",
                    )
                    if expected:
                        actual = expected
                elif expected and not self.dictionary.is_derived_from(actual, expected):
                    self.sink.warning(
                        "odata-anno-type",
                        context.location,
                        {"anno": context.anno(), "type": actual, "name": expected, "code": "$Type"},
                        variant="derived",
                    )
                    actual = expected
                record.type = actual
                reference = self.references.get(actual.split(".", 1)[0])
                if reference is not None:
                    record.json_type = f"{reference.uri}#{actual}"
        elif expected:
            actual = DEFAULT_RECORD_TYPES.get(expected, expected)
            definition = self._type(actual)
            if definition is not None and definition.abstract:
                self.sink.warning(
                    "odata-anno-type",
                    context.location,
                    {"anno": context.anno(), "type": expected, "code": "$Type"},
                    variant="abstract",
                )
            record.type = actual

        properties = self.dictionary.all_properties(actual)
        actual_definition = self._type(actual)
        for name, inner in value.items():
            if name == "$Type":
                continue
            with context.step(f".{name}"):
                if name.startswith("@"):
                    annotation = self.handle_term(name[1:], inner, context)
                    if annotation is not None:
                        record.annotations.append(annotation)
                    continue
                property_type = None
                if properties is not None:
                    property_type = properties.get(name)
                    if property_type is None and not (actual_definition is not None and actual_definition.open_type):
                        self.sink.warning(
                            "odata-anno-type", context.location, {"name": name, "anno": term, "type": actual}
                        )
                prop = PropertyValue(name=name)
                self._handle_value(inner, prop, term, property_type, context)
                record.properties.append(prop)
        return record


def _is_binding_parameter(param: Element) -> bool:
    carrier = param.items or param
    return carrier.type == "$self"


def _merge_steps(tree: dict[str, Any], steps: list[str], value: Any) -> None:
    node = tree
    for step in steps[:-1]:
        child = node.get(step)
        if not child:
            child = node[step] = {}
        if not isinstance(child, dict):
            # A scalar value already sits at this prefix
            return
        node = child
    node[steps[-1]] = value


def translate_annotations(
    prepared: PreparedModel, service: str, dictionary: VocabularyDictionary, sink: MessageSink
) -> AnnotationResult:
    """Translate the vocabulary annotations of one compiled service."""
    return AnnotationTranslator(prepared, service, dictionary, sink).translate()
