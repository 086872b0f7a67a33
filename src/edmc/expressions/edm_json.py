# src/edmc/expressions/edm_json.py
"""EDM JSON ($edmJson values) to annotation output nodes.

Users can write an annotation value directly in its EDM JSON form. A
mapping holding exactly one dynamic expression key becomes an Expression
node; without one it is a record, a single-key value ({"$Path": ...}) or
a literal. Nested "@Term" keys become annotations through the term
handler of the annotation translator.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from edmc.annotations.context import MessageContext
from edmc.annotations.nodes import Annotation, Collection, Expression, Node, PropertyValue, Record, ValueThing
from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.model.builtins import EDM_FACETS

type TermHandler = Callable[[str, Any, MessageContext], Annotation | None]

_TYPE_ATTRIBUTES = ("$Type", *(f"${facet}" for facet in EDM_FACETS), "@sap.variable.scale")


@dataclass(frozen=True, slots=True)
class DynamicExpression:
    """How one dynamic expression key is translated.

    attributes become XML attributes, json_attributes only appear in
    JSON; children=False expressions carry no operands.
    """

    attributes: tuple[str, ...] = ()
    json_attributes: tuple[str, ...] = ()
    annotatable: bool = True
    children: bool = True


_PLAIN = DynamicExpression()
_TYPED = DynamicExpression(attributes=_TYPE_ATTRIBUTES, json_attributes=("$Collection",))

DYNAMIC_EXPRESSIONS: dict[str, DynamicExpression] = {
    **{
        key: _PLAIN
        for key in (
            "$And", "$Or", "$Not", "$Eq", "$Ne", "$Gt", "$Ge", "$Lt", "$Le", "$Has", "$In",
            "$Add", "$Sub", "$Neg", "$Mul", "$Div", "$DivBy", "$Mod", "$If", "$UrlRef",
        )
    },
    "$Apply": DynamicExpression(attributes=("$Function",)),
    "$Cast": _TYPED,
    "$IsOf": _TYPED,
    "$LabeledElement": DynamicExpression(attributes=("$Name",)),
    "$LabeledElementReference": DynamicExpression(annotatable=False, children=False),
    "$Null": DynamicExpression(children=False),
}


def _literal_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "Bool"
    if isinstance(value, int):
        return "Int"
    if isinstance(value, float):
        return "Decimal"
    return "String"


class EdmJsonTranslator:
    def __init__(self, options: CompilerOptions, sink: MessageSink, term_handler: TermHandler) -> None:
        self.options = options
        self.sink = sink
        self.term_handler = term_handler

    def translate(self, value: Any, context: MessageContext) -> Node | None:
        if value is None:
            return None
        dynamic = [key for key in DYNAMIC_EXPRESSIONS if isinstance(value, Mapping) and key in value]
        if len(dynamic) > 1:
            self.sink.warning(
                "odata-anno-value",
                context.location,
                {"anno": context.anno(), "rawvalues": dynamic},
                variant="multexpr",
            )
            return None
        if dynamic:
            return self._expression(dynamic[0], value, context)
        if isinstance(value, list):
            return Collection(items=[n for n in (self.translate(v, context) for v in value) if n is not None])
        if isinstance(value, Mapping):
            if len(value) == 1:
                key, inner = next(iter(value.items()))
                return ValueThing(kind=key.removeprefix("$"), value=inner)
            return self._record(value, context)
        kind = _literal_kind(value)
        return ValueThing(kind=kind, value=value, json_type="Edm.Int32" if kind == "Int" else f"Edm.{kind}")

    def _record(self, value: Mapping[str, Any], context: MessageContext) -> Record:
        record = Record()
        pending: dict[str, list[Annotation]] = {}
        for key, inner in value.items():
            if key == "@type":
                record.json_type = inner
                record.type = str(inner).rsplit("#", 1)[-1]
                continue
            head, at, tail = key.partition("@")
            if at:
                annotation = self.term_handler(tail, inner, context)
                if annotation is None:
                    continue
                if head:
                    pending.setdefault(head, []).append(annotation)
                else:
                    record.annotations.append(annotation)
                continue
            with context.step(f".{head}"):
                record.properties.append(PropertyValue(name=head, value=self.translate(inner, context)))
        for name, annotations in pending.items():
            prop = record.property(name)
            if prop is not None:
                prop.annotations[:0] = annotations
        return record

    def _expression(self, tag: str, value: Mapping[str, Any], context: MessageContext) -> Expression:
        definition = DYNAMIC_EXPRESSIONS[tag]
        node = Expression(name=tag.removeprefix("$"))
        if tag == "$LabeledElementReference":
            node.attributes["Name"] = value[tag]
            return node
        for key, inner in value.items():
            if definition.annotatable and key.startswith("@") and not key.startswith("@sap."):
                annotation = self.term_handler(key[1:], inner, context)
                if annotation is not None:
                    node.annotations.append(annotation)
            elif key in definition.attributes:
                if key.startswith("@sap.") and self.options.is_v2:
                    node.attributes[f"sap:{key[5:].replace('.', '-')}"] = inner
                elif key.startswith("$"):
                    node.attributes[key[1:]] = inner
            elif key in definition.json_attributes:
                node.json_attributes[key[1:]] = inner
            elif definition.children and key == tag:
                operands = inner if isinstance(inner, list) else [inner]
                for operand in operands:
                    child = self.translate(operand, context)
                    if child is not None:
                        node.args.append(child)
        return node
