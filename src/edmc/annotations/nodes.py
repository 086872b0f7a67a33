# src/edmc/annotations/nodes.py
"""Output nodes of the annotation translator.

The nodes describe the vocabulary annotations of one service independent
of the final serialization. to_json() yields the OData CSDL JSON form of
a node.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ValueThing kinds rendered as path objects in JSON.
_PATH_KINDS = frozenset(
    {"Path", "PropertyPath", "NavigationPropertyPath", "AnnotationPath", "ModelElementPath", "LabeledElementReference"}
)


@dataclass(slots=True)
class ValueThing:
    """A constant or path value.

    kind is the XML element or attribute name (String, Int, Bool, Path,
    EnumMember, Null, ...). json_type overrides the JSON rendering of
    literals, e.g. Edm.Int32 for reverse-translated integers.
    """

    kind: str
    value: Any = None
    json_type: str | None = None

    def to_json(self) -> Any:
        if self.kind == "Null":
            return None
        if self.kind in _PATH_KINDS:
            return {f"${self.kind}": self.value}
        if self.kind == "Bool" and isinstance(self.value, str):
            return self.value == "true"
        if self.kind == "EnumMember" and isinstance(self.value, str):
            # "T/a T/b" in XML, "a,b" in JSON
            return ",".join(member.rsplit("/", 1)[-1] for member in self.value.split())
        return self.value


@dataclass(slots=True)
class Collection:
    items: list[Node] = field(default_factory=list)

    def to_json(self) -> list[Any]:
        return [item.to_json() for item in self.items]


@dataclass(slots=True)
class PropertyValue:
    name: str
    value: Node | None = None
    annotations: list[Annotation] = field(default_factory=list)


@dataclass(slots=True)
class Record:
    type: str | None = None
    json_type: str | None = None
    properties: list[PropertyValue] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)

    def property(self, name: str) -> PropertyValue | None:
        return next((p for p in self.properties if p.name == name), None)

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.json_type:
            result["@type"] = self.json_type
        for prop in self.properties:
            result[prop.name] = prop.value.to_json() if prop.value is not None else None
            for anno in prop.annotations:
                result[f"{prop.name}{anno.json_key}"] = anno.json_value()
        for anno in self.annotations:
            result[anno.json_key] = anno.json_value()
        return result


@dataclass(slots=True)
class Expression:
    """A dynamic expression ($And, $Apply, $Cast, ...) without the leading $ in name."""

    name: str
    args: list[Node] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    json_attributes: dict[str, Any] = field(default_factory=dict)
    annotations: list[Annotation] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        if self.name == "Null":
            body: Any = True
        elif self.name == "LabeledElementReference":
            body = self.attributes.get("Name")
        else:
            rendered = [arg.to_json() for arg in self.args]
            body = rendered[0] if self.name in ("Not", "Neg") and len(rendered) == 1 else rendered
        result: dict[str, Any] = {f"${self.name}": body}
        for attr, value in self.attributes.items():
            if self.name != "LabeledElementReference" and ":" not in attr:
                result[f"${attr}"] = value
        for attr, value in self.json_attributes.items():
            result[f"${attr}"] = value
        for anno in self.annotations:
            result[anno.json_key] = anno.json_value()
        return result


type Node = ValueThing | Collection | Record | Expression


@dataclass(slots=True)
class Annotation:
    """One term application; invalid annotations are kept for diagnostics only."""

    term: str
    qualifier: str | None = None
    value: Node | None = None
    annotations: list[Annotation] = field(default_factory=list)
    invalid: bool = False

    @property
    def json_key(self) -> str:
        return f"@{self.term}#{self.qualifier}" if self.qualifier else f"@{self.term}"

    def json_value(self) -> Any:
        return self.value.to_json() if self.value is not None else True

    def to_json(self) -> dict[str, Any]:
        result = {self.json_key: self.json_value()}
        for nested in self.annotations:
            result[f"{self.json_key}{nested.json_key}"] = nested.json_value()
        return result


@dataclass(slots=True)
class Annotations:
    """All annotations of one target path; schema_level ones attach to the schema itself."""

    target: str
    annotations: list[Annotation] = field(default_factory=list)
    schema_level: bool = False

    def to_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for anno in self.annotations:
            if not anno.invalid:
                result.update(anno.to_json())
        return result
