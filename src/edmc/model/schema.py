# src/edmc/model/schema.py
"""Schema graph: definitions and elements in one flat arena.

All definitions live in SchemaGraph.definitions keyed by fully qualified
name. Cross references (association targets, named types) are names and
resolved by lookup, never object pointers. Elements carry their location,
the path into the graph used by diagnostics and by the derived-state side
table (see edmc.model.state).
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from edmc.contracts.enums import DefinitionKind
from edmc.contracts.errors import ModelLoadError
from edmc.model.builtins import is_association_type, is_builtin_type

type Location = tuple[str, ...]

_COMPOSITION = "cds.Composition"


@dataclass(slots=True)
class Cardinality:
    """Association cardinality as declared in the model.

    src/srcmin describe the source side, min/max the target side. Values
    are ints or '*'.
    """

    src: int | str | None = None
    srcmin: int | None = None
    min: int | None = None
    max: int | str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Cardinality:
        return cls(src=raw.get("src"), srcmin=raw.get("srcmin"), min=raw.get("min"), max=raw.get("max"))

    def is_to_many(self) -> bool:
        return self.max == "*" or (isinstance(self.max, int) and self.max > 1)


@dataclass(slots=True)
class ForeignKey:
    """One foreign key of a managed association.

    ref addresses the target element (possibly nested), generated_name is
    the name of the foreign key element in the source entity.
    """

    ref: tuple[str, ...]
    generated_name: str
    alias: str | None = None


@dataclass(slots=True)
class EnumSymbol:
    name: str
    val: Any = None
    has_val: bool = False
    symbol_ref: str | None = None
    doc: str | None = None
    annotations: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, eq=False)
class Element:
    """A typed member: scalar, structured, arrayed or association.

    owner is the name of the definition whose member tree contains the
    element; element_path is the chain of member names from that owner.
    """

    name: str
    location: Location
    owner: str
    element_path: tuple[str, ...]
    type: str | None = None
    key: bool = False
    not_null: bool | None = None
    virtual: bool = False
    target: str | None = None
    keys: list[ForeignKey] | None = None
    on: list[Any] | None = None
    cardinality: Cardinality | None = None
    elements: dict[str, Element] | None = None
    items: Element | None = None
    enum: dict[str, EnumSymbol] | None = None
    default: dict[str, Any] | None = None
    length: int | None = None
    precision: int | None = None
    scale: int | str | None = None
    srid: int | None = None
    doc: str | None = None
    annotations: dict[str, Any] = field(default_factory=dict)

    @property
    def is_association(self) -> bool:
        return self.target is not None or is_association_type(self.type)

    @property
    def is_composition(self) -> bool:
        return self.type == _COMPOSITION

    @property
    def is_managed(self) -> bool:
        return self.is_association and self.keys is not None

    @property
    def is_unmanaged(self) -> bool:
        return self.is_association and self.on is not None

    @property
    def abs_path(self) -> tuple[str, ...]:
        return (self.owner, *self.element_path)

    def anno(self, name: str, default: Any = None) -> Any:
        return self.annotations.get(name, default)


@dataclass(slots=True, eq=False)
class Definition:
    """A named node in the schema graph."""

    name: str
    kind: DefinitionKind
    elements: dict[str, Element] = field(default_factory=dict)
    params: dict[str, Element] | None = None
    returns: Element | None = None
    actions: dict[str, Definition] | None = None
    bound_to: str | None = None
    type: str | None = None
    items: Element | None = None
    enum: dict[str, EnumSymbol] | None = None
    length: int | None = None
    precision: int | None = None
    scale: int | str | None = None
    srid: int | None = None
    doc: str | None = None
    annotations: dict[str, Any] = field(default_factory=dict)
    # Only set for kind REFERENCE
    reference_uri: str | None = None
    reference_namespace: str | None = None

    @property
    def location(self) -> Location:
        if self.bound_to is not None:
            return ("definitions", self.bound_to, "actions", self.name)
        return ("definitions", self.name)

    @property
    def is_entity(self) -> bool:
        return self.kind is DefinitionKind.ENTITY

    @property
    def is_callable(self) -> bool:
        return self.kind in (DefinitionKind.ACTION, DefinitionKind.FUNCTION)

    def anno(self, name: str, default: Any = None) -> Any:
        return self.annotations.get(name, default)


class SchemaGraph:
    """Arena of definitions addressed by fully qualified name."""

    def __init__(self, definitions: dict[str, Definition] | None = None) -> None:
        self.definitions: dict[str, Definition] = definitions if definitions is not None else {}

    def __contains__(self, name: object) -> bool:
        return name in self.definitions

    def __getitem__(self, name: str) -> Definition:
        return self.definitions[name]

    def __iter__(self) -> Iterator[Definition]:
        return iter(list(self.definitions.values()))

    def __len__(self) -> int:
        return len(self.definitions)

    def get(self, name: str | None) -> Definition | None:
        if name is None:
            return None
        return self.definitions.get(name)

    def add_definition(self, definition: Definition) -> None:
        if definition.name in self.definitions:
            raise ValueError(f"Definition {definition.name!r} already exists")
        self.definitions[definition.name] = definition

    def remove_definition(self, name: str) -> Definition:
        return self.definitions.pop(name)

    def rename_definition(self, old: str, new: str) -> None:
        """Rename a definition and rewrite every type and target reference to it."""
        if new in self.definitions:
            raise ValueError(f"Definition {new!r} already exists")
        definition = self.definitions.pop(old)
        definition.name = new
        self.definitions[new] = definition
        relocate_definition(definition)
        for other in self.definitions.values():
            for element in iter_all_elements(other):
                if element.target == old:
                    element.target = new
                if element.type == old:
                    element.type = new
            if other.type == old:
                other.type = new

    def element_at(self, location: Location) -> Element | None:
        """Resolve a location tuple back to its element."""
        if len(location) < 2 or location[0] != "definitions":
            return None
        node: Any = self.get(location[1])
        steps = list(location[2:])
        while steps and node is not None:
            kind = steps.pop(0)
            if kind == "returns":
                node = node.returns
                continue
            if kind == "items":
                node = node.items
                continue
            if not steps:
                return None
            name = steps.pop(0)
            container = getattr(node, kind, None)
            node = container.get(name) if isinstance(container, dict) else None
        return node if isinstance(node, Element) else None

    def type_definition(self, node: Element | Definition) -> Definition | None:
        """The named (non-builtin) definition a node is typed with, if any."""
        if node.type is None or is_builtin_type(node.type):
            return None
        return self.get(node.type)

    def structured_elements(self, node: Element | Definition) -> dict[str, Element] | None:
        """Members of a structured node, following named type chains."""
        seen: set[str] = set()
        current: Element | Definition | None = node
        while current is not None:
            if current.elements:
                return current.elements
            if isinstance(current, Element) and current.items is not None:
                current = current.items
                continue
            if current.type is None or current.type in seen:
                return None
            seen.add(current.type)
            current = self.type_definition(current)
        return None

    def is_structured(self, node: Element | Definition) -> bool:
        return not (isinstance(node, Element) and node.is_association) and bool(self.structured_elements(node))

    def effective_type(self, node: Element | Definition) -> EffectiveType:
        """Follow the named type chain down to a builtin type.

        Facets and enum declared closest to the node win.
        """
        result = EffectiveType()
        seen: set[str] = set()
        current: Element | Definition | None = node
        while current is not None:
            for facet in ("length", "precision", "scale", "srid"):
                if getattr(result, facet) is None:
                    setattr(result, facet, getattr(current, facet))
            if result.enum is None and current.enum:
                result.enum = current.enum
            if current.type is None or is_builtin_type(current.type):
                result.type = current.type
                return result
            if current.type in seen:
                return result
            seen.add(current.type)
            current = self.type_definition(current)
        return result

    @classmethod
    def from_dict(cls, csn: Mapping[str, Any]) -> SchemaGraph:
        """Build a schema graph from a CSN-shaped mapping.

        Raises:
            ModelLoadError: If the input is structurally malformed.
        """
        raw_definitions = csn.get("definitions")
        if not isinstance(raw_definitions, Mapping):
            raise ModelLoadError("Model has no 'definitions' mapping")
        graph = cls()
        for name, raw in raw_definitions.items():
            graph.definitions[name] = _load_definition(name, raw)
        return graph


@dataclass(slots=True)
class EffectiveType:
    type: str | None = None
    length: int | None = None
    precision: int | None = None
    scale: int | str | None = None
    srid: int | None = None
    enum: dict[str, EnumSymbol] | None = None


def _annotations(raw: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in raw.items() if k.startswith("@")}


def _load_definition(name: str, raw: Any, bound_to: str | None = None) -> Definition:
    location: Location = ("definitions", name) if bound_to is None else ("definitions", bound_to, "actions", name)
    if not isinstance(raw, Mapping):
        raise ModelLoadError("Definition must be a mapping", location)
    try:
        kind = DefinitionKind(raw.get("kind", ""))
    except ValueError as e:
        raise ModelLoadError(f"Unknown definition kind {raw.get('kind')!r}", location) from e

    owner = name if bound_to is None else bound_to
    definition = Definition(
        name=name,
        kind=kind,
        bound_to=bound_to,
        type=raw.get("type"),
        length=raw.get("length"),
        precision=raw.get("precision"),
        scale=raw.get("scale"),
        srid=raw.get("srid"),
        doc=raw.get("doc"),
        annotations=_annotations(raw),
        enum=_load_enum(raw.get("enum"), location),
    )
    if "elements" in raw:
        definition.elements = _load_members(raw["elements"], (*location, "elements"), owner, ())
    if "params" in raw:
        definition.params = _load_members(raw["params"], (*location, "params"), owner, ())
    if "returns" in raw:
        definition.returns = _load_element("returns", raw["returns"], (*location, "returns"), owner, ())
    if "items" in raw:
        definition.items = _load_items(raw["items"], (*location, "items"), owner, ())
    if "actions" in raw:
        if kind is not DefinitionKind.ENTITY:
            raise ModelLoadError("Only entities can have bound actions", location)
        definition.actions = {a: _load_definition(a, r, bound_to=name) for a, r in raw["actions"].items()}
    return definition


def _load_members(
    raw: Any, location: Location, owner: str, element_path: tuple[str, ...]
) -> dict[str, Element]:
    if not isinstance(raw, Mapping):
        raise ModelLoadError("Members must be a mapping", location)
    return {
        n: _load_element(n, r, (*location, n), owner, (*element_path, n)) for n, r in raw.items()
    }


def _load_items(raw: Any, location: Location, owner: str, element_path: tuple[str, ...]) -> Element:
    if not isinstance(raw, Mapping):
        raise ModelLoadError("'items' must be a mapping", location)
    if "items" in raw:
        raise ModelLoadError("Arrays of arrays are not supported", location)
    if is_association_type(raw.get("type")) or "target" in raw:
        raise ModelLoadError("Associations can't be array items", location)
    return _load_element(element_path[-1] if element_path else "items", raw, location, owner, element_path)


def _load_element(
    name: str, raw: Any, location: Location, owner: str, element_path: tuple[str, ...]
) -> Element:
    if not isinstance(raw, Mapping):
        raise ModelLoadError("Element must be a mapping", location)
    element = Element(
        name=name,
        location=location,
        owner=owner,
        element_path=element_path,
        type=raw.get("type"),
        key=bool(raw.get("key", False)),
        not_null=raw.get("notNull"),
        virtual=bool(raw.get("virtual", False)),
        target=raw.get("target"),
        on=raw.get("on"),
        default=raw.get("default"),
        length=raw.get("length"),
        precision=raw.get("precision"),
        scale=raw.get("scale"),
        srid=raw.get("srid"),
        doc=raw.get("doc"),
        annotations=_annotations(raw),
        enum=_load_enum(raw.get("enum"), location),
    )
    if element.target is not None and element.type is None:
        element.type = "cds.Association"
    if "cardinality" in raw:
        element.cardinality = Cardinality.from_dict(raw["cardinality"])
    if "keys" in raw:
        element.keys = [_load_foreign_key(name, k, location) for k in raw["keys"]]
    if element.target is not None and element.keys is None and element.on is None:
        raise ModelLoadError("Association needs either 'keys' or 'on'", location)
    if "elements" in raw:
        element.elements = _load_members(raw["elements"], (*location, "elements"), owner, element_path)
    if "items" in raw:
        element.items = _load_items(raw["items"], (*location, "items"), owner, element_path)
    return element


def _load_foreign_key(assoc_name: str, raw: Any, location: Location) -> ForeignKey:
    if not isinstance(raw, Mapping) or not raw.get("ref"):
        raise ModelLoadError("Foreign key needs a non-empty 'ref'", location)
    ref = tuple(str(step) for step in raw["ref"])
    alias = raw.get("as")
    generated = raw.get("$generatedFieldName") or f"{assoc_name}_{alias or '_'.join(ref)}"
    return ForeignKey(ref=ref, generated_name=generated, alias=alias)


def _load_enum(raw: Any, location: Location) -> dict[str, EnumSymbol] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ModelLoadError("'enum' must be a mapping", location)
    symbols: dict[str, EnumSymbol] = {}
    for name, spec in raw.items():
        spec = spec or {}
        symbols[name] = EnumSymbol(
            name=name,
            val=spec.get("val"),
            has_val="val" in spec,
            symbol_ref=spec.get("#"),
            doc=spec.get("doc"),
            annotations=_annotations(spec),
        )
    return symbols


def iter_members(node: Element | Definition) -> Iterator[Element]:
    """Direct members of a node (elements, params, returns, items)."""
    if node.elements:
        yield from node.elements.values()
    if isinstance(node, Definition):
        if node.params:
            yield from node.params.values()
        if node.returns is not None:
            yield node.returns
    if node.items is not None:
        yield node.items


def iter_all_elements(definition: Definition) -> Iterator[Element]:
    """Every element nested anywhere in a definition, bound actions included."""
    stack: list[Element] = list(iter_members(definition))
    for action in (definition.actions or {}).values():
        stack.extend(iter_members(action))
    while stack:
        element = stack.pop(0)
        yield element
        stack[0:0] = list(iter_members(element))


def clone_element(
    element: Element, name: str, location: Location, owner: str, element_path: tuple[str, ...]
) -> Element:
    """Deep copy an element under a new location and owner."""
    clone = copy.deepcopy(element)
    clone.name = name
    _relocate_element(clone, location, owner, element_path)
    return clone


def _relocate_element(element: Element, location: Location, owner: str, element_path: tuple[str, ...]) -> None:
    element.location = location
    element.owner = owner
    element.element_path = element_path
    if element.elements:
        for n, sub in element.elements.items():
            _relocate_element(sub, (*location, "elements", n), owner, (*element_path, n))
    if element.items is not None:
        _relocate_element(element.items, (*location, "items"), owner, element_path)


def relocate_definition(definition: Definition) -> None:
    """Recompute member locations after a definition was renamed or synthesized."""
    owner = definition.bound_to or definition.name
    base = definition.location
    for n, element in definition.elements.items():
        _relocate_element(element, (*base, "elements", n), owner, (n,))
    for n, param in (definition.params or {}).items():
        _relocate_element(param, (*base, "params", n), owner, (n,))
    if definition.returns is not None:
        _relocate_element(definition.returns, (*base, "returns"), owner, ())
    if definition.items is not None:
        _relocate_element(definition.items, (*base, "items"), owner, ())
    for action in (definition.actions or {}).values():
        action.bound_to = definition.name
        relocate_definition(action)


def walk_elements(node: Element | Definition, path: tuple[str, ...] = ()) -> Iterator[tuple[Element, tuple[str, ...]]]:
    """Elements of a node and of its anonymous sub-structures, depth first.

    Named types are not followed; yields (element, member path).
    """
    members = node.elements
    if not members and node.items is not None:
        members = node.items.elements
    for name, element in (members or {}).items():
        element_path = (*path, name)
        yield element, element_path
        if element.elements or (element.items is not None and element.items.elements):
            yield from walk_elements(element, element_path)
