# src/edmc/model/state.py
"""Derived, non-persistent state attached to the schema graph by the passes.

The schema graph stays read-mostly: everything a pass computes that is not
a structural change (synthesized definitions, retargeted associations)
lands in ModelState, keyed by definition name or element location. Passes
read earlier results from here, which keeps their dependencies explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from edmc.contracts.errors import CompilerAssertion
from edmc.core.config import CompilerOptions
from edmc.model.schema import Cardinality, Definition, Element, Location


@dataclass(frozen=True, slots=True)
class ConstraintPair:
    """A referential constraint: dependent path must match principal path."""

    dependent: tuple[str, ...]
    principal: tuple[str, ...]

    @property
    def key(self) -> str:
        return ",".join((*self.dependent, *self.principal))

    def swapped(self) -> ConstraintPair:
        return ConstraintPair(dependent=self.principal, principal=self.dependent)


@dataclass(slots=True)
class ConstraintSet:
    """Constraints of one association.

    Mutable while the on-condition is resolved and the set is finalized;
    finalize() seals it. Afterwards only emptied() copies may replace it.
    """

    constraints: dict[str, ConstraintPair] = field(default_factory=dict)
    selfs: list[tuple[str, ...]] = field(default_factory=list)
    origins: list[Location] = field(default_factory=list)
    term_count: int = 0
    partner: Location | None = None
    finalized: bool = False

    def add(self, pair: ConstraintPair) -> None:
        self._check_open()
        self.constraints[pair.key] = pair

    def replace(self, key: str, pair: ConstraintPair) -> None:
        """Rewrite a pair in place, keeping its original key."""
        self._check_open()
        self.constraints[key] = pair

    def discard(self, key: str) -> None:
        self._check_open()
        del self.constraints[key]

    def clear(self) -> None:
        self._check_open()
        self.constraints.clear()

    def finalize(self) -> None:
        self._check_open()
        self.finalized = True

    def emptied(self) -> ConstraintSet:
        """A finalized copy without constraint pairs."""
        return replace(self, constraints={}, selfs=list(self.selfs), origins=list(self.origins), finalized=True)

    @property
    def is_backlink_shape(self) -> bool:
        """Exactly one $self comparison and nothing else."""
        return len(self.selfs) == 1 and self.term_count == 1

    def _check_open(self) -> None:
        if self.finalized:
            raise CompilerAssertion("Constraint set is finalized and can't be modified")


@dataclass(slots=True)
class AssociationState:
    location: Location
    original_target: str | None = None
    constraints: ConstraintSet | None = None
    self_references: list[Location] = field(default_factory=list)
    # Working copy; partner finalization may add src/srcmin
    cardinality: Cardinality | None = None
    is_to_container: bool = False
    no_partner: bool = False
    external_ref: bool = False


@dataclass(frozen=True, slots=True)
class ContainmentEntry:
    """One containment edge of a container: member path and association location."""

    path: tuple[str, ...]
    assoc: Location


@dataclass(frozen=True, slots=True)
class NavigationBinding:
    path: str
    target: str


@dataclass(slots=True)
class ElementState:
    edm_type: str | None = None
    facets: dict[str, Any] = field(default_factory=dict)
    is_collection: bool = False
    not_null_collection: bool | None = None
    # Returned entity collections carry no Nullable facet
    no_nullable: bool = False


@dataclass(slots=True)
class DefinitionState:
    name: str
    schema_name: str | None = None
    edm_name: str | None = None
    entity_set_name: str | None = None
    has_entity_set: bool | None = None
    container_names: list[str] | None = None
    containees: list[ContainmentEntry] = field(default_factory=list)
    keys: dict[str, Element] = field(default_factory=dict)
    key_paths: list[str] | None = None
    target_paths: list[tuple[str, ...]] = field(default_factory=list)
    nav_bindings: list[NavigationBinding] = field(default_factory=list)
    set_attributes: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, Location] = field(default_factory=dict)
    is_proxy: bool = False
    is_param_entity: bool = False
    is_exposed_type: bool = False
    origin: str | None = None
    exposed_types: list[str] = field(default_factory=list)

    def decide_entity_set(self, value: bool) -> None:
        """Record the entity set placement; it is taken exactly once."""
        if self.has_entity_set is not None:
            raise CompilerAssertion(f"Entity set of {self.name!r} already decided")
        self.has_entity_set = value

    @property
    def is_containee(self) -> bool:
        names = self.container_names
        if not names:
            return False
        return len(names) > 1 or names[0] != self.name


@dataclass(slots=True)
class SchemaInfo:
    """An output schema or a reference to an externally hosted one."""

    name: str
    is_reference: bool = False
    uri: str | None = None
    namespace: str | None = None


class ModelState:
    """Side table for everything the passes derive."""

    def __init__(self, options: CompilerOptions) -> None:
        self.options = options
        self.definitions: dict[str, DefinitionState] = {}
        self.associations: dict[Location, AssociationState] = {}
        self.elements: dict[Location, ElementState] = {}
        self.derived_annotations: dict[Location, dict[str, Any]] = {}
        self.replaced_annotations: dict[Location, dict[str, Any]] = {}
        self.schemas: dict[str, SchemaInfo] = {}

    def of(self, definition: Definition | str) -> DefinitionState:
        name = definition if isinstance(definition, str) else definition.name
        state = self.definitions.get(name)
        if state is None:
            state = DefinitionState(name=name)
            self.definitions[name] = state
        return state

    def assoc(self, element: Element) -> AssociationState:
        state = self.associations.get(element.location)
        if state is None:
            cardinality = replace(element.cardinality) if element.cardinality is not None else None
            state = AssociationState(location=element.location, cardinality=cardinality)
            self.associations[element.location] = state
        return state

    def element(self, node: Element | Definition) -> ElementState:
        state = self.elements.get(node.location)
        if state is None:
            state = ElementState()
            self.elements[node.location] = state
        return state

    # Annotations -----------------------------------------------------------

    def assign_annotation(self, node: Element | Definition, name: str, value: Any) -> None:
        """Derive an annotation unless the node carries a non-null one."""
        if value is None or self._explicit(node).get(name) is not None:
            return
        bucket = self.derived_annotations.setdefault(node.location, {})
        bucket.setdefault(name, value)

    def set_annotation(self, node: Element | Definition, name: str, value: Any) -> None:
        """Derive an annotation, replacing an earlier derived value."""
        self.derived_annotations.setdefault(node.location, {})[name] = value

    def replace_annotation(self, node: Element | Definition, name: str, value: Any) -> None:
        """Rewrite an explicit annotation; None drops it from the rendered output."""
        self.replaced_annotations.setdefault(node.location, {})[name] = value

    def _explicit(self, node: Element | Definition) -> dict[str, Any]:
        replaced = self.replaced_annotations.get(node.location)
        return {**node.annotations, **replaced} if replaced else node.annotations

    def annotation(self, node: Element | Definition, name: str, default: Any = None) -> Any:
        explicit_annotations = self._explicit(node)
        explicit = explicit_annotations.get(name)
        if explicit is not None:
            return explicit
        derived = self.derived_annotations.get(node.location, {})
        if name in derived:
            return derived[name]
        return default if name not in explicit_annotations else None

    def has_annotation(self, node: Element | Definition, name: str) -> bool:
        return name in self._explicit(node) or name in self.derived_annotations.get(node.location, {})

    def annotations_of(self, node: Element | Definition) -> dict[str, Any]:
        """Explicit annotations overlaid on derived ones, explicit order first."""
        derived = self.derived_annotations.get(node.location, {})
        merged = dict(self._explicit(node))
        for name, value in derived.items():
            if merged.get(name) is None:
                merged[name] = value
        return merged

    # Rendering predicates --------------------------------------------------

    def is_navigable(self, element: Element) -> bool:
        navigable = self.annotation(element, "@odata.navigable")
        return navigable is None or bool(navigable)

    def is_rendered(self, element: Element | None) -> bool:
        """Whether an element becomes an Edm property or navigation property."""
        if element is None:
            return False
        if element.is_association:
            not_ignored = True
            navigable = self.is_navigable(element)
        else:
            not_ignored = not self.annotation(element, "@cds.api.ignore")
            navigable = True
        if self.annotation(element, "@odata.foreignKey4"):
            return not_ignored and self.options.render_foreign_keys
        return not_ignored and navigable

    def is_singleton(self, definition: Definition) -> bool:
        """@odata.singleton, or @odata.singleton.nullable without an explicit singleton flag."""
        singleton = self.annotation(definition, "@odata.singleton")
        has_nullable = self.annotation(definition, "@odata.singleton.nullable") is not None
        return bool(singleton) or (singleton is None and has_nullable)

    # Cardinality -----------------------------------------------------------

    def effective_target_cardinality(self, element: Element, partner: Element | None) -> tuple[int | str, int | str]:
        """(min, max) of the association target after constraint finalization.

        A partner's derived source cardinality takes precedence over the
        association's own declaration.
        """
        constraints = self.assoc(element).constraints
        if constraints is None or not constraints.finalized:
            raise CompilerAssertion(f"Constraints missing or not finalized: {element.name!r}")
        low: int | str = 0
        high: int | str = 1
        if partner is not None:
            partner_card = self.assoc(partner).cardinality
            if partner_card is not None:
                if partner_card.srcmin:
                    low = partner_card.srcmin
                if partner_card.src:
                    high = partner_card.src
        else:
            own = self.assoc(element).cardinality
            if own is not None:
                if own.min:
                    low = own.min
                if own.max:
                    high = own.max
        return low, high
