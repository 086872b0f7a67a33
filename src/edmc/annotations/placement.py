# src/edmc/annotations/placement.py
"""Annotation carriers and where their annotations end up.

Every annotated node of the schema graph is described by one carrier
variant. A carrier has a standard target (the Edm node it becomes) and
some kinds have an alternative one: the schema for services, the entity
set for entities, the action or function import for unbound V4
callables. The term's AppliesTo list picks between them; terms without
AppliesTo always go to the standard target.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True, slots=True)
class ServiceCarrier:
    name: str

    @property
    def target(self) -> str:
        return f"{self.name}.EntityContainer"

    @property
    def alternative_target(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class EntityCarrier:
    """An entity; alternative_target is None when it has no entity set."""

    target: str
    alternative_target: str | None
    singleton: bool = False


@dataclass(frozen=True, slots=True)
class TypeCarrier:
    target: str
    structured: bool


@dataclass(frozen=True, slots=True)
class CallableCarrier:
    target: str
    kind: Literal["Action", "Function"]
    bound: bool
    alternative_target: str | None = None


@dataclass(frozen=True, slots=True)
class ElementCarrier:
    """A property, navigation property, parameter or return type."""

    target: str
    role: Literal["navigation", "return", "member"]
    to_many: bool = False
    is_collection: bool = False
    managed_association: bool = False


type Carrier = ServiceCarrier | EntityCarrier | TypeCarrier | CallableCarrier | ElementCarrier


@dataclass(frozen=True, slots=True)
class Placement:
    """Which targets receive an annotation.

    applied is False when the AppliesTo list matches neither target;
    alternative annotations of entities without entity set count as
    applied but are dropped.
    """

    standard: bool = False
    alternative: bool = False
    applied: bool = False


def _any(applies_to: Sequence[str], *names: str) -> bool:
    return any(name in applies_to for name in names)


def place(carrier: Carrier, applies_to: Sequence[str] | None, *, is_v2: bool) -> Placement:
    """Decide the targets of one annotation of a carrier."""
    if applies_to is None:
        return Placement(standard=True, applied=True)
    standard = alternative = False
    match carrier:
        case ServiceCarrier():
            alternative = "Schema" in applies_to and "EntityContainer" not in applies_to
            standard = "EntityContainer" in applies_to
        case EntityCarrier(singleton=singleton):
            if is_v2:
                alternative = _any(applies_to, "Singleton", "EntitySet", "Collection")
            elif singleton:
                alternative = "Singleton" in applies_to
            else:
                alternative = _any(applies_to, "EntitySet", "Collection")
            standard = "EntityType" in applies_to
        case TypeCarrier(structured=structured):
            standard = ("ComplexType" if structured else "TypeDefinition") in applies_to
        case CallableCarrier(kind=kind, bound=bound):
            container = f"{kind}Import"
            if is_v2:
                standard = kind in applies_to or (container in applies_to and not bound)
            else:
                standard = kind in applies_to
                alternative = container in applies_to and not bound
        case ElementCarrier(role="navigation", to_many=to_many):
            standard = "NavigationProperty" in applies_to or (to_many and "Collection" in applies_to)
        case ElementCarrier(role="return"):
            standard = "ReturnType" in applies_to
        case ElementCarrier(is_collection=is_collection):
            standard = _any(applies_to, "Parameter", "Property") or (is_collection and "Collection" in applies_to)
    applied = standard or alternative
    if not applied and isinstance(carrier, ElementCarrier) and carrier.managed_association:
        # Foreign keys carry the annotation
        applied = "Property" in applies_to
    if isinstance(carrier, EntityCarrier) and carrier.alternative_target is None:
        alternative = False
    return Placement(standard=standard, alternative=alternative, applied=applied)
