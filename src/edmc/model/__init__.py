"""Schema graph model, builtin types, and the derived-state side table."""

from edmc.model.graph import ContainmentGraph
from edmc.model.schema import (
    Cardinality,
    Definition,
    EffectiveType,
    Element,
    EnumSymbol,
    ForeignKey,
    SchemaGraph,
    clone_element,
    iter_all_elements,
    iter_members,
    walk_elements,
)
from edmc.model.services import ServiceIndex, base_name, schema_prefix
from edmc.model.state import (
    AssociationState,
    ConstraintPair,
    ConstraintSet,
    ContainmentEntry,
    DefinitionState,
    ElementState,
    ModelState,
    NavigationBinding,
    SchemaInfo,
)

__all__ = [
    "AssociationState",
    "Cardinality",
    "ConstraintPair",
    "ConstraintSet",
    "ContainmentEntry",
    "ContainmentGraph",
    "Definition",
    "DefinitionState",
    "EffectiveType",
    "Element",
    "ElementState",
    "EnumSymbol",
    "ForeignKey",
    "ModelState",
    "NavigationBinding",
    "SchemaGraph",
    "SchemaInfo",
    "ServiceIndex",
    "base_name",
    "clone_element",
    "iter_all_elements",
    "iter_members",
    "schema_prefix",
    "walk_elements",
]
