# src/edmc/engine/types.py
"""Result types of the pass orchestrator.

Leaf module: imports only the model and contracts, so the annotation
translator and the CLI can depend on it without pulling in the passes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.model.graph import ContainmentGraph
from edmc.model.schema import Definition, SchemaGraph
from edmc.model.services import ServiceIndex, base_name
from edmc.model.state import ModelState, NavigationBinding, SchemaInfo


@dataclass(frozen=True, slots=True)
class EntitySet:
    name: str
    entity_type: str
    is_singleton: bool = False


@dataclass(frozen=True, slots=True)
class CompiledService:
    """Read-only view of one service after all passes ran.

    Attributes:
        name: Service root name
        schemas: Output schemas and schema references of the service
        definitions: Names of the definitions rendered in the service schemas
        entity_sets: Entity sets in definition order
        key_paths: Entity name -> ordered key reference paths
        bindings: Entity name -> navigation property bindings
    """

    name: str
    schemas: tuple[SchemaInfo, ...]
    definitions: tuple[str, ...]
    entity_sets: tuple[EntitySet, ...]
    key_paths: dict[str, tuple[str, ...]] = field(default_factory=dict)
    bindings: dict[str, tuple[NavigationBinding, ...]] = field(default_factory=dict)


@dataclass(slots=True)
class PreparedModel:
    """The transformed schema graph plus everything the passes derived."""

    graph: SchemaGraph
    state: ModelState
    options: CompilerOptions
    services: ServiceIndex
    sink: MessageSink
    requested: dict[str, Definition] = field(default_factory=dict)

    def containment(self) -> ContainmentGraph:
        return ContainmentGraph.from_state(self.graph, self.state, self.requested)

    def service_of(self, definition: Definition) -> str | None:
        schema = self.state.of(definition).schema_name
        return self.services.service_root_of(schema or definition.name)

    def definitions_of(self, service: str) -> list[Definition]:
        return [d for d in self.requested.values() if self.service_of(d) == service and d.name != service]

    def compiled_service(self, service: str) -> CompiledService:
        definitions = self.definitions_of(service)
        schemas = [
            info
            for name, info in self.state.schemas.items()
            if name == service or self.services.service_root_of(name, include_self=False) == service
        ]
        entity_sets: list[EntitySet] = []
        key_paths: dict[str, tuple[str, ...]] = {}
        bindings: dict[str, tuple[NavigationBinding, ...]] = {}
        for definition in definitions:
            if not definition.is_entity:
                continue
            def_state = self.state.of(definition)
            if def_state.key_paths is not None:
                key_paths[definition.name] = tuple(def_state.key_paths)
            if def_state.nav_bindings:
                bindings[definition.name] = tuple(def_state.nav_bindings)
            if def_state.has_entity_set:
                set_name = base_name(def_state.entity_set_name or definition.name, def_state.schema_name)
                entity_sets.append(
                    EntitySet(
                        name=set_name,
                        entity_type=definition.name,
                        is_singleton=self.state.is_singleton(definition),
                    )
                )
        return CompiledService(
            name=service,
            schemas=tuple(schemas),
            definitions=tuple(d.name for d in definitions),
            entity_sets=tuple(entity_sets),
            key_paths=key_paths,
            bindings=bindings,
        )

    def compiled_services(self) -> list[CompiledService]:
        return [self.compiled_service(name) for name in self.services.requested]
