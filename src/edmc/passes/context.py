# src/edmc/passes/context.py
"""Shared inputs of every pass."""

from __future__ import annotations

from dataclasses import dataclass, field

from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.model.graph import ContainmentGraph
from edmc.model.schema import Definition, Element, Location, SchemaGraph
from edmc.model.services import ServiceIndex
from edmc.model.state import ModelState


@dataclass(slots=True)
class CompilerContext:
    """Graph, side table, options and sink threaded through the passes.

    requested holds the definitions of the requested services; passes that
    add or remove definitions keep it in sync with the graph.
    """

    graph: SchemaGraph
    state: ModelState
    options: CompilerOptions
    sink: MessageSink
    services: ServiceIndex
    requested: dict[str, Definition] = field(default_factory=dict)
    containment: ContainmentGraph | None = None

    def target_of(self, element: Element) -> Definition | None:
        return self.graph.get(element.target)

    def element_at(self, location: Location | None) -> Element | None:
        if location is None:
            return None
        return self.graph.element_at(location)

    def partner_of(self, element: Element) -> Element | None:
        constraints = self.state.assoc(element).constraints
        if constraints is None:
            return None
        return self.element_at(constraints.partner)

    def owner_of(self, element: Element) -> Definition | None:
        return self.graph.get(element.owner)

    def node_at(self, location: Location) -> Definition | Element | None:
        """Resolve a location to its definition, bound action or element."""
        if len(location) == 2:
            return self.graph.get(location[1])
        if len(location) == 4 and location[2] == "actions":
            owner = self.graph.get(location[1])
            return (owner.actions or {}).get(location[3]) if owner is not None else None
        return self.graph.element_at(location)

    def siblings_of(self, element: Element) -> dict[str, Element]:
        """The member dictionary an element lives in."""
        parent = self.node_at(element.location[:-2])
        members = getattr(parent, element.location[-2], None) if parent is not None else None
        return members if isinstance(members, dict) else {}

    def add_definition(self, definition: Definition, *, requested: bool = True) -> None:
        self.graph.add_definition(definition)
        if requested:
            self.requested[definition.name] = definition
