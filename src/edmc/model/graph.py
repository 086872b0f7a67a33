# src/edmc/model/graph.py
"""ContainmentGraph: entity containment topology as a NetworkX graph.

Built from the containment records in ModelState after the containment
pass. Answers questions about the containment hierarchy as a whole (root
containers, containees, containment cycles) without ad hoc traversals.
"""

from __future__ import annotations

from collections.abc import Iterable

import networkx as nx
from networkx import MultiDiGraph

from edmc.model.schema import SchemaGraph
from edmc.model.state import ModelState


class ContainmentGraph:
    """Containment edges between entities.

    Uses MultiDiGraph because a container may contain the same containee
    through several associations.
    """

    def __init__(self) -> None:
        self._graph: MultiDiGraph[str] = nx.MultiDiGraph()

    @classmethod
    def from_state(cls, schema: SchemaGraph, state: ModelState, names: Iterable[str]) -> ContainmentGraph:
        """Collect containment edges of the given containers.

        Args:
            schema: Graph used to resolve containment associations to their targets
            state: Side table with containee lists
            names: Definition names to consider as containers
        """
        graph = cls()
        for name in names:
            def_state = state.definitions.get(name)
            if def_state is None:
                continue
            graph._graph.add_node(name)
            for entry in def_state.containees:
                assoc = schema.element_at(entry.assoc)
                if assoc is None or assoc.target is None:
                    continue
                graph.add_edge(name, assoc.target, "/".join(entry.path))
        return graph

    def add_edge(self, container: str, containee: str, path: str) -> None:
        self._graph.add_edge(container, containee, key=path)

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def containees_of(self, name: str) -> list[str]:
        if not self._graph.has_node(name):
            return []
        return list(dict.fromkeys(self._graph.successors(name)))

    def is_root(self, name: str) -> bool:
        """Not contained by anything."""
        return not self._graph.has_node(name) or self._graph.in_degree(name) == 0

    def cycles(self) -> list[list[str]]:
        return [sorted(c) for c in nx.simple_cycles(nx.DiGraph(self._graph))]

