# src/edmc/model/services.py
"""Service roots and schema membership by longest name prefix."""

from __future__ import annotations

from edmc.contracts.enums import DefinitionKind
from edmc.model.schema import SchemaGraph


def schema_prefix(name: str) -> str:
    """Everything before the last dot; 'root' for undotted names."""
    head, dot, _ = name.rpartition(".")
    return head if dot else "root"


def base_name(name: str, schema: str | None) -> str:
    """Name relative to its schema."""
    if schema and name.startswith(f"{schema}."):
        return name[len(schema) + 1 :]
    return name


class ServiceIndex:
    """Overview of the services of a model.

    Service roots are sorted longest first so that the first prefix match
    is the most specific one.
    """

    def __init__(self, graph: SchemaGraph, requested: tuple[str, ...] | None = None) -> None:
        roots = [d.name for d in graph if d.kind is DefinitionKind.SERVICE]
        self.roots: list[str] = sorted(roots, key=len, reverse=True)
        self.requested: list[str] = [r for r in self.roots if requested is None or r in requested]
        self.schema_names: list[str] = list(self.roots)
        self.fallback_schema = self._find_fallback_schema(graph)

    @staticmethod
    def _find_fallback_schema(graph: SchemaGraph) -> str:
        names = [n.split(".") for n in graph.definitions]
        candidate = "root"
        i = 1
        while any(len(p) == 2 and p[0] == candidate for p in names):
            candidate = f"root{i}"
            i += 1
        return candidate

    def service_root_of(self, name: str | None, *, include_self: bool = True) -> str | None:
        if not name:
            return None
        for root in self.roots:
            if name.startswith(f"{root}.") or (include_self and name == root):
                return root
        return None

    def is_requested(self, name: str | None) -> bool:
        return self.service_root_of(name) in self.requested

    def add_schema(self, name: str) -> None:
        if name not in self.schema_names:
            self.schema_names.append(name)
            self.schema_names.sort(key=len, reverse=True)

    def schema_of(self, name: str | None) -> str | None:
        if not name:
            return None
        for schema in self.schema_names:
            if name.startswith(f"{schema}."):
                return schema
        return None
