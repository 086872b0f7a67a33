# tests/conftest.py
"""Shared test fixtures and model builders.

Input models are plain CSN-shaped dictionaries. The builders below keep
test models short:

    csn = model({
        "S": service(),
        "S.Books": entity({"ID": key(), "author": managed("S.Authors", "ID")}),
        "S.Authors": entity({"ID": key()}),
    })
    prepared = prepare(csn, odata_version="v4")

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from edmc.api import prepare_csn
from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.engine.types import PreparedModel
from edmc.model.schema import SchemaGraph
from edmc.model.services import ServiceIndex
from edmc.model.state import ModelState
from edmc.passes.context import CompilerContext
from edmc.passes.linking import assign_schemas

# =============================================================================
# Model builders
# =============================================================================


def model(definitions: dict[str, Any]) -> dict[str, Any]:
    return {"definitions": definitions}


def service(**annotations: Any) -> dict[str, Any]:
    return {"kind": "service", **{f"@{k}": v for k, v in annotations.items()}}


def entity(elements: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"kind": "entity", "elements": elements, **extra}


def key(type_name: str = "cds.Integer", **extra: Any) -> dict[str, Any]:
    return {"type": type_name, "key": True, **extra}


def element(type_name: str = "cds.String", **extra: Any) -> dict[str, Any]:
    return {"type": type_name, **extra}


def managed(target: str, *refs: str, **extra: Any) -> dict[str, Any]:
    """Managed association with one foreign key per referenced target element."""
    return {"type": "cds.Association", "target": target, "keys": [{"ref": [r]} for r in refs], **extra}


def unmanaged(target: str, on: list[Any], **extra: Any) -> dict[str, Any]:
    return {"type": "cds.Association", "target": target, "on": on, **extra}


def composition(target: str, on: list[Any], **extra: Any) -> dict[str, Any]:
    return {"type": "cds.Composition", "target": target, "on": on, **extra}


def backlink(assoc: str, partner: str) -> list[Any]:
    """ON condition `<assoc>.<partner> = $self`."""
    return [{"ref": [assoc, partner]}, "=", {"ref": ["$self"]}]


def options(**values: Any) -> CompilerOptions:
    return CompilerOptions(**values)


def prepare(csn: dict[str, Any], **option_values: Any) -> PreparedModel:
    """Run every preprocessing pass; diagnostics stay on prepared.sink."""
    return prepare_csn(csn, CompilerOptions(**option_values), MessageSink())


def make_context(csn: dict[str, Any], **option_values: Any) -> CompilerContext:
    """A context with schemas assigned, for running single passes."""
    graph = SchemaGraph.from_dict(csn)
    opts = CompilerOptions(**option_values)
    ctx = CompilerContext(
        graph=graph,
        state=ModelState(opts),
        options=opts,
        sink=MessageSink(),
        services=ServiceIndex(graph, opts.service_names),
    )
    assign_schemas(ctx)
    return ctx


def bookshop() -> dict[str, Any]:
    """Catalog service with a managed author association and an order composition."""
    return model(
        {
            "CatalogService": service(),
            "CatalogService.Books": entity(
                {
                    "ID": key(),
                    "title": element(length=111, doc="Title of the book"),
                    "author": managed("CatalogService.Authors", "ID"),
                }
            ),
            "CatalogService.Authors": entity(
                {
                    "ID": key(),
                    "name": element(),
                    "books": unmanaged("CatalogService.Books", backlink("books", "author"), cardinality={"max": "*"}),
                }
            ),
            "CatalogService.Orders": entity(
                {
                    "ID": key("cds.UUID"),
                    "items": composition(
                        "CatalogService.OrderItems", backlink("items", "parent"), cardinality={"max": "*"}
                    ),
                }
            ),
            "CatalogService.OrderItems": entity(
                {
                    "ID": key("cds.UUID"),
                    "parent": managed("CatalogService.Orders", "ID"),
                    "book": managed("CatalogService.Books", "ID"),
                    "quantity": element("cds.Integer"),
                }
            ),
        }
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sink() -> MessageSink:
    return MessageSink()


@pytest.fixture
def v4_options() -> CompilerOptions:
    return CompilerOptions(odata_version="v4")


@pytest.fixture
def v2_options() -> CompilerOptions:
    return CompilerOptions(odata_version="v2")


@pytest.fixture
def bookshop_csn() -> dict[str, Any]:
    return bookshop()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


__all__ = [
    "backlink",
    "bookshop",
    "composition",
    "element",
    "entity",
    "key",
    "make_context",
    "managed",
    "model",
    "options",
    "prepare",
    "service",
    "unmanaged",
]
