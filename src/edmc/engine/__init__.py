"""Pass orchestration and its result types."""

from edmc.engine.orchestrator import compile_model
from edmc.engine.types import CompiledService, EntitySet, PreparedModel

__all__ = [
    "CompiledService",
    "EntitySet",
    "PreparedModel",
    "compile_model",
]
