# src/edmc/api.py
"""Public entry points.

compile_csn() runs the whole compiler over one input model: the schema
graph is loaded, every preprocessing pass runs, and the vocabulary
annotations of each requested service are translated.

    result = compile_csn(csn, CompilerOptions(odata_version="v4"))
    for service in result.services:
        print(service.name, [s.name for s in service.compiled.entity_sets])
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from edmc.annotations.nodes import Annotations
from edmc.annotations.translator import AnnotationResult, translate_annotations
from edmc.annotations.vocabulary import VocabularyDictionary, VocabularyReference
from edmc.contracts.diagnostics import Diagnostic, MessageSink
from edmc.contracts.enums import Severity
from edmc.core.config import CompilerOptions
from edmc.core.logging import get_logger
from edmc.engine.orchestrator import compile_model
from edmc.engine.types import CompiledService, PreparedModel
from edmc.model.schema import SchemaGraph

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ServiceResult:
    """Structure and annotations of one compiled service."""

    compiled: CompiledService
    annotations: AnnotationResult

    @property
    def name(self) -> str:
        return self.compiled.name

    @property
    def annotation_groups(self) -> list[Annotations]:
        return self.annotations.groups

    @property
    def used_vocabularies(self) -> list[VocabularyReference]:
        return self.annotations.used_vocabularies


@dataclass(frozen=True, slots=True)
class CompilationResult:
    prepared: PreparedModel
    services: tuple[ServiceResult, ...]
    diagnostics: tuple[Diagnostic, ...]

    @property
    def has_errors(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self.diagnostics)

    def service(self, name: str) -> ServiceResult:
        """Result of one service.

        Raises:
            KeyError: If the service was not compiled
        """
        for service in self.services:
            if service.name == name:
                return service
        raise KeyError(f"Service {name!r} was not compiled")


def prepare_csn(
    csn: Mapping[str, Any], options: CompilerOptions | None = None, sink: MessageSink | None = None
) -> PreparedModel:
    """Load the schema graph and run the preprocessing passes only.

    Diagnostics are recorded on the sink and never raised.

    Raises:
        ModelLoadError: If the input is structurally malformed
    """
    options = options or CompilerOptions()
    sink = sink if sink is not None else MessageSink()
    graph = SchemaGraph.from_dict(csn)
    return compile_model(graph, options, sink)


def compile_csn(
    csn: Mapping[str, Any],
    options: CompilerOptions | None = None,
    dictionary: VocabularyDictionary | None = None,
    *,
    raise_on_error: bool = True,
) -> CompilationResult:
    """Compile an input model into per-service results.

    Args:
        csn: Input model with a 'definitions' mapping
        options: Compiler options, defaults when omitted
        dictionary: Vocabulary dictionary, the bundled one when omitted
        raise_on_error: Raise after the passes and after the annotations
            when errors were recorded

    Raises:
        ModelLoadError: If the input is structurally malformed
        CompilationError: If raise_on_error is set and errors were recorded
    """
    sink = MessageSink()
    prepared = prepare_csn(csn, options, sink)
    if raise_on_error:
        sink.throw_if_errors()

    dictionary = dictionary if dictionary is not None else VocabularyDictionary.load()
    services = tuple(
        ServiceResult(
            compiled=prepared.compiled_service(name),
            annotations=translate_annotations(prepared, name, dictionary, sink),
        )
        for name in prepared.services.requested
    )
    if raise_on_error:
        sink.throw_if_errors()

    logger.info(
        "compilation finished",
        services=[s.name for s in services],
        diagnostics=len(sink.diagnostics),
        errors=len(sink.errors()),
    )
    return CompilationResult(prepared=prepared, services=services, diagnostics=sink.diagnostics)
