# src/edmc/annotations/vocabulary.py
"""Vocabulary references and the term/type dictionary.

The dictionary describes terms (Type, AppliesTo) and types (complex,
enum and type definitions) of the standard vocabularies. A minimal
dictionary is bundled with the package; a complete one can be loaded
from a YAML file of the same shape:

    terms:
      Common.Label:
        Type: Edm.String
        AppliesTo: [Property, EntityType]
    types:
      UI.DataField:
        $kind: ComplexType
        BaseType: UI.DataFieldAbstract
        Properties:
          Value: Edm.Untyped
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from edmc.annotations.context import MessageContext
from edmc.contracts.diagnostics import MessageSink
from edmc.core.config import CompilerOptions
from edmc.core.logging import get_logger

logger = get_logger(__name__)

_OASIS = ("Aggregation", "Authorization", "Capabilities", "Core", "JSON", "Measures", "Repeatability", "Temporal", "Validation")
_SAP = (
    "Analytics",
    "CodeList",
    "Common",
    "Communication",
    "DataIntegration",
    "EntityRelationship",
    "Graph",
    "Hierarchy",
    "HTML5",
    "ODM",
    "Offline",
    "PDF",
    "PersonalData",
    "Session",
    "UI",
)


@dataclass(frozen=True, slots=True)
class VocabularyReference:
    """Alias, namespace and document location of a referenced vocabulary."""

    alias: str
    namespace: str
    uri: str
    builtin: bool = True


VOCABULARY_REFERENCES: dict[str, VocabularyReference] = {
    **{
        alias: VocabularyReference(
            alias=alias,
            namespace=f"Org.OData.{alias}.V1",
            uri=f"https://oasis-tcs.github.io/odata-vocabularies/vocabularies/Org.OData.{alias}.V1.xml",
        )
        for alias in _OASIS
    },
    **{
        alias: VocabularyReference(
            alias=alias,
            namespace=f"com.sap.vocabularies.{alias}.v1",
            uri=f"https://sap.github.io/odata-vocabularies/vocabularies/{alias}.xml",
        )
        for alias in _SAP
    },
}


def merge_vocabulary_references(
    options: CompilerOptions, sink: MessageSink, service: str | None = None
) -> dict[str, VocabularyReference]:
    """Builtin references plus the user supplied ones from the options.

    Builtin aliases can't be redefined; a user reference whose alias
    equals the service name is ignored for that service.
    """
    merged = dict(VOCABULARY_REFERENCES)
    for alias, settings in options.vocabularies.items():
        existing = merged.get(alias)
        if existing is not None and existing.builtin:
            sink.warning("odata-anno-vocref", (), {"id": alias, "type": existing.namespace}, variant="redef")
            continue
        if service is not None and alias == service:
            sink.warning("odata-anno-vocref", (), {"name": service}, variant="service")
            continue
        merged[alias] = VocabularyReference(alias=alias, namespace=settings.namespace, uri=settings.uri, builtin=False)
    return merged


class TermDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str | None = Field(default=None, alias="Type")
    applies_to: tuple[str, ...] | None = Field(default=None, alias="AppliesTo")
    experimental: bool = Field(default=False, alias="$experimental")
    deprecated: bool = Field(default=False, alias="$deprecated")
    deprecation_text: str | None = Field(default=None, alias="$deprecationText")


class AllowedValues(BaseModel):
    """Allowed values of a type definition, by value and by symbolic name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    values: dict[str, Any] = Field(default_factory=dict, alias="Values")
    symbols: dict[str, Any] = Field(default_factory=dict, alias="Symbols")


class TypeDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: str = Field(alias="$kind")
    base_type: str | None = Field(default=None, alias="BaseType")
    abstract: bool = Field(default=False, alias="Abstract")
    open_type: bool = Field(default=False, alias="OpenType")
    properties: dict[str, str] = Field(default_factory=dict, alias="Properties")
    members: tuple[str, ...] | None = Field(default=None, alias="Members")
    is_flags: bool = Field(default=False, alias="IsFlags")
    underlying_type: str | None = Field(default=None, alias="UnderlyingType")
    allowed: AllowedValues | None = Field(default=None, alias="$Allowed")

    @property
    def is_complex(self) -> bool:
        return self.kind == "ComplexType"

    @property
    def is_enum(self) -> bool:
        return self.kind == "EnumType"


class VocabularyDictionary:
    """Term and type definitions keyed by qualified name (Alias.Name)."""

    def __init__(self, terms: Mapping[str, TermDefinition], types: Mapping[str, TypeDefinition]) -> None:
        self.terms = dict(terms)
        self.types = dict(types)
        self._aliases = {name.split(".", 1)[0] for name in (*self.terms, *self.types)}

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> VocabularyDictionary:
        """Validate a raw dictionary mapping.

        Raises:
            ValueError: If the mapping lacks the terms/types sections
            ValidationError: If a term or type definition is malformed
        """
        terms = raw.get("terms") or {}
        types = raw.get("types") or {}
        if not isinstance(terms, Mapping) or not isinstance(types, Mapping):
            raise ValueError("Vocabulary dictionary needs 'terms' and 'types' mappings")
        return cls(
            terms={name: TermDefinition.model_validate(t) for name, t in terms.items()},
            types={name: TypeDefinition.model_validate(t) for name, t in types.items()},
        )

    @classmethod
    def load(cls, path: Path | None = None) -> VocabularyDictionary:
        """Load a dictionary YAML file, the bundled one when no path is given.

        Raises:
            FileNotFoundError: If the file does not exist
            yaml.YAMLError: If the YAML is malformed
            ValueError: If the file is not a mapping
        """
        if path is None:
            text = resources.files("edmc.annotations").joinpath("data/dictionary.yaml").read_text(encoding="utf-8")
            source = "bundled dictionary"
        else:
            if not path.exists():
                raise FileNotFoundError(f"Vocabulary dictionary not found: {path}")
            text = path.read_text(encoding="utf-8")
            source = str(path)
        loaded = yaml.safe_load(text)
        if not isinstance(loaded, dict):
            raise ValueError(f"Vocabulary dictionary must be a YAML mapping, got {type(loaded).__name__}")
        dictionary = cls.from_mapping(loaded)
        logger.debug("vocabulary dictionary loaded", source=source, terms=len(dictionary.terms), types=len(dictionary.types))
        return dictionary

    def term(self, name: str) -> TermDefinition | None:
        return self.terms.get(name)

    def type(self, name: str | None) -> TypeDefinition | None:
        return self.types.get(name) if name else None

    def covers(self, alias: str) -> bool:
        """Whether the dictionary describes the vocabulary, so unknown terms are worth reporting."""
        return alias in self._aliases

    def all_properties(self, name: str | None) -> dict[str, str] | None:
        """Properties of a type including inherited ones; None for unknown types."""
        chain: list[TypeDefinition] = []
        seen: set[str] = set()
        current = name
        while current and current not in seen:
            seen.add(current)
            definition = self.type(current)
            if definition is None:
                break
            chain.append(definition)
            current = definition.base_type
        if not chain:
            return None
        properties: dict[str, str] = {}
        for definition in reversed(chain):
            properties.update(definition.properties)
        return properties

    def is_derived_from(self, derived: str, base: str) -> bool:
        current: str | None = derived
        seen: set[str] = set()
        while current and current not in seen:
            if current == base:
                return True
            seen.add(current)
            definition = self.type(current)
            current = definition.base_type if definition else None
        return False


@dataclass(slots=True)
class VocabularyUsage:
    """Vocabularies referenced by one service, plus once-per-term usage reports.

    Core and Common are always referenced.
    """

    references: dict[str, VocabularyReference]
    used: set[str] = field(default_factory=lambda: {"Core", "Common"})
    reported_experimental: set[str] = field(default_factory=set)
    reported_deprecated: set[str] = field(default_factory=set)

    def mark(self, qualified_name: str) -> None:
        alias = qualified_name.split(".", 1)[0]
        if alias in self.references:
            self.used.add(alias)

    def note_term(self, name: str, term: TermDefinition, context: MessageContext, sink: MessageSink) -> None:
        if term.experimental and name not in self.reported_experimental:
            self.reported_experimental.add(name)
            sink.warning("odata-anno-dict", context.location, {"anno": context.anno()}, variant="experimental")
        if term.deprecated and name not in self.reported_deprecated:
            self.reported_deprecated.add(name)
            sink.info(
                "odata-anno-def",
                context.location,
                {"anno": context.anno(), "depr": term.deprecation_text or ""},
                variant="deprecated",
            )

    def used_references(self) -> list[VocabularyReference]:
        return [ref for alias, ref in self.references.items() if alias in self.used]
