# src/edmc/core/config.py
"""Compiler configuration with Pydantic validation.

Options are frozen after construction; every pass reads the same
CompilerOptions instance. Derived predicates (is_v4, path_delimiter,
render_foreign_keys) live here so that passes never re-derive them from
raw flags.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from edmc.contracts.enums import ODataFormat, ODataVersion

_ALIAS_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class VocabularyReferenceSettings(BaseModel):
    """A user supplied vocabulary reference (Alias -> Uri/Namespace).

    Example YAML:
        vocabularies:
          Foo:
            uri: https://example.com/foo.xml
            namespace: com.example.foo.v1
    """

    model_config = {"frozen": True}

    uri: str = Field(description="Location of the vocabulary document")
    namespace: str = Field(description="Namespace of the vocabulary")

    @field_validator("uri", "namespace")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class CompilerOptions(BaseModel):
    """Options controlling how the schema graph is prepared.

    Example YAML:
        odata_version: v4
        odata_format: structured
        odata_proxies: true
        odata_containment: true
        service_names: [CatalogService]
    """

    model_config = {"frozen": True}

    odata_version: ODataVersion = Field(
        default=ODataVersion.V4,
        description="Protocol version: v2 (legacy) or v4",
    )
    odata_format: ODataFormat = Field(
        default=ODataFormat.FLAT,
        description="flat: structured elements are expanded; structured: complex types are kept",
    )
    odata_proxies: bool = Field(
        default=False,
        description="Synthesize proxy entity types for associations leaving the service (V4)",
    )
    odata_x_service_refs: bool = Field(
        default=False,
        description="Reference entity types of other services via schema references (V4)",
    )
    odata_containment: bool = Field(
        default=False,
        description="Render compositions as containment navigation properties (V4)",
    )
    odata_foreign_keys: bool = Field(
        default=False,
        description="Render foreign keys of managed associations in structured V4",
    )
    odata_v2_partial_constraints: bool = Field(
        default=False,
        description="Keep V2 referential constraints that cover only part of the principal key",
    )
    odata_capabilities_pullup: bool = Field(
        default=False,
        description="Collect @Capabilities of containees into NavigationRestrictions of the root container",
    )
    service_names: tuple[str, ...] | None = Field(
        default=None,
        description="Services to compile; all services when omitted",
    )
    vocabularies: dict[str, VocabularyReferenceSettings] = Field(
        default_factory=dict,
        description="Additional vocabulary references by alias",
    )

    @field_validator("service_names")
    @classmethod
    def validate_service_names(cls, v: tuple[str, ...] | None) -> tuple[str, ...] | None:
        if v is None:
            return v
        if not v:
            raise ValueError("service_names must not be empty when given")
        blank = [n for n in v if not n.strip()]
        if blank:
            raise ValueError("service_names must not contain blank names")
        duplicates = sorted({n for n in v if v.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate service names: {duplicates}")
        return v

    @field_validator("vocabularies")
    @classmethod
    def validate_vocabulary_aliases(
        cls, v: dict[str, VocabularyReferenceSettings]
    ) -> dict[str, VocabularyReferenceSettings]:
        for alias in v:
            if not _ALIAS_PATTERN.match(alias):
                raise ValueError(f"invalid vocabulary alias {alias!r}")
        return v

    @model_validator(mode="after")
    def validate_v4_only_flags(self) -> CompilerOptions:
        """Proxies, schema references and containment need V4."""
        if self.odata_version is ODataVersion.V2:
            enabled = [
                name
                for name in ("odata_proxies", "odata_x_service_refs", "odata_containment")
                if getattr(self, name)
            ]
            if enabled:
                raise ValueError(f"{', '.join(enabled)} require odata_version v4")
        return self

    @property
    def is_v2(self) -> bool:
        return self.odata_version is ODataVersion.V2

    @property
    def is_v4(self) -> bool:
        return self.odata_version is ODataVersion.V4

    @property
    def is_structured(self) -> bool:
        return self.odata_format is ODataFormat.STRUCTURED

    @property
    def is_flat(self) -> bool:
        return self.odata_format is ODataFormat.FLAT

    @property
    def render_foreign_keys(self) -> bool:
        """Foreign keys are always rendered except in structured V4 without odata_foreign_keys."""
        if self.is_v4 and self.is_structured:
            return self.odata_foreign_keys
        return True

    @property
    def path_delimiter(self) -> str:
        return "/" if self.is_structured else "_"

    @property
    def version_label(self) -> str:
        return "2.0" if self.is_v2 else "4.0"

    def is_service_requested(self, service_name: str) -> bool:
        return self.service_names is None or service_name in self.service_names


def load_options(config_path: Path) -> CompilerOptions:
    """Load compiler options from a YAML file with environment overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (EDMC_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic model - lowest priority

    An optional top-level ``odata:`` section is flattened, so both
    ``odata_version: v4`` and ``odata: {version: v4}`` are accepted.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a mapping
        ValidationError: If the options fail Pydantic validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Options file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="EDMC",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return CompilerOptions(**_flatten_odata_section(raw))


def _flatten_odata_section(raw: dict[str, Any]) -> dict[str, Any]:
    section = raw.pop("odata", None)
    if section is None:
        return raw
    if not isinstance(section, dict):
        raise ValueError(f"'odata' section must be a mapping, got {type(section).__name__}")
    for key, value in section.items():
        raw.setdefault(f"odata_{key.lower()}", value)
    return raw
