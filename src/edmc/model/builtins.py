# src/edmc/model/builtins.py
"""Builtin CDS types, their Edm mapping, and Edm primitive/path type tables.

Leaf module: no dependency on the schema graph beyond duck-typed facet
attributes, so it can be used by passes and the expression translator alike.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import Any

# Builtin type name -> Edm primitive type.
CDS_TO_EDM: dict[str, str] = {
    "cds.String": "Edm.String",
    "cds.LargeString": "Edm.String",
    "cds.hana.NCHAR": "Edm.String",
    "cds.hana.VARCHAR": "Edm.String",
    "cds.hana.CHAR": "Edm.String",
    "cds.hana.CLOB": "Edm.String",
    "cds.Binary": "Edm.Binary",
    "cds.LargeBinary": "Edm.Binary",
    "cds.hana.BINARY": "Edm.Binary",
    "cds.Decimal": "Edm.Decimal",
    "cds.DecimalFloat": "Edm.Decimal",
    "cds.hana.SMALLDECIMAL": "Edm.Decimal",
    "cds.Integer64": "Edm.Int64",
    "cds.Integer": "Edm.Int32",
    "cds.Int64": "Edm.Int64",
    "cds.Int32": "Edm.Int32",
    "cds.Int16": "Edm.Int16",
    "cds.UInt8": "Edm.Byte",
    "cds.hana.SMALLINT": "Edm.Int16",
    "cds.hana.TINYINT": "Edm.Byte",
    "cds.Double": "Edm.Double",
    "cds.hana.REAL": "Edm.Single",
    "cds.Date": "Edm.Date",
    "cds.Time": "Edm.TimeOfDay",
    "cds.DateTime": "Edm.DateTimeOffset",
    "cds.Timestamp": "Edm.DateTimeOffset",
    "cds.Boolean": "Edm.Boolean",
    "cds.UUID": "Edm.Guid",
    "cds.hana.ST_POINT": "Edm.GeometryPoint",
    "cds.hana.ST_GEOMETRY": "Edm.Geometry",
}

ASSOCIATION_TYPES = frozenset({"cds.Association", "cds.Composition"})

# Builtins without an Edm counterpart; still builtin for name resolution.
_OTHER_BUILTINS = frozenset({"cds.Vector", "cds.Map", "cds.hana.ST_LINESTRING"})

DECIMAL_TYPES = frozenset({"cds.Decimal", "cds.DecimalFloat", "cds.hana.SMALLDECIMAL"})

# Primitive types allowed as V4 key properties.
LEGAL_V4_KEY_TYPES = frozenset(
    {
        "Edm.Boolean",
        "Edm.Byte",
        "Edm.Date",
        "Edm.DateTimeOffset",
        "Edm.Decimal",
        "Edm.Duration",
        "Edm.Guid",
        "Edm.Int16",
        "Edm.Int32",
        "Edm.Int64",
        "Edm.SByte",
        "Edm.String",
        "Edm.TimeOfDay",
    }
)


def is_builtin_type(type_name: str | None) -> bool:
    if not type_name:
        return False
    return type_name in CDS_TO_EDM or type_name in ASSOCIATION_TYPES or type_name in _OTHER_BUILTINS


def is_association_type(type_name: str | None) -> bool:
    return type_name in ASSOCIATION_TYPES


@dataclass(frozen=True, slots=True)
class EdmPrimitiveType:
    """One entry of the Edm primitive type table."""

    name: str
    v2: bool
    v4: bool
    facets: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class EdmFacet:
    name: str
    v2: bool
    v4: bool
    optional: bool = True


EDM_PRIMITIVE_TYPES: dict[str, EdmPrimitiveType] = {
    t.name: t
    for t in (
        EdmPrimitiveType("Edm.Binary", True, True, ("MaxLength",)),
        EdmPrimitiveType("Edm.Boolean", True, True),
        EdmPrimitiveType("Edm.Byte", True, True),
        EdmPrimitiveType("Edm.Date", False, True),
        EdmPrimitiveType("Edm.DateTime", True, False, ("Precision",)),
        EdmPrimitiveType("Edm.DateTimeOffset", True, True, ("Precision",)),
        EdmPrimitiveType("Edm.Decimal", True, True, ("Precision", "Scale")),
        EdmPrimitiveType("Edm.Double", True, True),
        EdmPrimitiveType("Edm.Duration", False, True, ("Precision",)),
        EdmPrimitiveType("Edm.Guid", True, True),
        EdmPrimitiveType("Edm.Int16", True, True),
        EdmPrimitiveType("Edm.Int32", True, True),
        EdmPrimitiveType("Edm.Int64", True, True),
        EdmPrimitiveType("Edm.SByte", True, True),
        EdmPrimitiveType("Edm.Single", True, True),
        EdmPrimitiveType("Edm.Stream", False, True, ("MaxLength",)),
        EdmPrimitiveType("Edm.String", True, True, ("MaxLength",)),
        EdmPrimitiveType("Edm.TimeOfDay", False, True, ("Precision",)),
        EdmPrimitiveType("Edm.Time", True, False, ("Precision",)),
        EdmPrimitiveType("Edm.Geography", False, True, ("SRID",)),
        EdmPrimitiveType("Edm.GeographyPoint", False, True, ("SRID",)),
        EdmPrimitiveType("Edm.Geometry", False, True, ("SRID",)),
        EdmPrimitiveType("Edm.GeometryPoint", False, True, ("SRID",)),
        EdmPrimitiveType("Edm.PrimitiveType", False, True),
    )
}

EDM_FACETS: dict[str, EdmFacet] = {
    f.name: f
    for f in (
        EdmFacet("MaxLength", True, True),
        EdmFacet("Precision", True, True),
        EdmFacet("Scale", True, True),
        EdmFacet("SRID", False, True),
        EdmFacet("Unicode", True, True),
    )
}

# Vocabulary path types; AnyPropertyPath is rendered as PropertyPath.
EDM_PATH_TYPES: dict[str, str] = {
    "Edm.AnnotationPath": "AnnotationPath",
    "Edm.PropertyPath": "PropertyPath",
    "Edm.NavigationPropertyPath": "NavigationPropertyPath",
    "Edm.AnyPropertyPath": "PropertyPath",
    "Edm.ModelElementPath": "ModelElementPath",
    "Edm.Path": "Path",
}


def map_cds_to_edm(type_name: str, *, is_v2: bool, is_media_type: bool = False) -> str | None:
    """Map a builtin CDS type to its Edm type; None if there is no mapping.

    V2 has no Date/TimeOfDay and uses DateTime/Time instead. V4 media
    type elements become streams.
    """
    edm_type = CDS_TO_EDM.get(type_name)
    if edm_type is None:
        return None
    if is_v2:
        if edm_type == "Edm.Date":
            return "Edm.DateTime"
        if edm_type == "Edm.TimeOfDay":
            return "Edm.Time"
    elif is_media_type:
        return "Edm.Stream"
    return edm_type


def fallback_edm_type(*, is_v2: bool) -> str:
    """Version compatible type used after an unsupported type was reported."""
    return "Edm.String" if is_v2 else "Edm.PrimitiveType"


def type_facets(node: Any, edm_type: str, *, is_v2: bool) -> dict[str, Any]:
    """Compute Edm facets for an element-like node with a builtin type.

    The node needs type, length, precision, scale and srid attributes.
    Returns a mapping of facet name -> value; the pseudo facet
    "sap:variable-scale" marks V2 decimals without fixed scale.
    """
    facets: dict[str, Any] = {}
    if node.length is not None:
        facets["MaxLength"] = node.length
    if node.precision is not None:
        facets["Precision"] = node.precision
    if node.scale is not None:
        facets["Scale"] = node.scale
    elif node.type == "cds.Timestamp" and edm_type == "Edm.DateTimeOffset":
        facets["Precision"] = 7
    if node.type in DECIMAL_TYPES:
        if is_v2:
            if not (node.precision or node.scale) or node.scale in ("floating", "variable"):
                facets["sap:variable-scale"] = True
                facets.pop("Scale", None)
        else:
            if facets.get("Scale") == "floating":
                facets["Scale"] = "variable"
            if node.precision is None and node.scale is None:
                facets["Scale"] = "variable"
    if node.srid is not None:
        facets["SRID"] = node.srid
    return facets


_IDENTIFIER_START = frozenset({"Lu", "Ll", "Lt", "Lm", "Lo", "Nl"})
_IDENTIFIER_PART = _IDENTIFIER_START | {"Nd", "Mn", "Mc", "Pc", "Cf"}


def is_simple_identifier(name: str) -> bool:
    """OData SimpleIdentifier: letter or underscore first, at most 128 chars."""
    if not name or len(name) > 128:
        return False
    first, rest = name[0], name[1:]
    if first != "_" and unicodedata.category(first) not in _IDENTIFIER_START:
        return False
    return all(unicodedata.category(c) in _IDENTIFIER_PART for c in rest)
