"""Annotation expressions: parser, canonical functions, and both translation directions."""

from edmc.expressions.dynamic import DynamicExpressionTranslator, xpr_to_edm_json
from edmc.expressions.edm_json import DYNAMIC_EXPRESSIONS, EdmJsonTranslator
from edmc.expressions.functions import CANONICAL_FUNCTIONS, Arity, canonical_name
from edmc.expressions.parser import (
    is_annotation_expression,
    iter_refs,
    parse_annotation_expression,
    parse_expression,
)

__all__ = [
    "CANONICAL_FUNCTIONS",
    "DYNAMIC_EXPRESSIONS",
    "Arity",
    "DynamicExpressionTranslator",
    "EdmJsonTranslator",
    "canonical_name",
    "is_annotation_expression",
    "iter_refs",
    "parse_annotation_expression",
    "parse_expression",
    "xpr_to_edm_json",
]
