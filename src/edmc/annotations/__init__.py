"""Vocabulary annotations: dictionary, output nodes, and placement rules.

The translator itself lives in edmc.annotations.translator; it depends on
edmc.expressions, which in turn builds output nodes from this package.
"""

from edmc.annotations.context import MessageContext
from edmc.annotations.nodes import (
    Annotation,
    Annotations,
    Collection,
    Expression,
    Node,
    PropertyValue,
    Record,
    ValueThing,
)
from edmc.annotations.placement import (
    CallableCarrier,
    Carrier,
    ElementCarrier,
    EntityCarrier,
    Placement,
    ServiceCarrier,
    TypeCarrier,
    place,
)
from edmc.annotations.vocabulary import (
    VOCABULARY_REFERENCES,
    TermDefinition,
    TypeDefinition,
    VocabularyDictionary,
    VocabularyReference,
    VocabularyUsage,
    merge_vocabulary_references,
)

__all__ = [
    "VOCABULARY_REFERENCES",
    "Annotation",
    "Annotations",
    "CallableCarrier",
    "Carrier",
    "Collection",
    "ElementCarrier",
    "EntityCarrier",
    "Expression",
    "MessageContext",
    "Node",
    "Placement",
    "PropertyValue",
    "Record",
    "ServiceCarrier",
    "TermDefinition",
    "TypeCarrier",
    "TypeDefinition",
    "ValueThing",
    "VocabularyDictionary",
    "VocabularyReference",
    "VocabularyUsage",
    "merge_vocabulary_references",
    "place",
]
