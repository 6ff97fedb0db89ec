"""
Mapping specification models and the specification set that loads them.
"""

from fhirweave.structure.registry import SpecificationSet, normalize_specification_name
from fhirweave.structure.specification import (
    ExpressionKind,
    ExpressionNode,
    MessageTemplate,
    ResourceDeclaration,
    Specification,
    infer_kind,
    is_specification_reference,
)

__all__ = [
    "ExpressionKind",
    "ExpressionNode",
    "MessageTemplate",
    "ResourceDeclaration",
    "Specification",
    "SpecificationSet",
    "infer_kind",
    "is_specification_reference",
    "normalize_specification_name",
]
