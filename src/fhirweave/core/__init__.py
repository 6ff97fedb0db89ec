"""
Core fhirweave components.

This package provides the fundamental building blocks of fhirweave: value
type aliases, scalar helpers and field-path parsing.
"""

from fhirweave.core.path_utils import (
    DATA_TYPES,
    FieldPath,
    PathAlternative,
    PathExpression,
    parse_field_path,
    parse_path_expression,
)
from fhirweave.core.types import (
    AttributeMap,
    BundleEntry,
    Fragment,
    ScalarValue,
    coerce_scalar,
    is_empty,
    is_scalar_type,
    to_fragment,
)

__all__ = [
    "AttributeMap",
    "BundleEntry",
    "Fragment",
    "ScalarValue",
    "coerce_scalar",
    "is_empty",
    "is_scalar_type",
    "to_fragment",
    "DATA_TYPES",
    "FieldPath",
    "PathAlternative",
    "PathExpression",
    "parse_field_path",
    "parse_path_expression",
]
