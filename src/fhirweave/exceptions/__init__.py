"""
fhirweave exception classes.

This package provides all exception types used throughout fhirweave for
consistent error handling and reporting.
"""

from fhirweave.exceptions.core import (
    ConditionSyntaxError,
    CyclicDeferralError,
    ErrorContext,
    ErrorLevel,
    ExpressionSyntaxError,
    FhirWeaveError,
    PathSyntaxError,
    ScriptEvaluationError,
    SourceDataError,
    SpecificationError,
    UnresolvedReference,
)

__all__ = [
    "FhirWeaveError",
    "ErrorContext",
    "ErrorLevel",
    "SpecificationError",
    "PathSyntaxError",
    "ConditionSyntaxError",
    "ExpressionSyntaxError",
    "CyclicDeferralError",
    "SourceDataError",
    "ScriptEvaluationError",
    "UnresolvedReference",
]
