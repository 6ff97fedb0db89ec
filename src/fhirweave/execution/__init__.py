"""
Evaluation of mapping specifications: scopes, guards, bindings, scripting,
joins, deferred resolution and bundle assembly.
"""

from fhirweave.execution.assembly import (
    BundleBuilder,
    IdentityGenerator,
    ResourceInstance,
    attribute_name,
    splice_attribute,
)
from fhirweave.execution.bindings import VariableBinder
from fhirweave.execution.conditions import evaluate_condition
from fhirweave.execution.context import ConversionContext
from fhirweave.execution.deferred import (
    DeferredEvaluation,
    DeferredQueue,
    resolve_deferred_evaluations,
)
from fhirweave.execution.evaluator import ExpressionEvaluator
from fhirweave.execution.joins import JoinResolver
from fhirweave.execution.scopes import BASE_VALUE, Scope
from fhirweave.execution.scripting import ScriptBridge

__all__ = [
    "BASE_VALUE",
    "BundleBuilder",
    "ConversionContext",
    "DeferredEvaluation",
    "DeferredQueue",
    "ExpressionEvaluator",
    "IdentityGenerator",
    "JoinResolver",
    "ResourceInstance",
    "Scope",
    "ScriptBridge",
    "VariableBinder",
    "attribute_name",
    "evaluate_condition",
    "resolve_deferred_evaluations",
    "splice_attribute",
]
