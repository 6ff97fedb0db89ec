"""
Parsing of guard conditions, variable sources and script invocations.
"""

from fhirweave.parsing.parser import (
    CompoundCondition,
    Condition,
    ConditionOperator,
    Operand,
    Predicate,
    ScriptCall,
    SourceKind,
    VariableSource,
    is_script_call,
    parse_condition,
    parse_literal,
    parse_script_call,
    parse_variable_source,
    split_top_level,
)

__all__ = [
    "CompoundCondition",
    "Condition",
    "ConditionOperator",
    "Operand",
    "Predicate",
    "ScriptCall",
    "SourceKind",
    "VariableSource",
    "is_script_call",
    "parse_condition",
    "parse_literal",
    "parse_script_call",
    "parse_variable_source",
    "split_top_level",
]
