"""
Scripting bridge: named Python functions callable from mapping files.

Mapping files compute one-off values with calls such as
``GeneralUtils.getEncounterStatus(vars1, vars2)``. The bridge keeps a
registry of such functions and turns every failure into a
ScriptEvaluationError so the evaluator can drop the owning node.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from fhirweave.core.types import coerce_scalar, is_scalar_type
from fhirweave.exceptions import ScriptEvaluationError
from fhirweave.execution.functions import BUILTIN_FUNCTIONS
from fhirweave.parsing.parser import ScriptCall, parse_script_call

logger = logging.getLogger(__name__)

ScriptFunction = Callable[..., Any]


class ScriptBridge:
    """
    Registry and invoker of script functions.

    The registry is filled before conversions start and is only read while
    they run, so one bridge can serve concurrent runs.
    """

    def __init__(self, functions: Mapping[str, ScriptFunction] | None = None):
        self._functions: dict[str, ScriptFunction] = dict(functions or {})

    @classmethod
    def with_builtins(cls) -> "ScriptBridge":
        """Create a bridge preloaded with the built-in functions."""
        return cls(BUILTIN_FUNCTIONS)

    def register(self, name: str, function: ScriptFunction) -> None:
        """
        Register or replace a function.

        Params:
            name: Name used in mapping files, e.g. ``GeneralUtils.concat``
            function: Callable receiving the call's arguments positionally
        """
        if not callable(function):
            raise TypeError(f"Script function '{name}' must be callable")
        self._functions[name] = function

    def has(self, name: str) -> bool:
        return name in self._functions

    @property
    def names(self) -> list[str]:
        return sorted(self._functions)

    def invoke(self, name: str, args: Mapping[str, Any]) -> Any:
        """
        Invoke a function with named, ordered arguments.

        Arguments are passed positionally in mapping order; the names only
        serve diagnostics.

        Params:
            name: Registered function name
            args: Argument name to resolved value, in call order

        Returns:
            The function's result

        Raises:
            ScriptEvaluationError: When the function is unknown or fails
        """
        function = self._functions.get(name)
        if function is None:
            raise ScriptEvaluationError(name, "unknown function")

        try:
            return function(*args.values())
        except ScriptEvaluationError:
            raise
        except Exception as e:
            raise ScriptEvaluationError(name, f"{type(e).__name__}: {e}") from e

    def evaluate(self, call: "ScriptCall | str", lookup: Callable[[str], Any]) -> Any:
        """
        Evaluate a parsed script call against a variable lookup.

        Variable arguments are looked up (unbound names pass None), literal
        arguments are passed as written.

        Params:
            call: Parsed call or call text
            lookup: Variable lookup of the calling scope

        Returns:
            The function's result

        Raises:
            ScriptEvaluationError: When the function is unknown or fails
            ExpressionSyntaxError: When given call text that does not parse
        """
        if isinstance(call, str):
            call = parse_script_call(call)

        args: dict[str, Any] = {}
        for position, argument in enumerate(call.arguments):
            key = argument.variable or f"arg{position}"
            if key in args:
                key = f"{key}_{position}"
            args[key] = lookup(argument.variable) if argument.is_variable else argument.literal
        return self.invoke(call.function, args)

    def convert(self, value: Any, type_name: str) -> Any:
        """
        Convert a value to a named type.

        Scalar type names (STRING, INTEGER, FLOAT, BOOLEAN) are coerced
        directly; any other name is looked up as a converter function and
        called with the value. Unknown non-scalar names leave the value as is.

        Raises:
            ScriptEvaluationError: When coercion or the converter fails
        """
        if is_scalar_type(type_name):
            try:
                return coerce_scalar(value, type_name)
            except ValueError as e:
                raise ScriptEvaluationError(type_name.upper(), str(e)) from e
        if self.has(type_name):
            return self.invoke(type_name, {"value": value})
        logger.debug(f"No converter named '{type_name}', value passed through")
        return value
