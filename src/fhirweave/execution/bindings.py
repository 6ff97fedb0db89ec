"""
Variable binding for expression nodes.

A node's `constants` and `vars` are layered onto the inherited scope:
constants first, then each var in declaration order, so later vars see
earlier ones and vars shadow constants of the same name.
"""

import logging
from typing import TYPE_CHECKING, Any

from fhirweave.exceptions import ScriptEvaluationError
from fhirweave.execution.scopes import Scope
from fhirweave.parsing.parser import SourceKind, VariableSource, parse_variable_source
from fhirweave.structure.specification import ExpressionNode

if TYPE_CHECKING:
    from fhirweave.execution.context import ConversionContext

logger = logging.getLogger(__name__)


class VariableBinder:
    """Computes the scope a node and its descendants evaluate in."""

    def __init__(self, context: "ConversionContext"):
        self.context = context

    def bind(self, node: ExpressionNode, scope: Scope) -> Scope:
        """
        Layer a node's constants and vars onto a scope.

        Params:
            node: Node whose `constants` and `vars` are bound
            scope: Inherited scope

        Returns:
            New scope; the inherited scope is left untouched

        Raises:
            SpecificationError: When a var descriptor is malformed
        """
        frame = scope.child(node.constants) if node.constants else scope
        for name, descriptor in node.vars.items():
            source = parse_variable_source(descriptor)
            try:
                value = self.resolve(name, source, frame)
            except ScriptEvaluationError as e:
                logger.warning(f"Variable '{name}' bound to None: {e}")
                value = None
            frame = frame.bind(name, value)
        return frame

    def resolve(self, name: str, source: VariableSource, scope: Scope) -> Any:
        """
        Resolve one variable source.

        Params:
            name: Name the value will be bound under
            source: Parsed descriptor
            scope: Scope holding every binding made so far

        Returns:
            Resolved value; None when the source yields nothing. Path
            sources give their first value, `$name` sources keep lists.

        Raises:
            ScriptEvaluationError: When a scripted call or conversion fails
        """
        lookup = self.context.lookup_in(scope)

        match source.kind:
            case SourceKind.PATH:
                values = self.context.resolver.resolve(source.path, scope, lookup)
                return values[0] if values else None
            case SourceKind.VARIABLE:
                return lookup(source.variable)
            case SourceKind.LITERAL:
                return source.literal
            case SourceKind.SCRIPT:
                return self.context.bridge.evaluate(source.call, lookup)
            case SourceKind.TYPED:
                value = self.resolve(name, source.source, scope)
                if value is None:
                    return None
                return self.context.bridge.convert(value, source.type_name)
            case SourceKind.PIPED:
                value = self.resolve(name, source.source, scope)
                piped = scope.bind(name, value)
                return self.context.bridge.evaluate(source.call, self.context.lookup_in(piped))
        raise ValueError(f"Unhandled variable source kind {source.kind}")
