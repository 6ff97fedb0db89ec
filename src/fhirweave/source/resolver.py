"""
Path resolution against a parsed HL7 v2 message.

PathResolver answers the source-document contract: given a path expression
it returns an ordered list of values, trying `|` alternatives left to right
and keeping the first one that yields anything.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fhirweave.core.path_utils import FieldPath, PathExpression, parse_path_expression
from fhirweave.core.types import is_empty
from fhirweave.source.message import Composite, Message, Segment

if TYPE_CHECKING:
    from fhirweave.execution.scopes import Scope

Lookup = Callable[[str], Any]


class PathResolver:
    """Resolves field paths against one message for the duration of a run."""

    def __init__(self, message: Message):
        self.message = message

    def resolve(
        self,
        expression: "str | PathExpression",
        scope: "Scope | None" = None,
        lookup: Lookup | None = None,
    ) -> list:
        """
        Resolve a path expression to its values.

        Params:
            expression: Path expression text or an already parsed expression
            scope: Scope supplying the base value and anchored segments
            lookup: Variable lookup for `$name` alternatives; defaults to
                the scope's own lookup

        Returns:
            Values of the first non-empty alternative, in source order;
            empty list when no alternative resolves

        Raises:
            PathSyntaxError: When the expression text is malformed
        """
        parsed = (
            expression
            if isinstance(expression, PathExpression)
            else parse_path_expression(expression)
        )
        if lookup is None and scope is not None:
            lookup = scope.lookup

        for alternative in parsed.alternatives:
            if alternative.is_variable:
                found = lookup(alternative.variable) if lookup else None
                values = _as_list(found)
            else:
                values = self._resolve_field_path(alternative.field_path, scope)

            values = [value for value in values if not is_empty(value)]
            if values:
                return values
        return []

    def _resolve_field_path(self, path: FieldPath, scope: "Scope | None") -> list:
        if path.relative:
            base = scope.base_value if scope is not None else None
            if base is None:
                return []
            return _descend(base, path.indices)

        anchored = scope.anchors().get(path.head) if scope is not None else None
        segments = [anchored] if anchored is not None else self.message.segments_named(path.head)
        if not path.indices:
            return segments

        field_index, *rest = path.indices
        values = []
        for segment in segments:
            for repetition in segment.field(field_index):
                values.extend(_descend(repetition, rest))
        return values


def _descend(value: Any, indices: "tuple[int, ...] | list[int]") -> list:
    """Walk component and subcomponent indices down from one value."""
    if not indices:
        return [value]
    if isinstance(value, Composite):
        index, *rest = indices
        component = value.component(index)
        return _descend(component, rest) if component is not None else []
    if isinstance(value, str):
        # An atomic value is its own first component
        return [value] if all(index == 1 for index in indices) else []
    if isinstance(value, Segment):
        field_index, *rest = indices
        values = []
        for repetition in value.field(field_index):
            values.extend(_descend(repetition, rest))
        return values
    return []


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return list(value)
    return [value]
