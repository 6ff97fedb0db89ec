"""
Cross-reference joins between a driving repetition and built resources.

The join pattern pairs an outer loop over source repetitions (each binding an
outer key) with an inner node whose `specs` is a resource kind. Each
candidate instance becomes the inner node's base value, the inner key is
bound from it, and the guard comparing both keys picks the match.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from fhirweave.exceptions import UnresolvedReference
from fhirweave.execution.assembly import ResourceInstance
from fhirweave.execution.conditions import evaluate_condition
from fhirweave.execution.scopes import Scope
from fhirweave.parsing.parser import Condition
from fhirweave.structure.specification import ExpressionNode

if TYPE_CHECKING:
    from fhirweave.execution.bindings import VariableBinder
    from fhirweave.execution.context import ConversionContext

logger = logging.getLogger(__name__)


class JoinResolver:
    """Matches candidate resource instances against keys bound in the scope."""

    def __init__(self, context: "ConversionContext", binder: "VariableBinder"):
        self.context = context
        self.binder = binder

    @staticmethod
    def applies(candidates: Iterable, guard: Condition | None) -> bool:
        """A join runs when every base value is a built resource and a key guard exists."""
        values = list(candidates)
        return (
            guard is not None
            and bool(values)
            and all(isinstance(value, ResourceInstance) for value in values)
        )

    def match(
        self,
        node: ExpressionNode,
        scope: Scope,
        candidates: list[ResourceInstance],
        guard: Condition,
    ) -> list[tuple[ResourceInstance, Scope]]:
        """
        Find the candidates whose computed key satisfies the guard.

        Candidates are scanned in bundle order; without `generateList` the
        scan stops at the first match.

        Params:
            node: Inner node; its vars compute the candidate key
            scope: Scope holding the outer key
            candidates: Instances to scan
            guard: Key comparison, e.g. ``$inner EQUALS_STRING $outer``

        Returns:
            Matching candidates with the scope bound for each

        Raises:
            UnresolvedReference: When no candidate matches
        """
        matches = []
        for candidate in candidates:
            frame = self.binder.bind(node, scope.with_base(candidate))
            if evaluate_condition(guard, self.context.lookup_in(frame)):
                matches.append((candidate, frame))
                if not node.generate_list:
                    break

        if not matches:
            raise UnresolvedReference(f"'{node.specs}' for guard '{node.condition}'")

        logger.debug(
            f"Join on '{node.condition}' matched "
            + ", ".join(candidate.reference for candidate, _ in matches)
        )
        return matches
