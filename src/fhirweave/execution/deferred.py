"""
Deferred evaluation queue and the second pass that drains it.

Attributes marked `evaluateLater` are not evaluated with the rest of their
resource. Their node and scope are queued instead and evaluated once every
resource of the run has finished its immediate pass, so they can refer to
resources declared after their own.
"""

import logging
from collections import deque
from collections.abc import Iterator
from enum import Enum
from typing import TYPE_CHECKING

from attrs import frozen

from fhirweave.exceptions import CyclicDeferralError, ErrorContext
from fhirweave.execution.assembly import ResourceInstance
from fhirweave.execution.scopes import Scope
from fhirweave.structure.specification import ExpressionNode

if TYPE_CHECKING:
    from fhirweave.execution.context import ConversionContext
    from fhirweave.execution.evaluator import ExpressionEvaluator

logger = logging.getLogger(__name__)


@frozen(eq=False)
class DeferredEvaluation:
    """
    One postponed attribute.

    Params:
        node: Node to evaluate
        scope: Scope captured when the node was reached
        owner: Resource the result is spliced into
        attribute: Attribute name as declared
        location: Error location of the attribute
    """

    node: ExpressionNode
    scope: Scope
    owner: ResourceInstance
    attribute: str
    location: ErrorContext


class QueueState(Enum):
    COLLECTING = "collecting"
    DRAINING = "draining"
    DRAINED = "drained"


class DeferredQueue:
    """
    FIFO of deferred evaluations for one run.

    Entries can only be added before the drain starts; the drain happens
    exactly once.
    """

    def __init__(self):
        self._entries: deque[DeferredEvaluation] = deque()
        self.state = QueueState.COLLECTING

    def enqueue(self, entry: DeferredEvaluation) -> None:
        """
        Queue an evaluation for the deferred pass.

        Raises:
            CyclicDeferralError: When called once the deferred pass started
        """
        if self.state is not QueueState.COLLECTING:
            raise CyclicDeferralError(
                f"Attribute '{entry.attribute}' deferred again during the deferred pass",
                entry.location,
            )
        self._entries.append(entry)

    def drain(self) -> Iterator[DeferredEvaluation]:
        """
        Yield queued entries in enqueue order, removing them.

        Raises:
            RuntimeError: When the queue was already drained
        """
        if self.state is not QueueState.COLLECTING:
            raise RuntimeError("Deferred queue can only be drained once per run")
        self.state = QueueState.DRAINING
        try:
            while self._entries:
                yield self._entries.popleft()
        finally:
            self.state = QueueState.DRAINED

    def __len__(self) -> int:
        return len(self._entries)


def resolve_deferred_evaluations(
    context: "ConversionContext", evaluator: "ExpressionEvaluator"
) -> dict:
    """
    Run the deferred pass.

    Every queued attribute is evaluated with its captured scope, now that the
    bundle holds every resource of the run, and spliced into its owner.

    Params:
        context: Context of the run
        evaluator: Evaluator of the run

    Returns:
        Dictionary with the references of attributes that produced values,
        produced nothing, or were skipped because their owner was discarded

    Raises:
        CyclicDeferralError: When a deferred evaluation defers again
    """
    results = {
        "resolved": [],
        "empty": [],
        "skipped": [],
    }

    for entry in context.deferred.drain():
        target = f"{entry.owner.reference}.{entry.attribute}"
        if entry.owner.discarded:
            results["skipped"].append(target)
            continue

        fragments = evaluator.evaluate_node(entry.node, entry.scope, entry.location)
        if not fragments:
            results["empty"].append(target)
            continue

        for fragment in fragments:
            entry.owner.splice(entry.attribute, fragment, as_list=entry.node.generate_list)
        results["resolved"].append(target)

    logger.debug(
        f"Deferred pass: {len(results['resolved'])} resolved, "
        f"{len(results['empty'])} empty, {len(results['skipped'])} skipped"
    )
    return results
