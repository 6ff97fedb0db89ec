"""
Expression evaluator: the dispatcher at the heart of a conversion run.

Each expression node goes through GuardCheck, Bind and Produce. Production
is dispatched on the node's kind; attributes marked `evaluateLater` are
queued for the deferred pass instead of being produced immediately.

Node-local failures (a script that fails, a reference that finds nothing)
drop only the failing node. Specification errors abort the run, carrying
the resource kind and attribute path where they happened.
"""

import logging
from dataclasses import replace
from typing import Any

from fhirweave.core.types import is_empty, to_fragment
from fhirweave.exceptions import (
    ErrorContext,
    ScriptEvaluationError,
    SpecificationError,
    UnresolvedReference,
)
from fhirweave.execution.assembly import ResourceInstance, splice_attribute
from fhirweave.execution.bindings import VariableBinder
from fhirweave.execution.conditions import evaluate_condition
from fhirweave.execution.context import ConversionContext
from fhirweave.execution.deferred import DeferredEvaluation
from fhirweave.execution.joins import JoinResolver
from fhirweave.execution.scopes import Scope
from fhirweave.parsing.parser import Condition, parse_condition, parse_script_call
from fhirweave.structure.specification import (
    ExpressionKind,
    ExpressionNode,
    Specification,
    is_specification_reference,
)

logger = logging.getLogger(__name__)


def child_location(location: ErrorContext, name: str) -> ErrorContext:
    """Extend an error location's attribute path by one step."""
    attribute = f"{location.attribute}.{name}" if location.attribute else name
    return replace(location, attribute=attribute, expression=None)


class ExpressionEvaluator:
    """
    Evaluates specifications against the message of one run.

    Params:
        context: Context of the run
    """

    def __init__(self, context: ConversionContext):
        self.context = context
        self.binder = VariableBinder(context)
        self.joins = JoinResolver(context, self.binder)

    def build_resource(
        self,
        specification: Specification,
        scope: Scope,
        kind: str | None = None,
    ) -> ResourceInstance | None:
        """
        Create, populate and register one resource instance.

        The shell is created before its attributes are evaluated so it has an
        identity from the start. A required attribute that produces nothing
        discards the shell.

        Params:
            specification: Specification of the resource
            scope: Scope the attributes evaluate in
            kind: Resource kind; defaults to the specification's resourceType

        Returns:
            The registered instance, or None when it was discarded
        """
        kind = kind or specification.resource_type
        instance = self.context.bundle.create(kind)
        location = ErrorContext(resource_kind=kind, specification=specification.name)

        populated = self.evaluate_members(
            specification.attributes, scope, location, owner=instance
        )
        if populated is None:
            self.context.bundle.discard(instance)
            return None

        self.context.bundle.register(instance)
        logger.debug(f"Built {instance.reference} with {list(instance.attributes)}")
        return instance

    def evaluate_members(
        self,
        members: dict[str, ExpressionNode],
        scope: Scope,
        location: ErrorContext,
        owner: ResourceInstance | None = None,
    ) -> dict | None:
        """
        Evaluate named sibling nodes in declaration order.

        Each member's result is bound under its name for the members declared
        after it. With an owner, results are spliced into the owner and
        `evaluateLater` members are queued for the deferred pass.

        Params:
            members: Attribute name to node
            scope: Inherited scope
            location: Location of the enclosing structure
            owner: Resource being built, None for a structured fragment

        Returns:
            The populated attributes, or None when a required member produced
            nothing
        """
        attributes = owner.attributes if owner is not None else {}
        frame = scope

        for name, member in members.items():
            member_location = child_location(location, name)

            if member.evaluate_later:
                if owner is None:
                    raise SpecificationError(
                        "'evaluateLater' is only allowed on resource attributes, "
                        f"not inside sub-resource {location.specification}",
                        member_location,
                    )
                self.context.deferred.enqueue(
                    DeferredEvaluation(member, frame, owner, name, member_location)
                )
                continue

            fragments = self.evaluate_node(member, frame, member_location)
            if not fragments:
                if member.required:
                    logger.debug(f"Required attribute {member_location.attribute} produced nothing")
                    return None
                continue

            for fragment in fragments:
                if owner is not None:
                    owner.splice(name, fragment, as_list=member.generate_list)
                else:
                    splice_attribute(attributes, name, fragment, member.generate_list)

            frame = frame.bind(name, fragments if member.generate_list else fragments[0])

        return attributes

    def evaluate_node(
        self, node: ExpressionNode, scope: Scope, location: ErrorContext
    ) -> list:
        """
        Run GuardCheck, Bind and Produce for one node.

        Params:
            node: Node to evaluate
            scope: Inherited scope
            location: Location of the node, for error reporting

        Returns:
            Produced fragments: at most one unless the node has `generateList`

        Raises:
            SpecificationError: When the node's specification is broken
        """
        try:
            return self._evaluate(node, scope, location)
        except (ScriptEvaluationError, UnresolvedReference) as e:
            logger.debug(f"Skipping {location.attribute}: {e}")
            return []
        except SpecificationError as e:
            raise e.with_context(replace(location, expression=node.description))

    def _evaluate(self, node: ExpressionNode, scope: Scope, location: ErrorContext) -> list:
        early_guard, late_guard = self._split_guard(node)
        if early_guard is not None and not evaluate_condition(
            early_guard, self.context.lookup_in(scope)
        ):
            logger.debug(f"Guard '{node.condition}' is false for {location.attribute}")
            return []

        fragments = []
        guard_passed = late_guard is None
        for frame in self._repetitions(node, scope, late_guard):
            guard_passed = True
            for produced in self._produce(node, frame, location):
                fragment = self._finish(node, produced)
                if not is_empty(fragment):
                    fragments.append(fragment)
            if fragments and not node.generate_list:
                break

        # a guard that rejected every repetition suppresses the default too
        if not fragments and guard_passed and node.default is not None:
            fragments = [node.default]

        return fragments if node.generate_list else fragments[:1]

    def _split_guard(self, node: ExpressionNode) -> tuple[Condition | None, Condition | None]:
        """
        Decide when a node's guard runs.

        A guard naming one of the node's own vars runs after Bind, once per
        repetition; any other guard runs before Bind on the inherited scope.
        """
        if node.condition is None:
            return None, None
        guard = parse_condition(node.condition)
        if guard.variables() & set(node.vars):
            return None, guard
        return guard, None

    def _repetitions(self, node: ExpressionNode, scope: Scope, late_guard: Condition | None):
        """Yield the bound scope of every repetition that passes the late guard."""
        if node.specs is None:
            frame = self.binder.bind(node, scope)
            if late_guard is None or evaluate_condition(late_guard, self.context.lookup_in(frame)):
                yield frame
            return

        base_values = self.context.resolver.resolve(
            node.specs, scope, self.context.lookup_in(scope)
        )
        if JoinResolver.applies(base_values, late_guard):
            for _, frame in self.joins.match(node, scope, base_values, late_guard):
                yield frame
            return

        for value in base_values:
            frame = self.binder.bind(node, scope.with_base(value))
            if late_guard is not None and not evaluate_condition(
                late_guard, self.context.lookup_in(frame)
            ):
                continue
            yield frame

    def _produce(self, node: ExpressionNode, frame: Scope, location: ErrorContext) -> list:
        lookup = self.context.lookup_in(frame)

        match node.kind:
            case ExpressionKind.PATH:
                if node.value_of is None:
                    values = [] if frame.base_value is None else [frame.base_value]
                else:
                    values = self.context.resolver.resolve(node.value_of, frame, lookup)
                return values if node.generate_list else values[:1]

            case ExpressionKind.SCRIPTED:
                value = self.context.bridge.evaluate(parse_script_call(node.value_of), lookup)
                return [] if is_empty(value) else [value]

            case ExpressionKind.SUB_RESOURCE:
                specification = self.context.specifications.load_specification(node.value_of)
                fragment = self.evaluate_members(
                    specification.attributes,
                    frame,
                    replace(location, specification=specification.name),
                )
                return [fragment] if fragment else []

            case ExpressionKind.REFERENCE:
                return self._produce_reference(node, frame, lookup)

            case ExpressionKind.NESTED:
                if node.expressions_map is not None:
                    fragment = self.evaluate_members(node.expressions_map, frame, location)
                    return [fragment] if fragment else []
                for index, child in enumerate(node.expressions or []):
                    produced = self.evaluate_node(
                        child, frame, child_location(location, f"[{index}]")
                    )
                    if produced:
                        return produced
                return []

            case ExpressionKind.CONSTANT:
                return [node.value]

        raise SpecificationError(f"Unsupported expression kind {node.kind}")

    def _produce_reference(self, node: ExpressionNode, frame: Scope, lookup) -> list:
        if is_specification_reference(node.value_of):
            specification = self.context.specifications.load_specification(node.value_of)
            instance = self.build_resource(specification, frame)
            if instance is None:
                raise UnresolvedReference(f"new {specification.resource_type} (discarded)")
            return [instance]

        if node.value_of is not None:
            values = self.context.resolver.resolve(node.value_of, frame, lookup)
        else:
            values = [] if frame.base_value is None else [frame.base_value]

        instances = [value for value in values if isinstance(value, ResourceInstance)]
        if not instances:
            raise UnresolvedReference(f"'{node.value_of or node.specs}'")
        return instances if node.generate_list else instances[:1]

    def _finish(self, node: ExpressionNode, value: Any) -> Any:
        """Apply the node's `type` conversion and reduce the value to plain data."""
        if node.value_type is not None and not isinstance(value, ResourceInstance):
            value = self.context.bridge.convert(value, node.value_type)
        return to_fragment(value)

