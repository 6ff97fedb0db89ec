"""
Tests for binding a node's constants and vars onto a scope.
"""

import pytest

from fhirweave.exceptions import ExpressionSyntaxError
from fhirweave.execution import Scope, ScriptBridge
from fhirweave.structure import ExpressionNode


def node_with(vars=None, constants=None):
    return ExpressionNode.model_validate(
        {"value": "x", "vars": vars or {}, "constants": constants or {}}
    )


@pytest.fixture
def context_and_binder(make_context, adt_message_text):
    context, evaluator = make_context(adt_message_text)
    return context, evaluator.binder


@pytest.fixture
def pv1_scope(context_and_binder):
    context, _ = context_and_binder
    return context.root_scope().with_base(context.message.first("PV1"))


class TestBind:
    """Tests for VariableBinder.bind."""

    def test_path_var_takes_first_value(self, context_and_binder, pv1_scope):
        """Test path vars bind the first resolved value."""
        _, binder = context_and_binder
        scope = binder.bind(node_with({"visitNumber": "PV1.19.1 | PID.18.1"}), pv1_scope)
        assert scope.lookup("visitNumber") == "V100"

    def test_missing_path_binds_none(self, context_and_binder, pv1_scope):
        """Test vars resolving to nothing are bound to None."""
        _, binder = context_and_binder
        scope = binder.bind(node_with({"discharged": "String, PV1.45"}), pv1_scope)
        assert scope.is_bound("discharged")
        assert scope.lookup("discharged") is None

    def test_later_vars_see_earlier(self, context_and_binder, pv1_scope):
        """Test vars bind in declaration order."""
        _, binder = context_and_binder
        scope = binder.bind(
            node_with({"first": "PV1.2", "second": "$first"}), pv1_scope
        )
        assert scope.lookup("second") == "I"

    def test_vars_shadow_constants(self, context_and_binder, pv1_scope):
        """Test a var wins over a constant of the same name."""
        _, binder = context_and_binder
        scope = binder.bind(
            node_with({"system": "'from-var'"}, {"system": "from-constant", "other": 1}),
            pv1_scope,
        )
        assert scope.lookup("system") == "from-var"
        assert scope.lookup("other") == 1

    def test_inherited_scope_untouched(self, context_and_binder, pv1_scope):
        """Test binding never changes the inherited scope."""
        _, binder = context_and_binder
        binder.bind(node_with({"patientClass": "PV1.2"}), pv1_scope)
        assert not pv1_scope.is_bound("patientClass")

    def test_typed_converter(self, context_and_binder, adt_message):
        """Test `TYPE, SOURCE` runs the converter on the resolved value."""
        context, binder = context_and_binder
        scope = context.root_scope().with_base(adt_message.segments_named("DG1")[1])
        bound = binder.bind(node_with({"key": "BUILD_IDENTIFIER_FROM_CWE, DG1.3"}), scope)
        assert bound.lookup("key") == "E11.9-I10"

    def test_typed_scalar(self, context_and_binder, adt_message):
        """Test scalar types coerce the resolved value."""
        context, binder = context_and_binder
        scope = context.root_scope().with_base(adt_message.segments_named("DG1")[1])
        bound = binder.bind(node_with({"rank": "INTEGER, DG1.15"}), scope)
        assert bound.lookup("rank") == 2

    def test_script_var(self, context_and_binder, pv1_scope):
        """Test script vars see the vars bound before them."""
        _, binder = context_and_binder
        scope = binder.bind(
            node_with(
                {
                    "discharged": "PV1.45",
                    "admitted": "PV1.44",
                    "status": "GeneralUtils.getEncounterStatus(discharged, admitted)",
                }
            ),
            pv1_scope,
        )
        assert scope.lookup("status") == "in-progress"

    def test_piped_var(self, make_context, adt_message_text):
        """Test the piped source is bound under the var's name for the call."""
        bridge = ScriptBridge.with_builtins()
        bridge.register("Util.upper", lambda value: value.upper())
        context, evaluator = make_context(adt_message_text, bridge=bridge)
        scope = Scope.root().with_base("abc")
        bound = evaluator.binder.bind(node_with({"loud": "$BASE_VALUE, Util.upper(loud)"}), scope)
        assert bound.lookup("loud") == "ABC"

    def test_failing_script_binds_none(self, make_context, adt_message_text):
        """Test a failing script leaves the var bound to None."""
        bridge = ScriptBridge({"Util.fail": lambda: 1 / 0})
        context, evaluator = make_context(adt_message_text, bridge=bridge)
        bound = evaluator.binder.bind(node_with({"broken": "Util.fail()"}), Scope.root())
        assert bound.is_bound("broken")
        assert bound.lookup("broken") is None

    def test_malformed_descriptor_raises(self, context_and_binder, pv1_scope):
        """Test descriptor syntax errors are specification errors."""
        _, binder = context_and_binder
        with pytest.raises(ExpressionSyntaxError):
            binder.bind(node_with({"bad": "Bad Type, PV1.2"}), pv1_scope)
