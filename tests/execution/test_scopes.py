"""
Tests for scope chains, base values and segment anchors.
"""

import pytest

from fhirweave.execution import BASE_VALUE, Scope
from fhirweave.source import Message


class TestScope:
    """Tests for binding frames."""

    def test_root_constants(self):
        """Test root constants are visible everywhere below."""
        root = Scope.root({"ZONEID": "UTC"})
        assert root.child().bind("x", 1).lookup("ZONEID") == "UTC"

    def test_inner_binding_shadows(self):
        """Test the innermost binding of a name wins."""
        scope = Scope.root({"x": 1}).bind("x", 2)
        assert scope.lookup("x") == 2
        assert scope.parent.lookup("x") == 1

    def test_unbound_is_none(self):
        """Test unbound names read as None but are not bound."""
        scope = Scope.root()
        assert scope.lookup("missing") is None
        assert not scope.is_bound("missing")

    def test_bound_none_is_bound(self):
        """Test a name explicitly bound to None counts as bound."""
        assert Scope.root().bind("x", None).is_bound("x")

    def test_binding_does_not_mutate_parent(self):
        """Test siblings never see each other's bindings."""
        parent = Scope.root()
        left = parent.bind("side", "left")
        right = parent.bind("side", "right")
        assert left.lookup("side") == "left"
        assert right.lookup("side") == "right"
        assert not parent.is_bound("side")

    def test_bindings_are_read_only(self):
        """Test frames cannot be changed after creation."""
        scope = Scope.root({"x": 1})
        with pytest.raises(TypeError):
            scope.bindings["x"] = 2

    def test_names(self):
        """Test names collects every frame."""
        scope = Scope.root({"a": 1}).bind("b", 2)
        assert scope.names() == {"a", "b"}


class TestBaseValue:
    """Tests for repetition frames."""

    def test_with_base_binds_base_value(self):
        """Test with_base binds `$BASE_VALUE`."""
        scope = Scope.root().with_base("X")
        assert scope.base_value == "X"
        assert scope.lookup(BASE_VALUE) == "X"

    def test_segment_base_becomes_anchor(self):
        """Test a segment base anchors paths naming that segment."""
        message = Message.parse("MSH|^~\\&|A\rDG1|1\rDG1|2")
        first, second = message.segments_named("DG1")
        outer = Scope.root().with_base(first)
        inner = outer.with_base(second)
        assert outer.anchors()["DG1"] is first
        assert inner.anchors()["DG1"] is second

    def test_non_segment_base_keeps_outer_anchor(self):
        """Test a component base leaves the segment anchor in place."""
        message = Message.parse("MSH|^~\\&|A\rDG1|1")
        segment = message.first("DG1")
        scope = Scope.root().with_base(segment).with_base("component")
        assert scope.anchors() == {"DG1": segment}
        assert scope.base_value == "component"
