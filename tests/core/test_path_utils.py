"""
Tests for field-path parsing.

This module tests how path expressions are split into segment and datatype
paths, `$variable` alternatives, and how malformed paths are rejected.
"""

import pytest

from fhirweave.core.path_utils import (
    parse_field_path,
    parse_path_expression,
)
from fhirweave.exceptions import PathSyntaxError, SpecificationError


class TestParseFieldPath:
    """Tests for single field paths."""

    def test_segment_path_with_component(self):
        """Test segment path keeps field and component indices."""
        path = parse_field_path("PV1.19.1")
        assert path.head == "PV1"
        assert path.indices == (19, 1)
        assert path.relative is False

    def test_bare_segment_path(self):
        """Test a bare segment name addresses the whole segment."""
        path = parse_field_path("DG1")
        assert path.head == "DG1"
        assert path.indices == ()

    def test_datatype_path_is_relative(self):
        """Test paths headed by a datatype name address the base value."""
        path = parse_field_path("CWE.2")
        assert path.relative is True
        assert path.indices == (2,)

    def test_bare_datatype_path(self):
        """Test a bare datatype name is the base value itself."""
        path = parse_field_path("CWE")
        assert path.relative is True
        assert path.indices == ()

    def test_segment_with_digit_in_name(self):
        """Test segment names may contain digits after the first letter."""
        assert parse_field_path("PV2.23.8").head == "PV2"

    @pytest.mark.parametrize(
        "text",
        ["", "pv1.3", "PV1..3", "PV1.0", "PV1.x", "PV1.1.2.3.4", "CWE.1.2.3", "PATIENT.1"],
    )
    def test_malformed_paths_rejected(self, text):
        """Test malformed paths raise PathSyntaxError."""
        with pytest.raises(PathSyntaxError):
            parse_field_path(text)


class TestParsePathExpression:
    """Tests for `|`-separated path expressions."""

    def test_alternatives_keep_order(self):
        """Test alternatives are kept left to right."""
        expression = parse_path_expression("PV1.44 | EVN.6 | EVN.2")
        assert [str(alt) for alt in expression.alternatives] == ["PV1.44", "EVN.6", "EVN.2"]

    def test_variable_alternative(self):
        """Test `$name` alternatives are recognized as variables."""
        expression = parse_path_expression("$text | CWE.2")
        assert expression.alternatives[0].is_variable
        assert expression.alternatives[0].variable == "text"

    def test_empty_alternative_rejected(self):
        """Test a dangling separator is a syntax error."""
        with pytest.raises(PathSyntaxError, match="empty alternative"):
            parse_path_expression("PV1.44 | ")

    def test_error_reports_whole_expression(self):
        """Test an error in one alternative names the whole expression."""
        with pytest.raises(PathSyntaxError) as exc_info:
            parse_path_expression("PV1.44 | EVN..6")
        assert exc_info.value.path == "PV1.44 | EVN..6"
        assert "'' is not a positive index" in str(exc_info.value)

    def test_path_errors_are_specification_errors(self):
        """Test path syntax errors belong to the specification error family."""
        with pytest.raises(SpecificationError):
            parse_path_expression("lowercase.1")
