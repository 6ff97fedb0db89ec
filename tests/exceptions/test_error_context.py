"""
Tests for error context and formatting system.

This module tests ErrorContext, ErrorLevel enum, and how exceptions
format messages based on error level (user vs developer).
"""

from fhirweave.exceptions import (
    ConditionSyntaxError,
    CyclicDeferralError,
    ErrorContext,
    ErrorLevel,
    FhirWeaveError,
    PathSyntaxError,
    ScriptEvaluationError,
    SourceDataError,
    SpecificationError,
    UnresolvedReference,
)


class TestErrorContext:
    """Tests for ErrorContext dataclass."""

    def test_user_level_shows_kind_and_attribute(self):
        """Test USER level hides specification internals."""
        ctx = ErrorContext(
            resource_kind="Encounter",
            attribute="diagnosis.condition",
            specification="resource/Encounter",
            expression="$Condition",
        )
        text = ctx.format_location(ErrorLevel.USER)
        assert "in Encounter.diagnosis.condition" in text
        assert "resource/Encounter" not in text
        assert "$Condition" not in text

    def test_developer_level_shows_everything(self):
        """Test DEVELOPER level adds specification and expression."""
        ctx = ErrorContext(
            resource_kind="Encounter",
            attribute="status",
            specification="resource/Encounter",
            expression="PV1..45",
        )
        text = ctx.format_location(ErrorLevel.DEVELOPER)
        assert "specification: resource/Encounter" in text
        assert "expression: PV1..45" in text

    def test_attribute_without_kind(self):
        """Test attribute-only context is still reported."""
        ctx = ErrorContext(attribute="text")
        assert ctx.format_location(ErrorLevel.USER) == "  in attribute text"

    def test_merged_with_keeps_inner_values(self):
        """Test merging fills gaps but never overwrites."""
        inner = ErrorContext(expression="PV1..45")
        outer = ErrorContext(resource_kind="Encounter", attribute="status", expression="other")
        merged = inner.merged_with(outer)
        assert merged.resource_kind == "Encounter"
        assert merged.attribute == "status"
        assert merged.expression == "PV1..45"


class TestSpecificationError:
    """Tests for specification error messages."""

    def test_message_includes_location(self):
        """Test the location is appended to the reason."""
        error = SpecificationError(
            "Undeclared specification",
            ErrorContext(resource_kind="Encounter", attribute="type"),
        )
        assert str(error).startswith("Undeclared specification")
        assert "in Encounter.type" in str(error)
        assert error.resource_kind == "Encounter"
        assert error.attribute == "type"

    def test_with_context_rebuilds_message(self):
        """Test with_context completes the location and the message."""
        error = PathSyntaxError("PV1..45", "'' is not a positive index")
        returned = error.with_context(
            ErrorContext(resource_kind="Encounter", attribute="status")
        )
        assert returned is error
        assert error.resource_kind == "Encounter"
        assert "in Encounter.status" in str(error)
        assert "expression: PV1..45" in str(error)

    def test_syntax_errors_keep_detail(self):
        """Test syntax errors expose the bare reason."""
        error = ConditionSyntaxError("$a BOGUS", "unknown operator 'BOGUS'")
        assert error.detail == "unknown operator 'BOGUS'"
        assert error.condition == "$a BOGUS"

    def test_hierarchy(self):
        """Test run-aborting errors share the specification base."""
        assert issubclass(CyclicDeferralError, SpecificationError)
        assert issubclass(PathSyntaxError, SpecificationError)
        assert issubclass(SpecificationError, FhirWeaveError)
        assert not issubclass(SourceDataError, SpecificationError)


class TestNodeLocalErrors:
    """Tests for errors that only drop the failing node."""

    def test_script_error_message(self):
        """Test script errors name the function."""
        error = ScriptEvaluationError("DATE", "'x' is not an HL7 timestamp")
        assert "DATE" in str(error)
        assert error.function_name == "DATE"

    def test_unresolved_reference_message(self):
        """Test unresolved references describe what was looked for."""
        error = UnresolvedReference("'$Condition'")
        assert str(error) == "No resource matched '$Condition'"

    def test_source_data_error_with_segment(self):
        """Test corrupt-source errors quote the segment."""
        error = SourceDataError("invalid segment name 'pid'", "pid|1")
        assert "segment 'pid|1'" in str(error)
