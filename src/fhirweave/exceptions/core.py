"""
Exception classes for fhirweave mapping specification processing.

This module defines the error taxonomy of a conversion run. Node-local errors
(ScriptEvaluationError, UnresolvedReference) are swallowed at the expression
boundary; SpecificationError and SourceDataError abort the run.
"""

from dataclasses import dataclass, replace
from enum import Enum


class ErrorLevel(Enum):
    """Error message detail level for end users vs developers."""

    USER = "user"  # Resource kind and attribute only
    DEVELOPER = "developer"  # Adds specification name and expression text


@dataclass(frozen=True)
class ErrorContext:
    """
    Location of an error inside a mapping specification.

    Captures where an error occurred in mapping terms (resource kind and
    attribute path) and in specification terms (specification name and the
    offending expression text). Supports formatting at different detail
    levels for user-facing vs developer debugging.

    Params:
        resource_kind: Kind of the resource being built (e.g., "Encounter")
        attribute: Dotted attribute path inside the resource (e.g., "diagnosis.condition")
        specification: Name of the specification file (e.g., "resource/Encounter")
        expression: The expression text that caused the error
    """

    resource_kind: str | None = None
    attribute: str | None = None
    specification: str | None = None
    expression: str | None = None

    def format_location(self, error_level: ErrorLevel) -> str:
        """
        Format location information based on error level.

        Params:
            error_level: Whether to show USER or DEVELOPER level details

        Returns:
            Formatted location string with appropriate detail level
        """
        lines = []

        if self.resource_kind:
            if self.attribute:
                lines.append(f"  in {self.resource_kind}.{self.attribute}")
            else:
                lines.append(f"  in {self.resource_kind}")
        elif self.attribute:
            lines.append(f"  in attribute {self.attribute}")

        if error_level == ErrorLevel.DEVELOPER:
            if self.specification:
                lines.append(f"  specification: {self.specification}")
            if self.expression:
                lines.append(f"  expression: {self.expression}")

        return "\n".join(lines)

    def merged_with(self, other: "ErrorContext") -> "ErrorContext":
        """Fill fields missing here from another context; existing values win."""
        return replace(
            self,
            resource_kind=self.resource_kind or other.resource_kind,
            attribute=self.attribute or other.attribute,
            specification=self.specification or other.specification,
            expression=self.expression or other.expression,
        )


class FhirWeaveError(Exception):
    """Base exception for all fhirweave errors."""

    pass


class SpecificationError(FhirWeaveError):
    """
    Raised when a mapping specification is broken.

    Malformed path syntax, malformed guards, cyclic deferral and references
    to undeclared sub-specifications all signal a defect in the mapping
    definition rather than in the message, so they abort the run.
    """

    def __init__(
        self,
        reason: str,
        context: ErrorContext | None = None,
        error_level: ErrorLevel = ErrorLevel.DEVELOPER,
    ):
        """
        Initialize the exception.

        Params:
            reason: What is wrong with the specification
            context: ErrorContext with the failing specification location
            error_level: Level of detail to show in error message
        """
        self.reason = reason
        self.context = context or ErrorContext()
        self.error_level = error_level

        location_info = self.context.format_location(error_level)
        full_message = f"{reason}\n{location_info}" if location_info else reason
        super().__init__(full_message)

    @property
    def resource_kind(self) -> str | None:
        return self.context.resource_kind

    @property
    def attribute(self) -> str | None:
        return self.context.attribute

    def with_context(self, context: ErrorContext) -> "SpecificationError":
        """
        Complete this error's location from an outer context.

        Location already recorded closer to the failure is kept; only the
        missing pieces are filled in. The message is rebuilt in place so the
        same exception can be re-raised by the caller.

        Params:
            context: Outer location known by the caller

        Returns:
            This exception, for use in a `raise` statement
        """
        self.context = self.context.merged_with(context)
        location_info = self.context.format_location(self.error_level)
        self.args = (
            f"{self.reason}\n{location_info}" if location_info else self.reason,
        )
        return self


class PathSyntaxError(SpecificationError):
    """Raised when a field-path expression cannot be parsed."""

    def __init__(self, path: str, reason: str, context: ErrorContext | None = None):
        self.path = path
        self.detail = reason
        super().__init__(
            f"Invalid path '{path}': {reason}",
            context or ErrorContext(expression=path),
        )


class ConditionSyntaxError(SpecificationError):
    """Raised when a guard expression cannot be parsed."""

    def __init__(
        self, condition: str, reason: str, context: ErrorContext | None = None
    ):
        self.condition = condition
        self.detail = reason
        super().__init__(
            f"Invalid condition '{condition}': {reason}",
            context or ErrorContext(expression=condition),
        )


class ExpressionSyntaxError(SpecificationError):
    """Raised when a variable source or script invocation cannot be parsed."""

    def __init__(
        self, expression: str, reason: str, context: ErrorContext | None = None
    ):
        self.expression = expression
        self.detail = reason
        super().__init__(
            f"Invalid expression '{expression}': {reason}",
            context or ErrorContext(expression=expression),
        )


class CyclicDeferralError(SpecificationError):
    """Raised when the deferred pass tries to defer an evaluation again."""

    pass


class SourceDataError(FhirWeaveError):
    """Raised when the source document is structurally corrupt."""

    def __init__(self, reason: str, segment: str | None = None):
        """
        Initialize the exception.

        Params:
            reason: Description of the structural defect
            segment: Raw segment text where the defect was found, if any
        """
        self.reason = reason
        self.segment = segment
        if segment:
            super().__init__(f"Corrupt source message: {reason} (segment '{segment}')")
        else:
            super().__init__(f"Corrupt source message: {reason}")


class ScriptEvaluationError(FhirWeaveError):
    """Raised when a scripted function fails or returns an incompatible value."""

    def __init__(self, function_name: str, reason: str):
        """
        Initialize the exception.

        Params:
            function_name: Name of the scripted function or converter
            reason: The underlying reason for the failure
        """
        self.function_name = function_name
        self.reason = reason
        super().__init__(f"Script function '{function_name}' failed: {reason}")


class UnresolvedReference(FhirWeaveError):
    """Raised when a reference or join finds no matching resource instance."""

    def __init__(self, description: str):
        self.description = description
        super().__init__(f"No resource matched {description}")
