"""
Mapping specification models.

A Specification is the parsed form of one YAML mapping file: an ordered
mapping from attribute name to ExpressionNode. Models are frozen pydantic
models; once loaded they are shared read-only by every conversion run.
"""

import re
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from fhirweave.exceptions import ErrorContext, SpecificationError
from fhirweave.parsing.parser import is_script_call

SPECIFICATION_REFERENCE_PATTERN = re.compile(r"^[a-z]+/[A-Za-z0-9_]+$")

# YAML keys of a mapping file that describe the file itself, not an attribute
METADATA_KEYS = frozenset({"resourceType"})


class ExpressionKind(Enum):
    """
    Closed set of expression kinds.

    Values are the `expressionType` spellings used in mapping files.
    """

    SCRIPTED = "JEXL"
    PATH = "HL7Spec"
    SUB_RESOURCE = "resource"
    REFERENCE = "reference"
    NESTED = "nested"
    CONSTANT = "constant"

    @classmethod
    def _missing_(cls, value: object) -> "ExpressionKind | None":
        if isinstance(value, str):
            folded = value.strip().lower()
            for member in cls:
                if folded in (member.value.lower(), member.name.lower()):
                    return member
        return None


def summarize_validation_error(error: ValidationError) -> str:
    """Flatten pydantic errors into one line: `loc: message; loc: message`."""
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )


def is_specification_reference(text: str | None) -> bool:
    """Check whether text names another specification, e.g. ``datatype/CodeableConcept``."""
    return bool(text) and bool(SPECIFICATION_REFERENCE_PATTERN.match(text.strip()))


def infer_kind(data: dict) -> ExpressionKind:
    """
    Infer the expression kind of a node declared without `expressionType`.

    Params:
        data: Raw node mapping as read from YAML

    Returns:
        NESTED when children are declared, CONSTANT when a `value` is given,
        SCRIPTED for a call, SUB_RESOURCE for a ``dir/Name`` reference and
        PATH otherwise
    """
    children = data.get("expressionsMap", data.get("expressions_map"))
    if data.get("expressions") is not None or children is not None:
        return ExpressionKind.NESTED
    if "value" in data:
        return ExpressionKind.CONSTANT

    value_of = data.get("valueOf", data.get("value_of"))
    if isinstance(value_of, str):
        if is_script_call(value_of):
            return ExpressionKind.SCRIPTED
        if is_specification_reference(value_of):
            return ExpressionKind.SUB_RESOURCE
    return ExpressionKind.PATH


class ExpressionNode(BaseModel):
    """
    One named rule of a mapping specification.

    Field names follow the mapping-file spelling through aliases, so a node
    can be built straight from YAML (`expressionType`, `valueOf`,
    `generateList`, ...) or from Python keyword arguments.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    kind: ExpressionKind = Field(alias="expressionType")
    condition: str | None = None
    vars: dict[str, str] = Field(default_factory=dict)
    constants: dict[str, Any] = Field(default_factory=dict)
    value_of: str | None = Field(default=None, alias="valueOf")
    value: Any = None
    specs: str | None = None
    generate_list: bool = Field(default=False, alias="generateList")
    evaluate_later: bool = Field(default=False, alias="evaluateLater")
    required: bool = False
    value_type: str | None = Field(default=None, alias="type")
    default: Any = None
    expressions_map: dict[str, "ExpressionNode"] | None = Field(
        default=None, alias="expressionsMap"
    )
    expressions: list["ExpressionNode"] | None = None

    @model_validator(mode="before")
    @classmethod
    def _expand_shorthand(cls, data: Any) -> Any:
        # `attribute: PID.5` is shorthand for a path node
        if isinstance(data, str):
            data = {"valueOf": data}
        if isinstance(data, dict) and "expressionType" not in data and "kind" not in data:
            data = {**data, "expressionType": infer_kind(data)}
        return data

    @field_validator("vars", mode="before")
    @classmethod
    def _stringify_vars(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(name): str(source) for name, source in value.items()}
        return value

    @field_validator("condition", "value_of", "specs", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "ExpressionNode":
        match self.kind:
            case ExpressionKind.NESTED:
                if self.expressions is None and self.expressions_map is None:
                    raise ValueError("nested expression requires 'expressions' or 'expressionsMap'")
            case ExpressionKind.SUB_RESOURCE:
                if not is_specification_reference(self.value_of):
                    raise ValueError(
                        f"resource expression requires valueOf 'dir/Name', got {self.value_of!r}"
                    )
            case ExpressionKind.SCRIPTED:
                if not self.value_of:
                    raise ValueError("scripted expression requires 'valueOf'")
            case ExpressionKind.REFERENCE:
                if not self.value_of and not self.specs:
                    raise ValueError("reference expression requires 'valueOf' or 'specs'")
            case ExpressionKind.CONSTANT:
                if self.value is None:
                    raise ValueError("constant expression requires 'value'")

        # Deferred results are spliced into resource attributes only
        for name, child in self.children:
            if child.evaluate_later:
                label = f"'{name}'" if name is not None else "in 'expressions'"
                raise ValueError(
                    f"child {label} cannot use 'evaluateLater'; only top-level attributes are deferred"
                )
        return self

    @property
    def children(self) -> list[tuple[str | None, "ExpressionNode"]]:
        """Children of a nested node in declared order; list children are unnamed."""
        if self.expressions_map is not None:
            return list(self.expressions_map.items())
        if self.expressions is not None:
            return [(None, child) for child in self.expressions]
        return []

    @property
    def description(self) -> str:
        """Short text identifying this node in error messages."""
        return self.value_of or self.specs or str(self.value or self.kind.value)


class Specification(BaseModel):
    """
    Parsed mapping file for one resource kind or reusable datatype.

    Params:
        name: Specification name such as ``resource/Encounter``
        resource_type: Declared `resourceType`, falls back to the file stem
        attributes: Attribute name to node, in declaration order
    """

    model_config = ConfigDict(frozen=True)

    name: str
    resource_type: str
    attributes: dict[str, ExpressionNode]

    @classmethod
    def from_mapping(cls, name: str, mapping: dict[str, Any]) -> "Specification":
        """
        Build a Specification from a YAML mapping.

        Params:
            name: Specification name (``dir/Name``)
            mapping: Top-level mapping of the YAML document

        Returns:
            Specification with attributes in document order

        Raises:
            SpecificationError: When an attribute is not a valid expression node
        """
        resource_type = mapping.get("resourceType") or name.rsplit("/", 1)[-1]
        attributes = {}
        for key, node in mapping.items():
            if key in METADATA_KEYS:
                continue
            try:
                attributes[str(key)] = ExpressionNode.model_validate(node)
            except ValidationError as e:
                raise SpecificationError(
                    f"Invalid mapping: {summarize_validation_error(e)}",
                    ErrorContext(
                        resource_kind=resource_type, attribute=str(key), specification=name
                    ),
                ) from e
        return cls(name=name, resource_type=resource_type, attributes=attributes)

    def __iter__(self):
        return iter(self.attributes.items())

    def __len__(self) -> int:
        return len(self.attributes)


class ResourceDeclaration(BaseModel):
    """
    One output resource of a message template.

    Params:
        resource_name: Output kind, e.g. ``Condition``
        segment: Driving segment; the resource is skipped when it is absent
        resource_path: Specification to evaluate, defaults to ``resource/<name>``
        repeats: One resource per segment occurrence instead of one in total
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    resource_name: str = Field(alias="resourceName")
    segment: str
    resource_path: str | None = Field(default=None, alias="resourcePath")
    repeats: bool = False

    @property
    def specification_name(self) -> str:
        return self.resource_path or f"resource/{self.resource_name}"


class MessageTemplate(BaseModel):
    """Ordered resource declarations for one message type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    message_type: str = Field(alias="messageType")
    resources: list[ResourceDeclaration]
