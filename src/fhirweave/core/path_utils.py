"""
Field-path parsing utilities for fhirweave.

This module parses the path expressions used by mapping specifications to
address the source message, e.g. ``PV1.19.1 | PID.18.1 | $fallback``.
Parsing is pure and cached; resolution against a message lives in
fhirweave.source.resolver.
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from fhirweave.exceptions import PathSyntaxError

ALTERNATIVE_SEPARATOR = "|"

SEGMENT_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{2}$")
HEAD_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{1,2}$")
INDEX_PATTERN = re.compile(r"^[1-9][0-9]*$")
VARIABLE_PATTERN = re.compile(r"^\$([A-Za-z_][A-Za-z0-9_]*)$")

# HL7 v2 composite and primitive datatype names. A path starting with one of
# these addresses the current base value instead of a segment.
DATA_TYPES = frozenset(
    {
        "CE", "CF", "CNE", "CNN", "CP", "CQ", "CWE", "CX", "DLD", "DLN",
        "DR", "DT", "DTM", "EI", "EIP", "FC", "FN", "FT", "HD", "ID",
        "IS", "JCC", "MO", "MSG", "NDL", "NM", "PL", "PPN", "PRL", "PT",
        "SAD", "SI", "SN", "ST", "TM", "TS", "TX", "VID", "XAD", "XCN",
        "XON", "XPN", "XTN",
    }
)

MAX_SEGMENT_INDICES = 3  # field, component, subcomponent
MAX_RELATIVE_INDICES = 2  # component, subcomponent


@dataclass(frozen=True)
class FieldPath:
    """
    One addressable location in the source message.

    Params:
        head: Segment name (``PV1``) or datatype name (``CWE``) for relative paths
        indices: 1-based field/component/subcomponent indices
        relative: True when the path addresses the current base value
        original: The path text as written
    """

    head: str
    indices: tuple[int, ...]
    relative: bool
    original: str

    def __str__(self) -> str:
        return self.original


@dataclass(frozen=True)
class PathAlternative:
    """Either a field path or a `$variable` reference."""

    field_path: FieldPath | None = None
    variable: str | None = None

    def __str__(self) -> str:
        if self.variable is not None:
            return f"${self.variable}"
        return str(self.field_path)

    @property
    def is_variable(self) -> bool:
        return self.variable is not None


@dataclass(frozen=True)
class PathExpression:
    """Ordered first-match alternatives of a path expression."""

    alternatives: tuple[PathAlternative, ...]
    original: str

    def __str__(self) -> str:
        return self.original


def parse_field_path(text: str) -> FieldPath:
    """
    Parse a single field path.

    Params:
        text: Path text such as ``PV1.19.1`` or ``CWE.2``

    Returns:
        FieldPath with head and indices separated

    Raises:
        PathSyntaxError: If the head or an index is malformed

    Examples:
        "PV1.19.1" -> FieldPath("PV1", (19, 1), relative=False)
        "CWE.2" -> FieldPath("CWE", (2,), relative=True)
        "DG1" -> FieldPath("DG1", (), relative=False)
    """
    path = text.strip()
    if not path:
        raise PathSyntaxError(text, "empty path")

    head, *raw_indices = path.split(".")
    if not HEAD_PATTERN.match(head):
        raise PathSyntaxError(text, f"'{head}' is not a segment or datatype name")

    relative = head in DATA_TYPES
    if not relative and not SEGMENT_PATTERN.match(head):
        raise PathSyntaxError(text, f"'{head}' is not a segment name")

    limit = MAX_RELATIVE_INDICES if relative else MAX_SEGMENT_INDICES
    if len(raw_indices) > limit:
        raise PathSyntaxError(text, f"at most {limit} indices allowed after '{head}'")

    indices = []
    for raw in raw_indices:
        if not INDEX_PATTERN.match(raw):
            raise PathSyntaxError(text, f"'{raw}' is not a positive index")
        indices.append(int(raw))

    return FieldPath(head=head, indices=tuple(indices), relative=relative, original=path)


@lru_cache(maxsize=4096)
def parse_path_expression(text: str) -> PathExpression:
    """
    Parse a path expression with optional `|` fallback alternatives.

    Params:
        text: Expression such as ``PV1.44 | EVN.6 | $start``

    Returns:
        PathExpression whose alternatives are tried left to right

    Raises:
        PathSyntaxError: If any alternative is malformed
    """
    if not isinstance(text, str) or not text.strip():
        raise PathSyntaxError(str(text), "empty path expression")

    alternatives = []
    for part in text.split(ALTERNATIVE_SEPARATOR):
        candidate = part.strip()
        if not candidate:
            raise PathSyntaxError(text, "empty alternative")

        variable_match = VARIABLE_PATTERN.match(candidate)
        if variable_match:
            alternatives.append(PathAlternative(variable=variable_match.group(1)))
            continue

        try:
            alternatives.append(PathAlternative(field_path=parse_field_path(candidate)))
        except PathSyntaxError as e:
            # Report against the whole expression the author wrote
            raise PathSyntaxError(text, e.detail) from e

    return PathExpression(alternatives=tuple(alternatives), original=text.strip())
