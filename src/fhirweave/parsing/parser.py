"""
Parsers for the small expression languages embedded in mapping specifications.

Three grammars live here:

- guard conditions (``$code NOT_NULL && $display NULL``)
- variable source descriptors (``String, PV1.45`` or ``$BASE_VALUE, Fn.call(x)``)
- script invocations (``GeneralUtils.getEncounterStatus(a, b, "literal")``)

All parse functions are pure and cached, so a specification's text is parsed
once no matter how many messages it converts.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any

from fhirweave.core.path_utils import PathExpression, parse_path_expression
from fhirweave.core.types import is_scalar_type
from fhirweave.exceptions import (
    ConditionSyntaxError,
    ExpressionSyntaxError,
    PathSyntaxError,
)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
VARIABLE_PATTERN = re.compile(r"^\$([A-Za-z_][A-Za-z0-9_]*)$")
CALL_PATTERN = re.compile(
    r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\s*\((?P<args>.*)\)$",
    re.DOTALL,
)
PREDICATE_PATTERN = re.compile(
    r"^\$(?P<var>[A-Za-z_][A-Za-z0-9_]*)\s+(?P<op>[A-Z_]+)(?:\s+(?P<operand>.+))?$",
    re.DOTALL,
)
NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")

AND = "&&"
OR = "||"


class ConditionOperator(Enum):
    """Guard operators."""

    NOT_NULL = "NOT_NULL"
    NULL = "NULL"
    EQUALS_STRING = "EQUALS_STRING"
    EQUALS = "EQUALS"
    IN = "IN"

    @property
    def takes_operand(self) -> bool:
        return self not in (ConditionOperator.NOT_NULL, ConditionOperator.NULL)

    @property
    def compares_text(self) -> bool:
        return self in (ConditionOperator.EQUALS_STRING, ConditionOperator.IN)


@dataclass(frozen=True)
class Operand:
    """A literal or a `$variable` on the right-hand side of a guard or a call."""

    literal: Any = None
    variable: str | None = None

    @property
    def is_variable(self) -> bool:
        return self.variable is not None

    def __str__(self) -> str:
        if self.variable is not None:
            return f"${self.variable}"
        return repr(self.literal)


@dataclass(frozen=True)
class Predicate:
    """A single guard such as ``$code EQUALS_STRING 'A'``."""

    variable: str
    operator: ConditionOperator
    operands: tuple[Operand, ...] = ()

    def variables(self) -> frozenset[str]:
        names = {self.variable}
        names.update(op.variable for op in self.operands if op.variable is not None)
        return frozenset(names)

    def __str__(self) -> str:
        if not self.operands:
            return f"${self.variable} {self.operator.value}"
        if self.operator == ConditionOperator.IN:
            items = ", ".join(str(op) for op in self.operands)
            return f"${self.variable} IN [{items}]"
        return f"${self.variable} {self.operator.value} {self.operands[0]}"


@dataclass(frozen=True)
class CompoundCondition:
    """Guards joined by `&&` or `||`, evaluated left to right with short-circuit."""

    operator: str
    terms: tuple["Condition", ...]

    def variables(self) -> frozenset[str]:
        names: set[str] = set()
        for term in self.terms:
            names.update(term.variables())
        return frozenset(names)

    def __str__(self) -> str:
        return f" {self.operator} ".join(str(term) for term in self.terms)


Condition = Predicate | CompoundCondition


class SourceKind(Enum):
    """Shapes a variable source descriptor can take."""

    PATH = "path"  # PV1.44 | EVN.6
    VARIABLE = "variable"  # $BASE_VALUE
    LITERAL = "literal"  # 'text'
    SCRIPT = "script"  # Fn.call(a, b)
    TYPED = "typed"  # String, PV1.45
    PIPED = "piped"  # $BASE_VALUE, Fn.call(name)


@dataclass(frozen=True)
class ScriptCall:
    """A parsed script invocation with positional arguments."""

    function: str
    arguments: tuple[Operand, ...]
    original: str

    def variables(self) -> frozenset[str]:
        return frozenset(arg.variable for arg in self.arguments if arg.variable is not None)

    def __str__(self) -> str:
        return self.original


@dataclass(frozen=True)
class VariableSource:
    """
    Parsed variable source descriptor.

    Params:
        kind: Shape of the descriptor
        original: Descriptor text as written
        path: Path expression for PATH sources
        variable: Variable name for VARIABLE sources
        literal: Value for LITERAL sources
        call: Script call for SCRIPT and PIPED sources
        type_name: Conversion type for TYPED sources
        source: Inner source for TYPED and PIPED sources
    """

    kind: SourceKind
    original: str
    path: PathExpression | None = None
    variable: str | None = None
    literal: Any = None
    call: ScriptCall | None = None
    type_name: str | None = None
    source: "VariableSource | None" = None

    def __str__(self) -> str:
        return self.original


def split_top_level(text: str, separator: str) -> list[str]:
    """
    Split text on a separator that is not inside quotes or brackets.

    Params:
        text: Text to split
        separator: One or more characters, e.g. "," or "&&"

    Returns:
        Parts in order, not stripped
    """
    parts = []
    depth = 0
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        elif depth == 0 and text.startswith(separator, i):
            parts.append(text[start:i])
            i += len(separator)
            start = i
            continue
        i += 1
    parts.append(text[start:])
    return parts


def parse_literal(text: str) -> Any:
    """
    Parse a quoted string, number, boolean or null literal.

    Returns:
        The literal value; unquoted words are returned unchanged
    """
    value = text.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return _unquote(value)
    if value == "true":
        return True
    if value == "false":
        return False
    if value == "null":
        return None
    if NUMBER_PATTERN.match(value):
        return float(value) if "." in value else int(value)
    return value


def _unquote(value: str) -> str:
    quote = value[0]
    unquoted = value[1:-1]
    return (
        unquoted.replace("\\n", "\n")
        .replace("\\t", "\t")
        .replace(f"\\{quote}", quote)
        .replace("\\\\", "\\")
    )


def _is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'"


@lru_cache(maxsize=2048)
def parse_condition(text: str) -> Condition:
    """
    Parse a guard expression.

    `||` binds loosest, then `&&`; there are no parentheses.

    Params:
        text: Guard text such as ``$code NOT_NULL && $display NULL``

    Returns:
        Predicate or CompoundCondition

    Raises:
        ConditionSyntaxError: If the guard is malformed
    """
    if not isinstance(text, str) or not text.strip():
        raise ConditionSyntaxError(str(text), "empty condition")

    alternatives = [part.strip() for part in split_top_level(text, OR)]
    terms = []
    for alternative in alternatives:
        conjuncts = [part.strip() for part in split_top_level(alternative, AND)]
        if any(not conjunct for conjunct in conjuncts):
            raise ConditionSyntaxError(text, "dangling boolean operator")
        predicates = tuple(_parse_predicate(conjunct, text) for conjunct in conjuncts)
        terms.append(predicates[0] if len(predicates) == 1 else CompoundCondition(AND, predicates))

    return terms[0] if len(terms) == 1 else CompoundCondition(OR, tuple(terms))


def _parse_predicate(text: str, whole: str) -> Predicate:
    match = PREDICATE_PATTERN.match(text)
    if not match:
        raise ConditionSyntaxError(whole, f"'{text}' is not of the form '$var OPERATOR [operand]'")

    try:
        operator = ConditionOperator(match.group("op"))
    except ValueError:
        raise ConditionSyntaxError(whole, f"unknown operator '{match.group('op')}'")

    raw_operand = (match.group("operand") or "").strip()
    if not operator.takes_operand:
        if raw_operand:
            raise ConditionSyntaxError(whole, f"{operator.value} takes no operand")
        return Predicate(match.group("var"), operator)

    if not raw_operand:
        raise ConditionSyntaxError(whole, f"{operator.value} requires an operand")

    if operator == ConditionOperator.IN:
        if not (raw_operand.startswith("[") and raw_operand.endswith("]")):
            raise ConditionSyntaxError(whole, "IN requires a bracketed list such as [A, B]")
        inner = raw_operand[1:-1].strip()
        items = [item.strip() for item in split_top_level(inner, ",")] if inner else []
        if any(not item for item in items):
            raise ConditionSyntaxError(whole, "empty item in IN list")
        operands = tuple(_parse_operand(item, operator.compares_text) for item in items)
    else:
        operands = (_parse_operand(raw_operand, operator.compares_text),)

    return Predicate(match.group("var"), operator, operands)


def _parse_operand(text: str, as_text: bool = False) -> Operand:
    variable = VARIABLE_PATTERN.match(text)
    if variable:
        return Operand(variable=variable.group(1))
    # codes such as 01 or 1.50 compare as written
    if as_text and not _is_quoted(text):
        return Operand(literal=text)
    return Operand(literal=parse_literal(text))


def is_script_call(text: str) -> bool:
    return bool(CALL_PATTERN.match(text.strip()))


@lru_cache(maxsize=2048)
def parse_script_call(text: str) -> ScriptCall:
    """
    Parse a script invocation.

    Bare identifiers and `$names` are variable references; quoted strings,
    numbers, true, false and null are literals.

    Params:
        text: Invocation such as ``GeneralUtils.getEncounterStatus(vars1, vars2)``

    Returns:
        ScriptCall with function name and arguments in order

    Raises:
        ExpressionSyntaxError: If the text is not a well-formed call
    """
    original = text.strip()
    match = CALL_PATTERN.match(original)
    if not match:
        raise ExpressionSyntaxError(text, "expected a call such as Name.function(args)")

    raw_args = match.group("args").strip()

    arguments = []
    if raw_args:
        for part in split_top_level(raw_args, ","):
            argument = part.strip()
            if not argument:
                raise ExpressionSyntaxError(text, "empty argument")
            if _is_quoted(argument):
                arguments.append(Operand(literal=_unquote(argument)))
                continue
            variable = VARIABLE_PATTERN.match(argument)
            if variable:
                arguments.append(Operand(variable=variable.group(1)))
            elif IDENTIFIER_PATTERN.match(argument) and argument not in ("true", "false", "null"):
                arguments.append(Operand(variable=argument))
            elif NUMBER_PATTERN.match(argument) or argument in ("true", "false", "null"):
                arguments.append(Operand(literal=parse_literal(argument)))
            else:
                raise ExpressionSyntaxError(text, f"cannot parse argument '{argument}'")

    return ScriptCall(match.group("name"), tuple(arguments), original)


@lru_cache(maxsize=4096)
def parse_variable_source(text: str) -> VariableSource:
    """
    Parse a variable source descriptor.

    Recognized shapes, tried in this order:

    - ``Name.f(args)`` - script call
    - ``TYPE, Name.f(args)`` - script call whose result is converted to TYPE
    - ``SOURCE, Name.f(args)`` - SOURCE is bound under the variable's own
      name, then the call runs and may refer to it
    - ``TYPE, SOURCE`` - SOURCE resolved then converted to TYPE
    - ``$name`` - scope lookup
    - ``'literal'`` - quoted literal
    - anything else - path expression

    Params:
        text: Descriptor text

    Returns:
        VariableSource

    Raises:
        ExpressionSyntaxError: If a call or type name is malformed
        PathSyntaxError: If a path alternative is malformed
    """
    if not isinstance(text, str) or not text.strip():
        raise ExpressionSyntaxError(str(text), "empty variable source")

    original = text.strip()
    if is_script_call(original):
        return VariableSource(SourceKind.SCRIPT, original, call=parse_script_call(original))

    parts = split_top_level(original, ",")
    if len(parts) > 1:
        head = parts[0].strip()
        rest = ",".join(parts[1:]).strip()
        if not head or not rest:
            raise ExpressionSyntaxError(text, "expected 'TYPE, SOURCE'")

        if is_script_call(rest):
            call = parse_script_call(rest)
            if is_scalar_type(head) or not _is_source(head):
                _check_type_name(head, text)
                inner = VariableSource(SourceKind.SCRIPT, rest, call=call)
                return VariableSource(SourceKind.TYPED, original, type_name=head, source=inner)
            return VariableSource(
                SourceKind.PIPED, original, call=call, source=_parse_simple_source(head)
            )

        _check_type_name(head, text)
        return VariableSource(
            SourceKind.TYPED, original, type_name=head, source=_parse_simple_source(rest)
        )

    return _parse_simple_source(original)


def _parse_simple_source(text: str) -> VariableSource:
    variable = VARIABLE_PATTERN.match(text)
    if variable:
        return VariableSource(SourceKind.VARIABLE, text, variable=variable.group(1))
    if _is_quoted(text):
        return VariableSource(SourceKind.LITERAL, text, literal=_unquote(text))
    return VariableSource(SourceKind.PATH, text, path=parse_path_expression(text))


def _is_source(text: str) -> bool:
    if VARIABLE_PATTERN.match(text):
        return True
    try:
        parse_path_expression(text)
    except PathSyntaxError:
        return False
    return True


def _check_type_name(name: str, whole: str) -> None:
    if not IDENTIFIER_PATTERN.match(name):
        raise ExpressionSyntaxError(whole, f"'{name}' is not a valid type name")
