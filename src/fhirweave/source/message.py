"""
HL7 v2 ER7 source document model.

Messages are parsed with hl7apy and adapted into an immutable, addressable
tree: a Message holds Segments, a Segment holds fields, each field holds
repetitions, and each repetition is a Composite of components and
subcomponents. hl7apy leaves out empty positions and names the elements it
keeps (``PID_3``, ``CX_4``, ``HD_1``), so positions are read back from those
names. The model is read-only for the lifetime of a conversion run.
"""

import hashlib
import logging
import re

from attrs import frozen
from hl7apy.consts import VALIDATION_LEVEL
from hl7apy.exceptions import HL7apyException, UnsupportedVersion
from hl7apy.parser import parse_segment, parse_segments

from fhirweave.exceptions import SourceDataError

logger = logging.getLogger(__name__)

HEADER_SEGMENT = "MSH"
SEGMENT_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{2}$")
SEGMENT_SPLIT_PATTERN = re.compile(r"\r\n|\r|\n")
ELEMENT_POSITION_PATTERN = re.compile(r"_(\d+)$")

# MSH-1 and MSH-2 declare the delimiters and are taken from the header text
HEADER_DECLARED_FIELDS = 2


@frozen
class Encoding:
    """Delimiters declared by MSH-1 and MSH-2."""

    field: str = "|"
    component: str = "^"
    repetition: str = "~"
    escape: str = "\\"
    subcomponent: str = "&"

    @classmethod
    def from_header(cls, header: str) -> "Encoding":
        """
        Read delimiters from a raw MSH segment.

        Params:
            header: Raw MSH segment text

        Returns:
            Encoding with the declared delimiters

        Raises:
            SourceDataError: When the delimiters are missing or ambiguous
        """
        if len(header) < 8:
            raise SourceDataError("header too short to declare delimiters", header)

        field = header[3]
        declared = header[4:].split(field, 1)[0]
        if len(declared) < 4:
            raise SourceDataError("MSH-2 must declare four encoding characters", header)

        component, repetition, escape, subcomponent = declared[:4]
        delimiters = [field, component, repetition, escape, subcomponent]
        if len(set(delimiters)) != len(delimiters):
            raise SourceDataError("encoding characters must be distinct", header)
        if any(char.isalnum() for char in delimiters):
            raise SourceDataError("encoding characters must not be alphanumeric", header)

        return cls(field, component, repetition, escape, subcomponent)

    @property
    def declaration(self) -> str:
        return f"{self.component}{self.repetition}{self.escape}{self.subcomponent}"

    def encoding_chars(self) -> dict[str, str]:
        """The delimiters in the form hl7apy's parser expects."""
        return {
            "SEGMENT": "\r",
            "FIELD": self.field,
            "COMPONENT": self.component,
            "REPETITION": self.repetition,
            "ESCAPE": self.escape,
            "SUBCOMPONENT": self.subcomponent,
        }

    def unescape(self, value: str) -> str:
        """Replace HL7 escape sequences (\\F\\, \\S\\, \\T\\, \\R\\, \\E\\) with delimiters."""
        if self.escape not in value:
            return value
        replacements = {
            "F": self.field,
            "S": self.component,
            "T": self.subcomponent,
            "R": self.repetition,
            "E": self.escape,
        }
        esc = re.escape(self.escape)
        pattern = re.compile(f"{esc}([FSTRE]){esc}")
        return pattern.sub(lambda match: replacements[match.group(1)], value)


@frozen
class Composite:
    """
    One field repetition (or one component with subcomponents).

    Components are 1-based when addressed; each component is a tuple of its
    subcomponents. Stringifies to its first atomic value, which is how HL7
    treats a composite used where a primitive is expected.
    """

    components: tuple[tuple[str, ...], ...]

    def component(self, index: int) -> "str | Composite | None":
        """
        Address a component.

        Params:
            index: 1-based component index

        Returns:
            The atomic string, a Composite of its subcomponents, or None when
            the component is absent or empty
        """
        if index < 1 or index > len(self.components):
            return None
        subcomponents = self.components[index - 1]
        if len(subcomponents) == 1:
            return subcomponents[0] or None
        if not any(subcomponents):
            return None
        return Composite(tuple((sub,) for sub in subcomponents))

    def is_empty(self) -> bool:
        return not any(sub for component in self.components for sub in component)

    def to_fragment(self) -> str | None:
        text = str(self)
        return text or None

    def __str__(self) -> str:
        if not self.components or not self.components[0]:
            return ""
        return self.components[0][0]


@frozen
class Segment:
    """A parsed segment; `fields[0]` holds the repetitions of field 1."""

    name: str
    fields: tuple[tuple[Composite, ...], ...]

    def field(self, index: int) -> list["str | Composite"]:
        """
        Return the non-empty repetitions of a field.

        Params:
            index: 1-based field number

        Returns:
            List of repetitions; atomic repetitions are returned as strings
        """
        if index < 1 or index > len(self.fields):
            return []
        values = []
        for repetition in self.fields[index - 1]:
            if repetition.is_empty():
                continue
            if len(repetition.components) == 1 and len(repetition.components[0]) == 1:
                values.append(repetition.components[0][0])
            else:
                values.append(repetition)
        return values

    def is_empty(self) -> bool:
        return False

    def to_fragment(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.name


class Message:
    """
    Parsed HL7 v2 message.

    Segments keep their order of appearance. Lookups by segment name return
    every occurrence in order, which is how repeating groups such as DG1 are
    enumerated.
    """

    def __init__(self, segments: tuple[Segment, ...], raw: str, encoding: Encoding):
        self.segments = segments
        self.raw = raw
        self.encoding = encoding
        self._by_name: dict[str, list[Segment]] = {}
        for segment in segments:
            self._by_name.setdefault(segment.name, []).append(segment)

    @classmethod
    def parse(cls, text: str) -> "Message":
        """
        Parse ER7 text into a Message.

        The header is parsed first to read the version declared in MSH-12;
        the whole message is then parsed against that version, or against
        hl7apy's default version when the declared one is unknown to it.

        Params:
            text: Message text; segments separated by CR, LF or CRLF

        Returns:
            Parsed message

        Raises:
            SourceDataError: When the message has no MSH header, declares
                unusable delimiters, contains a malformed segment name, or
                cannot be read by hl7apy
        """
        if not isinstance(text, str) or not text.strip():
            raise SourceDataError("message is empty")

        lines = [line for line in SEGMENT_SPLIT_PATTERN.split(text.strip()) if line.strip()]
        header = lines[0]
        if not header.startswith(HEADER_SEGMENT):
            raise SourceDataError("message must start with an MSH segment", header[:20])
        for line in lines[1:]:
            if not SEGMENT_NAME_PATTERN.match(line[:3]) or line[3:4] not in ("", header[3]):
                raise SourceDataError(f"invalid segment name '{line[:3]}'", line[:20])

        encoding = Encoding.from_header(header)
        raw = "\r".join(lines)
        elements = _parse_elements(raw, header, encoding)
        segments = tuple(_adapt_segment(element, encoding) for element in elements)
        return cls(segments, raw, encoding)

    def segments_named(self, name: str) -> list[Segment]:
        """Return every occurrence of a segment, in message order."""
        return list(self._by_name.get(name, ()))

    def first(self, name: str) -> Segment | None:
        occurrences = self._by_name.get(name)
        return occurrences[0] if occurrences else None

    @property
    def message_type(self) -> str | None:
        """
        Message structure such as ``ADT_A01``.

        Uses MSH-9.3 when present, otherwise joins MSH-9.1 and MSH-9.2.
        """
        header = self.first(HEADER_SEGMENT)
        if header is None:
            return None
        values = header.field(9)
        if not values:
            return None
        message_type = values[0]
        if isinstance(message_type, str):
            return message_type
        structure = message_type.component(3)
        if structure:
            return str(structure)
        code, event = message_type.component(1), message_type.component(2)
        if code and event:
            return f"{code}_{event}"
        return str(code) if code else None

    @property
    def control_id(self) -> str | None:
        header = self.first(HEADER_SEGMENT)
        if header is None:
            return None
        values = header.field(10)
        return str(values[0]) if values else None

    @property
    def fingerprint(self) -> str:
        """Stable digest of the message text, used to derive resource identities."""
        return hashlib.sha256(self.raw.encode("utf-8")).hexdigest()

    def __len__(self) -> int:
        return len(self.segments)

    def __repr__(self) -> str:
        names = ",".join(segment.name for segment in self.segments)
        return f"Message({self.message_type!r}, segments=[{names}])"


def _parse_elements(raw: str, header: str, encoding: Encoding) -> list:
    """Parse every segment with hl7apy, using the version the header declares."""
    chars = encoding.encoding_chars()
    try:
        declared = parse_segment(
            header, encoding_chars=chars, validation_level=VALIDATION_LEVEL.TOLERANT
        )
        version = _declared_version(_adapt_segment(declared, encoding))
        try:
            return parse_segments(
                raw, version=version, encoding_chars=chars, validation_level=VALIDATION_LEVEL.TOLERANT
            )
        except UnsupportedVersion:
            logger.debug(f"HL7 version {version!r} is not supported, parsing with the default")
            return parse_segments(raw, encoding_chars=chars, validation_level=VALIDATION_LEVEL.TOLERANT)
    except (HL7apyException, ValueError) as e:
        raise SourceDataError(f"unreadable message: {e}", header[:20]) from e


def _declared_version(header: Segment) -> str | None:
    values = header.field(12)
    return str(values[0]) if values else None


def _positioned(children) -> list[tuple[int, object]]:
    """
    Pair hl7apy elements with their 1-based positions.

    Named elements carry their position as a suffix; unnamed ones (the
    subcomponents of a primitive, for instance) are never skipped by the
    parser and follow the previous position.
    """
    placed = []
    position = 0
    for child in children:
        match = ELEMENT_POSITION_PATTERN.search(getattr(child, "name", None) or "")
        position = int(match.group(1)) if match else position + 1
        placed.append((position, child))
    return placed


def _adapt_segment(element, encoding: Encoding) -> Segment:
    name = element.name
    fields: dict[int, list[Composite]] = {}
    if name == HEADER_SEGMENT:
        fields[1] = [Composite(((encoding.field,),))]
        fields[2] = [Composite(((encoding.declaration,),))]

    for position, field in _positioned(element.children):
        if name == HEADER_SEGMENT and position <= HEADER_DECLARED_FIELDS:
            continue
        fields.setdefault(position, []).append(_adapt_composite(field, encoding))

    width = max(fields, default=0)
    return Segment(
        name=name,
        fields=tuple(tuple(fields.get(index, ())) for index in range(1, width + 1)),
    )


def _adapt_composite(field, encoding: Encoding) -> Composite:
    if not getattr(field, "children", None):
        return Composite((_subcomponents(field, encoding),))
    components = {
        position: _subcomponents(component, encoding)
        for position, component in _positioned(field.children)
    }
    width = max(components, default=0)
    return Composite(tuple(components.get(index, ("",)) for index in range(1, width + 1)))


def _subcomponents(component, encoding: Encoding) -> tuple[str, ...]:
    # primitive components hold their value directly
    if not getattr(component, "children", None):
        return (encoding.unescape(component.to_er7()),)
    values = {
        position: encoding.unescape(subcomponent.to_er7())
        for position, subcomponent in _positioned(component.children)
    }
    width = max(values, default=1)
    return tuple(values.get(index, "") for index in range(1, width + 1))
