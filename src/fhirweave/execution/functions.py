"""
Built-in script functions and converters.

Functions take their arguments positionally, as written in the mapping file.
Converters (the upper-case names used as `type` or as the TYPE of a
``TYPE, SOURCE`` variable) take the single value being converted.
"""

import html
import re
import uuid
from datetime import datetime
from typing import Any

from fhirweave.core.types import coerce_scalar, is_empty, is_scalar_type, to_fragment
from fhirweave.source.message import Composite

DIAGNOSIS_ROLE_SYSTEM = "http://terminology.hl7.org/CodeSystem/diagnosis-role"
V2_TABLE_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-"

# Coding-system names from CWE.3 and their canonical URLs
CODING_SYSTEMS = {
    "I10": "http://hl7.org/fhir/sid/icd-10",
    "ICD10": "http://hl7.org/fhir/sid/icd-10",
    "ICD-10": "http://hl7.org/fhir/sid/icd-10",
    "I9": "http://hl7.org/fhir/sid/icd-9-cm",
    "ICD9": "http://hl7.org/fhir/sid/icd-9-cm",
    "ICD-9": "http://hl7.org/fhir/sid/icd-9-cm",
    "SCT": "http://snomed.info/sct",
    "SNM": "http://snomed.info/sct",
    "LN": "http://loinc.org",
    "LOINC": "http://loinc.org",
    "RXNORM": "http://www.nlm.nih.gov/research/umls/rxnorm",
    "CVX": "http://hl7.org/fhir/sid/cvx",
    "MODE-OF-ARRIVAL-SYSTEM": "http://terminology.hl7.org/CodeSystem/v2-0430",
    "ENCOUNTER-MODEOFARRIVAL-EXTENSION": "http://hl7.org/fhir/StructureDefinition/encounter-modeOfArrival",
}

DIAGNOSIS_ROLES = {
    "A": ("AD", "Admission diagnosis"),
    "W": ("AD", "Admission diagnosis"),
    "F": ("DD", "Discharge diagnosis"),
    "P": ("pre-op", "pre-op diagnosis"),
}

ADMINISTRATIVE_GENDERS = {"M": "male", "F": "female", "O": "other", "U": "unknown", "A": "other", "N": "unknown"}

# HL7 table 0430, mode of arrival
ARRIVAL_MODES = {
    "A": "Ambulance",
    "C": "Car",
    "F": "On foot",
    "H": "Helicopter",
    "P": "Public Transport",
    "O": "Other",
    "U": "Unknown",
}

TIMESTAMP_PATTERN = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})?(?P<day>\d{2})?"
    r"(?P<hour>\d{2})?(?P<minute>\d{2})?(?P<second>\d{2})?(?:\.\d+)?(?P<offset>[+-]\d{4})?$"
)

FILTER_PATTERN = re.compile(
    r"^\?\(@\.(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*==\s*(?P<quote>['\"])(?P<value>.*)(?P=quote)\)$"
)


def _text(value: Any) -> str | None:
    if is_empty(value):
        return None
    if isinstance(value, list):
        return _text(value[0]) if value else None
    return str(value)


def _components(value: Any) -> tuple[str | None, str | None, str | None]:
    """Code, text and coding system of a CWE/CE value."""
    if isinstance(value, Composite):
        return (
            _text(value.component(1)),
            _text(value.component(2)),
            _text(value.component(3)),
        )
    return _text(value), None, None


def random_uuid() -> str:
    return str(uuid.uuid4())


def encounter_status(discharged: Any = None, admitted: Any = None, *_: Any) -> str:
    """Encounter status from discharge (PV1-45) and admit (PV1-44) times."""
    if not is_empty(discharged):
        return "finished"
    if not is_empty(admitted):
        return "in-progress"
    return "unknown"


def extract_attribute(resource: Any, json_path: str, type_name: str = "String") -> Any:
    """
    Read one attribute of a built resource with a JSONPath subset.

    Supported steps: ``.name``, ``[n]``, ``[*]`` and equality filters
    ``[?(@.key=='value')]``.

    Params:
        resource: ResourceInstance, attribute dict, or list of either
        json_path: Path starting at ``$``
        type_name: Scalar type of the result

    Returns:
        First match converted to type_name, or None when nothing matches

    Examples:
        extract_attribute(condition, "$.identifier[?(@.system=='urn:id:extID')].value")
    """
    if resource is None:
        return None
    if hasattr(resource, "to_dict"):
        resource = resource.to_dict()

    matches = select_json_path(resource, json_path)
    matches = [match for match in matches if not is_empty(match)]
    if not matches:
        return None
    if is_scalar_type(type_name):
        return coerce_scalar(matches[0], type_name)
    return matches[0]


def select_json_path(data: Any, json_path: str) -> list:
    """Evaluate a JSONPath subset; name steps applied to a list visit each item."""
    path = json_path.strip()
    if not path.startswith("$"):
        raise ValueError(f"JSONPath must start with '$': {json_path!r}")

    current = [data]
    for step in _json_path_steps(path[1:]):
        selected = []
        for item in current:
            selected.extend(_apply_step(item, step))
        current = selected
    return current


def _json_path_steps(path: str) -> list[str]:
    steps = []
    i = 0
    while i < len(path):
        char = path[i]
        if char == ".":
            i += 1
            start = i
            while i < len(path) and path[i] not in ".[":
                i += 1
            if start == i:
                raise ValueError(f"empty step in JSONPath {path!r}")
            steps.append(path[start:i])
        elif char == "[":
            depth = 0
            start = i
            while i < len(path):
                if path[i] == "[":
                    depth += 1
                elif path[i] == "]":
                    depth -= 1
                    if depth == 0:
                        break
                i += 1
            if i >= len(path):
                raise ValueError(f"unclosed bracket in JSONPath {path!r}")
            steps.append(path[start : i + 1])
            i += 1
        else:
            raise ValueError(f"unexpected {char!r} in JSONPath {path!r}")
    return steps


def _apply_step(item: Any, step: str) -> list:
    if not step.startswith("["):
        if isinstance(item, dict):
            if step not in item:
                return []
            return [item[step]]
        if isinstance(item, list):
            return [found for element in item for found in _apply_step(element, step)]
        return []

    inner = step[1:-1].strip()
    elements = item if isinstance(item, list) else [item]
    if inner == "*":
        return list(elements)
    if inner.isdigit():
        index = int(inner)
        return [elements[index]] if index < len(elements) else []

    match = FILTER_PATTERN.match(inner)
    if not match:
        raise ValueError(f"unsupported JSONPath step {step!r}")
    key, expected = match.group("key"), match.group("value")
    return [
        element
        for element in elements
        if isinstance(element, dict) and str(element.get(key)) == expected
    ]


def concatenate_with_char(values: Any, separator: str = " ") -> str | None:
    """Join the non-empty values with a separator."""
    items = values if isinstance(values, list | tuple) else [values]
    texts = [str(to_fragment(item)) for item in items if not is_empty(item)]
    return separator.join(texts) or None


def generate_name(*parts: Any) -> str | None:
    """Full display name from prefix, given, family and suffix parts, in that order."""
    flattened = []
    for part in parts:
        if isinstance(part, list | tuple):
            flattened.extend(part)
        else:
            flattened.append(part)
    return concatenate_with_char(flattened, " ")


def generate_div(text: Any) -> str | None:
    """XHTML narrative div holding the escaped text."""
    content = _text(text)
    if content is None:
        return None
    return f'<div xmlns="http://www.w3.org/1999/xhtml"><p>{html.escape(content)}</p></div>'


def arrival_mode_display(value: Any) -> str | None:
    code = _text(value)
    if code is None:
        return None
    return ARRIVAL_MODES.get(code.strip().upper())


def administrative_gender(value: Any) -> str | None:
    code = _text(value)
    if code is None:
        return None
    return ADMINISTRATIVE_GENDERS.get(code.upper(), "unknown")


def build_identifier_from_cwe(value: Any) -> str | None:
    """
    Identifier value for a coded element: ``code-system`` or just ``code``.

    Examples:
        C56.9^Ovarian Cancer^I10 -> "C56.9-I10"
    """
    code, _, system = _components(value)
    if code is None:
        return None
    return f"{code}-{system}" if system else code


def system_url(value: Any) -> str | None:
    """
    Canonical URL for a coding system or assigning authority name.

    URLs and URNs are kept, known table names map to their canonical URL,
    anything else becomes ``urn:id:<name>``.
    """
    name = _text(value)
    if name is None:
        return None
    name = name.strip()
    if name.startswith(("http://", "https://", "urn:")):
        return name
    known = CODING_SYSTEMS.get(name.upper())
    if known:
        return known
    return "urn:id:" + re.sub(r"\s+", "_", name)


def coding_system_v2(value: Any) -> dict | None:
    """Coding dict (system, code, display) from a CWE/CE value."""
    code, display, system = _components(value)
    if code is None:
        return None
    coding = {"system": system_url(system) if system else None, "code": code, "display": display}
    return {key: item for key, item in coding.items() if item is not None}


def diagnosis_use(value: Any) -> dict | None:
    """Diagnosis role coding from DG1-6 (diagnosis type)."""
    code = _text(value)
    if code is None:
        return None
    role = DIAGNOSIS_ROLES.get(code.upper())
    if role is None:
        return {"system": f"{V2_TABLE_SYSTEM}0052", "code": code}
    role_code, display = role
    return {"system": DIAGNOSIS_ROLE_SYSTEM, "code": role_code, "display": display}


def _parse_timestamp(value: Any) -> re.Match | None:
    text = _text(value)
    if text is None:
        return None
    match = TIMESTAMP_PATTERN.match(text.strip())
    if not match:
        raise ValueError(f"{text!r} is not an HL7 timestamp")
    return match


def hl7_date(value: Any) -> str | None:
    """HL7 DT/TS to an ISO date with the precision given."""
    match = _parse_timestamp(value)
    if match is None:
        return None
    parts = [match.group("year"), match.group("month"), match.group("day")]
    return "-".join(part for part in parts if part)


def hl7_datetime(value: Any) -> str | None:
    """HL7 TS to an ISO date-time; date-only values stay dates."""
    match = _parse_timestamp(value)
    if match is None:
        return None
    if match.group("hour") is None:
        return hl7_date(value)

    moment = datetime(
        int(match.group("year")),
        int(match.group("month")),
        int(match.group("day")),
        int(match.group("hour")),
        int(match.group("minute") or 0),
        int(match.group("second") or 0),
    )
    text = moment.isoformat()
    offset = match.group("offset")
    if offset:
        text += f"{offset[:3]}:{offset[3:]}"
    return text


BUILTIN_FUNCTIONS = {
    "UUID.randomUUID": random_uuid,
    "GeneralUtils.getEncounterStatus": encounter_status,
    "GeneralUtils.extractAttribute": extract_attribute,
    "GeneralUtils.concatenateWithChar": concatenate_with_char,
    "GeneralUtils.generateName": generate_name,
    "GeneralUtils.administrativeGender": administrative_gender,
    "GeneralUtils.generateDiv": generate_div,
    "BUILD_IDENTIFIER_FROM_CWE": build_identifier_from_cwe,
    "SYSTEM_URL": system_url,
    "CODING_SYSTEM_V2": coding_system_v2,
    "DIAGNOSIS_USE": diagnosis_use,
    "ENCOUNTER_MODE_ARRIVAL_DISPLAY": arrival_mode_display,
    "ADMINISTRATIVE_GENDER": administrative_gender,
    "DATE": hl7_date,
    "DATETIME": hl7_datetime,
}
