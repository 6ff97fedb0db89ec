"""
Shared test fixtures and utilities for the fhirweave test suite.
"""

import pytest

from fhirweave import Converter, Message, SpecificationSet
from fhirweave.execution import ConversionContext, ExpressionEvaluator, ScriptBridge

MSH = "MSH|^~\\&|SENDER|FAC|RECEIVER|FAC|20240101120000||ADT^A01^ADT_A01|MSG00001|P|2.6"


def build_segment(name: str, fields: dict[int, str]) -> str:
    """Build a segment line from 1-based field positions; gaps stay empty."""
    width = max(fields) if fields else 0
    values = [fields.get(index, "") for index in range(1, width + 1)]
    return "|".join([name, *values])


def build_message(*segments: str) -> str:
    return "\r".join([MSH, *segments])


EVN = build_segment("EVN", {1: "A01", 2: "20240101120000"})
PID = build_segment(
    "PID",
    {
        1: "1",
        3: "12345^^^MRN_AUTH^MR",
        5: "Doe^John^Q^^Dr",
        7: "19800115",
        8: "M",
    },
)
PV1 = build_segment(
    "PV1",
    {
        1: "1",
        2: "I",
        3: "WARD^101^A^HOSP",
        7: "1001^Smith^Jane^^^Dr",
        19: "V100^^^VISIT_AUTH",
        44: "20240101120000",
    },
)
DG1_FIRST = build_segment(
    "DG1",
    {
        1: "1",
        3: "C56.9^Ovarian Cancer^I10",
        5: "20231201",
        6: "A",
        15: "1",
        16: "1001^Smith^Jane",
        19: "20240101",
    },
)
DG1_SECOND = build_segment(
    "DG1",
    {1: "2", 3: "E11.9^Type 2 diabetes^I10", 6: "F", 15: "2"},
)


@pytest.fixture
def segment():
    """The build_segment helper, for tests composing their own messages."""
    return build_segment


@pytest.fixture
def message_text():
    """The build_message helper: prefixes an ADT_A01 MSH to the given segments."""
    return build_message


@pytest.fixture
def adt_message_text() -> str:
    """Admission message with a patient, a visit and two diagnoses."""
    return build_message(EVN, PID, PV1, DG1_FIRST, DG1_SECOND)


@pytest.fixture
def adt_message(adt_message_text) -> Message:
    return Message.parse(adt_message_text)


@pytest.fixture(scope="session")
def default_specifications() -> SpecificationSet:
    """The mapping files shipped with the package."""
    return SpecificationSet.load_default()


@pytest.fixture
def converter(default_specifications) -> Converter:
    return Converter(default_specifications)


@pytest.fixture
def make_converter():
    """Factory building a Converter from in-memory mapping documents.

    Usage:
        def test_something(make_converter):
            converter = make_converter(
                {"resource/Encounter": {...}},
                {"ADT_A01": {"resources": [...]}},
            )
    """

    def factory(specifications, templates=None, bridge=None, options=None):
        specification_set = SpecificationSet.from_mapping(specifications, templates or {})
        return Converter(specification_set, bridge=bridge, options=options)

    return factory


@pytest.fixture
def make_context():
    """Factory building a conversion context and evaluator for one message."""

    def factory(message_text, specifications=None, bridge=None):
        message = Message.parse(message_text)
        specification_set = SpecificationSet.from_mapping(specifications or {})
        context = ConversionContext(
            message, specification_set, bridge or ScriptBridge.with_builtins()
        )
        return context, ExpressionEvaluator(context)

    return factory
