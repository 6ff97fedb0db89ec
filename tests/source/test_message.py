"""
Tests for the HL7 v2 ER7 message model.
"""

import pytest

from fhirweave.exceptions import SourceDataError
from fhirweave.source import Composite, Encoding, Message


class TestMessageParse:
    """Tests for parsing ER7 text."""

    def test_segments_in_order(self, adt_message):
        """Test segments keep their order of appearance."""
        assert [segment.name for segment in adt_message.segments] == [
            "MSH", "EVN", "PID", "PV1", "DG1", "DG1",
        ]

    def test_repeating_segments(self, adt_message):
        """Test every occurrence of a segment is returned in order."""
        occurrences = adt_message.segments_named("DG1")
        assert len(occurrences) == 2
        assert occurrences[0].field(1) == ["1"]
        assert occurrences[1].field(1) == ["2"]
        assert adt_message.segments_named("OBX") == []

    def test_message_type_from_structure(self, adt_message):
        """Test MSH-9.3 gives the message structure."""
        assert adt_message.message_type == "ADT_A01"
        assert adt_message.control_id == "MSG00001"

    def test_message_type_from_code_and_event(self):
        """Test MSH-9.1 and MSH-9.2 are joined when MSH-9.3 is absent."""
        message = Message.parse("MSH|^~\\&|A|B|C|D|20240101||ADT^A03|1|P|2.5")
        assert message.message_type == "ADT_A03"

    def test_msh_fields_are_numbered_from_separator(self, adt_message):
        """Test MSH-1 is the field separator and MSH-3 the sending application."""
        header = adt_message.first("MSH")
        assert header.field(1) == ["|"]
        assert header.field(2) == ["^~\\&"]
        assert header.field(3) == ["SENDER"]

    def test_line_endings(self):
        """Test CR, LF and CRLF all separate segments."""
        for separator in ("\r", "\n", "\r\n"):
            message = Message.parse(separator.join(["MSH|^~\\&|A", "PID|1", "PV1|1"]))
            assert len(message) == 3

    def test_fingerprint_is_stable(self, adt_message_text):
        """Test the same text always gives the same fingerprint."""
        assert Message.parse(adt_message_text).fingerprint == Message.parse(adt_message_text).fingerprint
        assert Message.parse(adt_message_text + "\rNTE|1").fingerprint != Message.parse(adt_message_text).fingerprint

    def test_unknown_version_parsed_with_default(self):
        """Test a version the parser library does not know still parses."""
        message = Message.parse("MSH|^~\\&|A|B|C|D|20240101||ADT^A01^ADT_A01|1|P|9.9\rPID|1||123^^^AUTH")
        assert message.message_type == "ADT_A01"
        assert str(message.first("PID").field(3)[0]) == "123"

    def test_custom_segment(self):
        """Test Z segments are addressable like standard ones."""
        message = Message.parse("MSH|^~\\&|A\rZDX|K1^Key one|K2")
        zdx = message.first("ZDX")
        assert zdx.field(1)[0].component(2) == "Key one"
        assert zdx.field(2) == ["K2"]

    def test_missing_header_rejected(self):
        """Test messages must start with MSH."""
        with pytest.raises(SourceDataError, match="MSH"):
            Message.parse("PID|1||123")

    def test_empty_message_rejected(self):
        """Test empty text is corrupt."""
        with pytest.raises(SourceDataError):
            Message.parse("  ")

    def test_bad_segment_name_rejected(self):
        """Test malformed segment names are corrupt."""
        with pytest.raises(SourceDataError, match="invalid segment name"):
            Message.parse("MSH|^~\\&|A\rpid|1")


class TestEncoding:
    """Tests for delimiter handling."""

    def test_custom_delimiters(self):
        """Test delimiters declared in MSH are honored."""
        message = Message.parse("MSH#*~\\&#A\rPID#1##123*X*Y")
        value = message.first("PID").field(3)[0]
        assert isinstance(value, Composite)
        assert value.component(2) == "X"

    def test_duplicate_delimiters_rejected(self):
        """Test ambiguous delimiters are corrupt."""
        with pytest.raises(SourceDataError, match="distinct"):
            Encoding.from_header("MSH|^^\\&|A")

    def test_unescape(self):
        """Test escape sequences are replaced by the delimiters they stand for."""
        encoding = Encoding()
        assert encoding.unescape("A\\F\\B\\S\\C\\E\\") == "A|B^C\\"


class TestFieldAccess:
    """Tests for fields, repetitions and components."""

    def test_repetitions(self):
        """Test repetitions are split and empty ones dropped."""
        message = Message.parse("MSH|^~\\&|A\rPID|||111^^^A~~222^^^B")
        repetitions = message.first("PID").field(3)
        assert [str(rep) for rep in repetitions] == ["111", "222"]

    def test_atomic_field_is_string(self, adt_message):
        """Test single-component fields come back as strings."""
        assert adt_message.first("PID").field(8) == ["M"]

    def test_subcomponents(self):
        """Test a component with subcomponents is itself a composite."""
        message = Message.parse("MSH|^~\\&|A\rPV1|||WARD^^^HOSP&1.2.3&ISO")
        location = message.first("PV1").field(3)[0]
        facility = location.component(4)
        assert isinstance(facility, Composite)
        assert facility.component(2) == "1.2.3"

    def test_missing_field_and_component(self, adt_message):
        """Test absent positions are empty."""
        pid = adt_message.first("PID")
        assert pid.field(40) == []
        assert pid.field(3)[0].component(9) is None
        assert pid.field(3)[0].component(2) is None
