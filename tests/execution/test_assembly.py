"""
Tests for resource instances, identities and bundle assembly.
"""

import uuid

import pytest

from fhirweave.execution import BundleBuilder, IdentityGenerator, attribute_name, splice_attribute

NAMESPACE = uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def bundle():
    return BundleBuilder(IdentityGenerator(NAMESPACE, "fingerprint"))


class TestSpliceAttribute:
    """Tests for splicing produced values into attribute maps."""

    def test_rule_suffix_stripped(self):
        """Test `_N` suffixes address the same attribute."""
        assert attribute_name("coding_2") == "coding"
        assert attribute_name("given_10") == "given"
        assert attribute_name("use_case") == "use_case"

    def test_list_accumulates(self):
        """Test list attributes keep production order across rules."""
        target = {}
        splice_attribute(target, "given_1", ["John"], as_list=True)
        splice_attribute(target, "given_2", "Q", as_list=True)
        assert target == {"given": ["John", "Q"]}

    def test_scalar_first_wins(self):
        """Test a scalar attribute keeps its first value."""
        target = {}
        splice_attribute(target, "text", "first")
        splice_attribute(target, "text", "second")
        assert target == {"text": "first"}

    def test_empty_values_ignored(self):
        """Test empty values never create attributes."""
        target = {}
        splice_attribute(target, "text", "")
        splice_attribute(target, "coding", [], as_list=True)
        assert target == {}

    def test_values_are_copied(self):
        """Test spliced values are owned by the target."""
        coding = {"code": "A"}
        target = {}
        splice_attribute(target, "coding", coding, as_list=True)
        coding["code"] = "B"
        assert target["coding"] == [{"code": "A"}]


class TestIdentityGenerator:
    """Tests for deterministic identities."""

    def test_same_inputs_same_identity(self):
        """Test identities are reproducible."""
        first = IdentityGenerator(NAMESPACE, "abc").identity("Condition", 1)
        second = IdentityGenerator(NAMESPACE, "abc").identity("Condition", 1)
        assert first == second
        assert uuid.UUID(first).version == 5

    def test_identities_differ(self):
        """Test kind, ordinal and message all contribute."""
        generator = IdentityGenerator(NAMESPACE, "abc")
        identities = {
            generator.identity("Condition", 1),
            generator.identity("Condition", 2),
            generator.identity("Encounter", 1),
            IdentityGenerator(NAMESPACE, "xyz").identity("Condition", 1),
        }
        assert len(identities) == 4


class TestBundleBuilder:
    """Tests for instance lifecycle."""

    def test_created_instances_have_identity(self, bundle):
        """Test the identity exists before any attribute."""
        instance = bundle.create("Encounter")
        assert instance.identity
        assert instance.reference == f"Encounter/{instance.identity}"
        assert instance.to_fragment() == {"reference": instance.reference}

    def test_unregistered_instances_invisible(self, bundle):
        """Test lookups by kind only see registered instances."""
        instance = bundle.create("Condition")
        assert bundle.instances_of("Condition") == []
        bundle.register(instance)
        assert bundle.instances_of("Condition") == [instance]
        assert bundle.kinds == ["Condition"]

    def test_discarded_instances_leave(self, bundle):
        """Test discarded instances vanish from index and bundle."""
        kept = bundle.create("Condition")
        dropped = bundle.create("Condition")
        bundle.register(kept)
        bundle.register(dropped)
        bundle.discard(dropped)
        assert bundle.instances_of("Condition") == [kept]
        assert len(bundle) == 1
        with pytest.raises(ValueError):
            bundle.register(dropped)

    def test_bundle_in_creation_order(self, bundle):
        """Test the finalized bundle follows creation order, not registration order."""
        encounter = bundle.create("Encounter")
        practitioner = bundle.create("Practitioner")
        bundle.register(practitioner)
        bundle.register(encounter)
        assert [kind for kind, _ in bundle.finalized_bundle()] == ["Encounter", "Practitioner"]

    def test_to_dict_puts_type_and_id_first(self, bundle):
        """Test exported resources start with resourceType and id."""
        instance = bundle.create("Patient")
        instance.splice("gender", "male")
        instance.splice("id", "overridden")
        instance.splice("resourceType", "Other")
        bundle.register(instance)
        exported = instance.to_dict()
        assert list(exported) == ["resourceType", "id", "gender"]
        assert exported["id"] == instance.identity
        assert exported["resourceType"] == "Patient"

    def test_as_bundle(self, bundle):
        """Test the collection bundle wraps every resource."""
        instance = bundle.create("Patient")
        bundle.register(instance)
        document = bundle.as_bundle()
        assert document["resourceType"] == "Bundle"
        assert document["type"] == "collection"
        assert document["entry"][0]["fullUrl"] == f"urn:uuid:{instance.identity}"
        assert document["entry"][0]["resource"]["resourceType"] == "Patient"

    def test_ordinals_per_kind(self, bundle):
        """Test ordinals count per kind, discarded shells included."""
        first = bundle.create("Condition")
        bundle.create("Encounter")
        second = bundle.create("Condition")
        assert (first.ordinal, second.ordinal) == (1, 2)
