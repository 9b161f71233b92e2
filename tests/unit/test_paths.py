"""
Tests for field path resolution helpers.
"""

from conformance.engine.paths import (
    can_resolve_path,
    find_in_path,
    first_search_value,
    iter_references,
    resolve_path,
    search_value,
    split_reference,
)


class TestResolvePath:
    """Tests for resolve_path function."""

    def test_simple_path(self, sample_careplan):
        """Should resolve a top-level element."""
        assert resolve_path(sample_careplan, "status") == ["active"]

    def test_strips_resource_prefix(self, sample_careplan):
        """Should ignore a leading resource type."""
        assert resolve_path(sample_careplan, "CarePlan.text.status") == ["generated"]

    def test_fans_out_over_lists(self, sample_careplan):
        """Should collect values from every list item."""
        codes = resolve_path(sample_careplan, "category.coding.code")
        assert codes == ["assess-plan"]

    def test_fans_out_over_multiple_resources(self, sample_careplan):
        """Should concatenate results from several resources in order."""
        other = {"resourceType": "CarePlan", "status": "draft"}
        assert resolve_path([sample_careplan, other], "status") == ["active", "draft"]

    def test_missing_path(self, sample_careplan):
        """Should return an empty list when nothing matches."""
        assert resolve_path(sample_careplan, "activity.detail.code") == []

    def test_drops_empty_values(self):
        """Should skip empty strings, lists and dicts."""
        resource = {"name": [{"family": ""}, {"family": "Bone"}, {}]}
        assert resolve_path(resource, "name.family") == ["Bone"]

    def test_resource_type_only(self, sample_careplan):
        """Should return the element itself for a bare resource type path."""
        assert resolve_path(sample_careplan, "CarePlan") == [sample_careplan]


class TestFindInPath:
    """Tests for find_in_path and can_resolve_path."""

    def test_first_value(self, sample_practitioner):
        """Should return the first value without a predicate."""
        assert find_in_path(sample_practitioner, "name.given") == "Ronald"

    def test_predicate(self, sample_practitioner):
        """Should return the first value the predicate accepts."""
        value = find_in_path(sample_practitioner, "identifier", lambda i: i.get("value") == "9941339108")
        assert value["system"] == "http://hl7.org/fhir/sid/us-npi"

    def test_predicate_rejects_all(self, sample_practitioner):
        """Should return None when the predicate accepts nothing."""
        assert find_in_path(sample_practitioner, "identifier", lambda i: False) is None

    def test_can_resolve_path(self, sample_document_reference):
        """Should report whether a path is populated."""
        assert can_resolve_path(sample_document_reference, "DocumentReference.context.period")
        assert not can_resolve_path(sample_document_reference, "DocumentReference.identifier")


class TestSearchValue:
    """Tests for search_value function."""

    def test_primitive(self):
        """Should stringify primitives."""
        assert search_value("active") == "active"
        assert search_value(3) == "3"
        assert search_value(True) == "true"

    def test_empty(self):
        """Should return None for empty elements."""
        assert search_value(None) is None
        assert search_value("") is None
        assert search_value({}) is None

    def test_reference(self):
        """Should use the reference string."""
        assert search_value({"reference": "Patient/123"}) == "Patient/123"

    def test_period(self):
        """Should use the period start, falling back to end."""
        assert search_value({"start": "2024-01-01"}) == "2024-01-01"
        assert search_value({"end": "2024-12-31"}) == "2024-12-31"

    def test_codeable_concept(self):
        """Should use the first coding code."""
        concept = {"coding": [{"system": "http://loinc.org", "code": "34117-2"}]}
        assert search_value(concept) == "34117-2"

    def test_identifier(self):
        """Should use the identifier value."""
        assert search_value({"system": "urn:x", "value": "42"}) == "42"

    def test_human_name(self):
        """Should prefer family over given."""
        assert search_value({"family": "Bone", "given": ["Ronald"]}) == "Bone"
        assert search_value({"given": ["Ronald"]}) == "Ronald"

    def test_address(self):
        """Should use the first populated locality field."""
        assert search_value({"line": ["1 Main St"], "city": "Boston"}) == "Boston"


class TestFirstSearchValue:
    """Tests for first_search_value function."""

    def test_first_usable_value(self, sample_practitioner):
        """Should take the value from the first instance that has one."""
        empty = {"resourceType": "Practitioner", "id": "pr-0"}
        assert first_search_value([empty, sample_practitioner], "name") == "Bone"

    def test_nothing_found(self):
        """Should return None when no instance populates the path."""
        assert first_search_value([{"resourceType": "Practitioner"}], "name") is None


class TestReferences:
    """Tests for iter_references and split_reference."""

    def test_iter_references(self, sample_document_reference):
        """Should yield every nested reference string."""
        references = list(iter_references(sample_document_reference))
        assert "Patient/123" in references
        assert "Practitioner/pr-1" in references
        assert "Organization/org-1" in references
        assert "Encounter/enc-1" in references

    def test_iter_references_skips_contained(self):
        """Should not descend into contained resources."""
        resource = {
            "contained": [{"resourceType": "Practitioner", "managingOrganization": {"reference": "Organization/x"}}],
            "author": {"reference": "#pr"},
        }
        assert list(iter_references(resource)) == ["#pr"]

    def test_split_relative(self):
        """Should split a relative reference."""
        assert split_reference("Practitioner/pr-1") == ("Practitioner", "pr-1")

    def test_split_absolute(self):
        """Should keep the last two segments of an absolute URL."""
        assert split_reference("http://example.com/fhir/Organization/org-1") == ("Organization", "org-1")

    def test_split_versioned(self):
        """Should drop a version suffix."""
        assert split_reference("Practitioner/pr-1/_history/3") == ("Practitioner", "pr-1")

    def test_split_unresolvable(self):
        """Should return None for contained and malformed references."""
        assert split_reference("#pr") is None
        assert split_reference("urn:uuid:1234") is None
        assert split_reference("pr-1") is None
        assert split_reference("") is None
