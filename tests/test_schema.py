"""
Tests for payload validation and envelope unwrapping.
"""

import pytest
from clinicresolve.errors import MalformedResponse
from clinicresolve.schema import as_candidates, unwrap_collection, validate_candidate


class TestValidateCandidate:
    """Test basic validation function."""

    def test_valid_candidate_minimal(self, patient_record):
        """Valid record should have no errors."""
        assert validate_candidate(patient_record) == []

    def test_numeric_id(self):
        assert validate_candidate({"id": 7}) == []

    def test_missing_id(self):
        """A record without an id can never be resolved to."""
        errors = validate_candidate({"name": "Amina"})
        assert any("_id" in err for err in errors)

    def test_not_an_object(self):
        errors = validate_candidate(["p-1"])
        assert errors and "object" in errors[0]

    def test_bad_name_type(self):
        errors = validate_candidate({"_id": "p-1", "name": {"first": "Amina"}})
        assert any("name" in err for err in errors)

    def test_null_optional_fields(self):
        assert validate_candidate({"_id": "p-1", "name": None, "code": None}) == []


class TestAsCandidates:
    """Test normalization of single-entity probe results."""

    @pytest.mark.parametrize("payload", [None, {}, []])
    def test_empty(self, payload):
        assert as_candidates(payload) == []

    def test_single_object(self, patient_record):
        assert as_candidates(patient_record) == [patient_record]

    @pytest.mark.parametrize("key", ["data", "patient", "doctor", "items"])
    def test_wrapped_object(self, patient_record, key):
        assert as_candidates({key: patient_record}) == [patient_record]

    def test_wrapped_list(self, doctor_list):
        assert as_candidates({"data": doctor_list}) == doctor_list

    @pytest.mark.parametrize("payload", [
        "<html>",
        42,
        {"message": "ok"},
        [{"_id": "p-1"}, {"name": "no id"}],
    ])
    def test_malformed(self, payload):
        with pytest.raises(MalformedResponse):
            as_candidates(payload)


class TestUnwrapCollection:
    """Test source payload envelopes."""

    def test_bare_list(self):
        assert unwrap_collection([{"_id": "1"}]) == [{"_id": "1"}]

    def test_first_matching_envelope_key(self):
        payload = {"history": [{"_id": "h"}], "data": [{"_id": "d"}]}
        assert unwrap_collection(payload, ("history", "data")) == [{"_id": "h"}]

    def test_null_inside_envelope(self):
        assert unwrap_collection({"items": None}, ("items",)) == []

    @pytest.mark.parametrize("payload", [{"items": {}}, {"other": []}, "text"])
    def test_malformed(self, payload):
        with pytest.raises(MalformedResponse):
            unwrap_collection(payload, ("items",))
