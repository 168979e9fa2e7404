"""
Unit tests for input validation and normalization.
"""

import logging
from unittest.mock import patch

import pytest

from ..data_models import CRFSpecification, Form, Protocol
from ..validators import (
    ErrorCode,
    ValidationError,
    normalize_inputs,
    validate_against_schema,
    validate_crfs_input,
    validate_protocol_input,
)


@pytest.fixture
def protocol_payload():
    """Protocol payload as delivered by an upstream extraction service."""
    return {
        "studyTitle": "A Phase 3 Study of Drug X in Hypertension",
        "protocolNumber": "DX-301",
        "studyPhase": "Phase 3",
        "indication": "Hypertension",
        "population": {
            "targetEnrollment": "1,200",
            "inclusionCriteria": ["Age 18-75", "Systolic BP >= 140 mmHg"],
            "exclusionCriteria": [{"text": "Secondary hypertension"}],
        },
        "endpoints": {
            "primary": [{"name": "SBP change", "description": "Change in systolic blood pressure at Week 12"}],
            "secondary": ["Change in diastolic blood pressure"],
        },
        "visitSchedule": [
            {"name": "Screening", "day": -14},
            {"name": "Baseline", "day": 1, "procedures": ["Vital signs", "ECG"]},
            "Week 12",
        ],
        "studyLocations": [{"country": "US"}, {"country": "Germany"}],
    }


@pytest.fixture
def crf_payload():
    return [
        {
            "crfId": "CRF-DX",
            "forms": [
                {
                    "formName": "Demographics",
                    "description": "Subject demographics",
                    "visitSchedule": ["Screening"],
                    "fields": [
                        {"fieldName": "age", "dataType": "Number", "required": "yes", "label": "Age"},
                        {"fieldName": "sex", "type": "dropdown", "options": [{"value": "M"}, {"value": "F"}]},
                    ],
                },
            ],
        },
    ]


class TestValidateProtocolInput:
    """Tests for validate_protocol_input function."""

    def test_valid_dict(self, protocol_payload):
        validate_protocol_input(protocol_payload)

    def test_valid_protocol_with_number_only(self):
        validate_protocol_input(Protocol(number="DX-301"))

    def test_snake_case_keys(self):
        validate_protocol_input({"study_title": "Study"})

    def test_none_input(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_protocol_input(None)
        assert "Protocol is required" in str(exc_info.value)
        assert exc_info.value.code == ErrorCode.INVALID_PROTOCOL

    def test_missing_identity(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_protocol_input({"studyPhase": "Phase 2"})
        assert "either a study title or protocol number" in str(exc_info.value)
        assert exc_info.value.field == "protocol"

    def test_blank_identity(self):
        with pytest.raises(ValidationError):
            validate_protocol_input(Protocol(title="", number=""))

    def test_wrong_type(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_protocol_input("DX-301")
        assert "got str" in str(exc_info.value)


class TestValidateCrfsInput:
    """Tests for validate_crfs_input function."""

    def test_list_and_tuple_accepted(self):
        validate_crfs_input([])
        validate_crfs_input(())

    @pytest.mark.parametrize("crfs", [None, {"forms": []}, "CRF"])
    def test_non_list_rejected(self, crfs):
        with pytest.raises(ValidationError) as exc_info:
            validate_crfs_input(crfs)
        assert "must be provided as an array" in str(exc_info.value)
        assert exc_info.value.code == ErrorCode.INVALID_CRF


class TestNormalizeInputs:
    """Tests for normalize_inputs function."""

    def test_protocol_payload(self, protocol_payload):
        normalized = normalize_inputs(protocol_payload, [])
        protocol = normalized.protocol

        assert protocol.title == "A Phase 3 Study of Drug X in Hypertension"
        assert protocol.phase_number == 3
        assert protocol.target_enrollment == 1200
        assert protocol.population.exclusion_criteria == ("Secondary hypertension",)
        assert len(protocol.endpoints.primary) == 1
        assert protocol.endpoints.secondary[0].name == "Change in diastolic blood pressure"
        assert [v.name for v in protocol.visit_schedule] == ["Screening", "Baseline", "Week 12"]
        assert protocol.visit_schedule[1].procedures == ("Vital signs", "ECG")
        assert protocol.locations == ("US", "Germany")

    def test_crf_payload(self, protocol_payload, crf_payload):
        normalized = normalize_inputs(protocol_payload, crf_payload)
        assert len(normalized.crfs) == 1

        form = normalized.crfs[0].forms[0]
        assert normalized.crfs[0].crf_id == "CRF-DX"
        assert form.name == "Demographics"
        assert form.visit_schedule == ("Screening",)
        assert form.fields[0].data_type == "number"
        assert form.fields[0].required is True
        assert form.fields[1].required is None
        assert form.fields[1].controlled_vocabulary == ("M", "F")

    def test_typed_inputs_pass_through(self):
        protocol = Protocol(title="Study")
        crf = CRFSpecification(crf_id="CRF-001", forms=(Form(name="Demographics"),))
        normalized = normalize_inputs(protocol, [crf])
        assert normalized.protocol is protocol
        assert normalized.crfs == (crf,)
        assert normalized.warnings == ()

    def test_bare_form_is_wrapped(self):
        normalized = normalize_inputs({"studyTitle": "Study"}, [{"name": "Vital Signs", "fields": []}])
        assert normalized.crfs[0].crf_id == "CRF-001"
        assert normalized.crfs[0].forms[0].name == "Vital Signs"

    def test_unparseable_enrollment_warns(self, caplog):
        payload = {"studyTitle": "Study", "population": {"targetEnrollment": "many"}}
        with caplog.at_level(logging.WARNING):
            normalized = normalize_inputs(payload, [])

        assert normalized.protocol.target_enrollment == 0
        assert any("targetEnrollment" in w for w in normalized.warnings)
        assert any("targetEnrollment" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize("enrollment", [float("nan"), float("inf"), "1e400", "inf", "nan"])
    def test_non_finite_enrollment_warns(self, enrollment):
        payload = {"studyTitle": "Study", "population": {"targetEnrollment": enrollment}}
        normalized = normalize_inputs(payload, [])

        assert normalized.protocol.target_enrollment == 0
        assert any("targetEnrollment" in w for w in normalized.warnings)

    def test_float_enrollment_truncated(self):
        payload = {"studyTitle": "Study", "population": {"targetEnrollment": 250.0}}
        assert normalize_inputs(payload, []).protocol.target_enrollment == 250

    def test_untiered_endpoints_treated_as_primary(self):
        normalized = normalize_inputs({"studyTitle": "Study", "endpoints": ["Overall survival"]}, [])
        assert normalized.protocol.endpoints.primary[0].name == "Overall survival"
        assert any("untiered" in w for w in normalized.warnings)

    def test_malformed_items_skipped_with_warning(self):
        crfs = [
            {"forms": [{"name": "Labs", "fields": ["not a field", {"name": "hgb", "dataType": "number"}]}]},
            42,
        ]
        normalized = normalize_inputs({"studyTitle": "Study"}, crfs)

        assert len(normalized.crfs) == 1
        assert [f.name for f in normalized.crfs[0].forms[0].fields] == ["hgb"]
        assert any("malformed field" in w for w in normalized.warnings)
        assert any("malformed CRF" in w for w in normalized.warnings)

    def test_schema_violations_are_warnings(self):
        normalized = normalize_inputs({"studyTitle": "Study", "sponsor": 12}, [])
        assert any(w.startswith("Schema (protocol)") for w in normalized.warnings)

    def test_fatal_errors_raise_before_normalization(self):
        with patch("protocol_validator.validators._protocol_from_dict") as mock_build:
            with pytest.raises(ValidationError):
                normalize_inputs({"studyTitle": "Study"}, "not a list")
        mock_build.assert_not_called()

    def test_protocol_checked_before_crfs(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_inputs({}, "not a list")
        assert exc_info.value.code == ErrorCode.INVALID_PROTOCOL


class TestValidateAgainstSchema:
    """Tests for validate_against_schema function."""

    def test_valid_payload(self, protocol_payload):
        assert validate_against_schema(protocol_payload, "protocol") == []

    def test_invalid_payload(self):
        errors = validate_against_schema({"forms": "Demographics"}, "crf")
        assert len(errors) == 1
        assert "is not of type 'array'" in errors[0]
