"""
Unit tests for protocol validator data models.
"""

import dataclasses

import pytest

from ..data_models import (
    AlignmentStatus,
    BenchmarkAssessment,
    BenchmarkTier,
    CRFField,
    CRFSpecification,
    Endpoint,
    EndpointSet,
    Form,
    Priority,
    Protocol,
    QualityLevel,
    RiskCategoryName,
    RiskFactor,
    RiskLevel,
    RiskRating,
    Severity,
    StudyDesign,
    StudyPopulation,
    ValidationFinding,
    ValidationRecommendation,
    flatten_fields,
    flatten_forms,
    parse_phase,
)


class TestScoreLadders:
    """Tests for score-to-label ladders."""

    @pytest.mark.parametrize("score,expected", [
        (0, RiskLevel.LOW),
        (24, RiskLevel.LOW),
        (25, RiskLevel.MEDIUM),
        (49, RiskLevel.MEDIUM),
        (50, RiskLevel.HIGH),
        (74, RiskLevel.HIGH),
        (75, RiskLevel.VERY_HIGH),
        (100, RiskLevel.VERY_HIGH),
    ])
    def test_risk_level(self, score, expected):
        assert RiskLevel.from_score(score) == expected

    @pytest.mark.parametrize("score,expected", [
        (100, QualityLevel.EXCELLENT),
        (90, QualityLevel.EXCELLENT),
        (89, QualityLevel.GOOD),
        (75, QualityLevel.GOOD),
        (74, QualityLevel.FAIR),
        (60, QualityLevel.FAIR),
        (59, QualityLevel.POOR),
    ])
    def test_quality_level(self, score, expected):
        assert QualityLevel.from_score(score) == expected

    @pytest.mark.parametrize("score,expected", [
        (90, AlignmentStatus.FULLY_ALIGNED),
        (89, AlignmentStatus.MOSTLY_ALIGNED),
        (75, AlignmentStatus.MOSTLY_ALIGNED),
        (74, AlignmentStatus.PARTIALLY_ALIGNED),
        (50, AlignmentStatus.PARTIALLY_ALIGNED),
        (49, AlignmentStatus.MISALIGNED),
    ])
    def test_alignment_status(self, score, expected):
        assert AlignmentStatus.from_score(score) == expected

    @pytest.mark.parametrize("percentile,expected", [
        (90, BenchmarkAssessment.ABOVE_AVERAGE),
        (75, BenchmarkAssessment.ABOVE_AVERAGE),
        (50, BenchmarkAssessment.AVERAGE),
        (25, BenchmarkAssessment.BELOW_AVERAGE),
        (10, BenchmarkAssessment.POOR),
    ])
    def test_benchmark_assessment(self, percentile, expected):
        assert BenchmarkAssessment.from_percentile(percentile) == expected

    @pytest.mark.parametrize("score,expected", [
        (90, BenchmarkTier.EXCELLENT),
        (89, BenchmarkTier.GOOD),
        (80, BenchmarkTier.GOOD),
        (60, BenchmarkTier.ACCEPTABLE),
        (40, BenchmarkTier.POOR),
        (39, BenchmarkTier.FAILED),
    ])
    def test_benchmark_tier(self, score, expected):
        assert BenchmarkTier.from_score(score) == expected


class TestRiskFactor:
    """Tests for RiskFactor scoring."""

    def _factor(self, likelihood, impact, detectability):
        return RiskFactor(
            id="RISK-001",
            description="Test",
            rationale="Test rationale",
            likelihood=likelihood,
            impact=impact,
            detectability=detectability,
            category=RiskCategoryName.SAFETY,
        )

    def test_maximum_score(self):
        factor = self._factor(RiskRating.HIGH, RiskRating.HIGH, RiskRating.HIGH)
        assert factor.risk_score == 27

    def test_minimum_score(self):
        factor = self._factor(RiskRating.LOW, RiskRating.LOW, RiskRating.LOW)
        assert factor.risk_score == 1

    def test_mixed_score(self):
        factor = self._factor(RiskRating.MEDIUM, RiskRating.HIGH, RiskRating.LOW)
        assert factor.risk_score == 6

    def test_to_dict(self):
        factor = self._factor(RiskRating.MEDIUM, RiskRating.MEDIUM, RiskRating.MEDIUM)
        d = factor.to_dict()
        assert d["riskScore"] == 8
        assert d["likelihood"] == "Medium"
        assert d["category"] == "Safety"


class TestParsePhase:
    """Tests for parse_phase."""

    @pytest.mark.parametrize("phase,expected", [
        ("Phase 3", 3),
        ("3", 3),
        ("Phase III", 3),
        ("Phase I", 1),
        ("Phase IV", 4),
        ("Phase 2/3", 3),
        ("Phase 1/2", 2),
        ("", None),
        ("Pilot", None),
    ])
    def test_parse(self, phase, expected):
        assert parse_phase(phase) == expected


class TestProtocol:
    """Tests for Protocol convenience properties."""

    def test_display_name_falls_back_to_number(self):
        assert Protocol(number="ABC-101").display_name == "ABC-101"
        assert Protocol(title="Study", number="ABC-101").display_name == "Study"

    def test_missing_enrollment_is_zero(self):
        assert Protocol(title="Study").target_enrollment == 0
        assert Protocol(population=StudyPopulation(target_enrollment=120)).target_enrollment == 120

    def test_duration_falls_back_to_design(self):
        protocol = Protocol(design=StudyDesign(duration="18 months"))
        assert protocol.duration_text == "18 months"
        assert Protocol(duration="2 years", design=StudyDesign(duration="18 months")).duration_text == "2 years"

    def test_phase_number(self):
        assert Protocol(phase="Phase II").phase_number == 2

    def test_is_frozen(self):
        protocol = Protocol(title="Study")
        with pytest.raises(dataclasses.FrozenInstanceError):
            protocol.title = "Other"


class TestEndpoints:
    """Tests for Endpoint and EndpointSet."""

    def test_text_prefers_description(self):
        assert Endpoint(name="PFS", description="Progression-free survival").text == "Progression-free survival"
        assert Endpoint(name="PFS").text == "PFS"

    def test_endpoint_set(self):
        endpoints = EndpointSet(
            primary=(Endpoint(name="A"),),
            secondary=(Endpoint(name="B"), Endpoint(name="C")),
        )
        assert endpoints.total == 3
        assert [tier for tier, _ in endpoints.tiers()] == ["primary", "secondary", "exploratory"]
        assert [e.name for e in endpoints.all()] == ["A", "B", "C"]


class TestCRFModels:
    """Tests for CRF models and flattening helpers."""

    def test_flatten(self):
        crfs = (
            CRFSpecification(crf_id="CRF-001", forms=(
                Form(name="Demographics", fields=(CRFField(name="age"), CRFField(name="sex"))),
            )),
            CRFSpecification(crf_id="CRF-002", forms=(
                Form(name="Vital Signs", fields=(CRFField(name="weight"),)),
            )),
        )
        assert [f.name for f in flatten_forms(crfs)] == ["Demographics", "Vital Signs"]
        assert [f.name for f in flatten_fields(crfs)] == ["age", "sex", "weight"]

    def test_search_text(self):
        crf_field = CRFField(name="SBP", label="Systolic Blood Pressure", description="mmHg")
        assert crf_field.search_text == "sbp systolic blood pressure mmhg"


class TestSerialization:
    """Tests for to_dict camelCase output."""

    def test_finding_to_dict(self):
        finding = ValidationFinding(
            id="FIND-001",
            category="Structure",
            severity=Severity.CRITICAL,
            description="No CRF forms found",
            priority=Priority.HIGH,
        )
        d = finding.to_dict()
        assert d["severity"] == "Critical"
        assert d["priority"] == "High"

    def test_recommendation_to_dict(self):
        recommendation = ValidationRecommendation(
            id="REC-001",
            category="Efficiency",
            priority=Priority.MEDIUM,
            description="Consolidate forms",
            effort="High",
        )
        assert recommendation.to_dict()["implementationEffort"] == "High"
