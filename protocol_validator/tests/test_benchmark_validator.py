"""
Unit tests for benchmark validation and reference data.
"""

import json
import logging

import pytest

from ..benchmark_validator import BenchmarkValidator, percentile
from ..data_models import (
    BenchmarkAssessment,
    BenchmarkReference,
    BenchmarkTier,
    CRFField,
    CRFSpecification,
    Endpoint,
    EndpointSet,
    Form,
    MitigationPlan,
    Priority,
    ProceedRecommendation,
    Protocol,
    RiskAssessment,
    RiskLevel,
    Severity,
    StudyPopulation,
)
from ..reference_data_manager import ReferenceDataManager
from ..risk_assessment_engine import RiskAssessmentEngine
from ..validators import ErrorCode, ReferenceDataError


PHASE3_SAMPLE_SIZE = BenchmarkReference(p25=400, median=600, p75=1000, excellent=300)


@pytest.fixture
def validator():
    return BenchmarkValidator(ReferenceDataManager())


def _protocol(enrollment=600, phase="Phase 3", **kwargs):
    return Protocol(
        title="Drug X Phase 3",
        phase=phase,
        population=StudyPopulation(target_enrollment=enrollment),
        **kwargs,
    )


def _risk(level, score=60, strategies=True):
    mitigation = RiskAssessmentEngine().assess(_protocol()).mitigation if strategies else MitigationPlan()
    return RiskAssessment(categories=(), overall_score=score, overall_level=level, mitigation=mitigation)


class TestPercentile:
    """Tests for the 4-bucket percentile function."""

    @pytest.mark.parametrize("value,expected", [
        (300, 25),
        (400, 25),
        (401, 50),
        (600, 50),
        (1000, 75),
        (1001, 90),
    ])
    def test_buckets(self, value, expected):
        assert percentile(value, PHASE3_SAMPLE_SIZE) == expected

    def test_phase3_median_is_average(self, validator):
        comparison = validator.compare("Sample Size", 600, PHASE3_SAMPLE_SIZE)
        assert comparison.percentile == 50
        assert comparison.assessment == BenchmarkAssessment.AVERAGE


class TestReferenceDataManager:
    """Tests for ReferenceDataManager."""

    def test_phase_benchmark(self):
        reference = ReferenceDataManager()
        assert reference.phase_benchmark(3, "sample_size") == PHASE3_SAMPLE_SIZE
        assert reference.phase_benchmark(1, "duration_months").median == 18

    def test_unknown_phase(self):
        reference = ReferenceDataManager()
        assert reference.phase_benchmark(None, "sample_size") is None
        assert reference.phase_benchmark(4, "sample_size") is None

    def test_design_benchmark(self):
        assert ReferenceDataManager().design_benchmark("visit_count").p75 == 12

    def test_missing_file(self, tmp_path):
        with pytest.raises(ReferenceDataError) as exc_info:
            ReferenceDataManager(tmp_path)
        assert exc_info.value.code == ErrorCode.REFERENCE_DATA_ERROR

    def test_invalid_json(self, tmp_path):
        (tmp_path / "industry_benchmarks.json").write_text("{not json")
        with pytest.raises(ReferenceDataError) as exc_info:
            ReferenceDataManager(tmp_path)
        assert "Invalid JSON" in str(exc_info.value)

    def test_malformed_entry(self, tmp_path):
        (tmp_path / "industry_benchmarks.json").write_text(
            json.dumps({"design_metrics": {"visit_count": {"median": 8}}})
        )
        reference = ReferenceDataManager(tmp_path)
        with pytest.raises(ReferenceDataError) as exc_info:
            reference.design_benchmark("visit_count")
        assert exc_info.value.details == {"benchmark": "visit_count"}


class TestDesignBenchmarks:
    """Tests for protocol design comparisons."""

    def test_typical_phase3(self, validator):
        result = validator.validate(_protocol(), [])

        metrics = [c.metric for c in result.comparisons]
        assert metrics == [
            "Phase 3 Sample Size",
            "CRF Complexity (Total Fields)",
            "Visit Schedule Complexity",
            "Primary Endpoint Count",
        ]
        assert result.comparisons[0].assessment == BenchmarkAssessment.AVERAGE
        assert result.findings == ()
        # 100 plus mean adjustment (0 - 5 - 5 - 5) / 4
        assert result.score == 96
        assert result.tier == BenchmarkTier.EXCELLENT
        assert result.is_valid is True
        assert result.confidence == 100
        # Empty CRFs, visits and endpoints sit below the industry range
        assert [r.description for r in result.recommendations] == [
            "Review CRF Complexity (Total Fields) against industry benchmarks",
            "Review Visit Schedule Complexity against industry benchmarks",
            "Review Primary Endpoint Count against industry benchmarks",
        ]
        assert {r.priority for r in result.recommendations} == {Priority.HIGH}

    def test_small_sample_size(self, validator):
        result = validator.validate(_protocol(enrollment=200), [])

        assert [f.description for f in result.findings] == ["Sample size significantly below industry norms"]
        finding = result.findings[0]
        assert finding.severity == Severity.MAJOR
        assert finding.evidence == "200 patients vs industry median 600"
        assert result.score == 80
        assert result.tier == BenchmarkTier.GOOD

        descriptions = [r.description for r in result.recommendations]
        assert "Review Phase 3 Sample Size against industry benchmarks" in descriptions
        assert "Review statistical design with biostatistician" in descriptions

    def test_missing_enrollment_skips_sample_size(self, validator):
        result = validator.validate(_protocol(enrollment=0), [])
        assert "Phase 3 Sample Size" not in [c.metric for c in result.comparisons]

    def test_duration_comparison(self, validator):
        result = validator.validate(_protocol(duration="3 years"), [])
        duration = result.comparisons[-1]
        assert duration.metric == "Phase 3 Study Duration (Months)"
        assert duration.study_value == 36.0
        assert duration.percentile == 50

    def test_complex_crf(self, validator):
        fields = tuple(CRFField(name=f"f{i}") for i in range(300))
        crfs = [CRFSpecification(crf_id="CRF-001", forms=(Form(name="All", fields=fields),))]
        result = validator.validate(_protocol(), crfs)

        assert [f.description for f in result.findings] == ["CRF complexity above industry average"]
        assert result.findings[0].severity == Severity.MINOR

        crf_comparison = result.comparisons[1]
        assert crf_comparison.assessment == BenchmarkAssessment.ABOVE_AVERAGE
        assert not [r for r in result.recommendations if crf_comparison.metric in r.description]

    def test_multiple_primary_endpoints(self, validator):
        endpoints = EndpointSet(primary=tuple(Endpoint(name=f"E{i}") for i in range(3)))
        result = validator.validate(_protocol(endpoints=endpoints), [])
        assert "Multiple primary endpoints increase complexity" in [f.description for f in result.findings]


class TestAnalysisFindings:
    """Tests for findings derived from upstream analysis results."""

    def test_low_feasibility_is_critical(self, validator):
        result = validator.validate(_protocol(), [], feasibility_score=40)

        critical = [f for f in result.findings if f.severity == Severity.CRITICAL]
        assert len(critical) == 1
        assert critical[0].category == "Feasibility"
        assert result.recommendations[0].priority == Priority.CRITICAL

    def test_very_high_risk(self, validator):
        result = validator.validate(_protocol(), [], risk=_risk(RiskLevel.VERY_HIGH, score=80))
        assert "Very high overall risk level" in [f.description for f in result.findings]

    def test_no_mitigation_for_elevated_risk(self, validator):
        result = validator.validate(_protocol(), [], risk=_risk(RiskLevel.MEDIUM, score=30, strategies=False))
        assert "No mitigation strategies for elevated risk" in [f.description for f in result.findings]

    def test_phase1_safety_underestimated(self, validator):
        protocol = _protocol(enrollment=40, phase="Phase 1", objective="Dose escalation")
        # Early phase safety factor scores 33, below High
        risk = RiskAssessmentEngine().assess(protocol)
        result = validator.validate(protocol, [], risk=risk)
        assert "Safety risk may be underestimated for Phase 1 study" in [f.description for f in result.findings]


class TestCrossValidation:
    """Tests for internal-consistency checks."""

    def test_high_feasibility_with_high_risk(self, validator, caplog):
        with caplog.at_level(logging.WARNING):
            result = validator.validate(_protocol(), [], risk=_risk(RiskLevel.HIGH), feasibility_score=85)

        cross = [f for f in result.findings if f.category == "Cross-Validation"]
        assert [f.severity for f in cross] == [Severity.MINOR]
        assert result.confidence == 90
        assert any("Cross-validation" in r.getMessage() for r in caplog.records)

    def test_proceed_despite_critical_issues(self, validator):
        result = validator.validate(
            _protocol(), [],
            critical_issue_count=3,
            recommendation=ProceedRecommendation.PROCEED,
        )
        cross = [f for f in result.findings if f.category == "Cross-Validation"]
        assert [f.severity for f in cross] == [Severity.MAJOR]
        assert result.confidence == 100

    def test_consistent_results_raise_nothing(self, validator):
        result = validator.validate(
            _protocol(), [],
            risk=_risk(RiskLevel.MEDIUM, score=30),
            feasibility_score=85,
            critical_issue_count=0,
            recommendation=ProceedRecommendation.PROCEED,
        )
        assert not [f for f in result.findings if f.category == "Cross-Validation"]


class TestValidationScore:
    """Tests for validation score clamping."""

    def test_clamped_at_zero(self, validator):
        result = validator.validate(
            _protocol(enrollment=10), [],
            risk=_risk(RiskLevel.VERY_HIGH, score=90, strategies=False),
            feasibility_score=10,
            critical_issue_count=5,
            recommendation=ProceedRecommendation.PROCEED,
        )
        assert result.score >= 0
        assert result.tier == BenchmarkTier.FAILED
        assert result.is_valid is False
