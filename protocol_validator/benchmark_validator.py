"""
Benchmark Validator - Industry benchmark comparison and cross-validation.

Compares numeric study attributes against fixed reference quartiles and
cross-checks validation and risk results for internal consistency.

Percentiles are a deliberately coarse 4-bucket step function:

    value <= p25    -> 25
    value <= median -> 50
    value <= p75    -> 75
    otherwise       -> 90

Usage:
    validator = BenchmarkValidator()
    result = validator.validate(protocol, crfs, risk=assessment, feasibility_score=72)
    print(f"{result.score} - {result.tier.value}")
"""

import itertools
import logging
from typing import Iterator, List, Optional, Sequence, Tuple

from .data_models import (
    BenchmarkAssessment,
    BenchmarkComparison,
    BenchmarkReference,
    BenchmarkTier,
    BenchmarkValidation,
    CRFSpecification,
    Priority,
    ProceedRecommendation,
    Protocol,
    RiskAssessment,
    RiskCategoryName,
    RiskLevel,
    Severity,
    ValidationFinding,
    ValidationRecommendation,
    flatten_fields,
)
from .reference_data_manager import ReferenceDataManager
from .risk_assessment_engine import parse_duration_years

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 25,
    Severity.MAJOR: 15,
    Severity.MINOR: 5,
    Severity.INFO: 1,
}

ASSESSMENT_ADJUSTMENTS = {
    BenchmarkAssessment.ABOVE_AVERAGE: 5,
    BenchmarkAssessment.AVERAGE: 0,
    BenchmarkAssessment.BELOW_AVERAGE: -5,
    BenchmarkAssessment.POOR: -10,
}

VALID_SCORE_THRESHOLD = 60
CROSS_VALIDATION = "Cross-Validation"

UNFAVOURABLE_ASSESSMENTS = (BenchmarkAssessment.BELOW_AVERAGE, BenchmarkAssessment.POOR)
FEASIBILITY_RISK_MISMATCH = "High feasibility score inconsistent with high risk level"


def percentile(value: float, reference: BenchmarkReference) -> int:
    """Coarse percentile bucket of a value against reference quartiles."""
    if value <= reference.p25:
        return 25
    if value <= reference.median:
        return 50
    if value <= reference.p75:
        return 75
    return 90


# =============================================================================
# MAIN VALIDATOR CLASS
# =============================================================================


class BenchmarkValidator:
    """
    Second-pass validation of a protocol review against industry benchmarks.
    """

    def __init__(self, reference: Optional[ReferenceDataManager] = None):
        """
        Initialize the validator.

        Args:
            reference: Benchmark reference data (loaded from the package
                reference_data directory when omitted).
        """
        self.reference = reference or ReferenceDataManager()

    def validate(
        self,
        protocol: Protocol,
        crfs: Sequence[CRFSpecification],
        risk: Optional[RiskAssessment] = None,
        feasibility_score: Optional[int] = None,
        critical_issue_count: int = 0,
        recommendation: Optional[ProceedRecommendation] = None,
    ) -> BenchmarkValidation:
        """
        Validate a protocol and its analysis results against benchmarks.

        Args:
            protocol: Normalized protocol
            crfs: CRF specifications
            risk: Risk assessment for the protocol, if computed
            feasibility_score: Feasibility score (0-100), if computed
            critical_issue_count: Number of critical issues raised upstream
            recommendation: Go/no-go recommendation raised upstream

        Returns:
            BenchmarkValidation
        """
        ids = itertools.count(1)
        comparisons: List[Tuple[str, BenchmarkComparison]] = []
        findings: List[ValidationFinding] = []

        self._design_benchmarks(protocol, crfs, ids, comparisons, findings)
        findings.extend(self._endpoint_findings(protocol, ids))
        findings.extend(self._analysis_findings(protocol, risk, feasibility_score, ids))
        findings.extend(self._cross_validate(risk, feasibility_score, critical_issue_count, recommendation, ids))

        score = self.validation_score(findings, [c for _, c in comparisons])
        tier = BenchmarkTier.from_score(score)
        confidence = self._confidence(findings, comparisons)

        logger.info(
            f"Benchmark validation: score={score} ({tier.value}), "
            f"{len(comparisons)} comparisons, {len(findings)} findings"
        )
        return BenchmarkValidation(
            is_valid=score >= VALID_SCORE_THRESHOLD,
            score=score,
            tier=tier,
            confidence=confidence,
            findings=tuple(findings),
            comparisons=tuple(c for _, c in comparisons),
            recommendations=tuple(self._recommendations(findings, comparisons)),
        )

    # =========================================================================
    # BENCHMARK COMPARISONS
    # =========================================================================

    def compare(self, metric: str, value: float, reference: BenchmarkReference, context: str = "") -> BenchmarkComparison:
        bucket = percentile(value, reference)
        return BenchmarkComparison(
            metric=metric,
            study_value=value,
            reference=reference,
            percentile=bucket,
            assessment=BenchmarkAssessment.from_percentile(bucket),
            context=context,
        )

    def _design_benchmarks(
        self,
        protocol: Protocol,
        crfs: Sequence[CRFSpecification],
        ids: Iterator[int],
        comparisons: List[Tuple[str, BenchmarkComparison]],
        findings: List[ValidationFinding],
    ) -> None:
        phase = protocol.phase_number

        sample_size = self.reference.phase_benchmark(phase, "sample_size")
        enrollment = protocol.target_enrollment
        if sample_size and enrollment > 0:
            comparison = self.compare(
                f"Phase {phase} Sample Size", enrollment, sample_size,
                f"Industry benchmark for Phase {phase} studies",
            )
            comparisons.append(("sample_size", comparison))
            if enrollment < sample_size.p25:
                findings.append(_finding(
                    ids, "Benchmark", Severity.MAJOR,
                    "Sample size significantly below industry norms",
                    f"{enrollment} patients vs industry median {sample_size.median}",
                    "May compromise statistical power and regulatory acceptance",
                ))
        elif sample_size is None:
            logger.debug(f"No sample size benchmark for phase '{protocol.phase}'")

        field_count = len(flatten_fields(tuple(crfs)))
        crf_reference = self.reference.design_benchmark("crf_field_count")
        if crf_reference:
            comparison = self.compare(
                "CRF Complexity (Total Fields)", field_count, crf_reference,
                "Total data collection burden",
            )
            comparisons.append(("crf_field_count", comparison))
            if comparison.percentile > 75:
                findings.append(_finding(
                    ids, "Benchmark", Severity.MINOR,
                    "CRF complexity above industry average",
                    f"{field_count} fields vs industry median {crf_reference.median}",
                    "High data collection burden may impact site performance and data quality",
                ))

        visit_reference = self.reference.design_benchmark("visit_count")
        if visit_reference:
            comparisons.append(("visit_count", self.compare(
                "Visit Schedule Complexity", len(protocol.visit_schedule), visit_reference,
                "Number of protocol-defined visits",
            )))

        endpoint_reference = self.reference.design_benchmark("primary_endpoint_count")
        if endpoint_reference:
            comparisons.append(("primary_endpoint_count", self.compare(
                "Primary Endpoint Count", len(protocol.endpoints.primary), endpoint_reference,
                "Number of primary endpoints",
            )))

        duration_reference = self.reference.phase_benchmark(phase, "duration_months")
        years = parse_duration_years(protocol.duration_text) if protocol.duration_text else None
        if duration_reference and years is not None:
            comparisons.append(("duration_months", self.compare(
                f"Phase {phase} Study Duration (Months)", round(years * 12, 1), duration_reference,
                f"Industry benchmark for Phase {phase} study duration",
            )))

    # =========================================================================
    # FINDINGS
    # =========================================================================

    @staticmethod
    def _endpoint_findings(protocol: Protocol, ids: Iterator[int]) -> List[ValidationFinding]:
        primary_count = len(protocol.endpoints.primary)
        if primary_count > 2:
            return [_finding(
                ids, "Endpoints", Severity.MAJOR,
                "Multiple primary endpoints increase complexity",
                f"{primary_count} primary endpoints defined",
                "Multiple primary endpoints require multiplicity adjustment and reduce power",
            )]
        return []

    @staticmethod
    def _analysis_findings(
        protocol: Protocol,
        risk: Optional[RiskAssessment],
        feasibility_score: Optional[int],
        ids: Iterator[int],
    ) -> List[ValidationFinding]:
        findings = []

        if feasibility_score is not None and feasibility_score < 50:
            findings.append(_finding(
                ids, "Feasibility", Severity.CRITICAL,
                "Low feasibility score indicates significant execution challenges",
                f"Feasibility score: {feasibility_score}/100",
                "Study may face major operational difficulties and delays",
            ))

        if risk is None:
            return findings

        if risk.overall_level == RiskLevel.VERY_HIGH:
            findings.append(_finding(
                ids, "Risk Assessment", Severity.CRITICAL,
                "Very high overall risk level",
                f"Overall risk score: {risk.overall_score}/100",
                "Study success is at significant risk without major mitigation",
            ))

        enrollment = risk.category(RiskCategoryName.ENROLLMENT)
        if enrollment and enrollment.level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH):
            findings.append(_finding(
                ids, "Risk Assessment", Severity.MAJOR,
                "High enrollment risk identified",
                f"Enrollment risk level: {enrollment.level.value}",
                "Recruitment challenges may delay study completion",
            ))

        safety = risk.category(RiskCategoryName.SAFETY)
        if (
            protocol.phase_number == 1
            and safety is not None
            and safety.level not in (RiskLevel.HIGH, RiskLevel.VERY_HIGH)
        ):
            findings.append(_finding(
                ids, "Risk Assessment", Severity.MINOR,
                "Safety risk may be underestimated for Phase 1 study",
                f"Phase 1 study with {safety.level.value} safety risk",
                "Phase 1 studies typically carry inherent high safety risks",
            ))

        if not risk.mitigation.strategies and risk.overall_level != RiskLevel.LOW:
            findings.append(_finding(
                ids, "Risk Assessment", Severity.MAJOR,
                "No mitigation strategies for elevated risk",
                f"Overall risk level {risk.overall_level.value} with no mitigation strategies",
                "Unmitigated risks may materialize without a response plan",
            ))

        return findings

    @staticmethod
    def _cross_validate(
        risk: Optional[RiskAssessment],
        feasibility_score: Optional[int],
        critical_issue_count: int,
        recommendation: Optional[ProceedRecommendation],
        ids: Iterator[int],
    ) -> List[ValidationFinding]:
        """Internal-consistency checks; reported as findings, never raised."""
        findings = []

        if (
            risk is not None
            and feasibility_score is not None
            and feasibility_score > 80
            and risk.overall_level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH)
        ):
            findings.append(_finding(
                ids, CROSS_VALIDATION, Severity.MINOR,
                FEASIBILITY_RISK_MISMATCH,
                f"Feasibility {feasibility_score} vs risk level {risk.overall_level.value}",
                "Inconsistent assessments may indicate analysis calibration issues",
            ))

        if critical_issue_count > 2 and recommendation == ProceedRecommendation.PROCEED:
            findings.append(_finding(
                ids, CROSS_VALIDATION, Severity.MAJOR,
                "Proceed recommendation despite multiple critical issues",
                f"{critical_issue_count} critical issues with '{recommendation.value}' recommendation",
                "Recommendation may not reflect the severity of identified issues",
            ))

        for finding in findings:
            logger.warning(f"Cross-validation: {finding.description}")
        return findings

    # =========================================================================
    # SCORING
    # =========================================================================

    @staticmethod
    def validation_score(
        findings: Sequence[ValidationFinding],
        comparisons: Sequence[BenchmarkComparison],
    ) -> int:
        """100 minus severity penalties plus the mean benchmark adjustment, clamped."""
        score = 100.0
        for finding in findings:
            score -= SEVERITY_PENALTIES[finding.severity]

        if comparisons:
            adjustment = sum(ASSESSMENT_ADJUSTMENTS[c.assessment] for c in comparisons)
            score += adjustment / len(comparisons)

        return max(0, min(100, round(score)))

    @staticmethod
    def _confidence(
        findings: Sequence[ValidationFinding],
        comparisons: Sequence[Tuple[str, BenchmarkComparison]],
    ) -> int:
        confidence = 100
        if len(comparisons) < 3:
            confidence -= 20
        confidence -= 10 * sum(1 for f in findings if f.description == FEASIBILITY_RISK_MISMATCH)
        return max(0, min(100, confidence))

    @staticmethod
    def _recommendations(
        findings: Sequence[ValidationFinding],
        comparisons: Sequence[Tuple[str, BenchmarkComparison]],
    ) -> List[ValidationRecommendation]:
        ids = itertools.count(1)
        recommendations = []

        for finding in findings:
            if finding.severity == Severity.CRITICAL:
                recommendations.append(ValidationRecommendation(
                    id=f"BREC-{next(ids):03d}",
                    category=finding.category,
                    priority=Priority.CRITICAL,
                    description=f"Address critical finding: {finding.description}",
                    rationale=finding.impact,
                    effort="High",
                ))

        for _, comparison in comparisons:
            if comparison.assessment in UNFAVOURABLE_ASSESSMENTS:
                recommendations.append(ValidationRecommendation(
                    id=f"BREC-{next(ids):03d}",
                    category="Benchmark",
                    priority=Priority.HIGH,
                    description=f"Review {comparison.metric} against industry benchmarks",
                    rationale=(
                        f"Study value {comparison.study_value} is {comparison.assessment.value.lower()} "
                        f"(industry median {comparison.reference.median})"
                    ),
                ))

        statistical = [
            f for f in findings
            if any(term in f.description.lower() for term in ("sample size", "primary endpoint"))
        ]
        if statistical:
            recommendations.append(ValidationRecommendation(
                id=f"BREC-{next(ids):03d}",
                category="Statistical Design",
                priority=Priority.HIGH,
                description="Review statistical design with biostatistician",
                rationale="; ".join(f.description for f in statistical),
            ))

        return recommendations


# =============================================================================
# HELPERS
# =============================================================================


def _finding(
    ids: Iterator[int],
    category: str,
    severity: Severity,
    description: str,
    evidence: str,
    impact: str,
) -> ValidationFinding:
    priority = {
        Severity.CRITICAL: Priority.CRITICAL,
        Severity.MAJOR: Priority.HIGH,
        Severity.MINOR: Priority.MEDIUM,
        Severity.INFO: Priority.LOW,
    }[severity]
    return ValidationFinding(
        id=f"BENCH-{next(ids):03d}",
        category=category,
        severity=severity,
        description=description,
        impact=impact,
        priority=priority,
        source="benchmark_validator",
        evidence=evidence,
    )

