"""
Validation orchestrator for protocol/CRF review.

Runs the analyzers and aggregates their output:
- Structural and protocol-alignment analysis (concurrently, or sequentially
  when parallel_analysis is disabled; results are identical)
- Baseline findings, score aggregation and critical-issue derivation
- Seven-category risk assessment wrapped as a RiskAssessmentMatrix
- Optional second-pass benchmark validation

Input errors are raised before any analysis starts. A configured deadline
that expires fails the whole run with ValidationTimeoutError.

Usage:
    orchestrator = ValidationOrchestrator()
    result = orchestrator.validate(protocol, crfs)
    review = await orchestrator.review_async(protocol, crfs)
"""

import asyncio
import itertools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from .benchmark_validator import BenchmarkValidator
from .config import ValidatorConfig
from .data_models import (
    AlignmentAnalysis,
    AlignmentStatus,
    CriticalIssue,
    ExecutiveSummary,
    Priority,
    ProceedRecommendation,
    Protocol,
    ProtocolReview,
    QualityLevel,
    RiskAssessment,
    RiskAssessmentMatrix,
    RiskLevel,
    Severity,
    StructuralAnalysis,
    ValidationDepth,
    ValidationFinding,
    ValidationOptions,
    ValidationRecommendation,
    ValidationResult,
    ValidationScores,
    flatten_forms,
)
from .protocol_alignment_analyzer import ProtocolAlignmentAnalyzer
from .reference_data_manager import ReferenceDataManager
from .risk_assessment_engine import RiskAssessmentEngine
from .settings import Settings, get_settings
from .structure_analyzer import StructuralAnalyzer
from .validators import (
    NormalizedInput,
    ValidationTimeoutError,
    normalize_inputs,
    validate_validation_result,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 25,
    Severity.MAJOR: 10,
    Severity.MINOR: 3,
    Severity.INFO: 0,
}

SEVERITY_ORDER = [Severity.CRITICAL, Severity.MAJOR, Severity.MINOR, Severity.INFO]

# Sub-score fallbacks when an analyzer did not run
DEFAULT_COMPLETENESS_SCORE = 75
DEFAULT_COMPLIANCE_SCORE = 80

ISSUE_CATEGORIES = {
    "Compliance": "Regulatory",
    "Protocol Alignment": "Clinical",
    "Efficiency": "Operational",
    "Structure": "Data Quality",
    "Content": "Data Quality",
}

DEMOGRAPHICS_FORM_KEYWORDS = ["demographic", "subject", "dm"]

SUMMARY_ITEMS = 5
MANY_FORMS = 20


# =============================================================================
# MAIN ORCHESTRATOR CLASS
# =============================================================================


class ValidationOrchestrator:
    """
    Composition root for the validation pipeline.

    Execution flow:
    1. Validate and normalize inputs (fatal errors raised here)
    2. Run structural and alignment analysis
    3. Derive findings, scores, recommendations and critical issues
    4. Optionally assess risk and run benchmark validation
    """

    def __init__(
        self,
        structural_analyzer: Optional[StructuralAnalyzer] = None,
        alignment_analyzer: Optional[ProtocolAlignmentAnalyzer] = None,
        risk_engine: Optional[RiskAssessmentEngine] = None,
        benchmark_validator: Optional[BenchmarkValidator] = None,
        config: Optional[ValidatorConfig] = None,
        settings: Optional[Settings] = None,
        id_factory: Optional[Callable[[str], str]] = None,
    ):
        """
        Initialize orchestrator with its analyzers.

        Args:
            structural_analyzer: CRF structure analyzer
            alignment_analyzer: Protocol alignment analyzer
            risk_engine: Risk assessment engine
            benchmark_validator: Benchmark validator (created on first use)
            config: YAML-backed validation defaults
            settings: Runtime settings
            id_factory: Callable mapping an id prefix to a unique id; defaults
                to a timestamp plus a sequence scoped to this instance
        """
        self.settings = settings or get_settings()
        self.config = config or ValidatorConfig(self.settings.config_dir)
        self.structural_analyzer = structural_analyzer or StructuralAnalyzer(self.config)
        self.alignment_analyzer = alignment_analyzer or ProtocolAlignmentAnalyzer()
        self.risk_engine = risk_engine or RiskAssessmentEngine()
        self._benchmark_validator = benchmark_validator
        self._sequence = itertools.count(1)
        self._id_factory = id_factory or self._next_id

    @property
    def benchmark_validator(self) -> BenchmarkValidator:
        if self._benchmark_validator is None:
            self._benchmark_validator = BenchmarkValidator(
                ReferenceDataManager(self.settings.reference_data_dir)
            )
        return self._benchmark_validator

    def _next_id(self, prefix: str) -> str:
        timestamp = int(time.time() * 1000)
        return f"{prefix}-{timestamp}-{next(self._sequence):04d}"

    # =========================================================================
    # PUBLIC ENTRY POINTS
    # =========================================================================

    def validate(
        self,
        protocol: Any,
        crfs: Any,
        options: Optional[ValidationOptions] = None,
    ) -> ValidationResult:
        """
        Validate CRFs against a protocol.

        Args:
            protocol: Protocol or dict payload
            crfs: List of CRF specifications or dict payloads
            options: Validation options (configured defaults when omitted)

        Returns:
            ValidationResult

        Raises:
            ValidationError: Protocol has no identity or crfs is not a list
            ValidationTimeoutError: The configured deadline expired
        """
        normalized = normalize_inputs(protocol, crfs)
        return asyncio.run(self._with_deadline(self._run_validation(normalized, self._options(options))))

    async def validate_async(
        self,
        protocol: Any,
        crfs: Any,
        options: Optional[ValidationOptions] = None,
    ) -> ValidationResult:
        """Async variant of validate() for callers already inside an event loop."""
        normalized = normalize_inputs(protocol, crfs)
        return await self._with_deadline(self._run_validation(normalized, self._options(options)))

    def assess_risk(self, protocol: Any) -> RiskAssessmentMatrix:
        """
        Assess protocol risk.

        Args:
            protocol: Protocol or dict payload

        Returns:
            RiskAssessmentMatrix

        Raises:
            ValidationError: Protocol has no identity
        """
        normalized = normalize_inputs(protocol, [])
        return self._risk_matrix(normalized.protocol)

    def review(
        self,
        protocol: Any,
        crfs: Any,
        options: Optional[ValidationOptions] = None,
    ) -> ProtocolReview:
        """Full review: validation, risk assessment and benchmark validation."""
        normalized = normalize_inputs(protocol, crfs)
        return asyncio.run(self._with_deadline(self._run_review(normalized, self._options(options))))

    async def review_async(
        self,
        protocol: Any,
        crfs: Any,
        options: Optional[ValidationOptions] = None,
    ) -> ProtocolReview:
        """Async variant of review()."""
        normalized = normalize_inputs(protocol, crfs)
        return await self._with_deadline(self._run_review(normalized, self._options(options)))

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _options(self, options: Optional[ValidationOptions]) -> ValidationOptions:
        return options or self.config.default_options()

    async def _with_deadline(self, coro):
        timeout = self.settings.validation_timeout_seconds
        if not timeout:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Validation exceeded deadline of {timeout}s")
            raise ValidationTimeoutError(
                f"Validation did not complete within {timeout} seconds",
                details={"timeout_seconds": timeout},
            ) from e

    async def _run_analyses(
        self,
        normalized: NormalizedInput,
        options: ValidationOptions,
    ) -> Tuple[Optional[StructuralAnalysis], Optional[AlignmentAnalysis]]:
        run_structural = options.include_structural and options.depth != ValidationDepth.BASIC
        run_alignment = options.include_alignment

        if self.settings.parallel_analysis:
            return await self._run_analyses_parallel(normalized, run_structural, run_alignment)
        return await self._run_analyses_sequential(normalized, run_structural, run_alignment)

    async def _run_analyses_parallel(
        self,
        normalized: NormalizedInput,
        run_structural: bool,
        run_alignment: bool,
    ) -> Tuple[Optional[StructuralAnalysis], Optional[AlignmentAnalysis]]:
        async def skipped():
            return None

        structural, alignment = await asyncio.gather(
            asyncio.to_thread(self.structural_analyzer.analyze, normalized.crfs) if run_structural else skipped(),
            asyncio.to_thread(self.alignment_analyzer.analyze, normalized.protocol, normalized.crfs)
            if run_alignment else skipped(),
        )
        return structural, alignment

    async def _run_analyses_sequential(
        self,
        normalized: NormalizedInput,
        run_structural: bool,
        run_alignment: bool,
    ) -> Tuple[Optional[StructuralAnalysis], Optional[AlignmentAnalysis]]:
        structural = alignment = None
        if run_structural:
            structural = await asyncio.to_thread(self.structural_analyzer.analyze, normalized.crfs)
        if run_alignment:
            alignment = await asyncio.to_thread(
                self.alignment_analyzer.analyze, normalized.protocol, normalized.crfs
            )
        return structural, alignment

    async def _run_validation(self, normalized: NormalizedInput, options: ValidationOptions) -> ValidationResult:
        protocol = normalized.protocol
        logger.info(
            f"Validating '{protocol.display_name}' ({options.depth.value}, {options.regulatory_region})"
        )

        structural, alignment = await self._run_analyses(normalized, options)

        ids = itertools.count(1)
        findings = self._baseline_findings(normalized, ids)
        findings.extend(self._alignment_findings(alignment, findings, ids))
        findings.extend(self._structural_findings(structural, ids))

        scores = compute_scores(findings, structural, alignment)
        critical_issues = derive_critical_issues(findings)
        recommendations = self._recommendations(protocol, normalized, structural, alignment)

        result = ValidationResult(
            id=self._id_factory(self.settings.validation_id_prefix),
            timestamp=datetime.now(timezone.utc),
            protocol_name=protocol.display_name,
            options=options,
            scores=scores,
            executive_summary=self._executive_summary(scores, findings, recommendations, critical_issues),
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            critical_issues=tuple(critical_issues),
            structural=structural,
            alignment=alignment,
            warnings=normalized.warnings,
        )

        is_valid, problems = validate_validation_result(result)
        if not is_valid:
            logger.warning(f"Validation result {result.id} failed integrity checks: {problems}")

        logger.info(
            f"Validation {result.id}: score={scores.overall}, findings={len(findings)}, "
            f"critical={len(critical_issues)}"
        )
        return result

    async def _run_review(self, normalized: NormalizedInput, options: ValidationOptions) -> ProtocolReview:
        validation = await self._run_validation(normalized, options)
        risk = self._risk_matrix(normalized.protocol) if options.include_risk else None

        feasibility = feasibility_score(validation, risk.assessment if risk else None)
        recommendation = proceed_recommendation(feasibility, len(validation.critical_issues))

        benchmark = None
        if options.include_benchmarks:
            benchmark = self.benchmark_validator.validate(
                normalized.protocol,
                normalized.crfs,
                risk=risk.assessment if risk else None,
                feasibility_score=feasibility,
                critical_issue_count=len(validation.critical_issues),
                recommendation=recommendation,
            )

        logger.info(
            f"Review of '{normalized.protocol.display_name}': feasibility={feasibility}, "
            f"recommendation={recommendation.value}"
        )
        return ProtocolReview(
            validation=validation,
            risk=risk,
            feasibility_score=feasibility,
            recommendation=recommendation,
            benchmark=benchmark,
        )

    # =========================================================================
    # FINDINGS
    # =========================================================================

    @staticmethod
    def _baseline_findings(normalized: NormalizedInput, ids: Iterator[int]) -> List[ValidationFinding]:
        findings = []
        forms = flatten_forms(normalized.crfs)

        if not forms:
            findings.append(ValidationFinding(
                id=_finding_id(ids),
                category="Structure",
                severity=Severity.CRITICAL,
                description="No CRF forms found",
                impact="Cannot collect any study data",
                recommendation="Add CRF forms for data collection",
                priority=Priority.HIGH,
                source="orchestrator",
            ))

        names = [form.name.lower() for form in forms]
        if not any(kw in name for name in names for kw in DEMOGRAPHICS_FORM_KEYWORDS):
            findings.append(ValidationFinding(
                id=_finding_id(ids),
                category="Content",
                severity=Severity.MAJOR,
                description="Missing Demographics form",
                impact="Cannot capture basic subject information",
                recommendation="Add Demographics/Subject Information form",
                priority=Priority.HIGH,
                source="orchestrator",
            ))

        return findings

    @staticmethod
    def _alignment_findings(
        alignment: Optional[AlignmentAnalysis],
        existing: List[ValidationFinding],
        ids: Iterator[int],
    ) -> List[ValidationFinding]:
        if alignment is None:
            return []

        # The baseline check already reports a missing demographics form
        demographics_reported = any(f.description == "Missing Demographics form" for f in existing)

        findings = []
        for issue in alignment.issues:
            if issue.dimension == "population" and demographics_reported:
                continue
            findings.append(ValidationFinding(
                id=_finding_id(ids),
                category="Protocol Alignment",
                severity=issue.severity,
                description=issue.description,
                impact=issue.impact,
                recommendation=issue.recommendation,
                priority=Priority.HIGH,
                source="protocol_alignment",
            ))
        return findings

    def _structural_findings(
        self,
        structural: Optional[StructuralAnalysis],
        ids: Iterator[int],
    ) -> List[ValidationFinding]:
        if structural is None or structural.form_count == 0:
            return []

        findings = []
        thresholds = self.config.structural_thresholds
        for dimension, score in (
            ("completeness", structural.completeness),
            ("consistency", structural.consistency),
            ("organization", structural.organization),
            ("efficiency", structural.efficiency),
        ):
            if score < thresholds[dimension]:
                findings.append(ValidationFinding(
                    id=_finding_id(ids),
                    category="Efficiency" if dimension == "efficiency" else "Structure",
                    severity=Severity.MINOR,
                    description=f"CRF {dimension} score {score} below threshold {thresholds[dimension]}",
                    impact="Structural weaknesses increase data entry effort and query rates",
                    recommendation=f"Improve CRF {dimension}",
                    priority=Priority.MEDIUM,
                    source="structure_analyzer",
                ))
        return findings

    # =========================================================================
    # RECOMMENDATIONS & SUMMARY
    # =========================================================================

    @staticmethod
    def _recommendations(
        protocol: Protocol,
        normalized: NormalizedInput,
        structural: Optional[StructuralAnalysis],
        alignment: Optional[AlignmentAnalysis],
    ) -> List[ValidationRecommendation]:
        ids = itertools.count(1)
        recommendations = []

        if protocol.phase_number == 1:
            recommendations.append(ValidationRecommendation(
                id=f"REC-{next(ids):03d}",
                category="Content",
                priority=Priority.HIGH,
                description="Enhance safety monitoring forms for Phase 1 study",
                rationale="Phase 1 studies require extensive safety data collection",
            ))

        if len(flatten_forms(normalized.crfs)) > MANY_FORMS:
            recommendations.append(ValidationRecommendation(
                id=f"REC-{next(ids):03d}",
                category="Efficiency",
                priority=Priority.MEDIUM,
                description="Consider consolidating forms to reduce data entry burden",
                rationale="Large number of forms may impact data quality and site burden",
                effort="High",
            ))

        if alignment is not None:
            for text in alignment.recommendations:
                recommendations.append(ValidationRecommendation(
                    id=f"REC-{next(ids):03d}",
                    category="Protocol Alignment",
                    priority=Priority.HIGH,
                    description=text,
                    rationale=f"Protocol alignment is {alignment.status.value.lower()} ({alignment.overall}/100)",
                ))

        if structural is not None:
            for text in structural.recommendations:
                recommendations.append(ValidationRecommendation(
                    id=f"REC-{next(ids):03d}",
                    category="Structure",
                    priority=Priority.MEDIUM,
                    description=text,
                    rationale=f"Structural score {structural.overall}/100",
                ))

        return recommendations

    @staticmethod
    def _executive_summary(
        scores: ValidationScores,
        findings: List[ValidationFinding],
        recommendations: List[ValidationRecommendation],
        critical_issues: List[CriticalIssue],
    ) -> ExecutiveSummary:
        alignment_status = AlignmentStatus.from_score(scores.compliance)
        label = recommendation_label(scores.overall, len(critical_issues))
        ranked = sorted(findings, key=lambda f: SEVERITY_ORDER.index(f.severity))
        ranked_recommendations = sorted(
            recommendations,
            key=lambda r: [Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW].index(r.priority),
        )

        if alignment_status == AlignmentStatus.FULLY_ALIGNED:
            compliance = "Compliant"
        elif alignment_status == AlignmentStatus.MOSTLY_ALIGNED:
            compliance = "Mostly Compliant"
        else:
            compliance = "Non-Compliant"

        return ExecutiveSummary(
            overall_quality=QualityLevel.from_score(scores.overall),
            recommendation=label,
            compliance_status=compliance,
            key_findings=tuple(f.description for f in ranked[:SUMMARY_ITEMS]),
            critical_issues=tuple(c.description for c in critical_issues[:SUMMARY_ITEMS]),
            top_recommendations=tuple(r.description for r in ranked_recommendations[:SUMMARY_ITEMS]),
            next_steps=(
                "Review critical issues (Immediate, Data Management Team)",
                "Implement high-priority recommendations (1-2 weeks, CRF Development Team)",
            ),
            rationale=(
                f"Validation score {scores.overall}/100 with {len(critical_issues)} critical issue(s); "
                f"protocol alignment {alignment_status.value.lower()} ({scores.compliance}/100)"
            ),
        )

    # =========================================================================
    # RISK
    # =========================================================================

    def _risk_matrix(self, protocol: Protocol) -> RiskAssessmentMatrix:
        assessment = self.risk_engine.assess(protocol)

        ids = itertools.count(1)
        findings = []
        for category in assessment.categories:
            if category.level not in (RiskLevel.HIGH, RiskLevel.VERY_HIGH):
                continue
            severity = Severity.CRITICAL if category.level == RiskLevel.VERY_HIGH else Severity.MAJOR
            findings.append(ValidationFinding(
                id=f"RFIND-{next(ids):03d}",
                category="Risk",
                severity=severity,
                description=f"{category.level.value} {category.name.value.lower()} risk ({category.score}/100)",
                impact=f"{category.impact.timeline}; {category.impact.cost}",
                recommendation="; ".join(f.description for f in category.factors),
                priority=Priority.CRITICAL if severity == Severity.CRITICAL else Priority.HIGH,
                source="risk_assessment",
            ))

        recommendations = []
        factors_by_id = {f.id: f for f in assessment.factors}
        seen = set()
        for action in assessment.mitigation.strategies:
            factor = factors_by_id[action.risk_factor_id]
            if factor.category in seen:
                continue
            seen.add(factor.category)
            recommendations.append(ValidationRecommendation(
                id=f"RREC-{len(recommendations) + 1:03d}",
                category=factor.category.value,
                priority=Priority.HIGH if action.timeline.startswith("Immediate") else Priority.MEDIUM,
                description=action.strategy,
                rationale=f"{factor.description}: {factor.rationale}",
                effort=action.cost,
            ))

        return RiskAssessmentMatrix(
            id=self._id_factory(self.settings.risk_id_prefix),
            timestamp=datetime.now(timezone.utc),
            assessment=assessment,
            findings=tuple(findings),
            recommendations=tuple(recommendations),
            critical_issues=tuple(derive_critical_issues(findings)),
        )


# =============================================================================
# AGGREGATION
# =============================================================================


def _finding_id(ids: Iterator[int]) -> str:
    return f"FIND-{next(ids):03d}"


def penalty_total(findings: Sequence[ValidationFinding]) -> int:
    return sum(SEVERITY_PENALTIES[f.severity] for f in findings)


def aggregate_score(findings: Sequence[ValidationFinding]) -> int:
    """100 minus per-finding penalties, clamped to [0, 100]."""
    return max(0, min(100, 100 - penalty_total(findings)))


def compute_scores(
    findings: Sequence[ValidationFinding],
    structural: Optional[StructuralAnalysis],
    alignment: Optional[AlignmentAnalysis],
) -> ValidationScores:
    overall = aggregate_score(findings)
    return ValidationScores(
        overall=overall,
        completeness=structural.completeness if structural else DEFAULT_COMPLETENESS_SCORE,
        quality=overall,
        compliance=alignment.overall if alignment else DEFAULT_COMPLIANCE_SCORE,
    )


def derive_critical_issues(findings: Sequence[ValidationFinding]) -> List[CriticalIssue]:
    """One CriticalIssue per Critical finding, in finding order."""
    issues = []
    for finding in findings:
        if finding.severity != Severity.CRITICAL:
            continue
        issues.append(CriticalIssue(
            id=f"CRIT-{len(issues) + 1:03d}",
            finding_id=finding.id,
            description=finding.description,
            category=ISSUE_CATEGORIES.get(finding.category, "Data Quality"),
            impact=finding.impact,
            urgency="Immediate",
        ))
    return issues


def recommendation_label(overall: int, critical_count: int) -> str:
    if critical_count > 0:
        return "Major Revision Required"
    if overall < 70:
        return "Requires Revision"
    if overall < 85:
        return "Approve with Minor Changes"
    return "Approve"


def feasibility_score(validation: ValidationResult, risk: Optional[RiskAssessment]) -> int:
    """Mean of the validation score and the inverted risk score."""
    if risk is None:
        return validation.scores.overall
    return round((validation.scores.overall + (100 - risk.overall_score)) / 2)


def proceed_recommendation(feasibility: int, critical_count: int) -> ProceedRecommendation:
    if feasibility >= 80 and critical_count == 0:
        return ProceedRecommendation.PROCEED
    if feasibility >= 60:
        return ProceedRecommendation.PROCEED_WITH_MODIFICATIONS
    if feasibility >= 40:
        return ProceedRecommendation.SIGNIFICANT_CONCERNS
    return ProceedRecommendation.NOT_RECOMMENDED
