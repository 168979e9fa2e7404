"""
Data models for the Protocol/CRF Validation & Risk-Scoring pipeline.

This module defines all value objects used for:
- Protocol and CRF inputs (normalized once at the input boundary)
- Structural and protocol-alignment analysis results
- Seven-category risk assessment, mitigation and monitoring plans
- Industry benchmark comparisons
- Aggregated validation results

Input and result dataclasses are frozen; collections inside them are tuples
so a returned result can be shared between concurrent readers.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Tuple


# =============================================================================
# ENUMS
# =============================================================================


class Severity(Enum):
    """Ordinal finding classification driving score penalties."""
    CRITICAL = "Critical"
    MAJOR = "Major"
    MINOR = "Minor"
    INFO = "Info"


class Priority(Enum):
    """Priority of a finding or recommendation."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class RiskRating(Enum):
    """
    Ordinal rating used for likelihood, impact and detectability.

    Numeric value: Low=1, Medium=2, High=3.
    """
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def ordinal(self) -> int:
        return {"Low": 1, "Medium": 2, "High": 3}[self.value]


class RiskLevel(Enum):
    """Risk level ladder for categories and the overall assessment."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    VERY_HIGH = "Very High"

    @classmethod
    def from_score(cls, score: int) -> "RiskLevel":
        """<25 Low, <50 Medium, <75 High, else Very High."""
        if score < 25:
            return cls.LOW
        if score < 50:
            return cls.MEDIUM
        if score < 75:
            return cls.HIGH
        return cls.VERY_HIGH


class QualityLevel(Enum):
    """Overall CRF quality ladder."""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"

    @classmethod
    def from_score(cls, score: int) -> "QualityLevel":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 75:
            return cls.GOOD
        if score >= 60:
            return cls.FAIR
        return cls.POOR


class AlignmentStatus(Enum):
    """Protocol/CRF alignment ladder."""
    FULLY_ALIGNED = "Fully Aligned"
    MOSTLY_ALIGNED = "Mostly Aligned"
    PARTIALLY_ALIGNED = "Partially Aligned"
    MISALIGNED = "Misaligned"

    @classmethod
    def from_score(cls, score: int) -> "AlignmentStatus":
        if score >= 90:
            return cls.FULLY_ALIGNED
        if score >= 75:
            return cls.MOSTLY_ALIGNED
        if score >= 50:
            return cls.PARTIALLY_ALIGNED
        return cls.MISALIGNED


class BenchmarkAssessment(Enum):
    """Label attached to a percentile bucket."""
    ABOVE_AVERAGE = "Above Average"
    AVERAGE = "Average"
    BELOW_AVERAGE = "Below Average"
    POOR = "Poor"

    @classmethod
    def from_percentile(cls, percentile: int) -> "BenchmarkAssessment":
        if percentile >= 75:
            return cls.ABOVE_AVERAGE
        if percentile >= 50:
            return cls.AVERAGE
        if percentile >= 25:
            return cls.BELOW_AVERAGE
        return cls.POOR


class BenchmarkTier(Enum):
    """Five-tier classification of the benchmark validation score."""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    ACCEPTABLE = "Acceptable"
    POOR = "Poor"
    FAILED = "Failed"

    @classmethod
    def from_score(cls, score: int) -> "BenchmarkTier":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 80:
            return cls.GOOD
        if score >= 60:
            return cls.ACCEPTABLE
        if score >= 40:
            return cls.POOR
        return cls.FAILED


class ValidationDepth(Enum):
    """How much of the pipeline runs. Basic skips structural analysis."""
    BASIC = "Basic"
    STANDARD = "Standard"
    COMPREHENSIVE = "Comprehensive"


class RiskCategoryName(Enum):
    """The seven risk categories, in weighting order."""
    ENROLLMENT = "Enrollment"
    REGULATORY = "Regulatory"
    OPERATIONAL = "Operational"
    SAFETY = "Safety"
    DATA_QUALITY = "Data Quality"
    FINANCIAL = "Financial"
    TIMELINE = "Timeline"


class ProceedRecommendation(Enum):
    """Go/no-go label for a full protocol review."""
    PROCEED = "Proceed"
    PROCEED_WITH_MODIFICATIONS = "Proceed with Modifications"
    SIGNIFICANT_CONCERNS = "Significant Concerns"
    NOT_RECOMMENDED = "Not Recommended"


# =============================================================================
# INPUT MODELS - PROTOCOL
# =============================================================================


@dataclass(frozen=True)
class Endpoint:
    """A protocol-declared endpoint."""
    name: str = ""
    description: str = ""
    measurement_method: str = ""
    timepoint: str = ""

    @property
    def text(self) -> str:
        """Text used for keyword extraction (description, else name)."""
        return self.description or self.name


@dataclass(frozen=True)
class EndpointSet:
    """Endpoints grouped by tier."""
    primary: Tuple[Endpoint, ...] = ()
    secondary: Tuple[Endpoint, ...] = ()
    exploratory: Tuple[Endpoint, ...] = ()

    @property
    def total(self) -> int:
        return len(self.primary) + len(self.secondary) + len(self.exploratory)

    def all(self) -> Tuple[Endpoint, ...]:
        return self.primary + self.secondary + self.exploratory

    def tiers(self) -> List[Tuple[str, Tuple[Endpoint, ...]]]:
        return [
            ("primary", self.primary),
            ("secondary", self.secondary),
            ("exploratory", self.exploratory),
        ]


@dataclass(frozen=True)
class Visit:
    """A protocol visit with the procedures performed at it."""
    name: str = ""
    day: Optional[int] = None
    procedures: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StudyDesign:
    type: str = ""
    duration: str = ""
    number_of_arms: Optional[int] = None
    description: str = ""


@dataclass(frozen=True)
class StudyPopulation:
    target_enrollment: Optional[int] = None
    inclusion_criteria: Tuple[str, ...] = ()
    exclusion_criteria: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Protocol:
    """
    A clinical-trial protocol.

    Every attribute is optional; analyzers substitute neutral defaults for
    anything absent.
    """
    title: str = ""
    number: str = ""
    phase: str = ""
    sponsor: str = ""
    indication: str = ""
    therapeutic_area: str = ""
    objective: str = ""
    intervention: str = ""
    design: StudyDesign = field(default_factory=StudyDesign)
    population: StudyPopulation = field(default_factory=StudyPopulation)
    endpoints: EndpointSet = field(default_factory=EndpointSet)
    visit_schedule: Tuple[Visit, ...] = ()
    procedures: Tuple[str, ...] = ()
    locations: Tuple[str, ...] = ()
    duration: str = ""

    @property
    def display_name(self) -> str:
        return self.title or self.number

    @property
    def target_enrollment(self) -> int:
        return self.population.target_enrollment or 0

    @property
    def phase_number(self) -> Optional[int]:
        return parse_phase(self.phase)

    @property
    def duration_text(self) -> str:
        """Study duration free text (top-level, else design duration)."""
        return self.duration or self.design.duration


# =============================================================================
# INPUT MODELS - CRF
# =============================================================================


@dataclass(frozen=True)
class CRFField:
    """A single data-collection field on a CRF form."""
    name: str = ""
    data_type: str = ""
    required: Optional[bool] = None
    label: str = ""
    description: str = ""
    controlled_vocabulary: Tuple[str, ...] = ()

    @property
    def search_text(self) -> str:
        """Lowercased name + label + description used for keyword matching."""
        return f"{self.name} {self.label} {self.description}".lower()


@dataclass(frozen=True)
class Form:
    """A CRF form (page)."""
    name: str = ""
    description: str = ""
    visit_schedule: Tuple[str, ...] = ()
    fields: Tuple[CRFField, ...] = ()
    validation_rules: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CRFSpecification:
    """A CRF specification: an ordered collection of forms."""
    crf_id: str = ""
    forms: Tuple[Form, ...] = ()


def flatten_forms(crfs: Tuple[CRFSpecification, ...]) -> List[Form]:
    """All forms across a set of CRF specifications, in order."""
    return [form for crf in crfs for form in crf.forms]


def flatten_fields(crfs: Tuple[CRFSpecification, ...]) -> List[CRFField]:
    """All fields across a set of CRF specifications, in order."""
    return [f for form in flatten_forms(crfs) for f in form.fields]


@dataclass(frozen=True)
class ValidationOptions:
    """Caller-selected options for a validation run."""
    depth: ValidationDepth = ValidationDepth.STANDARD
    regulatory_region: str = "FDA"
    industry: str = "Pharmaceutical"
    include_structural: bool = True
    include_alignment: bool = True
    include_risk: bool = True
    include_benchmarks: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validationDepth": self.depth.value,
            "regulatoryRegion": self.regulatory_region,
            "industry": self.industry,
            "includeStructural": self.include_structural,
            "includeAlignment": self.include_alignment,
            "includeRisk": self.include_risk,
            "includeBenchmarks": self.include_benchmarks,
        }


# =============================================================================
# FINDINGS & RECOMMENDATIONS
# =============================================================================


@dataclass(frozen=True)
class ValidationFinding:
    """A single issue detected by the pipeline."""
    id: str
    category: str
    severity: Severity
    description: str
    impact: str = ""
    recommendation: str = ""
    priority: Priority = Priority.MEDIUM
    source: str = ""
    evidence: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "severity": self.severity.value,
            "description": self.description,
            "impact": self.impact,
            "recommendation": self.recommendation,
            "priority": self.priority.value,
            "source": self.source,
            "evidence": self.evidence,
        }


@dataclass(frozen=True)
class CriticalIssue:
    """An escalated view of a Critical finding."""
    id: str
    finding_id: str
    description: str
    category: str
    impact: str = ""
    urgency: str = "Immediate"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "findingId": self.finding_id,
            "description": self.description,
            "category": self.category,
            "impact": self.impact,
            "urgency": self.urgency,
        }


@dataclass(frozen=True)
class ValidationRecommendation:
    id: str
    category: str
    priority: Priority
    description: str
    rationale: str = ""
    effort: str = "Medium"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "priority": self.priority.value,
            "description": self.description,
            "rationale": self.rationale,
            "implementationEffort": self.effort,
        }


# =============================================================================
# STRUCTURAL ANALYSIS
# =============================================================================


@dataclass(frozen=True)
class FieldAnalysis:
    """Field-level statistics across all forms."""
    total_fields: int = 0
    required_fields: int = 0
    data_type_distribution: Tuple[Tuple[str, int], ...] = ()
    fields_missing_labels: Tuple[str, ...] = ()
    fields_without_type: Tuple[str, ...] = ()
    issues: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFields": self.total_fields,
            "requiredFields": self.required_fields,
            "dataTypeDistribution": dict(self.data_type_distribution),
            "fieldsMissingLabels": list(self.fields_missing_labels),
            "fieldsWithoutType": list(self.fields_without_type),
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class OrganizationAnalysis:
    grouping_score: int = 0
    schedule_score: int = 0
    flow_score: int = 0
    logical_grouping: bool = False
    missing_standard_forms: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groupingScore": self.grouping_score,
            "scheduleScore": self.schedule_score,
            "flowScore": self.flow_score,
            "logicalGrouping": self.logical_grouping,
            "missingStandardForms": list(self.missing_standard_forms),
        }


@dataclass(frozen=True)
class NavigationAnalysis:
    estimated_completion_minutes: float = 0.0
    complexity: str = "Low"
    user_experience_score: int = 0
    issues: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimatedCompletionMinutes": self.estimated_completion_minutes,
            "complexity": self.complexity,
            "userExperienceScore": self.user_experience_score,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class StructuralAnalysis:
    """Result of StructuralAnalyzer.analyze()."""
    completeness: int
    consistency: int
    organization: int
    efficiency: int
    overall: int
    form_count: int = 0
    field_analysis: FieldAnalysis = field(default_factory=FieldAnalysis)
    organization_analysis: OrganizationAnalysis = field(default_factory=OrganizationAnalysis)
    navigation: NavigationAnalysis = field(default_factory=NavigationAnalysis)
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completenessScore": self.completeness,
            "consistencyScore": self.consistency,
            "organizationScore": self.organization,
            "efficiencyScore": self.efficiency,
            "overallScore": self.overall,
            "formCount": self.form_count,
            "fieldAnalysis": self.field_analysis.to_dict(),
            "organizationAnalysis": self.organization_analysis.to_dict(),
            "navigation": self.navigation.to_dict(),
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# PROTOCOL ALIGNMENT
# =============================================================================


@dataclass(frozen=True)
class EndpointCoverage:
    """Coverage of one endpoint tier by CRF fields."""
    tier: str
    total: int
    covered: int
    percentage: int
    uncovered: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "total": self.total,
            "covered": self.covered,
            "percentage": self.percentage,
            "uncovered": list(self.uncovered),
        }


@dataclass(frozen=True)
class VisitCoverage:
    protocol_visits: Tuple[str, ...] = ()
    matched: Tuple[str, ...] = ()
    missing: Tuple[str, ...] = ()
    extra_crf_visits: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocolVisits": list(self.protocol_visits),
            "matched": list(self.matched),
            "missing": list(self.missing),
            "extraCrfVisits": list(self.extra_crf_visits),
        }


@dataclass(frozen=True)
class AlignmentIssue:
    severity: Severity
    dimension: str
    description: str
    impact: str = ""
    recommendation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "dimension": self.dimension,
            "description": self.description,
            "impact": self.impact,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class AlignmentAnalysis:
    """Result of ProtocolAlignmentAnalyzer.analyze()."""
    endpoint_score: int
    visit_score: int
    procedure_score: int
    population_score: int
    overall: int
    status: AlignmentStatus
    endpoint_coverage: Tuple[EndpointCoverage, ...] = ()
    visit_coverage: VisitCoverage = field(default_factory=VisitCoverage)
    missing_procedures: Tuple[str, ...] = ()
    issues: Tuple[AlignmentIssue, ...] = ()
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpointCoverageScore": self.endpoint_score,
            "visitCoverageScore": self.visit_score,
            "procedureCoverageScore": self.procedure_score,
            "populationCoverageScore": self.population_score,
            "overallScore": self.overall,
            "status": self.status.value,
            "endpointCoverage": [c.to_dict() for c in self.endpoint_coverage],
            "visitCoverage": self.visit_coverage.to_dict(),
            "missingProcedures": list(self.missing_procedures),
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# RISK ASSESSMENT
# =============================================================================


@dataclass(frozen=True)
class RiskFactor:
    """One likelihood/impact/detectability triple within a risk category."""
    id: str
    description: str
    rationale: str
    likelihood: RiskRating
    impact: RiskRating
    detectability: RiskRating
    category: RiskCategoryName
    source: str = ""

    @property
    def risk_score(self) -> int:
        """likelihood x impact x detectability, in [1, 27]."""
        return self.likelihood.ordinal * self.impact.ordinal * self.detectability.ordinal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "rationale": self.rationale,
            "likelihood": self.likelihood.value,
            "impact": self.impact.value,
            "detectability": self.detectability.value,
            "riskScore": self.risk_score,
            "category": self.category.value,
            "source": self.source,
        }


@dataclass(frozen=True)
class RiskImpact:
    timeline: str = "Minimal impact"
    cost: str = "Minimal cost impact"
    quality: str = "Quality maintained"
    regulatory: str = "No regulatory impact"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeline": self.timeline,
            "cost": self.cost,
            "quality": self.quality,
            "regulatory": self.regulatory,
        }


@dataclass(frozen=True)
class RiskCategory:
    name: RiskCategoryName
    level: RiskLevel
    score: int
    factors: Tuple[RiskFactor, ...] = ()
    impact: RiskImpact = field(default_factory=RiskImpact)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "level": self.level.value,
            "score": self.score,
            "factors": [f.to_dict() for f in self.factors],
            "impact": self.impact.to_dict(),
        }


@dataclass(frozen=True)
class MitigationAction:
    """Mitigation for a single High-likelihood or High-impact factor."""
    risk_factor_id: str
    strategy: str
    implementation: str
    timeline: str
    resources: str
    effectiveness: str
    cost: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskId": self.risk_factor_id,
            "strategy": self.strategy,
            "implementation": self.implementation,
            "timeline": self.timeline,
            "resources": self.resources,
            "effectiveness": self.effectiveness,
            "cost": self.cost,
        }


@dataclass(frozen=True)
class ContingencyPlan:
    scenario: str
    probability: str
    impact: str
    response: str
    resources: Tuple[str, ...] = ()
    timeline: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "probability": self.probability,
            "impact": self.impact,
            "response": self.response,
            "resources": list(self.resources),
            "timeline": self.timeline,
        }


@dataclass(frozen=True)
class ResponsibilityAssignment:
    task: str
    primary_owner: str
    secondary_owners: Tuple[str, ...] = ()
    accountabilities: Tuple[str, ...] = ()
    timeline: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "primaryOwner": self.primary_owner,
            "secondaryOwners": list(self.secondary_owners),
            "accountabilities": list(self.accountabilities),
            "timeline": self.timeline,
        }


@dataclass(frozen=True)
class MitigationPlan:
    strategies: Tuple[MitigationAction, ...] = ()
    contingency_plans: Tuple[ContingencyPlan, ...] = ()
    responsibility_matrix: Tuple[ResponsibilityAssignment, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategies": [s.to_dict() for s in self.strategies],
            "contingencyPlans": [c.to_dict() for c in self.contingency_plans],
            "responsibilityMatrix": [r.to_dict() for r in self.responsibility_matrix],
        }


@dataclass(frozen=True)
class EscalationStep:
    tier: int
    owner: str
    action: str
    timeline: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "owner": self.owner,
            "action": self.action,
            "timeline": self.timeline,
        }


@dataclass(frozen=True)
class MonitoringIndicator:
    name: str
    description: str
    measurement: str
    frequency: str
    responsible_party: str
    green_threshold: str
    yellow_threshold: str
    red_threshold: str
    escalation: Tuple[EscalationStep, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "measurement": self.measurement,
            "frequency": self.frequency,
            "responsibleParty": self.responsible_party,
            "greenThreshold": self.green_threshold,
            "yellowThreshold": self.yellow_threshold,
            "redThreshold": self.red_threshold,
            "escalation": [e.to_dict() for e in self.escalation],
        }


@dataclass(frozen=True)
class MonitoringPlan:
    indicators: Tuple[MonitoringIndicator, ...] = ()
    review_frequency: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicators": [i.to_dict() for i in self.indicators],
            "reviewFrequency": self.review_frequency,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Result of RiskAssessmentEngine.assess()."""
    categories: Tuple[RiskCategory, ...]
    overall_score: int
    overall_level: RiskLevel
    mitigation: MitigationPlan = field(default_factory=MitigationPlan)
    monitoring: MonitoringPlan = field(default_factory=MonitoringPlan)

    def category(self, name: RiskCategoryName) -> Optional[RiskCategory]:
        for category in self.categories:
            if category.name == name:
                return category
        return None

    @property
    def factors(self) -> List[RiskFactor]:
        return [f for c in self.categories for f in c.factors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallRiskScore": self.overall_score,
            "overallRiskLevel": self.overall_level.value,
            "categories": [c.to_dict() for c in self.categories],
            "mitigationPlan": self.mitigation.to_dict(),
            "monitoringPlan": self.monitoring.to_dict(),
        }


# =============================================================================
# BENCHMARKS
# =============================================================================


@dataclass(frozen=True)
class BenchmarkReference:
    """Reference quartiles for one metric."""
    p25: float
    median: float
    p75: float
    excellent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "p25": self.p25,
            "median": self.median,
            "p75": self.p75,
            "excellent": self.excellent,
        }


@dataclass(frozen=True)
class BenchmarkComparison:
    metric: str
    study_value: float
    reference: BenchmarkReference
    percentile: int
    assessment: BenchmarkAssessment
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "studyValue": self.study_value,
            "industryBenchmark": self.reference.to_dict(),
            "percentile": self.percentile,
            "assessment": self.assessment.value,
            "context": self.context,
        }


@dataclass(frozen=True)
class BenchmarkValidation:
    """Result of BenchmarkValidator.validate()."""
    is_valid: bool
    score: int
    tier: BenchmarkTier
    confidence: int
    findings: Tuple[ValidationFinding, ...] = ()
    comparisons: Tuple[BenchmarkComparison, ...] = ()
    recommendations: Tuple[ValidationRecommendation, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "score": self.score,
            "category": self.tier.value,
            "confidence": self.confidence,
            "findings": [f.to_dict() for f in self.findings],
            "benchmarkComparisons": [c.to_dict() for c in self.comparisons],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


# =============================================================================
# AGGREGATED RESULTS
# =============================================================================


@dataclass(frozen=True)
class ValidationScores:
    overall: int
    completeness: int
    quality: int
    compliance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallScore": self.overall,
            "completenessScore": self.completeness,
            "qualityScore": self.quality,
            "complianceScore": self.compliance,
        }


@dataclass(frozen=True)
class ExecutiveSummary:
    overall_quality: QualityLevel
    recommendation: str
    compliance_status: str
    key_findings: Tuple[str, ...] = ()
    critical_issues: Tuple[str, ...] = ()
    top_recommendations: Tuple[str, ...] = ()
    next_steps: Tuple[str, ...] = ()
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overallQuality": self.overall_quality.value,
            "recommendation": self.recommendation,
            "complianceStatus": self.compliance_status,
            "keyFindings": list(self.key_findings),
            "criticalIssues": list(self.critical_issues),
            "topRecommendations": list(self.top_recommendations),
            "nextSteps": list(self.next_steps),
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Aggregated CRF validation result."""
    id: str
    timestamp: datetime
    protocol_name: str
    options: ValidationOptions
    scores: ValidationScores
    executive_summary: ExecutiveSummary
    findings: Tuple[ValidationFinding, ...] = ()
    recommendations: Tuple[ValidationRecommendation, ...] = ()
    critical_issues: Tuple[CriticalIssue, ...] = ()
    structural: Optional[StructuralAnalysis] = None
    alignment: Optional[AlignmentAnalysis] = None
    warnings: Tuple[str, ...] = ()

    @property
    def overall_score(self) -> int:
        return self.scores.overall

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validationId": self.id,
            "timestamp": self.timestamp.isoformat(),
            "protocolName": self.protocol_name,
            "options": self.options.to_dict(),
            "scores": self.scores.to_dict(),
            "executiveSummary": self.executive_summary.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "criticalIssues": [c.to_dict() for c in self.critical_issues],
            "structuralAnalysis": self.structural.to_dict() if self.structural else None,
            "protocolAlignment": self.alignment.to_dict() if self.alignment else None,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class RiskAssessmentMatrix:
    """Risk assessment wrapped with findings and a generated identity."""
    id: str
    timestamp: datetime
    assessment: RiskAssessment
    findings: Tuple[ValidationFinding, ...] = ()
    recommendations: Tuple[ValidationRecommendation, ...] = ()
    critical_issues: Tuple[CriticalIssue, ...] = ()

    @property
    def overall_score(self) -> int:
        return self.assessment.overall_score

    @property
    def overall_level(self) -> RiskLevel:
        return self.assessment.overall_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assessmentId": self.id,
            "timestamp": self.timestamp.isoformat(),
            **self.assessment.to_dict(),
            "findings": [f.to_dict() for f in self.findings],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "criticalIssues": [c.to_dict() for c in self.critical_issues],
        }


@dataclass(frozen=True)
class ProtocolReview:
    """Validation, risk and benchmark results for one protocol."""
    validation: ValidationResult
    risk: Optional[RiskAssessmentMatrix]
    feasibility_score: int
    recommendation: ProceedRecommendation
    benchmark: Optional[BenchmarkValidation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validation": self.validation.to_dict(),
            "riskAssessment": self.risk.to_dict() if self.risk else None,
            "feasibilityScore": self.feasibility_score,
            "recommendation": self.recommendation.value,
            "benchmarkValidation": self.benchmark.to_dict() if self.benchmark else None,
        }


# =============================================================================
# PARSING HELPERS
# =============================================================================

_ROMAN_PHASES = {"IV": 4, "III": 3, "II": 2, "I": 1}


def parse_phase(phase: str) -> Optional[int]:
    """
    Study phase as an int (1-4).

    Accepts "3", "Phase 3", "Phase III" and combined phases such as
    "2/3", which resolve to the later phase. Returns None when no phase
    can be read.
    """
    if not phase:
        return None
    digits = [int(d) for d in re.findall(r"[1-4]", phase)]
    if digits:
        return max(digits)
    numerals = re.findall(r"\b(IV|III|II|I)\b", phase.upper())
    if numerals:
        return max(_ROMAN_PHASES[n] for n in numerals)
    return None
