"""
Risk Assessment Engine.

Derives risk factors from protocol attributes across seven categories and
combines them into a weighted overall risk score:

    Enrollment 25% | Regulatory 20% | Operational 15% | Safety 15%
    Data Quality 10% | Financial 10% | Timeline 5%

Each factor rates likelihood, impact and detectability on Low=1, Medium=2,
High=3; its risk score is the product (1-27). A category scores the sum of
its factor scores as a percentage of the maximum possible.

Also builds the mitigation plan (strategies, contingency plans,
responsibility matrix) and the monitoring plan (indicators, thresholds,
escalation).

Usage:
    engine = RiskAssessmentEngine()
    assessment = engine.assess(protocol)
    print(f"{assessment.overall_score} ({assessment.overall_level.value})")
"""

import itertools
import logging
import math
import re
from typing import Callable, Dict, Iterator, List, Optional, Set

from .data_models import (
    ContingencyPlan,
    EscalationStep,
    MitigationAction,
    MitigationPlan,
    MonitoringIndicator,
    MonitoringPlan,
    Protocol,
    ResponsibilityAssignment,
    RiskAssessment,
    RiskCategory,
    RiskCategoryName,
    RiskFactor,
    RiskImpact,
    RiskLevel,
    RiskRating,
)

logger = logging.getLogger(__name__)

L = RiskRating.LOW
M = RiskRating.MEDIUM
H = RiskRating.HIGH


# =============================================================================
# CONSTANTS
# =============================================================================

CATEGORY_WEIGHTS: Dict[RiskCategoryName, float] = {
    RiskCategoryName.ENROLLMENT: 0.25,
    RiskCategoryName.REGULATORY: 0.20,
    RiskCategoryName.OPERATIONAL: 0.15,
    RiskCategoryName.SAFETY: 0.15,
    RiskCategoryName.DATA_QUALITY: 0.10,
    RiskCategoryName.FINANCIAL: 0.10,
    RiskCategoryName.TIMELINE: 0.05,
}

MAX_FACTOR_SCORE = 27
PATIENTS_PER_SITE = 10
DEFAULT_DURATION_YEARS = 1.0

DURATION_PATTERNS = [
    (re.compile(r"(\d+(?:\.\d+)?)\s*years?", re.IGNORECASE), 1.0),
    (re.compile(r"(\d+(?:\.\d+)?)\s*months?", re.IGNORECASE), 12.0),
    (re.compile(r"(\d+(?:\.\d+)?)\s*weeks?", re.IGNORECASE), 52.0),
]

MITIGATION_STRATEGIES = {
    RiskCategoryName.ENROLLMENT: "Implement patient recruitment initiatives, optimize site selection, consider protocol amendments",
    RiskCategoryName.REGULATORY: "Engage early with regulatory authorities, implement robust quality systems",
    RiskCategoryName.OPERATIONAL: "Develop comprehensive training programs, implement technology solutions",
    RiskCategoryName.SAFETY: "Enhance safety monitoring, implement risk evaluation and mitigation strategies",
    RiskCategoryName.DATA_QUALITY: "Implement data quality monitoring, provide enhanced training",
    RiskCategoryName.FINANCIAL: "Implement cost control measures, negotiate favorable vendor contracts",
    RiskCategoryName.TIMELINE: "Develop realistic timelines with buffers, implement milestone tracking",
}

MITIGATION_RESOURCES = {
    RiskCategoryName.ENROLLMENT: "Clinical Operations, Medical Affairs, Site Management",
    RiskCategoryName.REGULATORY: "Regulatory Affairs, Legal, Quality Assurance",
    RiskCategoryName.OPERATIONAL: "Clinical Operations, Technology, Training",
    RiskCategoryName.SAFETY: "Pharmacovigilance, Medical Affairs, Regulatory",
    RiskCategoryName.DATA_QUALITY: "Data Management, Clinical Operations, Quality Assurance",
    RiskCategoryName.FINANCIAL: "Finance, Procurement, Operations",
    RiskCategoryName.TIMELINE: "Project Management, Clinical Operations, Leadership",
}

# name, description, measurement, frequency, responsible party, green, yellow, red
MONITORING_INDICATORS = [
    ("Enrollment Rate", "Weekly enrollment versus target", "Patients enrolled per week",
     "Weekly", "Clinical Operations",
     ">= Target rate", "80-99% of target", "< 80% of target"),
    ("Screen Failure Rate", "Percentage of screened patients not enrolled",
     "Screen failures / total screened * 100", "Bi-weekly", "Clinical Operations",
     "< 50%", "50-70%", "> 70%"),
    ("Data Query Rate", "Number of queries per CRF page", "Total queries / total CRF pages",
     "Monthly", "Data Management",
     "< 2 per CRF page", "2-3 per CRF page", "> 3 per CRF page"),
    ("Protocol Deviation Rate", "Protocol deviations per patient", "Total deviations / enrolled patients",
     "Monthly", "Clinical Quality Assurance",
     "< 0.5 per patient", "0.5-1.0 per patient", "> 1.0 per patient"),
]

REVIEW_FREQUENCY = "Weekly for operational metrics, monthly for comprehensive review"


# =============================================================================
# MAIN ENGINE CLASS
# =============================================================================


class RiskAssessmentEngine:
    """
    Seven-category protocol risk assessment.

    Holds no per-call state: factor ids are numbered per assess() call.
    """

    def assess(self, protocol: Protocol) -> RiskAssessment:
        """
        Assess protocol risk.

        Args:
            protocol: Normalized protocol

        Returns:
            RiskAssessment with categories, overall score/level and plans
        """
        ids = itertools.count(1)
        assessors: Dict[RiskCategoryName, Callable[[Protocol, Iterator[int]], List[RiskFactor]]] = {
            RiskCategoryName.ENROLLMENT: self._enrollment_risks,
            RiskCategoryName.REGULATORY: self._regulatory_risks,
            RiskCategoryName.OPERATIONAL: self._operational_risks,
            RiskCategoryName.SAFETY: self._safety_risks,
            RiskCategoryName.DATA_QUALITY: self._data_quality_risks,
            RiskCategoryName.FINANCIAL: self._financial_risks,
            RiskCategoryName.TIMELINE: self._timeline_risks,
        }

        categories = []
        for name, assess_category in assessors.items():
            factors = assess_category(protocol, ids)
            categories.append(self._category(name, factors))
            logger.debug(f"{name.value}: {len(factors)} factors")

        overall = overall_risk_score(categories)
        level = RiskLevel.from_score(overall)

        logger.info(
            f"Risk assessment for '{protocol.display_name}': {overall} ({level.value}), "
            f"{sum(len(c.factors) for c in categories)} factors"
        )
        return RiskAssessment(
            categories=tuple(categories),
            overall_score=overall,
            overall_level=level,
            mitigation=self._mitigation_plan(categories, protocol),
            monitoring=self._monitoring_plan(),
        )

    # =========================================================================
    # CATEGORY ASSESSORS
    # =========================================================================

    def _enrollment_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.ENROLLMENT
        factors = []
        population = protocol.population
        indication = protocol.indication.lower()

        if protocol.target_enrollment > 500:
            factors.append(create_risk_factor(
                ids, "Large enrollment target",
                "High enrollment requirements may lead to recruitment challenges",
                M, H, category, "Protocol design", M,
            ))
        if len(population.inclusion_criteria) > 8 or len(population.exclusion_criteria) > 12:
            factors.append(create_risk_factor(
                ids, "Complex eligibility criteria",
                "Restrictive criteria may limit patient pool",
                M, M, category, "Protocol design", H,
            ))
        if "rare" in indication or "orphan" in indication:
            factors.append(create_risk_factor(
                ids, "Rare disease indication",
                "Limited patient population available",
                H, H, category, "Disease characteristics", L,
            ))
        if "oncology" in protocol.therapeutic_area.lower():
            factors.append(create_risk_factor(
                ids, "Competitive therapeutic area",
                "High competition for patients in oncology",
                M, M, category, "Market conditions", M,
            ))
        return factors

    def _regulatory_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.REGULATORY
        factors = []
        objective = protocol.objective.lower()

        if protocol.phase_number in (3, 4):
            factors.append(create_risk_factor(
                ids, "Late-phase regulatory scrutiny",
                "Higher regulatory expectations and oversight",
                M, H, category, "Study phase", H,
            ))
        if "first-in-human" in objective or "novel" in objective:
            factors.append(create_risk_factor(
                ids, "Novel therapy or indication",
                "Unclear regulatory pathway and requirements",
                M, H, category, "Study objective", L,
            ))
        primary_text = _endpoint_text(protocol)
        if any(kw in primary_text for kw in ("biomarker", "surrogate", "composite")):
            factors.append(create_risk_factor(
                ids, "Novel or surrogate endpoints",
                "Regulatory acceptance may be uncertain",
                M, M, category, "Endpoint selection", M,
            ))
        if len(_countries(protocol)) > 2:
            factors.append(create_risk_factor(
                ids, "Multi-regional study",
                "Complex regulatory requirements across regions",
                M, M, category, "Study locations", M,
            ))
        return factors

    def _operational_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.OPERATIONAL
        factors = []

        if len(protocol.visit_schedule) > 12:
            factors.append(create_risk_factor(
                ids, "Complex visit schedule",
                "Frequent visits may impact patient retention and site burden",
                M, M, category, "Study design", H,
            ))
        if estimated_site_count(protocol) > 50:
            factors.append(create_risk_factor(
                ids, "Large site network required",
                "Managing many sites increases operational complexity",
                M, H, category, "Study size", M,
            ))
        if (protocol.design.number_of_arms or 0) > 3:
            factors.append(create_risk_factor(
                ids, "Multi-arm study design",
                "Multiple treatment arms increase operational complexity",
                M, M, category, "Study design", M,
            ))
        if self._duration_years(protocol) > 2:
            factors.append(create_risk_factor(
                ids, "Long study duration",
                "Extended duration increases retention and operational challenges",
                M, H, category, "Study duration", H,
            ))
        procedures = _procedure_text(protocol)
        if re.search(r"\b(imaging|ecgs?|holter)\b", procedures):
            factors.append(create_risk_factor(
                ids, "Complex procedures/technology",
                "Specialized equipment may limit site selection",
                M, M, category, "Study procedures", M,
            ))
        return factors

    def _safety_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.SAFETY
        factors = []
        indication = protocol.indication.lower()
        intervention = protocol.intervention.lower()
        design_type = protocol.design.type.lower()

        if protocol.phase_number == 1 or "first-in-human" in protocol.objective.lower():
            factors.append(create_risk_factor(
                ids, "Early phase safety uncertainty",
                "Limited safety data for investigational product",
                H, H, category, "Study phase", L,
            ))
        if "cancer" in indication or "oncology" in indication:
            factors.append(create_risk_factor(
                ids, "High-risk patient population",
                "Cancer patients may have multiple comorbidities",
                M, H, category, "Patient population", M,
            ))
        if "combination" in intervention or "multiple" in intervention:
            factors.append(create_risk_factor(
                ids, "Complex intervention",
                "Multiple agents may increase interaction risks",
                M, M, category, "Intervention", M,
            ))
        if "open" in design_type or "unblinded" in design_type:
            factors.append(create_risk_factor(
                ids, "Unblinded study design",
                "Open-label design may affect safety assessment",
                L, M, category, "Study design", H,
            ))
        return factors

    def _data_quality_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.DATA_QUALITY
        factors = []
        endpoints = protocol.endpoints

        if len(endpoints.primary) + len(endpoints.secondary) > 10:
            factors.append(create_risk_factor(
                ids, "High endpoint burden",
                "Large number of endpoints may impact data quality and analysis",
                M, M, category, "Endpoint design", H,
            ))
        if len(protocol.visit_schedule) > 15:
            factors.append(create_risk_factor(
                ids, "Frequent data collection",
                "High visit frequency increases data entry burden and error risk",
                M, M, category, "Visit schedule", M,
            ))
        primary_text = _endpoint_text(protocol)
        if any(kw in primary_text for kw in ("pain", "quality of life", "symptom")):
            factors.append(create_risk_factor(
                ids, "Subjective endpoint assessments",
                "Patient-reported outcomes may have variability",
                M, L, category, "Endpoint selection", H,
            ))
        if protocol.target_enrollment > 100:
            factors.append(create_risk_factor(
                ids, "Multi-site data coordination",
                "Data consistency across sites may be challenging",
                M, M, category, "Study size", M,
            ))
        return factors

    def _financial_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.FINANCIAL
        factors = []

        if protocol.target_enrollment > 300:
            factors.append(create_risk_factor(
                ids, "Large study budget",
                "High enrollment increases overall study costs",
                M, H, category, "Study size", M,
            ))
        procedures = _procedure_text(protocol)
        if re.search(r"\b(mris?|pet|biops(?:y|ies))\b", procedures):
            factors.append(create_risk_factor(
                ids, "Expensive procedures",
                "Costly imaging or procedures increase per-patient costs",
                M, M, category, "Study procedures", M,
            ))
        if len(_countries(protocol)) > 3:
            factors.append(create_risk_factor(
                ids, "Multi-country study",
                "International studies have higher operational costs",
                M, M, category, "Study locations", M,
            ))
        duration = protocol.duration_text.lower()
        if "year" in duration and not re.search(r"\b1\s+year\b", duration):
            factors.append(create_risk_factor(
                ids, "Long study duration",
                "Extended studies increase total operational costs",
                M, M, category, "Study duration", M,
            ))
        return factors

    def _timeline_risks(self, protocol: Protocol, ids: Iterator[int]) -> List[RiskFactor]:
        category = RiskCategoryName.TIMELINE
        factors = []

        if protocol.target_enrollment > 200:
            factors.append(create_risk_factor(
                ids, "Recruitment timeline pressure",
                "Large enrollment may extend recruitment period",
                M, M, category, "Study size", H,
            ))
        if protocol.phase_number == 3:
            factors.append(create_risk_factor(
                ids, "Regulatory review complexity",
                "Phase 3 studies may have longer approval timelines",
                M, M, category, "Study phase", M,
            ))
        if estimated_site_count(protocol) > 30:
            factors.append(create_risk_factor(
                ids, "Site activation timeline",
                "Many sites require sequential activation",
                M, M, category, "Study size", M,
            ))
        if protocol.endpoints.total > 10:
            factors.append(create_risk_factor(
                ids, "Complex analysis timeline",
                "Multiple endpoints may extend analysis period",
                L, M, category, "Endpoint design", H,
            ))
        return factors

    # =========================================================================
    # SCORING
    # =========================================================================

    @staticmethod
    def _category(name: RiskCategoryName, factors: List[RiskFactor]) -> RiskCategory:
        score = category_score(factors)
        return RiskCategory(
            name=name,
            level=RiskLevel.from_score(score),
            score=score,
            factors=tuple(factors),
            impact=risk_impact(factors),
        )

    @staticmethod
    def _duration_years(protocol: Protocol) -> float:
        text = protocol.duration_text
        if not text:
            return DEFAULT_DURATION_YEARS
        years = parse_duration_years(text)
        if years is None:
            logger.warning(
                f"Could not parse study duration '{text}', assuming {DEFAULT_DURATION_YEARS} year"
            )
            return DEFAULT_DURATION_YEARS
        return years

    # =========================================================================
    # MITIGATION & MONITORING
    # =========================================================================

    def _mitigation_plan(self, categories: List[RiskCategory], protocol: Protocol) -> MitigationPlan:
        strategies = [
            mitigation_action(factor)
            for category in categories
            for factor in category.factors
            if factor.likelihood == H or factor.impact == H
        ]

        contingency_plans = [
            ContingencyPlan(
                scenario="Slow enrollment",
                probability="Medium",
                impact="High",
                response="Activate additional sites, modify inclusion criteria if appropriate, "
                         "implement patient referral program",
                resources=("Clinical Operations", "Medical Affairs", "Regulatory"),
                timeline="Immediate assessment at 25% enrollment milestone",
            ),
        ]
        if protocol.phase_number == 3:
            contingency_plans.append(ContingencyPlan(
                scenario="Regulatory feedback requiring protocol amendment",
                probability="Medium",
                impact="Medium",
                response="Engage regulatory consultants, prepare amendment documentation, "
                         "communicate with ethics committees",
                resources=("Regulatory Affairs", "Clinical Operations", "Legal"),
                timeline="30-60 days depending on amendment scope",
            ))

        responsibility_matrix = (
            ResponsibilityAssignment(
                task="Risk monitoring and reporting",
                primary_owner="Clinical Operations Manager",
                secondary_owners=("Study Manager", "Risk Management Team"),
                accountabilities=("Weekly risk dashboard updates", "Monthly risk review meetings"),
                timeline="Ongoing throughout study",
            ),
            ResponsibilityAssignment(
                task="Enrollment tracking and mitigation",
                primary_owner="Clinical Operations Manager",
                secondary_owners=("Principal Investigators", "Site Coordinators"),
                accountabilities=("Weekly enrollment reports", "Site performance monitoring"),
                timeline="Ongoing during recruitment period",
            ),
        )

        return MitigationPlan(
            strategies=tuple(strategies),
            contingency_plans=tuple(contingency_plans),
            responsibility_matrix=responsibility_matrix,
        )

    @staticmethod
    def _monitoring_plan() -> MonitoringPlan:
        indicators = []
        for (name, description, measurement, frequency, party,
             green, yellow, red) in MONITORING_INDICATORS:
            indicators.append(MonitoringIndicator(
                name=name,
                description=description,
                measurement=measurement,
                frequency=frequency,
                responsible_party=party,
                green_threshold=green,
                yellow_threshold=yellow,
                red_threshold=red,
                escalation=(
                    EscalationStep(1, party, "Implement corrective actions", "Within 1 week"),
                    EscalationStep(2, "Study Manager", "Review trend and agree recovery plan", "Within 48 hours"),
                    EscalationStep(3, "Study Director", "Escalate and implement immediate intervention", "Within 24 hours"),
                ),
            ))
        return MonitoringPlan(indicators=tuple(indicators), review_frequency=REVIEW_FREQUENCY)


# =============================================================================
# HELPERS
# =============================================================================


def create_risk_factor(
    ids: Iterator[int],
    description: str,
    rationale: str,
    likelihood: RiskRating,
    impact: RiskRating,
    category: RiskCategoryName,
    source: str,
    detectability: RiskRating,
) -> RiskFactor:
    return RiskFactor(
        id=f"RISK-{next(ids):03d}",
        description=description,
        rationale=rationale,
        likelihood=likelihood,
        impact=impact,
        detectability=detectability,
        category=category,
        source=source,
    )


def category_score(factors: List[RiskFactor]) -> int:
    """Sum of factor scores as a percentage of the maximum; 0 with no factors."""
    if not factors:
        return 0
    total = sum(f.risk_score for f in factors)
    return round(total / (len(factors) * MAX_FACTOR_SCORE) * 100)


def overall_risk_score(categories: List[RiskCategory]) -> int:
    return round(sum(c.score * CATEGORY_WEIGHTS[c.name] for c in categories))


def risk_impact(factors: List[RiskFactor]) -> RiskImpact:
    high_impact = any(f.impact == H for f in factors)
    return RiskImpact(
        timeline="Significant delay possible" if high_impact else "Minimal impact",
        cost="Potential cost increase" if high_impact else "Minimal cost impact",
        quality=(
            "Quality at risk"
            if any(f.category == RiskCategoryName.DATA_QUALITY for f in factors)
            else "Quality maintained"
        ),
        regulatory=(
            "Regulatory impact possible"
            if any(f.category == RiskCategoryName.REGULATORY for f in factors)
            else "No regulatory impact"
        ),
    )


def mitigation_action(factor: RiskFactor) -> MitigationAction:
    category = factor.category
    return MitigationAction(
        risk_factor_id=factor.id,
        strategy=MITIGATION_STRATEGIES.get(category, "Implement standard risk mitigation measures"),
        implementation=(
            f"Develop detailed {category.value.lower()} mitigation plan with specific actions, "
            "timelines, and responsibilities"
        ),
        timeline="Immediate (within 1 week)" if factor.impact == H else "Short-term (within 1 month)",
        resources=MITIGATION_RESOURCES.get(category, "Cross-functional team"),
        effectiveness="High" if factor.detectability == H else "Medium",
        cost="Medium" if factor.impact == H else "Low",
    )


def parse_duration_years(text: str) -> Optional[float]:
    """Duration in years from free text ("2 years", "18 months", "26 weeks")."""
    for pattern, divisor in DURATION_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1)) / divisor
    return None


def estimated_site_count(protocol: Protocol) -> int:
    return math.ceil(protocol.target_enrollment / PATIENTS_PER_SITE)


def _countries(protocol: Protocol) -> Set[str]:
    return {country.strip().lower() for country in protocol.locations if country.strip()}


def _endpoint_text(protocol: Protocol) -> str:
    return " ".join(e.text for e in protocol.endpoints.primary).lower()


def _procedure_text(protocol: Protocol) -> str:
    procedures = list(protocol.procedures)
    procedures.extend(p for visit in protocol.visit_schedule for p in visit.procedures)
    return " ".join(procedures).lower()


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================


def assess_risk(protocol: Protocol) -> RiskAssessment:
    """
    Convenience function to assess protocol risk.

    Args:
        protocol: Normalized protocol

    Returns:
        RiskAssessment
    """
    return RiskAssessmentEngine().assess(protocol)
