"""
Protocol Alignment Analyzer.

Measures how well a set of CRFs covers what the protocol requires, on four
weighted dimensions:
1. Endpoint coverage (35%)
2. Visit schedule coverage (25%)
3. Procedure coverage (25%)
4. Population criteria coverage (15%)

Matching is keyword/token based. A dimension with no declared requirement
scores 100.

Usage:
    analyzer = ProtocolAlignmentAnalyzer()
    alignment = analyzer.analyze(protocol, crfs)
    print(f"{alignment.overall} - {alignment.status.value}")
"""

import logging
import re
from typing import Dict, List, Sequence, Tuple

from .data_models import (
    AlignmentAnalysis,
    AlignmentIssue,
    AlignmentStatus,
    CRFField,
    CRFSpecification,
    Endpoint,
    EndpointCoverage,
    Form,
    Protocol,
    Severity,
    VisitCoverage,
    flatten_forms,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DIMENSION_WEIGHTS = {
    "endpoints": 0.35,
    "visits": 0.25,
    "procedures": 0.25,
    "population": 0.15,
}

STOP_WORDS = {
    "the", "and", "or", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "as", "is", "was", "are", "were", "will", "be", "been", "have",
    "has", "had", "do", "does", "did", "can", "could", "should", "would",
    "may", "might", "must", "shall", "this", "that", "these", "those",
}

MAX_ENDPOINT_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 3     # kept when longer than 2
MIN_MATCH_LENGTH = 4       # matched when longer than 3

VISIT_PATTERN = re.compile(r"\b(?:visit|day|week|month)\s+\d+\b", re.IGNORECASE)
DEFAULT_VISITS = ["Screening", "Baseline", "Follow-up"]
VISIT_CLASSES = ["screen", "baseline", "follow"]
VISIT_UNITS = ["day", "week", "month"]

CANONICAL_PROCEDURES = [
    "vital signs",
    "laboratory tests",
    "adverse events",
    "concomitant medications",
    "physical examination",
    "medical history",
    "demographics",
]

POPULATION_CHECKS = {
    "demographics": ["age", "gender", "sex", "race", "ethnicity", "birth", "demographic"],
    "medical_history": ["medical history", "history", "prior", "previous", "past medical"],
    "inclusion": ["inclusion", "eligible", "qualify", "criteria"],
    "exclusion": ["exclusion", "exclude", "prohibited", "contraindication"],
}
POPULATION_CHECK_POINTS = 25


# =============================================================================
# MAIN ANALYZER CLASS
# =============================================================================


class ProtocolAlignmentAnalyzer:
    """
    Scores endpoint, visit, procedure and population coverage of CRFs
    against a protocol.
    """

    def analyze(self, protocol: Protocol, crfs: Sequence[CRFSpecification]) -> AlignmentAnalysis:
        """
        Analyze protocol/CRF alignment.

        Args:
            protocol: Normalized protocol
            crfs: CRF specifications

        Returns:
            AlignmentAnalysis with dimension scores, issues and recommendations
        """
        forms = flatten_forms(tuple(crfs))
        fields = [f for form in forms for f in form.fields]

        endpoint_coverage = self.endpoint_coverage(protocol, fields)
        endpoint_score = self._endpoint_score(endpoint_coverage)
        visit_coverage = self.visit_coverage(protocol, forms)
        visit_score = self._visit_score(visit_coverage)
        procedure_score, missing_procedures = self.procedure_coverage(protocol, forms)
        population_score, population_checks = self.population_coverage(fields)

        overall = round(
            endpoint_score * DIMENSION_WEIGHTS["endpoints"]
            + visit_score * DIMENSION_WEIGHTS["visits"]
            + procedure_score * DIMENSION_WEIGHTS["procedures"]
            + population_score * DIMENSION_WEIGHTS["population"]
        )

        issues = self._issues(protocol, fields, visit_coverage, population_checks)
        recommendations = self._recommendations(
            endpoint_score, visit_score, procedure_score, population_score, issues
        )

        logger.info(
            f"Alignment: endpoints={endpoint_score}, visits={visit_score}, "
            f"procedures={procedure_score}, population={population_score}, overall={overall}"
        )
        return AlignmentAnalysis(
            endpoint_score=endpoint_score,
            visit_score=visit_score,
            procedure_score=procedure_score,
            population_score=population_score,
            overall=overall,
            status=AlignmentStatus.from_score(overall),
            endpoint_coverage=tuple(endpoint_coverage),
            visit_coverage=visit_coverage,
            missing_procedures=tuple(missing_procedures),
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        )

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    def endpoint_coverage(self, protocol: Protocol, fields: List[CRFField]) -> List[EndpointCoverage]:
        """Per-tier coverage of declared endpoints."""
        coverage = []
        for tier, endpoints in protocol.endpoints.tiers():
            uncovered = [e.text for e in endpoints if not endpoint_is_covered(e, fields)]
            total = len(endpoints)
            covered = total - len(uncovered)
            coverage.append(EndpointCoverage(
                tier=tier,
                total=total,
                covered=covered,
                percentage=round(covered / total * 100) if total else 100,
                uncovered=tuple(uncovered),
            ))
        return coverage

    @staticmethod
    def _endpoint_score(coverage: List[EndpointCoverage]) -> int:
        total = sum(c.total for c in coverage)
        if total == 0:
            return 100
        return round(sum(c.covered for c in coverage) / total * 100)

    # =========================================================================
    # VISITS
    # =========================================================================

    def visit_coverage(self, protocol: Protocol, forms: List[Form]) -> VisitCoverage:
        protocol_visits = extract_protocol_visits(protocol)
        crf_visits = _unique([v for form in forms for v in form.visit_schedule])

        matched, missing = [], []
        for visit in protocol_visits:
            if any(visits_match(visit, crf_visit) for crf_visit in crf_visits):
                matched.append(visit)
            else:
                missing.append(visit)

        extra = [
            crf_visit for crf_visit in crf_visits
            if not any(visits_match(visit, crf_visit) for visit in protocol_visits)
        ]
        return VisitCoverage(
            protocol_visits=tuple(protocol_visits),
            matched=tuple(matched),
            missing=tuple(missing),
            extra_crf_visits=tuple(extra),
        )

    @staticmethod
    def _visit_score(coverage: VisitCoverage) -> int:
        if not coverage.protocol_visits:
            return 100
        return round(len(coverage.matched) / len(coverage.protocol_visits) * 100)

    # =========================================================================
    # PROCEDURES
    # =========================================================================

    def procedure_coverage(self, protocol: Protocol, forms: List[Form]) -> Tuple[int, List[str]]:
        """Score and the list of procedures with no matching form or field."""
        procedures = _unique(
            list(protocol.procedures)
            + [p for visit in protocol.visit_schedule for p in visit.procedures]
        )
        if not procedures:
            procedures = list(CANONICAL_PROCEDURES)

        crf_text = " ".join(
            [form.name for form in forms] + [f.name for form in forms for f in form.fields]
        ).lower()

        missing = []
        for procedure in procedures:
            tokens = [t for t in procedure.lower().split() if len(t) >= MIN_KEYWORD_LENGTH]
            if not any(len(t) >= MIN_MATCH_LENGTH and t in crf_text for t in tokens):
                missing.append(procedure)

        covered = len(procedures) - len(missing)
        return round(covered / len(procedures) * 100), missing

    # =========================================================================
    # POPULATION
    # =========================================================================

    def population_coverage(self, fields: List[CRFField]) -> Tuple[int, Dict[str, bool]]:
        """Score and per-check pass/fail for population criteria fields."""
        texts = [f"{f.name} {f.label}".lower() for f in fields]
        checks = {
            check: any(kw in text for text in texts for kw in keywords)
            for check, keywords in POPULATION_CHECKS.items()
        }
        return sum(POPULATION_CHECK_POINTS for passed in checks.values() if passed), checks

    # =========================================================================
    # ISSUES & RECOMMENDATIONS
    # =========================================================================

    def _issues(
        self,
        protocol: Protocol,
        fields: List[CRFField],
        visit_coverage: VisitCoverage,
        population_checks: Dict[str, bool],
    ) -> List[AlignmentIssue]:
        issues = []

        for endpoint in protocol.endpoints.primary:
            if not endpoint_is_covered(endpoint, fields):
                issues.append(AlignmentIssue(
                    severity=Severity.CRITICAL,
                    dimension="endpoints",
                    description=f"Primary endpoint not adequately covered in CRF: {endpoint.text}",
                    impact="Missing primary endpoint data will prevent study objective achievement",
                    recommendation="Add specific fields to capture primary endpoint data",
                ))

        for visit in visit_coverage.missing:
            issues.append(AlignmentIssue(
                severity=Severity.MAJOR,
                dimension="visits",
                description=f"Protocol visit not covered in CRF: {visit}",
                impact="Data collection may not align with protocol schedule",
                recommendation=f"Add visit schedule entry for {visit}",
            ))

        if not population_checks.get("demographics"):
            issues.append(AlignmentIssue(
                severity=Severity.MAJOR,
                dimension="population",
                description="Missing demographics fields in CRF",
                impact="Cannot verify patient eligibility and baseline characteristics",
                recommendation="Add demographic data collection fields (age, gender, race, etc.)",
            ))

        return issues

    @staticmethod
    def _recommendations(
        endpoint_score: int,
        visit_score: int,
        procedure_score: int,
        population_score: int,
        issues: List[AlignmentIssue],
    ) -> List[str]:
        recommendations = []
        if endpoint_score < 80:
            recommendations.append(
                "Review primary and secondary endpoints to ensure all required data points are captured in CRF forms"
            )
        if visit_score < 80:
            recommendations.append(
                "Align CRF visit schedule with protocol requirements to ensure proper data collection timing"
            )
        if procedure_score < 80:
            recommendations.append(
                "Add missing procedure forms or fields to cover all protocol-required assessments"
            )
        if population_score < 80:
            recommendations.append(
                "Enhance population criteria coverage by adding demographic, medical history, and eligibility fields"
            )

        critical = sum(1 for i in issues if i.severity == Severity.CRITICAL)
        major = sum(1 for i in issues if i.severity == Severity.MAJOR)
        if critical:
            recommendations.append(f"Address {critical} critical alignment issues before study initiation")
        if major:
            recommendations.append(f"Resolve {major} major alignment issues to improve protocol compliance")
        return recommendations


# =============================================================================
# HELPERS
# =============================================================================


def endpoint_keywords(text: str) -> List[str]:
    """Significant lowercase keywords of an endpoint, at most 10."""
    keywords = []
    for token in text.split():
        word = re.sub(r"[^\w]", "", token).lower()
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOP_WORDS:
            keywords.append(word)
    return keywords[:MAX_ENDPOINT_KEYWORDS]


def endpoint_is_covered(endpoint: Endpoint, fields: List[CRFField]) -> bool:
    text = endpoint.text
    if not text:
        return False
    keywords = [kw for kw in endpoint_keywords(text) if len(kw) >= MIN_MATCH_LENGTH]
    return any(kw in f.search_text for f in fields for kw in keywords)


def extract_protocol_visits(protocol: Protocol) -> List[str]:
    """
    Visits declared by the protocol.

    Explicit schedule entries first, then "Visit/Day/Week/Month N" mentions
    in the design text; Screening, Baseline and Follow-up when neither
    yields anything.
    """
    visits = [v.name for v in protocol.visit_schedule if v.name]
    design = protocol.design
    design_text = " ".join([design.type, design.description, design.duration])
    visits.extend(match.group(0) for match in VISIT_PATTERN.finditer(design_text))

    visits = _unique(visits)
    return visits or list(DEFAULT_VISITS)


def visits_match(protocol_visit: str, crf_visit: str) -> bool:
    """Exact name, same visit class, or same day/week/month number."""
    p = protocol_visit.lower().strip()
    c = crf_visit.lower().strip()
    if p == c:
        return True

    for visit_class in VISIT_CLASSES:
        if visit_class in p and visit_class in c:
            return True

    for unit in VISIT_UNITS:
        match = re.search(rf"{unit}\s*(\d+)", p)
        if match and re.search(rf"{unit}\s*{match.group(1)}(?!\d)", c):
            return True
    return False


def _unique(items: List[str]) -> List[str]:
    """De-duplicate case-insensitively, preserving first-seen order."""
    seen = set()
    unique = []
    for item in items:
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(item.strip())
    return unique
