"""
CRF Structure Analyzer.

Scores a set of CRF specifications on four structural dimensions:
1. Completeness - form metadata, field attributes, validation rules
2. Consistency - naming and data-type uniformity within field families
3. Organization - clinical grouping, visit schedule, workflow ordering
4. Efficiency - field density, redundancy, data-entry effort

Each dimension is an integer in [0, 100]. The analyzer holds no per-call
state and can be shared between concurrent callers.

Usage:
    analyzer = StructuralAnalyzer()
    analysis = analyzer.analyze(crfs)
    print(f"Completeness: {analysis.completeness}")
"""

import logging
import re
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from .config import ValidatorConfig
from .data_models import (
    CRFField,
    CRFSpecification,
    FieldAnalysis,
    Form,
    NavigationAnalysis,
    OrganizationAnalysis,
    StructuralAnalysis,
    flatten_forms,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Completeness points per form (field completeness contributes up to 50)
FORM_NAME_POINTS = 15
FORM_DESCRIPTION_POINTS = 10
FORM_SCHEDULE_POINTS = 5
FIELD_COMPLETENESS_WEIGHT = 0.5
VALIDATION_RULE_POINTS = 20

# A field counts as complete at this share of its four attributes
FIELD_COMPLETE_THRESHOLD = 75

ORGANIZATION_WEIGHTS = {"grouping": 0.4, "schedule": 0.3, "flow": 0.3}
EFFICIENCY_WEIGHTS = {"density": 0.4, "redundancy": 0.3, "entry": 0.3}

GROUPING_KEYWORDS = [
    "demog", "medical", "history", "vital", "lab", "ae", "adverse",
    "conmed", "medication", "visit", "screen", "baseline", "followup",
    "endpoint", "efficacy", "safety", "pk", "pharmacok",
]

SCHEDULE_MARKERS = ["screen", "baseline", "day 1", "follow", "week", "month"]

WORKFLOW_ORDER = ["screen", "demog", "medical", "baseline", "vital", "lab"]

ESSENTIAL_FORM_KEYWORDS = ["demog", "medical", "vital", "adverse", "medication"]

STANDARD_FORMS = {
    "Demographics": ["demog"],
    "Medical History": ["medical", "history"],
    "Vital Signs": ["vital"],
    "Adverse Events": ["adverse", "ae"],
    "Concomitant Medications": ["conmed", "medication"],
}

NAME_SUFFIX_PATTERN = re.compile(r"(_date|_time|_yn|_text)$")
TRAILING_DIGITS_PATTERN = re.compile(r"\d+$")

OPTIMAL_FIELDS_PER_FORM = (5, 15)
EFFICIENT_TYPES = ["dropdown", "radio", "checkbox", "date", "number"]
NUMERIC_TYPES = ["number", "integer", "int", "float", "decimal", "numeric"]
BOOLEAN_TYPES = ["checkbox", "radio", "boolean", "dropdown", "yes/no"]

# Field name patterns mapped to the data types that suit them
FIELD_TYPE_RULES: List[Tuple[re.Pattern, List[str]]] = [
    (re.compile(r"date|_dt$|^dob$"), ["date"]),
    (re.compile(r"time"), ["time", "date"]),
    (re.compile(r"(^|_)age($|_)|weight|height|count|dose|score|_num$|bmi"), NUMERIC_TYPES),
    (re.compile(r"_yn$|flag|^is_|^has_"), BOOLEAN_TYPES),
]

MINUTES_PER_FIELD = 0.5


# =============================================================================
# MAIN ANALYZER CLASS
# =============================================================================


class StructuralAnalyzer:
    """
    Scores CRF structure on completeness, consistency, organization and
    efficiency, and produces field, organization and navigation summaries.
    """

    def __init__(self, config: Optional[ValidatorConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Validation config providing recommendation thresholds.
        """
        self.config = config or ValidatorConfig()

    def analyze(self, crfs: Sequence[CRFSpecification]) -> StructuralAnalysis:
        """
        Analyze CRF structure.

        Args:
            crfs: CRF specifications; forms are considered in order across specs.

        Returns:
            StructuralAnalysis with the four sub-scores and summaries.
        """
        forms = flatten_forms(tuple(crfs))
        logger.debug(f"Structural analysis over {len(forms)} forms")

        completeness = self.completeness_score(forms)
        consistency = self.consistency_score(forms)
        organization, organization_analysis = self._organization(forms)
        efficiency = self.efficiency_score(forms)
        overall = round((completeness + consistency + organization + efficiency) / 4)

        analysis = StructuralAnalysis(
            completeness=completeness,
            consistency=consistency,
            organization=organization,
            efficiency=efficiency,
            overall=overall,
            form_count=len(forms),
            field_analysis=self._field_analysis(forms),
            organization_analysis=organization_analysis,
            navigation=self._navigation(forms),
            recommendations=tuple(
                self._recommendations(forms, completeness, consistency, organization, efficiency)
            ),
        )

        logger.info(
            f"Structural scores: completeness={completeness}, consistency={consistency}, "
            f"organization={organization}, efficiency={efficiency}"
        )
        return analysis

    # =========================================================================
    # COMPLETENESS
    # =========================================================================

    def completeness_score(self, forms: List[Form]) -> int:
        if not forms:
            return 0
        total = sum(self._form_completeness(form) for form in forms)
        return round(total / len(forms))

    def _form_completeness(self, form: Form) -> float:
        score = 0.0
        if form.name:
            score += FORM_NAME_POINTS
        if form.description:
            score += FORM_DESCRIPTION_POINTS
        if form.visit_schedule:
            score += FORM_SCHEDULE_POINTS
        score += self._field_completeness(form.fields) * FIELD_COMPLETENESS_WEIGHT
        if form.validation_rules:
            score += VALIDATION_RULE_POINTS
        return score

    @staticmethod
    def _field_completeness(fields: Sequence[CRFField]) -> int:
        """Percentage of fields with at least 75% of their attributes set."""
        if not fields:
            return 0

        complete = 0
        for f in fields:
            points = 0
            if f.name:
                points += 25
            if f.data_type:
                points += 25
            if f.required is not None:
                points += 25
            if f.label or f.description:
                points += 25
            if points >= FIELD_COMPLETE_THRESHOLD:
                complete += 1

        return round(complete / len(fields) * 100)

    # =========================================================================
    # CONSISTENCY
    # =========================================================================

    def consistency_score(self, forms: List[Form]) -> int:
        if len(forms) < 2:
            return 100

        families: Dict[str, List[CRFField]] = defaultdict(list)
        for form in forms:
            for f in form.fields:
                if f.name:
                    families[field_family(f.name)].append(f)

        checks = 0
        inconsistencies = 0
        for members in families.values():
            if len(members) < 2:
                continue
            checks += len(members) - 1
            if len({surface_form(f.name) for f in members}) > 1:
                inconsistencies += len(members) - 1
            if len({f.data_type for f in members if f.data_type}) > 1:
                checks += 1
                inconsistencies += 1

        if checks == 0:
            return 100
        return round((1 - inconsistencies / checks) * 100)

    # =========================================================================
    # ORGANIZATION
    # =========================================================================

    def organization_score(self, forms: List[Form]) -> int:
        score, _ = self._organization(forms)
        return score

    def _organization(self, forms: List[Form]) -> Tuple[int, OrganizationAnalysis]:
        names = [form.name.lower() for form in forms]
        missing = [
            standard for standard, keywords in STANDARD_FORMS.items()
            if not any(kw in name for name in names for kw in keywords)
        ]

        if not forms:
            return 0, OrganizationAnalysis(missing_standard_forms=tuple(missing))

        grouped = sum(1 for name in names if any(kw in name for kw in GROUPING_KEYWORDS))
        grouping = round(grouped / len(forms) * 100)
        schedule = self._schedule_score(forms)
        ordered = self._follows_workflow(names)
        flow = self._flow_score(names, ordered)

        score = round(
            grouping * ORGANIZATION_WEIGHTS["grouping"]
            + schedule * ORGANIZATION_WEIGHTS["schedule"]
            + flow * ORGANIZATION_WEIGHTS["flow"]
        )
        return score, OrganizationAnalysis(
            grouping_score=grouping,
            schedule_score=schedule,
            flow_score=flow,
            logical_grouping=ordered,
            missing_standard_forms=tuple(missing),
        )

    @staticmethod
    def _schedule_score(forms: List[Form]) -> int:
        scheduled = [form for form in forms if form.visit_schedule]
        if not scheduled:
            return 50
        plausible = 0
        for form in scheduled:
            joined = " ".join(form.visit_schedule).lower()
            if any(marker in joined for marker in SCHEDULE_MARKERS):
                plausible += 1
        return round(plausible / len(scheduled) * 100)

    @staticmethod
    def _follows_workflow(names: List[str]) -> bool:
        """
        Forms for the canonical workflow steps appear in workflow order.

        Each step only matches a form after the previous step's match, so an
        earlier stray form for a later step is skipped rather than failing.
        """
        last_found = -1
        for step in WORKFLOW_ORDER:
            index = next(
                (i for i, name in enumerate(names) if i > last_found and step in name), -1
            )
            if index != -1:
                last_found = index
        return last_found > 0

    @staticmethod
    def _flow_score(names: List[str], ordered: bool) -> int:
        score = 50
        if ordered:
            score += 30
        essentials = sum(
            1 for kw in ESSENTIAL_FORM_KEYWORDS if any(kw in name for name in names)
        )
        if essentials >= 3:
            score += 20
        return min(100, score)

    # =========================================================================
    # EFFICIENCY
    # =========================================================================

    def efficiency_score(self, forms: List[Form]) -> int:
        if not forms:
            return 0

        fields = [f for form in forms for f in form.fields]
        density = self._density_score(len(fields), len(forms))
        redundancy = self._redundancy_score(fields)
        entry = self._entry_score(fields)

        return round(
            density * EFFICIENCY_WEIGHTS["density"]
            + redundancy * EFFICIENCY_WEIGHTS["redundancy"]
            + entry * EFFICIENCY_WEIGHTS["entry"]
        )

    @staticmethod
    def _density_score(total_fields: int, form_count: int) -> float:
        if total_fields == 0:
            return 0
        low, high = OPTIMAL_FIELDS_PER_FORM
        average = total_fields / form_count
        if low <= average <= high:
            return 100
        if average < low:
            return average / low * 100
        return max(0, 100 - (average - high) * 5)

    @staticmethod
    def _redundancy_score(fields: List[CRFField]) -> int:
        names = [f.name.lower() for f in fields if f.name]
        if not names:
            return 100
        return round(len(set(names)) / len(names) * 100)

    @staticmethod
    def _entry_score(fields: List[CRFField]) -> int:
        if not fields:
            return 0
        points = 0
        for f in fields:
            if f.data_type in EFFICIENT_TYPES:
                points += 1
            if f.controlled_vocabulary:
                points += 1
            if type_is_appropriate(f) is True:
                points += 1
        return round(points / (len(fields) * 3) * 100)

    # =========================================================================
    # SUMMARIES
    # =========================================================================

    @staticmethod
    def _field_analysis(forms: List[Form]) -> FieldAnalysis:
        fields = [f for form in forms for f in form.fields]
        distribution = Counter(f.data_type or "unspecified" for f in fields)
        missing_labels = [f.name for f in fields if not (f.label or f.description)]
        untyped = [f.name or f.label for f in fields if not f.data_type]

        issues = []
        if not forms:
            issues.append("No forms defined in CRF specification")
        unnamed_forms = sum(1 for form in forms if not form.name)
        if unnamed_forms:
            issues.append(f"{unnamed_forms} forms missing names")
        empty_forms = sum(1 for form in forms if not form.fields)
        if empty_forms:
            issues.append(f"{empty_forms} forms have no fields defined")
        large_forms = sum(1 for form in forms if len(form.fields) > 25)
        if large_forms:
            issues.append(f"{large_forms} forms may be too large (>25 fields) for efficient data entry")
        unnamed_fields = sum(1 for f in fields if not f.name)
        if unnamed_fields:
            issues.append(f"{unnamed_fields} fields missing names")
        if untyped:
            issues.append(f"{len(untyped)} fields missing data types")
        if missing_labels:
            issues.append(f"{len(missing_labels)} fields missing labels or descriptions")

        return FieldAnalysis(
            total_fields=len(fields),
            required_fields=sum(1 for f in fields if f.required),
            data_type_distribution=tuple(sorted(distribution.items())),
            fields_missing_labels=tuple(missing_labels),
            fields_without_type=tuple(untyped),
            issues=tuple(issues),
        )

    @staticmethod
    def _navigation(forms: List[Form]) -> NavigationAnalysis:
        total_fields = sum(len(form.fields) for form in forms)

        if total_fields < 50 and len(forms) < 10:
            complexity = "Low"
        elif total_fields < 150 and len(forms) < 25:
            complexity = "Medium"
        else:
            complexity = "High"

        ux_total = 0.0
        for form in forms:
            count = len(form.fields)
            form_score = 0.0
            if form.description:
                form_score += 25
            if 3 <= count <= 20:
                form_score += 25
            if count:
                form_score += sum(1 for f in form.fields if f.controlled_vocabulary) / count * 25
                form_score += sum(1 for f in form.fields if f.label or f.description) / count * 25
            ux_total += form_score
        ux_score = round(ux_total / len(forms)) if forms else 0

        issues = []
        long_forms = sum(1 for form in forms if len(form.fields) > 30)
        if long_forms:
            issues.append(f"{long_forms} forms have >30 fields, may impact user experience")
        undescribed = sum(1 for form in forms if not form.description)
        if undescribed:
            issues.append(f"{undescribed} forms lack descriptions to guide users")
        if total_fields > 200:
            issues.append("CRF may be too complex with >200 total fields")

        return NavigationAnalysis(
            estimated_completion_minutes=total_fields * MINUTES_PER_FIELD,
            complexity=complexity,
            user_experience_score=ux_score,
            issues=tuple(issues),
        )

    def _recommendations(
        self,
        forms: List[Form],
        completeness: int,
        consistency: int,
        organization: int,
        efficiency: int,
    ) -> List[str]:
        thresholds = self.config.structural_thresholds
        form_size = self.config.form_size
        recommendations = []

        if completeness < thresholds["completeness"]:
            recommendations.append(
                "Improve CRF completeness by adding missing field descriptions, data types, and validation rules"
            )
        if consistency < thresholds["consistency"]:
            recommendations.append(
                "Standardize field naming conventions and data types across similar fields in different forms"
            )
        if organization < thresholds["organization"]:
            recommendations.append(
                "Reorganize forms to follow logical clinical workflow and group related fields together"
            )
        if efficiency < thresholds["efficiency"]:
            recommendations.append(
                "Optimize data entry efficiency by using controlled vocabularies and appropriate field types"
            )

        if forms:
            average = sum(len(form.fields) for form in forms) / len(forms)
            if average > form_size["split_above"]:
                recommendations.append(
                    f"Consider splitting large forms (>{form_size['split_above']} fields) "
                    "into smaller, more manageable sections"
                )
            elif average < form_size["consolidate_below"]:
                recommendations.append(
                    "Consider consolidating very small forms to reduce navigation overhead"
                )

        return recommendations


# =============================================================================
# HELPERS
# =============================================================================


def field_family(name: str) -> str:
    """Family key: trailing digits and type suffixes stripped, lowercased."""
    stripped = TRAILING_DIGITS_PATTERN.sub("", name)
    stripped = NAME_SUFFIX_PATTERN.sub("", stripped)
    return stripped.lower()


def surface_form(name: str) -> str:
    """Spelling of a name with case, separators and digits normalized."""
    normalized = re.sub(r"[-_\s]", "", name.lower())
    return re.sub(r"\d+", "N", normalized)


def type_is_appropriate(crf_field: CRFField) -> Optional[bool]:
    """
    Whether a field's data type suits its name.

    Returns None when no naming rule applies; such fields earn no
    data-entry bonus.
    """
    name = crf_field.name.lower()
    data_type = crf_field.data_type
    for pattern, expected_types in FIELD_TYPE_RULES:
        if pattern.search(name):
            return any(t in data_type for t in expected_types)
    return None


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================


def analyze_structure(crfs: Sequence[CRFSpecification]) -> StructuralAnalysis:
    """
    Convenience function to analyze CRF structure.

    Args:
        crfs: CRF specifications

    Returns:
        StructuralAnalysis
    """
    return StructuralAnalyzer().analyze(crfs)
