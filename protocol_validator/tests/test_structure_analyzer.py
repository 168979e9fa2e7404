"""
Unit tests for the CRF structure analyzer.
"""

import pytest

from ..config import ValidatorConfig
from ..data_models import CRFField, CRFSpecification, Form
from ..structure_analyzer import (
    StructuralAnalyzer,
    analyze_structure,
    field_family,
    surface_form,
    type_is_appropriate,
)


def _labeled(name, data_type="text", **kwargs):
    return CRFField(name=name, data_type=data_type, required=True, label=name.title(), **kwargs)


@pytest.fixture
def analyzer():
    return StructuralAnalyzer()


@pytest.fixture
def standard_forms():
    """Forms in clinical workflow order covering most standard domains."""
    return [
        Form(name="Screening", description="Eligibility", visit_schedule=("Screening",),
             fields=(_labeled("consent_date", "date"),)),
        Form(name="Demographics", description="Subject demographics", visit_schedule=("Screening",),
             fields=(_labeled("age", "number"), _labeled("sex", "dropdown", controlled_vocabulary=("M", "F")))),
        Form(name="Medical History", visit_schedule=("Screening",), fields=(_labeled("condition"),)),
        Form(name="Vital Signs", visit_schedule=("Screening",), fields=(_labeled("weight", "number"),)),
        Form(name="Adverse Events", visit_schedule=("Screening",), fields=(_labeled("ae_term"),)),
    ]


class TestEmptyCRFs:
    """Tests for analysis with no forms."""

    def test_scores(self, analyzer):
        analysis = analyzer.analyze([])
        assert analysis.completeness == 0
        assert analysis.organization == 0
        assert analysis.efficiency == 0
        assert analysis.consistency == 100
        assert analysis.overall == 25
        assert analysis.form_count == 0

    def test_summaries(self, analyzer):
        analysis = analyzer.analyze([CRFSpecification(crf_id="CRF-001")])
        assert "No forms defined in CRF specification" in analysis.field_analysis.issues
        assert analysis.navigation.complexity == "Low"
        assert analysis.navigation.user_experience_score == 0
        assert len(analysis.organization_analysis.missing_standard_forms) == 5

    def test_recommendations(self, analyzer):
        analysis = analyzer.analyze([])
        assert len(analysis.recommendations) == 3
        assert not any("consolidating" in r for r in analysis.recommendations)


class TestCompleteness:
    """Tests for completeness scoring."""

    def test_fully_specified_form(self, analyzer):
        form = Form(
            name="Demographics",
            description="Subject demographics",
            visit_schedule=("Screening",),
            fields=(_labeled("age", "number"),),
            validation_rules=("age >= 18",),
        )
        assert analyzer.completeness_score([form]) == 100

    def test_name_only(self, analyzer):
        assert analyzer.completeness_score([Form(name="Labs")]) == 15

    def test_field_needs_three_of_four_attributes(self, analyzer):
        # name + type only: 50% of attributes, not complete
        form = Form(name="Labs", fields=(CRFField(name="hgb", data_type="number"),))
        assert analyzer.completeness_score([form]) == 15

        form = Form(name="Labs", fields=(CRFField(name="hgb", data_type="number", required=False),))
        assert analyzer.completeness_score([form]) == 65

    def test_averaged_across_forms(self, analyzer):
        assert analyzer.completeness_score([Form(name="A"), Form()]) == 8


class TestConsistency:
    """Tests for consistency scoring."""

    def test_single_form(self, analyzer):
        assert analyzer.consistency_score([Form(name="A")]) == 100

    def test_consistent_family(self, analyzer):
        forms = [
            Form(name="A", fields=(CRFField(name="visit_date", data_type="date"),)),
            Form(name="B", fields=(CRFField(name="visit_date", data_type="date"),)),
        ]
        assert analyzer.consistency_score(forms) == 100

    def test_type_mismatch(self, analyzer):
        forms = [
            Form(name="A", fields=(CRFField(name="visit_date", data_type="date"),)),
            Form(name="B", fields=(CRFField(name="visit_date", data_type="text"),)),
        ]
        assert analyzer.consistency_score(forms) == 50

    def test_numbered_fields_share_surface_form(self, analyzer):
        forms = [
            Form(name="AE Log 1", fields=(CRFField(name="ae_term1", data_type="text"),)),
            Form(name="AE Log 2", fields=(CRFField(name="ae_term10", data_type="text"),)),
        ]
        assert analyzer.consistency_score(forms) == 100

    def test_no_shared_families(self, analyzer):
        forms = [
            Form(name="A", fields=(CRFField(name="age"),)),
            Form(name="B", fields=(CRFField(name="weight"),)),
        ]
        assert analyzer.consistency_score(forms) == 100


class TestOrganization:
    """Tests for organization scoring."""

    def test_standard_workflow(self, analyzer, standard_forms):
        assert analyzer.organization_score(standard_forms) == 100

        analysis = analyzer.analyze([CRFSpecification(crf_id="CRF-001", forms=tuple(standard_forms))])
        organization = analysis.organization_analysis
        assert organization.logical_grouping is True
        assert organization.missing_standard_forms == ("Concomitant Medications",)

    def test_no_workflow_progression(self, analyzer):
        forms = [Form(name="Vital Signs"), Form(name="Adverse Events")]
        _, organization = analyzer._organization(forms)
        assert organization.logical_grouping is False
        # grouping 100, no schedules 50, flow 50
        assert analyzer.organization_score(forms) == 70

    def test_earlier_form_for_later_step_is_skipped(self, analyzer):
        forms = [Form(name="Lab Panel"), Form(name="Demographics"), Form(name="Lab Follow-up")]
        _, organization = analyzer._organization(forms)
        assert organization.logical_grouping is True
        # grouping 100, no schedules 50, flow 80
        assert analyzer.organization_score(forms) == 79

    def test_workflow_matches_search_forward(self):
        assert StructuralAnalyzer._follows_workflow(["lab", "demographics", "lab follow-up"]) is True
        assert StructuralAnalyzer._follows_workflow(["screening", "demographics"]) is True
        assert StructuralAnalyzer._follows_workflow(["demographics"]) is False


class TestEfficiency:
    """Tests for efficiency scoring."""

    def test_controlled_dropdowns(self, analyzer):
        fields = tuple(
            CRFField(name=f"q{i}", data_type="dropdown", controlled_vocabulary=("Yes", "No"))
            for i in range(10)
        )
        # density 100, redundancy 100, entry 67
        assert analyzer.efficiency_score([Form(name="Questionnaire", fields=fields)]) == 90

    def test_redundant_names(self, analyzer):
        fields = tuple(CRFField(name="comment") for _ in range(5))
        form = Form(name="Notes", fields=fields)
        # density 100, redundancy 20, entry 0
        assert analyzer.efficiency_score([form]) == 46

    def test_entry_types_match_exactly(self):
        assert StructuralAnalyzer._entry_score([CRFField(name="comments", data_type="datetime")]) == 0
        assert StructuralAnalyzer._entry_score([CRFField(name="comments", data_type="date")]) == 33


class TestFieldTypeRules:
    """Tests for field naming and type helpers."""

    @pytest.mark.parametrize("name,data_type,expected", [
        ("visit_date", "date", True),
        ("visit_date", "text", False),
        ("dose_time", "time", True),
        ("weight", "number", True),
        ("age", "integer", True),
        ("is_smoker", "checkbox", True),
        ("comments", "text", None),
        ("stage", "text", None),
    ])
    def test_type_is_appropriate(self, name, data_type, expected):
        assert type_is_appropriate(CRFField(name=name, data_type=data_type)) is expected

    def test_field_family(self):
        assert field_family("visit_date") == "visit"
        assert field_family("BP1") == "bp"
        assert field_family("AE_TERM2") == "ae_term"

    def test_surface_form(self):
        assert surface_form("Visit-Date") == "visitdate"
        assert surface_form("bp_1") == "bpN"
        assert surface_form("ae_term1") == surface_form("ae_term10") == "aetermN"


class TestNavigation:
    """Tests for navigation analysis."""

    def test_small_labeled_form(self, analyzer):
        form = Form(
            name="Vital Signs",
            description="Vitals",
            fields=tuple(_labeled(f"vs{i}") for i in range(5)),
        )
        navigation = analyzer.analyze([CRFSpecification(forms=(form,))]).navigation
        assert navigation.complexity == "Low"
        assert navigation.user_experience_score == 75
        assert navigation.estimated_completion_minutes == 2.5

    def test_medium_complexity(self, analyzer):
        forms = tuple(Form(name=f"F{i}", fields=tuple(_labeled(f"f{i}_{j}") for j in range(20))) for i in range(3))
        navigation = analyzer.analyze([CRFSpecification(forms=forms)]).navigation
        assert navigation.complexity == "Medium"

    def test_high_complexity(self, analyzer):
        forms = tuple(Form(name=f"F{i}") for i in range(25))
        navigation = analyzer.analyze([CRFSpecification(forms=forms)]).navigation
        assert navigation.complexity == "High"


class TestRecommendations:
    """Tests for structural recommendations."""

    def test_small_forms_consolidation(self, analyzer):
        forms = tuple(Form(name=f"F{i}", fields=(_labeled(f"f{i}"),)) for i in range(3))
        analysis = analyzer.analyze([CRFSpecification(forms=forms)])
        assert any("consolidating" in r for r in analysis.recommendations)

    def test_large_forms_split(self, analyzer):
        form = Form(name="Labs", fields=tuple(_labeled(f"lab{i}") for i in range(25)))
        analysis = analyzer.analyze([CRFSpecification(forms=(form,))])
        assert any("splitting large forms (>20 fields)" in r for r in analysis.recommendations)

    def test_configured_thresholds(self, tmp_path):
        (tmp_path / "validation_defaults.yaml").write_text(
            "structural_thresholds:\n  completeness: 0\n  organization: 0\n  efficiency: 0\n"
        )
        analyzer = StructuralAnalyzer(ValidatorConfig(tmp_path))
        assert analyzer.analyze([]).recommendations == ()


class TestConvenienceFunction:
    """Tests for analyze_structure convenience function."""

    def test_scores_in_range(self, standard_forms):
        analysis = analyze_structure([CRFSpecification(crf_id="CRF-001", forms=tuple(standard_forms))])
        for score in (analysis.completeness, analysis.consistency, analysis.organization,
                      analysis.efficiency, analysis.overall):
            assert 0 <= score <= 100
        assert analysis.form_count == 5
