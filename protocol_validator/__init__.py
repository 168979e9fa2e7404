"""
Protocol Validator - CRF validation and risk scoring for clinical protocols.

Components:
- validators: Input validation and normalization, error types
- structure_analyzer: CRF structural quality scoring
- protocol_alignment_analyzer: Protocol/CRF alignment scoring
- risk_assessment_engine: Seven-category risk assessment with mitigation and monitoring plans
- benchmark_validator: Second-pass validation against industry benchmarks
- validation_orchestrator: Pipeline composition and score aggregation

Usage:
    from protocol_validator import ValidationOrchestrator

    orchestrator = ValidationOrchestrator()
    result = orchestrator.validate(protocol, crfs)
    print(result.scores.overall, result.executive_summary.recommendation)
"""

from .data_models import (
    # Enums
    AlignmentStatus,
    BenchmarkAssessment,
    BenchmarkTier,
    Priority,
    ProceedRecommendation,
    QualityLevel,
    RiskCategoryName,
    RiskLevel,
    RiskRating,
    Severity,
    ValidationDepth,
    # Inputs
    CRFField,
    CRFSpecification,
    Endpoint,
    EndpointSet,
    Form,
    Protocol,
    StudyDesign,
    StudyPopulation,
    ValidationOptions,
    Visit,
    # Results
    AlignmentAnalysis,
    BenchmarkValidation,
    CriticalIssue,
    ProtocolReview,
    RiskAssessment,
    RiskAssessmentMatrix,
    RiskFactor,
    StructuralAnalysis,
    ValidationFinding,
    ValidationRecommendation,
    ValidationResult,
)
from .validators import (
    ErrorCode,
    ProtocolValidatorError,
    ReferenceDataError,
    ValidationError,
    ValidationTimeoutError,
    normalize_inputs,
)
from .structure_analyzer import StructuralAnalyzer, analyze_structure
from .protocol_alignment_analyzer import ProtocolAlignmentAnalyzer
from .risk_assessment_engine import RiskAssessmentEngine, assess_risk
from .benchmark_validator import BenchmarkValidator
from .validation_orchestrator import ValidationOrchestrator
from .settings import Settings, configure_logging, get_settings

__all__ = [
    # Enums
    "AlignmentStatus",
    "BenchmarkAssessment",
    "BenchmarkTier",
    "Priority",
    "ProceedRecommendation",
    "QualityLevel",
    "RiskCategoryName",
    "RiskLevel",
    "RiskRating",
    "Severity",
    "ValidationDepth",
    # Inputs
    "CRFField",
    "CRFSpecification",
    "Endpoint",
    "EndpointSet",
    "Form",
    "Protocol",
    "StudyDesign",
    "StudyPopulation",
    "ValidationOptions",
    "Visit",
    # Results
    "AlignmentAnalysis",
    "BenchmarkValidation",
    "CriticalIssue",
    "ProtocolReview",
    "RiskAssessment",
    "RiskAssessmentMatrix",
    "RiskFactor",
    "StructuralAnalysis",
    "ValidationFinding",
    "ValidationRecommendation",
    "ValidationResult",
    # Errors
    "ErrorCode",
    "ProtocolValidatorError",
    "ReferenceDataError",
    "ValidationError",
    "ValidationTimeoutError",
    # Components
    "BenchmarkValidator",
    "ProtocolAlignmentAnalyzer",
    "RiskAssessmentEngine",
    "StructuralAnalyzer",
    "ValidationOrchestrator",
    # Functions
    "analyze_structure",
    "assess_risk",
    "normalize_inputs",
    # Settings
    "Settings",
    "configure_logging",
    "get_settings",
]
