"""
Validators - Input boundary and result integrity checks.

This module provides:
- Fatal input validation (protocol identity, CRF collection shape)
- Normalization of loosely-shaped dict payloads into frozen data models
- JSON schema checks on raw payloads (reported as warnings)
- Integrity checks on aggregated results

Malformed individual entries (an endpoint, visit, form or field) never abort
the pipeline: they are skipped, logged at WARNING and collected on
NormalizedInput.warnings.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple

from jsonschema import Draft7Validator

from .data_models import (
    CRFField,
    CRFSpecification,
    Endpoint,
    EndpointSet,
    Form,
    Protocol,
    Severity,
    StudyDesign,
    StudyPopulation,
    ValidationResult,
    Visit,
)

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).parent / "schemas"


# =============================================================================
# ERRORS
# =============================================================================


class ErrorCode(Enum):
    INVALID_PROTOCOL = "INVALID_PROTOCOL"
    INVALID_CRF = "INVALID_CRF"
    ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"
    REFERENCE_DATA_ERROR = "REFERENCE_DATA_ERROR"


class ProtocolValidatorError(Exception):
    """Base error carrying an error code, offending field and details."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        field: Optional[str] = None,
        details: Optional[Dict] = None,
    ):
        super().__init__(message)
        self.code = code
        self.field = field
        self.details = details or {}


class ValidationError(ProtocolValidatorError):
    """Fatal input validation error, raised before any analysis starts."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict] = None,
        code: ErrorCode = ErrorCode.INVALID_PROTOCOL,
    ):
        super().__init__(message, code=code, field=field, details=details)


class ValidationTimeoutError(ProtocolValidatorError):
    """The caller's deadline expired; no partial result is returned."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, code=ErrorCode.ANALYSIS_TIMEOUT, details=details)


class ReferenceDataError(ProtocolValidatorError):
    """Benchmark reference data is missing or malformed."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, code=ErrorCode.REFERENCE_DATA_ERROR, details=details)


@dataclass(frozen=True)
class NormalizedInput:
    protocol: Protocol
    crfs: Tuple[CRFSpecification, ...]
    warnings: Tuple[str, ...] = ()


# =============================================================================
# HELPERS
# =============================================================================


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """Value of the first key present with a non-None value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _parse_int(value: Any, field: str, warnings: List[str]) -> Optional[int]:
    """Parse an int; unparseable values become None with a warning."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        warnings.append(f"{field}: boolean is not a number, ignored")
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value):
            return int(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            number = float(cleaned)
        except ValueError:
            match = re.search(r"\d+", cleaned)
            if match:
                return int(match.group())
        else:
            if math.isfinite(number):
                return int(number)
    warnings.append(f"{field}: could not parse number from {value!r}, using default")
    return None


def _string_items(value: Any, field: str, warnings: List[str], keys: Tuple[str, ...] = ("name", "text", "description")) -> Tuple[str, ...]:
    """Normalize a string-or-list-of-strings value."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if not isinstance(value, (list, tuple)):
        warnings.append(f"{field}: expected a list, got {type(value).__name__}")
        return ()

    items = []
    for i, item in enumerate(value):
        if isinstance(item, dict):
            text = _text(_first(item, *keys))
        else:
            text = _text(item)
        if text:
            items.append(text)
        else:
            warnings.append(f"{field}[{i}]: unreadable entry skipped")
    return tuple(items)


# =============================================================================
# PROTOCOL
# =============================================================================


def _endpoint(item: Any, field: str, warnings: List[str]) -> Optional[Endpoint]:
    if isinstance(item, Endpoint):
        return item
    if isinstance(item, str):
        return Endpoint(name=item.strip()) if item.strip() else None
    if isinstance(item, dict):
        endpoint = Endpoint(
            name=_text(_first(item, "name", "endpoint", "title")),
            description=_text(item.get("description")),
            measurement_method=_text(_first(item, "measurementMethod", "measurement_method")),
            timepoint=_text(item.get("timepoint")),
        )
        if endpoint.text:
            return endpoint
    warnings.append(f"{field}: malformed endpoint skipped")
    return None


def _endpoint_tier(value: Any, field: str, warnings: List[str]) -> Tuple[Endpoint, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        value = [value]
    endpoints = []
    for i, item in enumerate(value):
        endpoint = _endpoint(item, f"{field}[{i}]", warnings)
        if endpoint is not None:
            endpoints.append(endpoint)
    return tuple(endpoints)


def _endpoints(value: Any, warnings: List[str]) -> EndpointSet:
    if value is None:
        return EndpointSet()
    if isinstance(value, EndpointSet):
        return value
    if isinstance(value, (list, tuple)):
        warnings.append("endpoints: untiered list treated as primary endpoints")
        return EndpointSet(primary=_endpoint_tier(value, "endpoints.primary", warnings))
    if not isinstance(value, dict):
        warnings.append(f"endpoints: expected an object, got {type(value).__name__}")
        return EndpointSet()
    return EndpointSet(
        primary=_endpoint_tier(value.get("primary"), "endpoints.primary", warnings),
        secondary=_endpoint_tier(value.get("secondary"), "endpoints.secondary", warnings),
        exploratory=_endpoint_tier(value.get("exploratory"), "endpoints.exploratory", warnings),
    )


def _visits(value: Any, warnings: List[str]) -> Tuple[Visit, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        warnings.append(f"visitSchedule: expected a list, got {type(value).__name__}")
        return ()

    visits = []
    for i, item in enumerate(value):
        field = f"visitSchedule[{i}]"
        if isinstance(item, Visit):
            visits.append(item)
        elif isinstance(item, str) and item.strip():
            visits.append(Visit(name=item.strip()))
        elif isinstance(item, dict):
            name = _text(_first(item, "name", "visitName", "visit"))
            if not name:
                warnings.append(f"{field}: visit without a name skipped")
                continue
            visits.append(Visit(
                name=name,
                day=_parse_int(_first(item, "day", "studyDay"), f"{field}.day", warnings),
                procedures=_string_items(item.get("procedures"), f"{field}.procedures", warnings),
            ))
        else:
            warnings.append(f"{field}: malformed visit skipped")
    return tuple(visits)


def _design(value: Any, warnings: List[str]) -> StudyDesign:
    if value is None:
        return StudyDesign()
    if isinstance(value, StudyDesign):
        return value
    if isinstance(value, str):
        return StudyDesign(type=value.strip())
    if not isinstance(value, dict):
        warnings.append(f"studyDesign: expected an object, got {type(value).__name__}")
        return StudyDesign()
    return StudyDesign(
        type=_text(_first(value, "type", "designType")),
        duration=_text(value.get("duration")),
        number_of_arms=_parse_int(
            _first(value, "numberOfArms", "number_of_arms", "arms"), "studyDesign.numberOfArms", warnings
        ),
        description=_text(value.get("description")),
    )


def _population(value: Any, warnings: List[str]) -> StudyPopulation:
    if value is None:
        return StudyPopulation()
    if isinstance(value, StudyPopulation):
        return value
    if not isinstance(value, dict):
        warnings.append(f"population: expected an object, got {type(value).__name__}")
        return StudyPopulation()
    return StudyPopulation(
        target_enrollment=_parse_int(
            _first(value, "targetEnrollment", "target_enrollment", "sampleSize"),
            "population.targetEnrollment",
            warnings,
        ),
        inclusion_criteria=_string_items(
            _first(value, "inclusionCriteria", "inclusion_criteria"), "population.inclusionCriteria", warnings
        ),
        exclusion_criteria=_string_items(
            _first(value, "exclusionCriteria", "exclusion_criteria"), "population.exclusionCriteria", warnings
        ),
    )


def _protocol_from_dict(data: Dict[str, Any], warnings: List[str]) -> Protocol:
    return Protocol(
        title=_text(_first(data, "studyTitle", "title", "study_title")),
        number=_text(_first(data, "protocolNumber", "number", "protocol_number")),
        phase=_text(_first(data, "studyPhase", "phase", "study_phase")),
        sponsor=_text(data.get("sponsor")),
        indication=_text(data.get("indication")),
        therapeutic_area=_text(_first(data, "therapeuticArea", "therapeutic_area")),
        objective=_text(_first(data, "studyObjective", "objective", "study_objective")),
        intervention=_text(data.get("intervention")),
        design=_design(_first(data, "studyDesign", "design", "study_design"), warnings),
        population=_population(data.get("population"), warnings),
        endpoints=_endpoints(data.get("endpoints"), warnings),
        visit_schedule=_visits(_first(data, "visitSchedule", "visit_schedule", "visits"), warnings),
        procedures=_string_items(
            _first(data, "studyProcedures", "procedures", "study_procedures"), "studyProcedures", warnings
        ),
        locations=_string_items(
            _first(data, "studyLocations", "locations", "study_locations"),
            "studyLocations",
            warnings,
            keys=("country", "name"),
        ),
        duration=_text(_first(data, "studyDuration", "duration", "study_duration")),
    )


def validate_protocol_input(protocol: Any) -> None:
    """
    Check that a protocol is present and identifiable.

    Raises:
        ValidationError: If protocol is missing or has neither title nor number.
    """
    if protocol is None:
        raise ValidationError("Protocol is required", field="protocol")

    if isinstance(protocol, Protocol):
        has_identity = bool(protocol.title or protocol.number)
    elif isinstance(protocol, dict):
        has_identity = bool(
            _text(_first(protocol, "studyTitle", "title", "study_title"))
            or _text(_first(protocol, "protocolNumber", "number", "protocol_number"))
        )
    else:
        raise ValidationError(
            f"Protocol must be a Protocol or a dictionary, got {type(protocol).__name__}",
            field="protocol",
        )

    if not has_identity:
        raise ValidationError(
            "Protocol must have either a study title or protocol number",
            field="protocol",
        )


def validate_crfs_input(crfs: Any) -> None:
    """
    Check that CRFs are list-shaped.

    Raises:
        ValidationError: If crfs is not a list or tuple.
    """
    if not isinstance(crfs, (list, tuple)):
        raise ValidationError(
            "CRFs must be provided as an array",
            field="crfs",
            details={"received": type(crfs).__name__},
            code=ErrorCode.INVALID_CRF,
        )


# =============================================================================
# CRF
# =============================================================================


def _crf_field(item: Any, field: str, warnings: List[str]) -> Optional[CRFField]:
    if isinstance(item, CRFField):
        return item
    if not isinstance(item, dict):
        warnings.append(f"{field}: malformed field skipped")
        return None

    name = _text(_first(item, "name", "fieldName", "field_name", "id"))
    label = _text(_first(item, "label", "fieldLabel", "question"))
    if not name and not label:
        warnings.append(f"{field}: field without name or label skipped")
        return None

    required = item.get("required")
    if required is not None and not isinstance(required, bool):
        required = str(required).strip().lower() in ("true", "yes", "y", "1")

    return CRFField(
        name=name,
        data_type=_text(_first(item, "dataType", "data_type", "type", "fieldType")).lower(),
        required=required,
        label=label,
        description=_text(item.get("description")),
        controlled_vocabulary=_string_items(
            _first(item, "controlledVocabulary", "controlled_vocabulary", "options", "codeList"),
            f"{field}.controlledVocabulary",
            warnings,
            keys=("value", "label", "code"),
        ),
    )


def _form(item: Any, field: str, warnings: List[str]) -> Optional[Form]:
    if isinstance(item, Form):
        return item
    if not isinstance(item, dict):
        warnings.append(f"{field}: malformed form skipped")
        return None

    raw_fields = item.get("fields") or []
    if not isinstance(raw_fields, (list, tuple)):
        warnings.append(f"{field}.fields: expected a list, got {type(raw_fields).__name__}")
        raw_fields = []

    fields = []
    for i, raw in enumerate(raw_fields):
        crf_field = _crf_field(raw, f"{field}.fields[{i}]", warnings)
        if crf_field is not None:
            fields.append(crf_field)

    return Form(
        name=_text(_first(item, "name", "formName", "form_name", "title")),
        description=_text(item.get("description")),
        visit_schedule=_string_items(
            _first(item, "visitSchedule", "visit_schedule", "visits"), f"{field}.visitSchedule", warnings
        ),
        fields=tuple(fields),
        validation_rules=_string_items(
            _first(item, "validationRules", "validation_rules", "edits"),
            f"{field}.validationRules",
            warnings,
            keys=("rule", "description", "name", "expression"),
        ),
    )


def _crf(item: Any, index: int, warnings: List[str]) -> Optional[CRFSpecification]:
    field = f"crfs[{index}]"
    if isinstance(item, CRFSpecification):
        return item
    if isinstance(item, Form):
        return CRFSpecification(crf_id=f"CRF-{index + 1:03d}", forms=(item,))
    if not isinstance(item, dict):
        warnings.append(f"{field}: malformed CRF skipped")
        return None

    crf_id = _text(_first(item, "crfId", "crf_id", "id")) or f"CRF-{index + 1:03d}"
    if "forms" not in item:
        # A bare form payload
        form = _form(item, field, warnings)
        return CRFSpecification(crf_id=crf_id, forms=(form,)) if form else None

    raw_forms = item.get("forms") or []
    if not isinstance(raw_forms, (list, tuple)):
        warnings.append(f"{field}.forms: expected a list, got {type(raw_forms).__name__}")
        raw_forms = []

    forms = []
    for i, raw in enumerate(raw_forms):
        form = _form(raw, f"{field}.forms[{i}]", warnings)
        if form is not None:
            forms.append(form)
    return CRFSpecification(crf_id=crf_id, forms=tuple(forms))


# =============================================================================
# SCHEMA VALIDATION
# =============================================================================


def validate_against_schema(data: Any, schema_name: str, schemas_dir: Optional[Path] = None) -> List[str]:
    """
    Validate a raw payload against a JSON schema.

    Args:
        data: Raw payload (dict or list).
        schema_name: Schema file name without extension (e.g. "protocol").
        schemas_dir: Directory containing *.schema.json files.

    Returns:
        List of human-readable schema violations (empty if valid).
    """
    schema_path = (schemas_dir or SCHEMAS_DIR) / f"{schema_name}.schema.json"
    if not schema_path.exists():
        logger.warning(f"Schema file not found: {schema_path}")
        return []

    try:
        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid schema JSON in {schema_path}: {e}")
        return []

    validator = Draft7Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        errors.append(f"Schema ({schema_name}): {error.message} at {error.json_path}")
    return errors


# =============================================================================
# ENTRY POINT
# =============================================================================


def normalize_inputs(protocol: Any, crfs: Any) -> NormalizedInput:
    """
    Validate and normalize a protocol and its CRFs.

    Fatal checks run first, so nothing is normalized for an invalid request.

    Args:
        protocol: Protocol instance or dict payload.
        crfs: List of CRFSpecification / Form instances or dict payloads.

    Returns:
        NormalizedInput with frozen models and collected warnings.

    Raises:
        ValidationError: If the protocol has no identity or crfs is not a list.
    """
    validate_protocol_input(protocol)
    validate_crfs_input(crfs)

    warnings: List[str] = []

    if isinstance(protocol, dict):
        warnings.extend(validate_against_schema(protocol, "protocol"))
        normalized_protocol = _protocol_from_dict(protocol, warnings)
    else:
        normalized_protocol = protocol

    normalized_crfs = []
    for i, item in enumerate(crfs):
        if isinstance(item, dict):
            warnings.extend(validate_against_schema(item, "crf"))
        crf = _crf(item, i, warnings)
        if crf is not None:
            normalized_crfs.append(crf)

    for warning in warnings:
        logger.warning(warning)

    logger.info(
        f"Normalized protocol '{normalized_protocol.display_name}' with "
        f"{len(normalized_crfs)} CRF(s), {len(warnings)} warning(s)"
    )
    return NormalizedInput(
        protocol=normalized_protocol,
        crfs=tuple(normalized_crfs),
        warnings=tuple(warnings),
    )


def validate_validation_result(result: ValidationResult) -> Tuple[bool, List[str]]:
    """
    Check a ValidationResult for internal consistency.

    Returns:
        Tuple of (is_valid, list of problems).
    """
    problems = []

    scores = result.scores
    for name, value in (
        ("overall", scores.overall),
        ("completeness", scores.completeness),
        ("quality", scores.quality),
        ("compliance", scores.compliance),
    ):
        if not isinstance(value, int) or value < 0 or value > 100:
            problems.append(f"Score '{name}' out of range: {value}")

    critical_ids = {f.id for f in result.findings if f.severity == Severity.CRITICAL}
    issue_ids = [c.finding_id for c in result.critical_issues]
    if set(issue_ids) != critical_ids or len(issue_ids) != len(critical_ids):
        problems.append(
            f"Critical issues {sorted(issue_ids)} do not match critical findings {sorted(critical_ids)}"
        )

    if not result.id:
        problems.append("Missing validation id")

    return len(problems) == 0, problems
