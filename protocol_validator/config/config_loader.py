"""
Configuration loader for protocol_validator.

Loads validation_defaults.yaml and provides typed access to default options
and structural thresholds.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..data_models import ValidationDepth, ValidationOptions

logger = logging.getLogger(__name__)

CONFIG_FILE = "validation_defaults.yaml"

DEFAULT_STRUCTURAL_THRESHOLDS = {
    "completeness": 70,
    "consistency": 80,
    "organization": 75,
    "efficiency": 70,
}

DEFAULT_FORM_SIZE = {
    "split_above": 20,
    "consolidate_below": 5,
}


class ValidatorConfig:
    """
    Loads and provides access to externalized validation defaults.

    Usage:
        config = ValidatorConfig()
        options = config.default_options()
        thresholds = config.structural_thresholds
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """Load configuration from YAML."""
        self.config_dir = config_dir or Path(__file__).parent
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = self.config_dir / CONFIG_FILE
        if config_path.exists():
            with open(config_path, "r") as f:
                self._config = yaml.safe_load(f) or {}
            logger.debug(f"Loaded validation config from {config_path}")
        else:
            logger.warning(f"Validation config not found at {config_path}, using built-in defaults")

    # =========================================================================
    # Options
    # =========================================================================

    def default_options(self) -> ValidationOptions:
        """Build ValidationOptions from the configured defaults."""
        raw = self._config.get("options", {})
        depth_value = raw.get("validation_depth", ValidationDepth.STANDARD.value)
        try:
            depth = ValidationDepth(depth_value)
        except ValueError:
            logger.warning(f"Unknown validation_depth '{depth_value}' in config, using Standard")
            depth = ValidationDepth.STANDARD

        return ValidationOptions(
            depth=depth,
            regulatory_region=raw.get("regulatory_region", "FDA"),
            industry=raw.get("industry", "Pharmaceutical"),
            include_structural=bool(raw.get("include_structural", True)),
            include_alignment=bool(raw.get("include_alignment", True)),
            include_risk=bool(raw.get("include_risk", True)),
            include_benchmarks=bool(raw.get("include_benchmarks", True)),
        )

    # =========================================================================
    # Structural thresholds
    # =========================================================================

    @property
    def structural_thresholds(self) -> Dict[str, int]:
        """Sub-score thresholds below which a recommendation is emitted."""
        return {**DEFAULT_STRUCTURAL_THRESHOLDS, **self._config.get("structural_thresholds", {})}

    @property
    def form_size(self) -> Dict[str, int]:
        return {**DEFAULT_FORM_SIZE, **self._config.get("form_size", {})}
