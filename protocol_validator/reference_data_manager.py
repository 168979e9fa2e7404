"""
Reference Data Manager - Loading and caching of industry benchmark data.

Each manager instance loads the benchmark files once and serves typed
BenchmarkReference lookups. Instances are independent; share one through
the composition root rather than a module-level global.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .data_models import BenchmarkReference
from .validators import ReferenceDataError

logger = logging.getLogger(__name__)

BENCHMARKS_FILE = "industry_benchmarks.json"


class ReferenceDataManager:
    """
    Loads industry benchmark reference data.

    Usage:
        reference = ReferenceDataManager()
        sample_size = reference.phase_benchmark(3, "sample_size")
    """

    def __init__(self, reference_data_dir: Optional[Path] = None):
        """
        Initialize the reference data manager.

        Args:
            reference_data_dir: Directory containing reference data files.

        Raises:
            ReferenceDataError: If the benchmark file is missing or invalid.
        """
        if reference_data_dir is None:
            reference_data_dir = Path(__file__).parent / "reference_data"
        self.reference_data_dir = reference_data_dir

        self._cache: Dict[str, Dict[str, Any]] = {}
        self._load_file(BENCHMARKS_FILE)

        logger.info(f"ReferenceDataManager initialized from: {reference_data_dir}")

    def _load_file(self, filename: str) -> Dict[str, Any]:
        """
        Load a single reference data file.

        Raises:
            ReferenceDataError: If the file doesn't exist or isn't valid JSON.
        """
        if filename in self._cache:
            return self._cache[filename]

        path = self.reference_data_dir / filename
        if not path.exists():
            raise ReferenceDataError(
                f"Reference file not found: {path}",
                details={"path": str(path)},
            )

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {filename}: {e}")
            raise ReferenceDataError(f"Invalid JSON in {filename}: {e}") from e

        self._cache[filename] = data
        logger.debug(f"Loaded reference data: {filename}")
        return data

    @property
    def benchmarks(self) -> Dict[str, Any]:
        """Get raw benchmark data."""
        return self._cache.get(BENCHMARKS_FILE, {})

    def phase_benchmark(self, phase: Optional[int], metric: str) -> Optional[BenchmarkReference]:
        """
        Get a phase-specific benchmark.

        Args:
            phase: Study phase number (1-3 have benchmarks).
            metric: Metric key (e.g., "sample_size", "duration_months").

        Returns:
            BenchmarkReference, or None when the phase has no benchmark.
        """
        if phase is None:
            return None
        phase_data = self.benchmarks.get("phase_specific", {}).get(f"phase{phase}", {})
        return self._reference(phase_data.get(metric), f"phase{phase}.{metric}")

    def design_benchmark(self, metric: str) -> Optional[BenchmarkReference]:
        """
        Get a design metric benchmark.

        Args:
            metric: Metric key (e.g., "visit_count", "crf_field_count").
        """
        return self._reference(self.benchmarks.get("design_metrics", {}).get(metric), metric)

    @staticmethod
    def _reference(raw: Optional[Dict[str, Any]], name: str) -> Optional[BenchmarkReference]:
        if raw is None:
            return None
        try:
            return BenchmarkReference(
                p25=raw["p25"],
                median=raw["median"],
                p75=raw["p75"],
                excellent=raw["excellent"],
            )
        except (KeyError, TypeError) as e:
            raise ReferenceDataError(
                f"Malformed benchmark '{name}': {e}",
                details={"benchmark": name},
            ) from e
