"""Metric vector coercion and the normalization table shared by training and inference."""
import math
from typing import Iterable, List, Mapping, Optional, Sequence

import numpy as np

# Field order of a MetricVector everywhere in the system
METRIC_FIELDS = (
    "reaction_time_ms",
    "memory_score_pct",
    "tapping_rate_per_sec",
    "accuracy_pct",
)

# Fixed divisors bringing every metric into a roughly [0, ~1] range.
# Training windows and prediction windows must both go through this table.
NORMALIZATION = {
    "reaction_time_ms": 1000.0,
    "memory_score_pct": 100.0,
    "tapping_rate_per_sec": 15.0,
    "accuracy_pct": 100.0,
}

# Values used at inference time when a metric is absent from a result
INFERENCE_DEFAULTS = {
    "reaction_time_ms": 500.0,
    "memory_score_pct": 0.0,
    "tapping_rate_per_sec": 0.0,
    "accuracy_pct": 0.0,
}


def _finite_or(value, fallback: float) -> float:
    if value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return number


def coerce_metrics(
    metrics: Mapping[str, Optional[float]],
    defaults: Optional[Mapping[str, float]] = None,
) -> List[float]:
    """
    Turn a metric mapping into an ordered list of finite floats.

    Missing, None, NaN or infinite values are replaced by the matching
    entry in ``defaults`` (0.0 when no defaults are given).
    """
    defaults = defaults or {}
    return [
        _finite_or(metrics.get(field), defaults.get(field, 0.0))
        for field in METRIC_FIELDS
    ]


def inference_metrics(metrics: Mapping[str, Optional[float]]) -> List[float]:
    """
    Ordered vector for prediction.  Absent values take INFERENCE_DEFAULTS,
    and a zero reaction time counts as absent (stored records use 0 for a
    skipped game).
    """
    values = coerce_metrics(metrics, INFERENCE_DEFAULTS)
    reaction = METRIC_FIELDS.index("reaction_time_ms")
    if values[reaction] == 0.0:
        values[reaction] = INFERENCE_DEFAULTS["reaction_time_ms"]
    return values


def metrics_mapping(results) -> Mapping[str, Optional[float]]:
    """Accept either a plain mapping or a pydantic MetricVector."""
    if hasattr(results, "model_dump"):
        return results.model_dump()
    return results


def normalize_matrix(rows: Iterable[Sequence[float]]) -> np.ndarray:
    """Normalize a sequence of ordered metric vectors into a float32 array of shape (n, 4)."""
    divisors = np.array([NORMALIZATION[f] for f in METRIC_FIELDS], dtype=np.float32)
    matrix = np.asarray(list(rows), dtype=np.float32).reshape(-1, len(METRIC_FIELDS))
    return matrix / divisors
