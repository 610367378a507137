"""
Burnout risk from the short-term trend of recent stress levels.

Model-free and stateless: the score only depends on the last few
assessment records, never on the trained forecaster.
"""
from datetime import datetime, timezone
from typing import Dict, List, Sequence, Union

MIN_RECORDS = 3
RECENT_WINDOW = 5

LEVEL_WEIGHT = 0.7
SLOPE_WEIGHT = 150.0

TREND_UP_SLOPE = 0.05
TREND_DOWN_SLOPE = -0.05


def parse_timestamp(ts: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 timestamp (or pass a datetime through); naive values are taken as UTC."""
    if isinstance(ts, datetime):
        parsed = ts
    else:
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_chronological(history: Sequence) -> List:
    """Return history records sorted oldest first by their timestamp."""
    return sorted(history, key=lambda record: parse_timestamp(record.timestamp))


def ols_slope(values: Sequence[float]) -> float:
    """
    Least-squares slope of values against their index 0..n-1.

    slope = (nΣxy - ΣxΣy) / (nΣx² - (Σx)²)
    """
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = sum(range(n))
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_xx = sum(i * i for i in range(n))
    denom = n * sum_xx - sum_x * sum_x
    if denom == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom


def classify_trend(slope: float) -> str:
    if slope > TREND_UP_SLOPE:
        return "up"
    if slope < TREND_DOWN_SLOPE:
        return "down"
    return "stable"


def predict_burnout_risk(history: Sequence) -> Dict[str, Union[float, str]]:
    """
    Score burnout risk in [0, 100] from assessment history in any order.

    risk = clamp(current_stress * 0.7 + slope * 150) over the last five
    records, so a rising trajectory outweighs a moderate absolute level.
    Fewer than three records give {"risk": 0, "trend": "stable"}.
    """
    if len(history) < MIN_RECORDS:
        return {"risk": 0.0, "trend": "stable"}

    recent = sort_chronological(history)[-RECENT_WINDOW:]
    levels = [float(record.stress_level) for record in recent]

    slope = ols_slope(levels)
    current_stress = levels[-1]

    risk = current_stress * LEVEL_WEIGHT + slope * SLOPE_WEIGHT
    risk = max(0.0, min(100.0, risk))

    return {"risk": risk, "trend": classify_trend(slope)}


def risk_band(risk: float) -> str:
    """Coarse band used by the dashboard widget colouring."""
    if risk < 30:
        return "low"
    if risk < 70:
        return "moderate"
    return "high"
