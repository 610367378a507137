"""Synthetic cold-start data for the stress forecaster."""
import time
from typing import List, Optional

import numpy as np

from .settings import SYNTHETIC_SEED_SIZE
from .store import Sample

DAY_MS = 86_400_000

# Per-metric (baseline, wave amplitude, noise span).  High stress means slower
# reactions and lower memory, tapping and accuracy.
WAVE_PROFILE = (
    (250.0, 200.0, 50.0),   # reaction_time_ms
    (80.0, -40.0, 10.0),    # memory_score_pct
    (8.0, -4.0, 1.0),       # tapping_rate_per_sec
    (95.0, -20.0, 5.0),     # accuracy_pct
)


def stress_wave(i: int) -> float:
    """Smooth stress level in [0, 1] at step i."""
    return (np.sin(i * 0.2) + 1) / 2


def generate_synthetic_samples(
    n: int = SYNTHETIC_SEED_SIZE,
    now_ms: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> List[Sample]:
    """
    Build n samples following a sinusoidal stress wave.

    Each metric is baseline + wave * amplitude + uniform noise; the label is
    the wave value itself.  Timestamps are one day apart and end one day
    before now_ms.  All samples carry synthetic=True.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if rng is None:
        rng = np.random.default_rng()

    samples = []
    for i in range(n):
        wave = float(stress_wave(i))
        inputs = tuple(
            float(base + wave * amplitude + rng.uniform(0.0, noise))
            for base, amplitude, noise in WAVE_PROFILE
        )
        samples.append(Sample(
            inputs=inputs,
            label=wave,
            timestamp_ms=now_ms - (n - i) * DAY_MS,
            synthetic=True,
        ))
    return samples
