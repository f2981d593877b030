from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True, slots=True)
class Summary:
    average: float
    minimum: float
    maximum: float


def summarize(samples: Sequence[float]) -> Summary:
    if not samples:
        raise ValueError("cannot summarize an empty sample set")
    lo, hi = min(samples), max(samples)
    avg = sum(samples) / len(samples)
    # fp rounding in the mean can land a hair outside [lo, hi]
    return Summary(average=min(max(avg, lo), hi), minimum=lo, maximum=hi)
