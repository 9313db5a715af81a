"""Duration and statistics primitives.

Every function here tolerates missing input: durations return ``None`` when a
timestamp is absent and aggregates drop ``None``/NaN before computing.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Literal

import numpy as np

DeltaType = Literal["increase", "decrease", "unchanged"]


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with ties going up, e.g. 2.5 -> 3 and -2.5 -> -2."""
    factor = 10**ndigits
    return math.floor(value * factor + 0.5) / factor


def diff_seconds(start: datetime | None, end: datetime | None) -> float | None:
    """Seconds from ``start`` to ``end``; ``None`` if either is missing."""
    if start is None or end is None:
        return None
    # Align a naive side to the aware one rather than raising
    if (start.tzinfo is None) != (end.tzinfo is None):
        if start.tzinfo is None:
            start = start.replace(tzinfo=end.tzinfo)
        else:
            end = end.replace(tzinfo=start.tzinfo)
    return (end - start).total_seconds()


def diff_minutes(start: datetime | None, end: datetime | None) -> float | None:
    """Minutes from ``start`` to ``end``; ``None`` if either is missing."""
    seconds = diff_seconds(start, end)
    return seconds / 60 if seconds is not None else None


def valid_values(values: Iterable[float | None]) -> list[float]:
    """Drop ``None`` and NaN entries."""
    return [float(v) for v in values if v is not None and not math.isnan(v)]


def average(values: Iterable[float | None]) -> float:
    """Mean of the valid values, 0 when there are none."""
    valid = valid_values(values)
    if not valid:
        return 0.0
    return sum(valid) / len(valid)


def total(values: Iterable[float | None]) -> float | None:
    """Sum of the valid values, ``None`` when there are none."""
    valid = valid_values(values)
    if not valid:
        return None
    return sum(valid)


def std_dev(values: Iterable[float | None]) -> float | None:
    """Population standard deviation rounded to a whole number.

    Returns ``None`` with fewer than two valid values.
    """
    valid = valid_values(values)
    if len(valid) < 2:
        return None
    return round_half_up(float(np.std(valid)))


def median(values: Iterable[float | None]) -> float | None:
    """Median of the valid values.

    An even-sized sample yields the rounded mean of the two central values.
    """
    valid = sorted(valid_values(values))
    if not valid:
        return None
    mid = len(valid) // 2
    if len(valid) % 2:
        return valid[mid]
    return round_half_up((valid[mid - 1] + valid[mid]) / 2)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Linearly interpolated percentile of an ascending sequence.

    Uses index ``p / 100 * (n - 1)``. An empty sequence yields 0, so callers
    must check the length when absence matters.
    """
    if len(sorted_values) == 0:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    p = min(max(p, 0.0), 100.0)
    return float(np.percentile(np.asarray(sorted_values, dtype=float), p))


def percentage_change(current: float | None, baseline: float | None) -> float | None:
    """Improvement vs a baseline in percent; positive when ``current`` is lower."""
    if current is None or baseline is None or baseline == 0:
        return None
    return round_half_up((baseline - current) / baseline * 100)


def calculate_delta(
    current: float,
    previous: float | None,
    lower_is_better: bool = False,
) -> tuple[float | None, DeltaType | None]:
    """Period-over-period change as (magnitude in percent, direction).

    For lower-is-better metrics the direction reports the effect rather than
    the raw movement, so a rise is a ``"decrease"``.
    """
    if previous is None or previous == 0:
        return None, None

    raw = round_half_up((current - previous) / previous * 100)
    if raw > 0:
        delta_type: DeltaType = "decrease" if lower_is_better else "increase"
    elif raw < 0:
        delta_type = "increase" if lower_is_better else "decrease"
    else:
        delta_type = "unchanged"
    return abs(raw), delta_type
