"""Percentage to letter-grade banding and the numeric helpers built on it.

Every code path that produces a letter grade goes through ``letter_grade_for``.
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# Inclusive lower bounds, highest first.
GRADE_BANDS: Tuple[Tuple[float, str], ...] = (
    (97.0, "A+"),
    (93.0, "A"),
    (90.0, "A-"),
    (87.0, "B+"),
    (83.0, "B"),
    (80.0, "B-"),
    (77.0, "C+"),
    (73.0, "C"),
    (70.0, "C-"),
    (67.0, "D+"),
    (63.0, "D"),
    (60.0, "D-"),
)
FAILING_LETTER = "F"
LETTER_GRADES: Tuple[str, ...] = tuple(letter for _, letter in GRADE_BANDS) + (FAILING_LETTER,)

PERCENT_PRECISION = 2


def letter_grade_for(percentage: float) -> str:
    """Band a percentage. Total over all floats: >100 lands in A+, <0 and NaN in F."""
    if percentage is None or math.isnan(percentage):
        return FAILING_LETTER
    for lower_bound, letter in GRADE_BANDS:
        if percentage >= lower_bound:
            return letter
    return FAILING_LETTER


def compute_percentage(points_earned: float, points_possible: float) -> float:
    if points_possible is None or points_possible <= 0:
        return 0.0
    return round(points_earned / points_possible * 100, PERCENT_PRECISION)


def derive_grade_fields(points_earned: float, points_possible: float) -> Tuple[float, str]:
    """(percentage, letter_grade) for a score; the pair stored on every Grade row."""
    percentage = compute_percentage(points_earned, points_possible)
    return percentage, letter_grade_for(percentage)


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return round(math.fsum(values) / len(values), PERCENT_PRECISION)


def sample_std_dev(values: Sequence[float]) -> Optional[float]:
    """Sample standard deviation (n - 1), None below two values."""
    n = len(values)
    if n < 2:
        return None
    avg = math.fsum(values) / n
    variance = math.fsum((v - avg) ** 2 for v in values) / (n - 1)
    return round(math.sqrt(variance), PERCENT_PRECISION)


def rolling_averages(values: Iterable[float]) -> List[float]:
    """Cumulative mean at each position: running_total / (index + 1)."""
    result: List[float] = []
    running_total = 0.0
    for index, value in enumerate(values):
        running_total += value
        result.append(round(running_total / (index + 1), PERCENT_PRECISION))
    return result


def distribution(letters: Sequence[str]) -> Dict[str, float]:
    """Share of grades per band as a percentage; every band is present."""
    total = len(letters)
    counts = {letter: 0 for letter in LETTER_GRADES}
    for letter in letters:
        counts[letter] = counts.get(letter, 0) + 1
    if total == 0:
        return {letter: 0.0 for letter in counts}
    return {letter: round(count / total * 100, PERCENT_PRECISION) for letter, count in counts.items()}
