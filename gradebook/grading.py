"""Subject score aggregation and grade classification."""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, NamedTuple, Optional, Sequence

from gradebook.errors import ConfigurationError, ValidationError
from gradebook.models import (
    COMPONENTS,
    GradeBand,
    SubjectComponentScores,
    SubjectRecord,
    SubjectWeightings,
)

# Largest gap allowed between adjacent bands; scores are kept to 2 dp.
SCALE_STEP = 0.01
WEIGHT_TOTAL = 100.0
_EPSILON = 1e-9


class GradeInfo(NamedTuple):
    grade: str
    point: float
    remark: str


# (minimum score, grade, point, remark), evaluated top-down
DEFAULT_GRADE_BOUNDARIES = (
    (90.0, 'A+', 4.0, 'Excellent'),
    (80.0, 'A', 3.7, 'Very Good'),
    (75.0, 'B+', 3.3, 'Good'),
    (70.0, 'B', 3.0, 'Good'),
    (65.0, 'C+', 2.7, 'Average'),
    (60.0, 'C', 2.3, 'Average'),
    (55.0, 'D+', 2.0, 'Below Average'),
    (50.0, 'D', 1.7, 'Below Average'),
    (40.0, 'E', 1.0, 'Poor'),
)
FAIL_GRADE = GradeInfo('F', 0.0, 'Fail')

DEFAULT_GRADE_POINTS: Dict[str, float] = {
    grade: point for _, grade, point, _ in DEFAULT_GRADE_BOUNDARIES
}
DEFAULT_GRADE_POINTS[FAIL_GRADE.grade] = FAIL_GRADE.point


def round_half_up(value: float, places: int = 2) -> float:
    """Round using half-up semantics rather than Python's banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _check_range(label: str, value: float, low: float, high: Optional[float]) -> None:
    if value is None or not math.isfinite(value):
        raise ValidationError(f"{label} must be a finite number, got {value!r}")
    if value < low or (high is not None and value > high):
        bound = f"[{low:g}, {high:g}]" if high is not None else f">= {low:g}"
        raise ValidationError(f"{label} must be {bound}, got {value:g}")


def validate_scores(scores: SubjectComponentScores, subject_code: str = '') -> None:
    for name in COMPONENTS:
        _check_range(f"{subject_code} {name} score".strip(), getattr(scores, name), 0.0, 100.0)


def validate_weightings(weightings: SubjectWeightings, subject_code: str = '') -> None:
    total = 0.0
    for name in COMPONENTS:
        value = getattr(weightings, name)
        _check_range(f"{subject_code} {name} weighting".strip(), value, 0.0, None)
        total += value
    if abs(total - WEIGHT_TOTAL) > 1e-6:
        raise ValidationError(
            f"Weightings for {subject_code or 'subject'} must sum to 100, got {total:g}"
        )


def validate_subject(subject: SubjectRecord) -> None:
    """
    Check one subject's raw inputs.

    Raises:
        ValidationError: missing identifiers, score outside [0, 100],
            negative weight or weights not summing to 100.
    """
    if not (subject.subject_name or '').strip():
        raise ValidationError("Subject name is required")
    if not (subject.subject_code or '').strip():
        raise ValidationError(f"Subject code is required for {subject.subject_name}")
    validate_scores(subject.scores, subject.subject_code)
    validate_weightings(subject.weightings, subject.subject_code)
    _check_range(f"{subject.subject_code} pass mark", subject.pass_mark, 0.0, 100.0)


def calculate_subject_total(
    scores: SubjectComponentScores,
    weightings: SubjectWeightings
) -> float:
    """
    Weighted total of the seven assessment components.

    total = sum(score_i * weight_i) / 100, rounded half-up to 2 dp.
    """
    total = Decimal(0)
    for name in COMPONENTS:
        score = Decimal(str(getattr(scores, name)))
        weight = Decimal(str(getattr(weightings, name)))
        total += score * weight / Decimal(100)
    return round_half_up(float(total))


def _classify_default(score: float) -> GradeInfo:
    for minimum, grade, point, remark in DEFAULT_GRADE_BOUNDARIES:
        if score >= minimum:
            return GradeInfo(grade, point, remark)
    return FAIL_GRADE


def _band_info(band: GradeBand) -> GradeInfo:
    if band.grade_point is not None:
        point = band.grade_point
    else:
        point = DEFAULT_GRADE_POINTS.get(band.grade, 0.0)
    return GradeInfo(band.grade, point, band.description or '')


def classify_score(score: float, scale: Optional[Sequence[GradeBand]] = None) -> GradeInfo:
    """
    Map a score to (grade, point, remark).

    Uses the built-in boundary table unless a school scale is given, in which
    case the single band containing the score wins.

    Raises:
        ConfigurationError: no band (gap) or several bands (overlap) match.
    """
    if not scale:
        return _classify_default(score)

    matches = [b for b in scale if b.min_score <= score <= b.max_score]
    if not matches:
        raise ConfigurationError(f"Grading scale has no band for score {score:g}")
    if len(matches) > 1:
        grades = ', '.join(b.grade for b in matches)
        raise ConfigurationError(f"Grading scale bands overlap at score {score:g}: {grades}")
    return _band_info(matches[0])


def validate_grading_scale(scale: Sequence[GradeBand]) -> List[GradeBand]:
    """
    Check a custom scale is contiguous, non-overlapping and covers [0, 100].

    Returns the bands sorted from the highest to the lowest interval.
    An empty scale is valid and means "use the default table".
    """
    if not scale:
        return []

    ordered = sorted(scale, key=lambda b: b.min_score)
    for band in ordered:
        if band.min_score > band.max_score:
            raise ConfigurationError(
                f"Band {band.grade} has min {band.min_score:g} above max {band.max_score:g}"
            )

    if ordered[0].min_score > _EPSILON:
        raise ConfigurationError(f"Grading scale must start at 0, starts at {ordered[0].min_score:g}")
    if ordered[-1].max_score < WEIGHT_TOTAL - _EPSILON:
        raise ConfigurationError(f"Grading scale must end at 100, ends at {ordered[-1].max_score:g}")

    for lower, upper in zip(ordered, ordered[1:]):
        if upper.min_score <= lower.max_score:
            raise ConfigurationError(
                f"Bands {lower.grade} and {upper.grade} overlap "
                f"({lower.max_score:g} >= {upper.min_score:g})"
            )
        if upper.min_score - lower.max_score > SCALE_STEP + _EPSILON:
            raise ConfigurationError(
                f"Gap between bands {lower.grade} and {upper.grade} "
                f"({lower.max_score:g} to {upper.min_score:g})"
            )

    return list(reversed(ordered))


def grade_subject(subject: SubjectRecord, scale: Optional[Sequence[GradeBand]] = None) -> SubjectRecord:
    """Return a copy of the subject with total, grade and pass flag recomputed."""
    validate_subject(subject)
    total = calculate_subject_total(subject.scores, subject.weightings)
    info = classify_score(total, scale)
    return subject.model_copy(update={
        'total_score': total,
        'grade': info.grade,
        'grade_point': info.point,
        'remark': info.remark,
        'is_passed': total >= subject.pass_mark,
    })
