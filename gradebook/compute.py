"""Recompute every derived field of a result from its raw inputs."""

import logging
from typing import Optional, Sequence

from gradebook.attendance import compute_attendance
from gradebook.errors import ValidationError
from gradebook.grading import grade_subject
from gradebook.models import GradingSystem, Result, School
from gradebook.performance import PromotionPolicy, summarize_performance

logger = logging.getLogger(__name__)

REQUIRED_IDENTIFIERS = ('student', 'school', 'academic_year', 'term', 'class_name')


def validate_identifiers(result: Result) -> None:
    for field in REQUIRED_IDENTIFIERS:
        value = getattr(result, field)
        if value is None or not str(value).strip():
            raise ValidationError(f"Result {field} is required")


def validate_subject_codes(result: Result) -> None:
    """Each subject may appear once per result."""
    seen = set()
    for subject in result.subjects:
        if subject.subject_code in seen:
            raise ValidationError(
                f"Subject {subject.subject_code} appears more than once in result {result.id}"
            )
        seen.add(subject.subject_code)


def compute_derived_fields(
    result: Result,
    grading: Optional[GradingSystem] = None,
    policy: Optional[PromotionPolicy] = None,
    class_progression: Optional[Sequence[str]] = None
) -> Result:
    """
    Return a new result whose derived fields are recomputed.

    Runs subject aggregation and grading, the overall summary and the
    attendance percentage in one pass. The input is never mutated, and any
    validation or configuration error aborts before a copy is produced.
    Positions are left as the last ranking pass wrote them.
    """
    validate_identifiers(result)
    validate_subject_codes(result)
    scale = grading.scale if grading else None

    computed = result.model_copy(deep=True)
    subjects = [grade_subject(subject, scale) for subject in computed.subjects]
    overall = summarize_performance(
        subjects,
        scale=scale,
        policy=policy,
        current_class=result.class_name,
        class_progression=class_progression,
        previous=result.overall_performance,
    )
    attendance = compute_attendance(result.attendance)

    logger.debug(
        f"Recomputed result {result.id}: {len(subjects)} subjects, "
        f"average {overall.average_score}, promoted={overall.is_promoted}"
    )

    computed.subjects = subjects
    computed.overall_performance = overall
    computed.attendance = attendance
    return computed


def compute_for_school(
    result: Result,
    school: School,
    policy: Optional[PromotionPolicy] = None
) -> Result:
    """Recompute using the school's grading scale and class order."""
    return compute_derived_fields(
        result,
        grading=school.grading_system,
        policy=policy,
        class_progression=school.class_progression,
    )
