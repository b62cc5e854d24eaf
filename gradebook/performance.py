"""Overall performance summary and promotion decision for a result."""

from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from gradebook.grading import classify_score, round_half_up
from gradebook.models import GradeBand, OverallPerformance, SubjectRecord

DEFAULT_PROMOTION_PASS_RATIO = 0.6


class PromotionPolicy(BaseModel):
    """
    School policy for promotion.

    A student is promoted when no subject is failed or when the share of
    passed subjects reaches ``pass_ratio``. ``promote_when_no_subjects``
    decides the case of a result without subjects.
    """
    pass_ratio: float = Field(DEFAULT_PROMOTION_PASS_RATIO, ge=0, le=1)
    promote_when_no_subjects: bool = True


def is_promoted(subjects_passed: int, subjects_failed: int, policy: PromotionPolicy) -> bool:
    subject_count = subjects_passed + subjects_failed
    if subject_count == 0:
        return policy.promote_when_no_subjects
    if subjects_failed == 0:
        return True
    return subjects_passed / subject_count >= policy.pass_ratio


def derive_next_class(
    current_class: str,
    promoted: bool,
    class_progression: Optional[Sequence[str]] = None
) -> Optional[str]:
    """
    Class the student moves to next term.

    Promoted students move to the class following theirs in the school's
    ordered class list (None after the final class); others repeat.
    """
    if not promoted:
        return current_class
    if not class_progression or current_class not in class_progression:
        return None
    index = list(class_progression).index(current_class)
    if index + 1 >= len(class_progression):
        return None
    return class_progression[index + 1]


def summarize_performance(
    subjects: List[SubjectRecord],
    scale: Optional[Sequence[GradeBand]] = None,
    policy: Optional[PromotionPolicy] = None,
    current_class: Optional[str] = None,
    class_progression: Optional[Sequence[str]] = None,
    previous: Optional[OverallPerformance] = None
) -> OverallPerformance:
    """
    Roll graded subjects up into an overall summary.

    Subjects must already carry total_score and grade_point. Position fields
    are kept from ``previous`` since they come from the ranking pass.
    """
    policy = policy or PromotionPolicy()

    total_score = 0.0
    total_points = 0.0
    subjects_passed = 0
    subjects_failed = 0

    for subject in subjects:
        total_score += subject.total_score or 0.0
        total_points += subject.grade_point or 0.0
        if (subject.total_score or 0.0) >= subject.pass_mark:
            subjects_passed += 1
        else:
            subjects_failed += 1

    count = len(subjects)
    average_score = round_half_up(total_score / count) if count else 0.0
    gpa = round_half_up(total_points / count) if count else 0.0
    promoted = is_promoted(subjects_passed, subjects_failed, policy)

    next_class = None
    if current_class is not None:
        next_class = derive_next_class(current_class, promoted, class_progression)

    return OverallPerformance(
        total_score=round_half_up(total_score),
        average_score=average_score,
        overall_grade=classify_score(average_score, scale).grade,
        overall_gpa=gpa,
        position=previous.position if previous else None,
        total_students=previous.total_students if previous else None,
        subjects_passed=subjects_passed,
        subjects_failed=subjects_failed,
        is_promoted=promoted,
        next_class=next_class,
    )
