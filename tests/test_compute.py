"""Unit tests for the full result recompute."""

import pytest

from gradebook.compute import compute_derived_fields, compute_for_school
from gradebook.errors import ConfigurationError, ValidationError
from gradebook.models import (
    Attendance,
    GradeBand,
    GradingSystem,
    Result,
    SubjectComponentScores,
    SubjectWeightings,
)
from gradebook.performance import PromotionPolicy


def test_compute_derived_fields(make_result):
    result = make_result('ama', scores=(92, 58, 35), compute=False,
                         attendance=Attendance(total_days=60, present_days=57, absent_days=3))
    computed = compute_derived_fields(result)

    maths, english, science = computed.subjects
    assert (maths.total_score, maths.grade, maths.grade_point) == (92.0, 'A+', 4.0)
    assert (english.grade, english.is_passed) == ('D+', True)
    assert (science.grade, science.remark, science.is_passed) == ('F', 'Fail', False)

    overall = computed.overall_performance
    assert overall.total_score == 185.0
    assert overall.average_score == 61.67
    assert overall.overall_grade == 'C'
    assert overall.overall_gpa == 2.0
    assert overall.subjects_passed == 2
    assert overall.subjects_failed == 1
    assert overall.is_promoted == True
    assert computed.attendance.attendance_percentage == 95.0


def test_compute_does_not_mutate_input(make_result):
    result = make_result('ama', scores=(80,), compute=False)
    compute_derived_fields(result)
    assert result.subjects[0].total_score is None
    assert result.overall_performance.overall_grade is None


def test_compute_is_idempotent(make_result):
    """Recomputing a stored (serialized) result yields the same document."""
    first = make_result('ama', scores=(81.5, 64, 49.99))
    reloaded = Result.model_validate_json(first.model_dump_json())
    second = compute_derived_fields(reloaded)
    assert second.model_dump() == first.model_dump()


def test_weighted_total(make_subject, make_result):
    subject = make_subject(0)
    subject.scores = SubjectComponentScores(class_work=80, homework=90, class_test=70, assignment=60,
                                            project=100, mid_term_exam=65, final_exam=75)
    result = make_result('ama', scores=(), compute=False, subjects=[subject])
    computed = compute_derived_fields(result)
    # 8 + 9 + 14 + 6 + 10 + 13 + 15
    assert computed.subjects[0].total_score == 75.0
    assert computed.subjects[0].grade == 'B+'


def test_invalid_score_rejected(make_result):
    result = make_result('ama', scores=(70,), compute=False)
    result.subjects[0].scores.final_exam = 150
    with pytest.raises(ValidationError, match='final_exam'):
        compute_derived_fields(result)


def test_weightings_must_sum_to_100(make_result):
    result = make_result('ama', scores=(70,), compute=False)
    result.subjects[0].weightings = SubjectWeightings(final_exam=30)
    with pytest.raises(ValidationError, match='sum to 100'):
        compute_derived_fields(result)


def test_missing_identifier_rejected(make_result):
    result = make_result('ama', compute=False, class_name='  ')
    with pytest.raises(ValidationError, match='class_name'):
        compute_derived_fields(result)


def test_custom_scale_gap_is_configuration_error(make_result):
    grading = GradingSystem(scale=[
        GradeBand(grade='Fail', min_score=0, max_score=39.99),
        GradeBand(grade='Pass', min_score=50, max_score=100),
    ])
    result = make_result('ama', scores=(45,), compute=False)
    with pytest.raises(ConfigurationError):
        compute_derived_fields(result, grading=grading)


def test_compute_for_school(make_result, school):
    school.grading_system = GradingSystem(scale=[
        GradeBand(grade='1', min_score=80, max_score=100, description='Highest', grade_point=4.0),
        GradeBand(grade='2', min_score=0, max_score=79.99, description='Credit', grade_point=2.5),
    ])
    result = make_result('ama', scores=(85, 70), compute=False)
    computed = compute_for_school(result, school, PromotionPolicy(pass_ratio=1.0))

    assert [s.grade for s in computed.subjects] == ['1', '2']
    assert computed.subjects[0].remark == 'Highest'
    assert computed.overall_performance.overall_gpa == 3.25
    assert computed.overall_performance.overall_grade == '2'
    assert computed.overall_performance.is_promoted == True
    assert computed.overall_performance.next_class == 'JHS 2'


def test_duplicate_subject_codes_rejected(make_result, make_subject):
    """A subject listed twice in one result would be ranked twice."""
    result = make_result('ama', scores=(), compute=False,
                         subjects=[make_subject(90, code='MATH'), make_subject(40, code='MATH')])
    with pytest.raises(ValidationError, match='MATH'):
        compute_derived_fields(result)
