"""Shared fixtures for the result engine tests."""

from datetime import date

import pytest

from gradebook.compute import compute_derived_fields
from gradebook.models import (
    COMPONENTS,
    ExamType,
    Result,
    School,
    SchoolClass,
    SubjectComponentScores,
    SubjectRecord,
    Term,
)


def uniform_scores(score: float) -> SubjectComponentScores:
    """Every component at the same score, so the weighted total equals it."""
    return SubjectComponentScores(**{name: score for name in COMPONENTS})


@pytest.fixture
def make_subject():
    def _make(score: float, code: str = 'MATH', name: str = 'Mathematics', pass_mark: float = 50.0):
        return SubjectRecord(
            subject_name=name,
            subject_code=code,
            teacher='teacher-1',
            scores=uniform_scores(score),
            pass_mark=pass_mark,
        )
    return _make


@pytest.fixture
def make_result(make_subject):
    """Build a computed result whose subjects total the given scores."""
    def _make(student: str = 'student-1', scores=(75.0,), compute: bool = True, **overrides):
        codes = ['MATH', 'ENG', 'SCI', 'SOC', 'ICT', 'FRE', 'ART', 'PE']
        fields = dict(
            student=student,
            school='school-1',
            academic_year='2024/2025',
            term='First Term',
            class_name='JHS 1',
            exam_type=ExamType.END_OF_TERM,
            subjects=[make_subject(score, code=codes[i], name=codes[i].title())
                      for i, score in enumerate(scores)],
        )
        fields.update(overrides)
        result = Result(**fields)
        return compute_derived_fields(result) if compute else result
    return _make


@pytest.fixture
def school():
    return School(
        id='school-1',
        name='Accra Model School',
        classes=[SchoolClass(name='JHS 1'), SchoolClass(name='JHS 2'), SchoolClass(name='JHS 3')],
        terms=[
            Term(id='term-a', name='First Term', start_date=date(2024, 9, 9),
                 end_date=date(2024, 12, 13), is_active=True),
            Term(id='term-b', name='Second Term', start_date=date(2025, 1, 6),
                 end_date=date(2025, 4, 4)),
            Term(id='term-c', name='Third Term', start_date=date(2025, 4, 28),
                 end_date=date(2025, 7, 25)),
        ],
    )
