"""Class exports and result statistics."""

import csv
from io import StringIO
from typing import Callable, Dict, List, Optional, Sequence

import pandas as pd

from gradebook.models import Result

EXPORT_HEADER = [
    'Student',
    'Student Name',
    'Class',
    'Term',
    'Academic Year',
    'Exam Type',
    'Total Score',
    'Average Score',
    'Grade',
    'GPA',
    'Position',
    'Total Students',
    'Subjects Passed',
    'Subjects Failed',
    'Promoted',
    'Next Class',
    'Attendance %',
    'Status',
]


def export_results_csv(
    results: Sequence[Result],
    student_names: Optional[Callable[[str], str]] = None
) -> str:
    """CSV text with one row per result, best position first."""
    student_names = student_names or (lambda student: student)
    ordered = sorted(
        results,
        key=lambda r: (r.overall_performance.position is None,
                       r.overall_performance.position or 0,
                       r.student)
    )

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)

    for result in ordered:
        overall = result.overall_performance
        writer.writerow([
            result.student,
            student_names(result.student),
            result.class_name,
            result.term,
            result.academic_year,
            result.exam_type.value,
            f"{overall.total_score:.2f}",
            f"{overall.average_score:.2f}",
            overall.overall_grade or '',
            f"{overall.overall_gpa:.2f}",
            overall.position if overall.position is not None else '',
            overall.total_students if overall.total_students is not None else '',
            overall.subjects_passed,
            overall.subjects_failed,
            'Yes' if overall.is_promoted else 'No',
            overall.next_class or '',
            f"{result.attendance.attendance_percentage:.2f}",
            result.status.value,
        ])

    return output.getvalue()


def results_frame(results: Sequence[Result]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            'result_id': r.id,
            'student': r.student,
            'class_name': r.class_name,
            'average_score': r.overall_performance.average_score,
            'overall_grade': r.overall_performance.overall_grade,
            'overall_gpa': r.overall_performance.overall_gpa,
            'is_promoted': r.overall_performance.is_promoted,
            'attendance_percentage': r.attendance.attendance_percentage,
            'status': r.status.value,
        }
        for r in results
    ], columns=['result_id', 'student', 'class_name', 'average_score', 'overall_grade',
                'overall_gpa', 'is_promoted', 'attendance_percentage', 'status'])


def result_statistics(results: Sequence[Result]) -> Dict[str, object]:
    """
    Summary figures for a set of results.

    Returns counts, mean/highest/lowest average, promotion rate (percent),
    mean attendance, and the number of results per overall grade and status.
    """
    df = results_frame(results)
    if df.empty:
        return {
            'total': 0,
            'average_score': 0.0,
            'highest_average': 0.0,
            'lowest_average': 0.0,
            'average_gpa': 0.0,
            'promotion_rate': 0.0,
            'average_attendance': 0.0,
            'grade_distribution': {},
            'status_counts': {},
        }

    grades = df['overall_grade'].fillna('Ungraded').value_counts()
    statuses = df['status'].value_counts()
    return {
        'total': int(len(df)),
        'average_score': round(float(df['average_score'].mean()), 2),
        'highest_average': round(float(df['average_score'].max()), 2),
        'lowest_average': round(float(df['average_score'].min()), 2),
        'average_gpa': round(float(df['overall_gpa'].mean()), 2),
        'promotion_rate': round(float(df['is_promoted'].mean()) * 100.0, 2),
        'average_attendance': round(float(df['attendance_percentage'].mean()), 2),
        'grade_distribution': {str(k): int(v) for k, v in grades.items()},
        'status_counts': {str(k): int(v) for k, v in statuses.items()},
    }


def class_statistics(results: Sequence[Result]) -> List[Dict[str, object]]:
    """result_statistics for each class present in ``results``."""
    by_class: Dict[str, List[Result]] = {}
    for result in results:
        by_class.setdefault(result.class_name, []).append(result)
    return [
        {'class_name': name, **result_statistics(members)}
        for name, members in sorted(by_class.items())
    ]
