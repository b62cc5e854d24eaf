"""Attendance percentage for a term."""

from gradebook.errors import ValidationError
from gradebook.grading import round_half_up
from gradebook.models import Attendance


def calculate_attendance_percentage(total_days: int, present_days: int) -> float:
    """
    Percentage of school days attended, rounded to 2 dp.

    Returns 0.0 when no school days have been recorded.
    """
    if total_days == 0:
        return 0.0
    return round_half_up(present_days / total_days * 100.0)


def validate_attendance(attendance: Attendance) -> None:
    for label in ('total_days', 'present_days', 'absent_days', 'late_comings'):
        if getattr(attendance, label) < 0:
            raise ValidationError(f"Attendance {label} cannot be negative")
    if attendance.present_days > attendance.total_days:
        raise ValidationError(
            f"Present days ({attendance.present_days}) exceed total days ({attendance.total_days})"
        )


def compute_attendance(attendance: Attendance) -> Attendance:
    validate_attendance(attendance)
    return attendance.model_copy(update={
        'attendance_percentage': calculate_attendance_percentage(
            attendance.total_days, attendance.present_days
        ),
    })
