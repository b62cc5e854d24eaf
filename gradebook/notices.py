"""Parent notices sent when a report card is published or a result changes status."""

import logging
from collections import deque
from typing import Deque, Dict, Optional, Protocol

from gradebook.models import Result

logger = logging.getLogger(__name__)

DEFAULT_SENDER = {'name': 'School Administration', 'email': 'office@example.com'}


def generate_publication_notice(
    student_name: str,
    result: Result,
    sender: Optional[Dict[str, str]] = None
) -> Dict[str, str]:
    """Build the notice text for a published report, by promotion outcome."""
    sender = sender or DEFAULT_SENDER
    overall = result.overall_performance
    average = f"{overall.average_score:.1f}"
    attendance = f"{result.attendance.attendance_percentage:.1f}"

    if overall.is_promoted:
        return _promoted_notice(student_name, result, average, attendance, sender)
    return _not_promoted_notice(student_name, result, average, attendance, sender)


def _position_line(result: Result) -> str:
    overall = result.overall_performance
    if overall.position is None or not overall.total_students:
        return ""
    return f" and placed {overall.position} of {overall.total_students} in {result.class_name}"


def _promoted_notice(student_name: str, result: Result, average: str, attendance: str, sender: Dict[str, str]) -> Dict[str, str]:
    overall = result.overall_performance
    subject = f"{result.term} Report Card for {student_name} ({result.academic_year})"
    next_class = f" {student_name} moves to {overall.next_class} next term." if overall.next_class else ""
    body = f"""Dear Parent/Guardian,

The {result.term} {result.exam_type.value} report card for {student_name} is now available.

{student_name} achieved an average of {average}% (grade {overall.overall_grade}, GPA {overall.overall_gpa:.2f}){_position_line(result)}, passing {overall.subjects_passed} of {overall.subjects_passed + overall.subjects_failed} subjects. Attendance for the term was {attendance}%.{next_class}

The full report card can be downloaded here: {result.report_card.pdf_url}

{sender['name']}
{sender['email']}"""
    return {'subject': subject, 'body': body}


def _not_promoted_notice(student_name: str, result: Result, average: str, attendance: str, sender: Dict[str, str]) -> Dict[str, str]:
    overall = result.overall_performance
    subject = f"{result.term} Report Card for {student_name}: Please Contact the School"
    body = f"""Dear Parent/Guardian,

The {result.term} {result.exam_type.value} report card for {student_name} is now available.

{student_name} achieved an average of {average}%{_position_line(result)} and passed {overall.subjects_passed} of {overall.subjects_passed + overall.subjects_failed} subjects, which does not meet the promotion requirement. Attendance for the term was {attendance}%.

Please contact the class teacher to discuss a support plan for next term.

The full report card can be downloaded here: {result.report_card.pdf_url}

{sender['name']}
{sender['email']}"""
    return {'subject': subject, 'body': body}


class Notifier(Protocol):
    def notify(self, event: str, result: Result, notice: Optional[Dict[str, str]] = None) -> None:
        ...


DEFAULT_HISTORY_SIZE = 500


class LoggingNotifier:
    """Dispatcher that records events in the log and keeps the most recent ones in memory."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self.sent: Deque[Dict[str, object]] = deque(maxlen=history_size)

    def notify(self, event: str, result: Result, notice: Optional[Dict[str, str]] = None) -> None:
        self.sent.append({'event': event, 'result_id': result.id, 'notice': notice})
        logger.info(f"Notification '{event}' for result {result.id}")
