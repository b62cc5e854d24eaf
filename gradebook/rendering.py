"""Report rendering collaborator."""

from typing import Protocol

from gradebook.models import Result

DEFAULT_REPORT_URL_TEMPLATE = 'https://reports.example.com/results/{result_id}.pdf'


class ReportRenderer(Protocol):
    def render(self, result: Result) -> str:
        """Produce the report document for a computed result and return its URL."""
        ...


class UrlTemplateRenderer:
    """Builds the document reference from a URL template."""

    def __init__(self, template: str = DEFAULT_REPORT_URL_TEMPLATE):
        self.template = template

    def render(self, result: Result) -> str:
        return self.template.format(
            result_id=result.id,
            student=result.student,
            school=result.school,
            term=result.term,
            academic_year=result.academic_year,
        )
