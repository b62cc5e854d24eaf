"""Report-card generation and publication state machine.

Draft -> Completed -> Published, with Archived reachable from any state.
Every transition returns an updated copy of the result.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from gradebook.errors import StateError
from gradebook.models import ReportCard, Result, ResultStatus
from gradebook.rendering import ReportRenderer

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _ensure_not_archived(result: Result, action: str) -> None:
    if result.status == ResultStatus.ARCHIVED:
        raise StateError(f"Cannot {action} archived result {result.id}")


def generate_report_card(
    result: Result,
    actor: Optional[str],
    renderer: ReportRenderer,
    now: Optional[datetime] = None,
    require_ranking: bool = True
) -> Result:
    """
    Render the report card of a computed result.

    Allowed from Draft or Completed (re-generation overwrites the document
    reference). A published card must be unpublished first.
    """
    _ensure_not_archived(result, 'generate report for')
    if result.report_card.is_published or result.status == ResultStatus.PUBLISHED:
        raise StateError(f"Report for result {result.id} is published; unpublish it before regenerating")
    if not result.subjects or any(s.total_score is None for s in result.subjects):
        raise StateError(f"Result {result.id} has no computed subjects")
    if require_ranking and result.overall_performance.position is None:
        raise StateError(f"Result {result.id} has not been ranked; calculate class positions first")

    pdf_url = renderer.render(result)
    updated = result.model_copy(deep=True)
    updated.report_card.is_generated = True
    updated.report_card.generated_at = _now(now)
    updated.report_card.generated_by = actor
    updated.report_card.pdf_url = pdf_url
    updated.status = ResultStatus.COMPLETED
    logger.info(f"Generated report card for result {result.id} ({pdf_url})")
    return updated


def publish_report_card(result: Result, actor: Optional[str], now: Optional[datetime] = None) -> Result:
    _ensure_not_archived(result, 'publish')
    if not result.report_card.is_generated:
        raise StateError(f"Report for result {result.id} must be generated before publishing")
    if result.report_card.is_published:
        raise StateError(f"Report for result {result.id} is already published")

    updated = result.model_copy(deep=True)
    updated.report_card.is_published = True
    updated.report_card.published_at = _now(now)
    updated.report_card.published_by = actor
    updated.status = ResultStatus.PUBLISHED
    logger.info(f"Published report card for result {result.id}")
    return updated


def unpublish_report_card(result: Result, actor: Optional[str] = None) -> Result:
    _ensure_not_archived(result, 'unpublish')
    if not result.report_card.is_published:
        raise StateError(f"Report for result {result.id} is not published")

    updated = result.model_copy(deep=True)
    updated.report_card.is_published = False
    updated.report_card.published_at = None
    updated.report_card.published_by = None
    updated.status = ResultStatus.COMPLETED
    updated.last_updated_by = actor or updated.last_updated_by
    logger.info(f"Unpublished report card for result {result.id}")
    return updated


def archive_result(result: Result, actor: Optional[str] = None) -> Result:
    """Hide a result from default listings; nothing is deleted."""
    updated = result.model_copy(deep=True)
    updated.status = ResultStatus.ARCHIVED
    updated.is_active = False
    updated.last_updated_by = actor or updated.last_updated_by
    logger.info(f"Archived result {result.id}")
    return updated


def reset_report_card(result: Result) -> Result:
    """
    Discard a generated card after the result's inputs change.

    Only Draft and Completed results may be edited.
    """
    if result.status in (ResultStatus.PUBLISHED, ResultStatus.ARCHIVED):
        raise StateError(f"Cannot edit {result.status.value.lower()} result {result.id}")
    if not result.report_card.is_generated:
        return result
    updated = result.model_copy(deep=True)
    updated.report_card = ReportCard()
    updated.status = ResultStatus.DRAFT
    return updated


def transition(
    result: Result,
    status: ResultStatus,
    actor: Optional[str],
    renderer: ReportRenderer,
    now: Optional[datetime] = None,
    require_ranking: bool = True
) -> Result:
    """Move a result to ``status`` through the matching lifecycle action."""
    status = ResultStatus(status)
    if status == result.status:
        return result
    if status == ResultStatus.ARCHIVED:
        return archive_result(result, actor)
    if status == ResultStatus.PUBLISHED:
        return publish_report_card(result, actor, now)
    if status == ResultStatus.COMPLETED:
        if result.status == ResultStatus.PUBLISHED:
            return unpublish_report_card(result, actor)
        return generate_report_card(result, actor, renderer, now, require_ranking)
    raise StateError(f"Result {result.id} cannot return to {status.value}")
