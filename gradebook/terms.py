"""School calendar: terms and the single-active-term rule."""

import logging
from datetime import date
from typing import Optional, Tuple

from gradebook.errors import ConsistencyError, NotFoundError, ValidationError
from gradebook.models import AcademicYear, School, Term

logger = logging.getLogger(__name__)


def active_term(school: School) -> Optional[Term]:
    return next((term for term in school.terms if term.is_active), None)


def find_term(school: School, term_id: str) -> Term:
    for term in school.terms:
        if term.id == term_id:
            return term
    raise NotFoundError(f"Term {term_id} not found in school {school.id}")


def activate_term(school: School, term_id: str) -> School:
    """
    Make ``term_id`` the only active term of the school.

    Returns an updated copy; every other term is switched off in the same
    copy so the school is never observed with zero or several active terms.
    """
    find_term(school, term_id)
    updated = school.model_copy(deep=True)
    for term in updated.terms:
        term.is_active = term.id == term_id
    logger.info(f"Activated term {term_id} for school {school.id}")
    return updated


def ensure_single_active_term(school: School, strict: bool = True) -> School:
    """
    Guard run before a school is persisted.

    With ``strict`` a school carrying several active terms is rejected. In
    corrective mode the first active term is kept, the others are switched
    off and a warning is logged. Terms are never removed.
    """
    active = [term for term in school.terms if term.is_active]
    if len(active) <= 1:
        return school

    names = ', '.join(term.name for term in active)
    if strict:
        raise ConsistencyError(
            f"School {school.id} has {len(active)} active terms ({names}); use activate_term"
        )

    logger.warning(
        f"School {school.id} had {len(active)} active terms ({names}); keeping {active[0].name}"
    )
    updated = school.model_copy(deep=True)
    seen_active = False
    for term in updated.terms:
        if term.is_active:
            if seen_active:
                term.is_active = False
            seen_active = True
    return updated


def create_term(school: School, name: str, start_date: date, end_date: date) -> Tuple[School, Term]:
    """Append a new, inactive term; activation goes through activate_term."""
    if not (name or '').strip():
        raise ValidationError("Term name is required")
    if end_date < start_date:
        raise ValidationError(f"Term {name} ends before it starts")
    term = Term(name=name, start_date=start_date, end_date=end_date, is_active=False)
    updated = school.model_copy(deep=True)
    updated.terms.append(term)
    return updated, term


def update_term(
    school: School,
    term_id: str,
    name: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None
) -> School:
    """Rename or re-date a term. The active flag only changes through activate_term."""
    find_term(school, term_id)
    updated = school.model_copy(deep=True)
    term = next(t for t in updated.terms if t.id == term_id)
    if name is not None:
        if not name.strip():
            raise ValidationError("Term name is required")
        term.name = name
    if start_date is not None:
        term.start_date = start_date
    if end_date is not None:
        term.end_date = end_date
    if term.end_date < term.start_date:
        raise ValidationError(f"Term {term.name} ends before it starts")
    return updated


def start_new_academic_year(school: School, academic_year: AcademicYear) -> School:
    """Replace the current academic year and clear its terms."""
    if academic_year.end_date < academic_year.start_date:
        raise ValidationError(f"Academic year {academic_year.current} ends before it starts")
    updated = school.model_copy(deep=True)
    updated.academic_year = academic_year
    updated.terms = []
    logger.info(f"School {school.id} started academic year {academic_year.current}")
    return updated
