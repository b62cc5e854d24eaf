"""School subject catalogue and ordered class list.

Subjects are keyed by code and classes by name. Every function returns an
updated copy of the school. The class list order is the promotion order.
"""

import logging
from typing import Optional

from gradebook.errors import NotFoundError, ValidationError
from gradebook.models import School, SchoolClass, SchoolSubject

logger = logging.getLogger(__name__)


def _subject_index(school: School, code: str) -> int:
    for index, subject in enumerate(school.subjects):
        if subject.code == code:
            return index
    raise NotFoundError(f"Subject {code} not found in school {school.id}")


def _class_index(school: School, name: str) -> int:
    for index, school_class in enumerate(school.classes):
        if school_class.name == name:
            return index
    raise NotFoundError(f"Class {name} not found in school {school.id}")


def add_subject(school: School, subject: SchoolSubject) -> School:
    if not subject.code.strip() or not subject.name.strip():
        raise ValidationError("Subject name and code are required")
    if any(s.code == subject.code for s in school.subjects):
        raise ValidationError(f"Subject {subject.code} already exists in school {school.id}")
    updated = school.model_copy(deep=True)
    updated.subjects.append(subject)
    logger.info(f"Added subject {subject.code} to school {school.id}")
    return updated


def update_subject(school: School, code: str, subject: SchoolSubject) -> School:
    """Replace the subject stored under ``code``; the code itself may change."""
    index = _subject_index(school, code)
    if subject.code != code and any(s.code == subject.code for s in school.subjects):
        raise ValidationError(f"Subject {subject.code} already exists in school {school.id}")
    updated = school.model_copy(deep=True)
    updated.subjects[index] = subject
    return updated


def remove_subject(school: School, code: str) -> School:
    index = _subject_index(school, code)
    updated = school.model_copy(deep=True)
    del updated.subjects[index]
    logger.info(f"Removed subject {code} from school {school.id}")
    return updated


def add_class(school: School, school_class: SchoolClass, position: Optional[int] = None) -> School:
    """
    Add a class to the progression.

    ``position`` is the 0-based place in the class order; the class is
    appended when it is omitted.
    """
    if not school_class.name.strip():
        raise ValidationError("Class name is required")
    if any(c.name == school_class.name for c in school.classes):
        raise ValidationError(f"Class {school_class.name} already exists in school {school.id}")
    updated = school.model_copy(deep=True)
    if position is None:
        updated.classes.append(school_class)
    else:
        updated.classes.insert(max(position, 0), school_class)
    logger.info(f"Added class {school_class.name} to school {school.id}")
    return updated


def update_class(school: School, name: str, school_class: SchoolClass) -> School:
    index = _class_index(school, name)
    if school_class.name != name and any(c.name == school_class.name for c in school.classes):
        raise ValidationError(f"Class {school_class.name} already exists in school {school.id}")
    updated = school.model_copy(deep=True)
    updated.classes[index] = school_class
    return updated


def remove_class(school: School, name: str) -> School:
    index = _class_index(school, name)
    updated = school.model_copy(deep=True)
    del updated.classes[index]
    logger.info(f"Removed class {name} from school {school.id}")
    return updated
