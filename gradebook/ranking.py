"""Cohort ranking of results by overall average and by subject."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from gradebook.errors import StateError, ValidationError
from gradebook.models import RankingEntry, Result, TiePolicy

logger = logging.getLogger(__name__)

# pandas rank methods for each tie policy
RANK_METHODS = {
    TiePolicy.COMPETITION: 'min',
    TiePolicy.DENSE: 'dense',
    TiePolicy.ORDINAL: 'first',
}


def check_cohort(results: Sequence[Result]) -> None:
    """All results must share school, class, academic year and term."""
    keys = {r.cohort_key for r in results}
    if len(keys) > 1:
        raise ValidationError(
            f"Results span {len(keys)} cohorts; rank one class/term at a time"
        )


def assign_positions(frame: pd.DataFrame, tie_policy: TiePolicy = TiePolicy.COMPETITION) -> pd.Series:
    """
    1-based positions for the ``score`` column, highest score first.

    Rows are ordered by ``student`` before ranking so that the ordinal policy
    breaks ties deterministically.
    """
    if frame.empty:
        return pd.Series([], dtype=int, index=frame.index)
    ordered = frame.sort_values(['student', 'result_id'], kind='mergesort')
    positions = ordered['score'].rank(
        method=RANK_METHODS[TiePolicy(tie_policy)],
        ascending=False
    ).astype(int)
    return positions.reindex(frame.index)


def _entries(frame: pd.DataFrame) -> List[RankingEntry]:
    entries = [
        RankingEntry(
            result_id=row.result_id,
            student=row.student,
            score=float(row.score),
            position=int(row.position),
            total_students=len(frame),
        )
        for row in frame.itertuples(index=False)
    ]
    entries.sort(key=lambda e: (e.position, e.student))
    return entries


def overall_frame(results: Sequence[Result]) -> pd.DataFrame:
    for result in results:
        if result.overall_performance.overall_grade is None:
            raise StateError(f"Result {result.id} must be computed before ranking")
    return pd.DataFrame({
        'result_id': [r.id for r in results],
        'student': [r.student for r in results],
        'score': [r.overall_performance.average_score for r in results],
    })


def subject_frame(results: Sequence[Result], subject_code: str) -> pd.DataFrame:
    rows = []
    for result in results:
        for subject in result.subjects:
            if subject.subject_code != subject_code:
                continue
            if subject.total_score is None:
                raise StateError(
                    f"Subject {subject_code} of result {result.id} must be computed before ranking"
                )
            rows.append({
                'result_id': result.id,
                'student': result.student,
                'score': subject.total_score,
            })
    return pd.DataFrame(rows, columns=['result_id', 'student', 'score'])


def rank_by_average(
    results: Sequence[Result],
    tie_policy: TiePolicy = TiePolicy.COMPETITION
) -> List[RankingEntry]:
    """Rank a cohort by overall average score."""
    check_cohort(results)
    frame = overall_frame(results)
    frame['position'] = assign_positions(frame, tie_policy)
    return _entries(frame)


def rank_by_subject(
    results: Sequence[Result],
    subject_code: str,
    tie_policy: TiePolicy = TiePolicy.COMPETITION
) -> List[RankingEntry]:
    """Rank the cohort members taking ``subject_code`` by their subject total."""
    check_cohort(results)
    frame = subject_frame(results, subject_code)
    frame['position'] = assign_positions(frame, tie_policy)
    return _entries(frame)


def ranking_inputs(result: Result) -> List[Tuple[str, dict, dict]]:
    """The parts of a result that decide its positions."""
    return [
        (s.subject_code, s.scores.model_dump(), s.weightings.model_dump())
        for s in result.subjects
    ]


def clear_positions(result: Result) -> Result:
    """Copy of the result with overall and subject positions removed."""
    cleared = result.model_copy(deep=True)
    cleared.overall_performance.position = None
    cleared.overall_performance.total_students = None
    for subject in cleared.subjects:
        subject.position = None
        subject.total_students = None
    return cleared


def rank_cohort(
    results: Sequence[Result],
    tie_policy: TiePolicy = TiePolicy.COMPETITION,
    subject_codes: Optional[Sequence[str]] = None
) -> Tuple[List[Result], List[RankingEntry]]:
    """
    Rank a whole cohort in one pass.

    Computes the overall position of every result and the position within
    every subject (or only ``subject_codes``), and returns updated copies of
    the results together with the overall ranking. The inputs are treated as
    one snapshot and are not mutated.
    """
    check_cohort(results)
    overall = rank_by_average(results, tie_policy)
    by_result: Dict[str, RankingEntry] = {e.result_id: e for e in overall}

    if subject_codes is None:
        subject_codes = sorted({s.subject_code for r in results for s in r.subjects})
    subject_positions: Dict[Tuple[str, str], RankingEntry] = {}
    for code in subject_codes:
        for entry in rank_by_subject(results, code, tie_policy):
            subject_positions[(entry.result_id, code)] = entry

    ranked = []
    for result in results:
        updated = result.model_copy(deep=True)
        entry = by_result[result.id]
        updated.overall_performance.position = entry.position
        updated.overall_performance.total_students = entry.total_students
        for subject in updated.subjects:
            subject_entry = subject_positions.get((result.id, subject.subject_code))
            if subject_entry is not None:
                subject.position = subject_entry.position
                subject.total_students = subject_entry.total_students
        ranked.append(updated)

    if results:
        school, class_name, academic_year, term = results[0].cohort_key
        logger.info(
            f"Ranked {len(results)} results for {class_name} {term} {academic_year} "
            f"({len(subject_codes)} subjects, tie policy {TiePolicy(tie_policy).value})"
        )
    return ranked, overall
