"""Score sheet parsing for bulk result upload."""

import logging
import re
from io import BytesIO
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from openpyxl import load_workbook

from gradebook.errors import ValidationError
from gradebook.models import COMPONENTS, SubjectComponentScores, SubjectInput

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 20

# Standard column name -> accepted variations (after normalize_col_name)
COLUMN_VARIATIONS = {
    'Student': ['student', 'student id', 'studentid', 'student#', 'student number', 'admission number'],
    'Subject Name': ['subject name', 'subjectname', 'subject'],
    'Subject Code': ['subject code', 'subjectcode', 'code'],
    'Teacher': ['teacher', 'subject teacher', 'teacher id'],
    'Class Work': ['class work', 'classwork', 'cw'],
    'Homework': ['homework', 'home work', 'hw'],
    'Class Test': ['class test', 'classtest', 'test'],
    'Assignment': ['assignment', 'assignments'],
    'Project': ['project', 'projects'],
    'Mid-Term Exam': ['mid-term exam', 'midterm exam', 'mid term exam', 'midterm', 'mid-term', 'mid term'],
    'Final Exam': ['final exam', 'finalexam', 'exam', 'final'],
    'Pass Mark': ['pass mark', 'passmark', 'pass'],
}

REQUIRED_COLUMNS = ['Student', 'Subject Name', 'Subject Code']

# Standard column name -> SubjectComponentScores field
SCORE_COLUMNS = dict(zip(
    ['Class Work', 'Homework', 'Class Test', 'Assignment', 'Project', 'Mid-Term Exam', 'Final Exam'],
    COMPONENTS,
))


def normalize_col_name(col_name) -> str:
    """Lowercase, strip punctuation and collapse whitespace for matching."""
    if col_name is None or (isinstance(col_name, float) and np.isnan(col_name)):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%:]', '', normalized)
    normalized = re.sub(r'[_\s]+', ' ', normalized)
    return normalized.strip()


def normalize_score_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename sheet headers to the standard column names.

    Raises:
        ValidationError: a required column cannot be found.
    """
    df = df.copy()
    rename = {}
    for original in df.columns:
        normalized = normalize_col_name(original)
        for target, variations in COLUMN_VARIATIONS.items():
            if normalized == normalize_col_name(target) or normalized in variations:
                if target not in rename.values():
                    rename[original] = target
                break

    df = df.rename(columns=rename)
    if df.columns.duplicated().any():
        logger.warning(f"Duplicate columns in score sheet: {df.columns[df.columns.duplicated()].tolist()}")
        df = df.loc[:, ~df.columns.duplicated(keep='first')]

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(
            f"Score sheet is missing required columns {missing}; found {list(df.columns)}"
        )
    return df


def clean_score(value, label: str = 'score') -> float:
    """
    Convert a sheet cell to a score.

    Blank cells count as 0; "85%" and "85" both mean 85.
    """
    if value is None:
        return 0.0
    if isinstance(value, str):
        text = value.strip().replace('%', '').strip()
        if text == '':
            return 0.0
        try:
            val = float(text)
        except ValueError:
            raise ValidationError(f"{label} is not a number: {value!r}")
    else:
        try:
            val = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{label} is not a number: {value!r}")
        if np.isnan(val):
            return 0.0
    if np.isinf(val):
        raise ValidationError(f"{label} is not a finite number")
    return val


def drop_summary_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Remove blank rows and total/summary/average lines."""
    student = df['Student'].astype(str).str.strip()
    mask = (
        df['Student'].notna()
        & student.ne('')
        & student.str.lower().ne('nan')
        & ~student.str.contains('total|summary|average', case=False, na=False)
    )
    return df[mask].copy()


def _find_header_row(file_bytes: bytes) -> int:
    """0-based index of the first row that looks like the header."""
    workbook = load_workbook(filename=BytesIO(file_bytes), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        for row_idx, row in enumerate(sheet.iter_rows(min_row=1, max_row=HEADER_SCAN_ROWS, values_only=True)):
            names = {normalize_col_name(v) for v in row if v is not None}
            has_student = any(n in COLUMN_VARIATIONS['Student'] for n in names)
            has_subject = any(n in COLUMN_VARIATIONS['Subject Code'] for n in names)
            if has_student and has_subject:
                return row_idx
    finally:
        workbook.close()
    return 0


def load_score_sheet(file_bytes: bytes, filename: str = 'scores.xlsx') -> pd.DataFrame:
    """
    Load a score sheet (Excel or CSV) with one row per student and subject.

    Expected columns (header names are matched loosely):
      Student, Subject Name, Subject Code, [Teacher], Class Work, Homework,
      Class Test, Assignment, Project, Mid-Term Exam, Final Exam, [Pass Mark]

    Title rows above the header are skipped in Excel files.
    """
    name = filename.lower()
    if name.endswith('.csv'):
        raw = pd.read_csv(BytesIO(file_bytes), dtype=object)
    elif name.endswith(('.xlsx', '.xlsm')):
        header_row = _find_header_row(file_bytes)
        raw = pd.read_excel(BytesIO(file_bytes), header=header_row, dtype=object, engine='openpyxl')
    else:
        raise ValidationError("Invalid file type. Please upload an Excel (.xlsx) or CSV file")

    df = normalize_score_columns(raw)
    df = drop_summary_rows(df)
    logger.info(f"Loaded score sheet {filename}: {len(df)} rows")
    return df


def _optional_text(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


def parse_score_rows(df: pd.DataFrame) -> Dict[str, List[SubjectInput]]:
    """
    Group normalized rows into subject inputs per student.

    A student listed twice for the same subject keeps the last row.

    Raises:
        ValidationError: a score is not numeric or outside [0, 100]; the
            message names the sheet row.
    """
    grouped: Dict[str, Dict[str, SubjectInput]] = {}

    for position, (_, row) in enumerate(df.iterrows(), start=1):
        student = str(row['Student']).strip()
        code = _optional_text(row.get('Subject Code'))
        name = _optional_text(row.get('Subject Name'))
        if not code or not name:
            raise ValidationError(f"Row {position}: subject name and code are required")

        scores = {}
        for column, field in SCORE_COLUMNS.items():
            value = clean_score(row.get(column), f"Row {position} {column}")
            if value < 0 or value > 100:
                raise ValidationError(f"Row {position} {column} must be between 0 and 100, got {value:g}")
            scores[field] = value

        pass_mark = None
        if 'Pass Mark' in df.columns and _optional_text(row.get('Pass Mark')) is not None:
            pass_mark = clean_score(row.get('Pass Mark'), f"Row {position} Pass Mark")
            if pass_mark < 0 or pass_mark > 100:
                raise ValidationError(f"Row {position} Pass Mark must be between 0 and 100")

        grouped.setdefault(student, {})[code] = SubjectInput(
            subject_name=name,
            subject_code=code,
            teacher=_optional_text(row.get('Teacher')),
            scores=SubjectComponentScores(**scores),
            pass_mark=pass_mark,
        )

    return {student: list(subjects.values()) for student, subjects in grouped.items()}
