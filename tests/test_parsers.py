"""Unit tests for score sheet parsing."""

from io import BytesIO

import numpy as np
import pandas as pd
import pytest
from openpyxl import Workbook

from gradebook.errors import ValidationError
from gradebook.parsers import (
    clean_score,
    drop_summary_rows,
    load_score_sheet,
    normalize_col_name,
    normalize_score_columns,
    parse_score_rows,
)

CSV_SHEET = b"""Student ID,Subject Name,Subject Code,Class Work,Homework,Class Test,Assignment,Project,Mid-Term Exam,Final Exam
STU240001,Mathematics,MATH,80,90,70,60,100,65,75
STU240001,English,ENG,50,50,50,50,50,50,50
STU240002,Mathematics,MATH,85%,,90,88,92,79,81
Total,,,,,,,,,
"""


def _excel_bytes(rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_normalize_col_name():
    assert normalize_col_name('  Mid_Term  Exam ') == 'mid term exam'
    assert normalize_col_name('Student#') == 'student#'
    assert normalize_col_name('Score %:') == 'score'
    assert normalize_col_name(None) == ''
    assert normalize_col_name(np.nan) == ''


def test_clean_score():
    assert clean_score('85%') == 85.0
    assert clean_score(' 72.5 ') == 72.5
    assert clean_score('') == 0.0
    assert clean_score(None) == 0.0
    assert clean_score(np.nan) == 0.0
    assert clean_score(64) == 64.0
    with pytest.raises(ValidationError):
        clean_score('absent')
    with pytest.raises(ValidationError):
        clean_score(float('inf'))


def test_normalize_score_columns():
    df = pd.DataFrame({
        'student number': ['STU240001'],
        'Subject': ['Mathematics'],
        'CODE': ['MATH'],
        'CW': [80],
        'Midterm': [70],
        'Exam': [90],
    })
    normalized = normalize_score_columns(df)
    assert list(normalized.columns) == [
        'Student', 'Subject Name', 'Subject Code', 'Class Work', 'Mid-Term Exam', 'Final Exam'
    ]


def test_normalize_score_columns_missing_required():
    df = pd.DataFrame({'Student': ['STU240001'], 'Final Exam': [90]})
    with pytest.raises(ValidationError, match='Subject Name'):
        normalize_score_columns(df)


def test_drop_summary_rows():
    df = pd.DataFrame({'Student': ['STU240001', None, '', 'Class Average', 'STU240002']})
    assert drop_summary_rows(df)['Student'].tolist() == ['STU240001', 'STU240002']


def test_load_csv_sheet():
    df = load_score_sheet(CSV_SHEET, 'scores.csv')
    assert len(df) == 3

    by_student = parse_score_rows(df)
    assert set(by_student) == {'STU240001', 'STU240002'}
    maths, english = by_student['STU240001']
    assert maths.subject_code == 'MATH'
    assert maths.scores.project == 100.0
    assert english.scores.final_exam == 50.0

    kofi_maths = by_student['STU240002'][0]
    assert kofi_maths.scores.class_work == 85.0
    assert kofi_maths.scores.homework == 0.0
    assert kofi_maths.pass_mark is None


def test_load_excel_sheet_with_title_rows():
    content = _excel_bytes([
        ['Accra Model School'],
        ['JHS 1 First Term Scores'],
        ['Scores are out of 100'],
        ['Student', 'Subject Name', 'Subject Code', 'Teacher', 'Class Work', 'Final Exam', 'Pass Mark'],
        ['STU240001', 'Science', 'SCI', 'teacher-3', 70, 80, 60],
        ['STU240002', 'Science', 'SCI', None, 55, 45, None],
    ])
    df = load_score_sheet(content, 'scores.xlsx')
    by_student = parse_score_rows(df)

    science = by_student['STU240001'][0]
    assert science.teacher == 'teacher-3'
    assert science.scores.class_work == 70.0
    assert science.scores.final_exam == 80.0
    assert science.scores.homework == 0.0
    assert science.pass_mark == 60.0

    other = by_student['STU240002'][0]
    assert other.teacher is None
    assert other.pass_mark is None


def test_duplicate_rows_keep_last():
    df = pd.DataFrame({
        'Student': ['STU240001', 'STU240001'],
        'Subject Name': ['Mathematics', 'Mathematics'],
        'Subject Code': ['MATH', 'MATH'],
        'Final Exam': ['40', '65'],
    })
    subjects = parse_score_rows(df)['STU240001']
    assert len(subjects) == 1
    assert subjects[0].scores.final_exam == 65.0


def test_out_of_range_score_names_row():
    df = pd.DataFrame({
        'Student': ['STU240001', 'STU240002'],
        'Subject Name': ['Mathematics', 'Mathematics'],
        'Subject Code': ['MATH', 'MATH'],
        'Final Exam': ['65', '105'],
    })
    with pytest.raises(ValidationError, match='Row 2 Final Exam'):
        parse_score_rows(df)


def test_missing_subject_code():
    df = pd.DataFrame({
        'Student': ['STU240001'],
        'Subject Name': ['Mathematics'],
        'Subject Code': [None],
    })
    with pytest.raises(ValidationError, match='Row 1'):
        parse_score_rows(df)


def test_unsupported_file_type():
    with pytest.raises(ValidationError, match='Invalid file type'):
        load_score_sheet(b'Student,Subject', 'scores.txt')
