"""Data models for the result engine."""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, List

from pydantic import BaseModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


COMPONENTS = (
    'class_work',
    'homework',
    'class_test',
    'assignment',
    'project',
    'mid_term_exam',
    'final_exam',
)


class ResultStatus(str, Enum):
    DRAFT = 'Draft'
    COMPLETED = 'Completed'
    PUBLISHED = 'Published'
    ARCHIVED = 'Archived'


class ExamType(str, Enum):
    MID_TERM = 'Mid-Term'
    END_OF_TERM = 'End-of-Term'
    MOCK = 'Mock'
    FINAL = 'Final'
    TEST = 'Test'


class Rating(str, Enum):
    EXCELLENT = 'Excellent'
    VERY_GOOD = 'Very Good'
    GOOD = 'Good'
    FAIR = 'Fair'
    POOR = 'Poor'


class TiePolicy(str, Enum):
    """How equal scores share positions."""
    COMPETITION = 'competition'  # 1, 1, 3
    DENSE = 'dense'              # 1, 1, 2
    ORDINAL = 'ordinal'          # 1, 2, 3


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------

class SubjectComponentScores(BaseModel):
    """Raw component scores for one subject, each out of 100."""
    class_work: float = Field(0.0, ge=0, le=100)
    homework: float = Field(0.0, ge=0, le=100)
    class_test: float = Field(0.0, ge=0, le=100)
    assignment: float = Field(0.0, ge=0, le=100)
    project: float = Field(0.0, ge=0, le=100)
    mid_term_exam: float = Field(0.0, ge=0, le=100)
    final_exam: float = Field(0.0, ge=0, le=100)


class SubjectWeightings(BaseModel):
    """Percentage contribution of each component; must sum to 100."""
    class_work: float = Field(10.0, ge=0)
    homework: float = Field(10.0, ge=0)
    class_test: float = Field(20.0, ge=0)
    assignment: float = Field(10.0, ge=0)
    project: float = Field(10.0, ge=0)
    mid_term_exam: float = Field(20.0, ge=0)
    final_exam: float = Field(20.0, ge=0)


class SubjectRecord(BaseModel):
    subject_name: str
    subject_code: str
    teacher: Optional[str] = None
    scores: SubjectComponentScores = Field(default_factory=SubjectComponentScores)
    weightings: SubjectWeightings = Field(default_factory=SubjectWeightings)
    pass_mark: float = Field(50.0, ge=0, le=100)
    teacher_comment: Optional[str] = Field(None, max_length=200)

    # Derived
    total_score: Optional[float] = None
    grade: Optional[str] = None
    grade_point: Optional[float] = None
    remark: Optional[str] = None
    is_passed: bool = False
    position: Optional[int] = None
    total_students: Optional[int] = None


class OverallPerformance(BaseModel):
    total_score: float = 0.0
    average_score: float = 0.0
    overall_grade: Optional[str] = None
    overall_gpa: float = 0.0
    position: Optional[int] = None
    total_students: Optional[int] = None
    subjects_passed: int = 0
    subjects_failed: int = 0
    is_promoted: bool = False
    next_class: Optional[str] = None


class Attendance(BaseModel):
    total_days: int = Field(0, ge=0)
    present_days: int = Field(0, ge=0)
    absent_days: int = Field(0, ge=0)
    late_comings: int = Field(0, ge=0)
    attendance_percentage: float = 0.0


class Behavior(BaseModel):
    conduct: Rating = Rating.GOOD
    attitude: Rating = Rating.GOOD
    punctuality: Rating = Rating.GOOD
    cooperation: Rating = Rating.GOOD


class TeacherComment(BaseModel):
    comment: Optional[str] = None
    author: Optional[str] = None


class Comments(BaseModel):
    class_teacher: TeacherComment = Field(default_factory=TeacherComment)
    principal: TeacherComment = Field(default_factory=TeacherComment)


class Activity(BaseModel):
    name: str
    grade: Optional[Rating] = None
    position: Optional[str] = None
    achievement: Optional[str] = None


class ReportCard(BaseModel):
    is_generated: bool = False
    generated_at: Optional[datetime] = None
    generated_by: Optional[str] = None
    pdf_url: Optional[str] = None
    is_published: bool = False
    published_at: Optional[datetime] = None
    published_by: Optional[str] = None


class NextTerm(BaseModel):
    resumption_date: Optional[date] = None
    new_class: Optional[str] = None
    fees_for_next_term: Optional[float] = None


class Result(BaseModel):
    """A student's academic record for one exam of one term."""
    id: str = Field(default_factory=new_id)
    student: str
    school: str
    academic_year: str
    term: str
    class_name: str
    exam_type: ExamType
    subjects: List[SubjectRecord] = Field(default_factory=list)
    overall_performance: OverallPerformance = Field(default_factory=OverallPerformance)
    attendance: Attendance = Field(default_factory=Attendance)
    behavior: Behavior = Field(default_factory=Behavior)
    comments: Comments = Field(default_factory=Comments)
    activities: List[Activity] = Field(default_factory=list)
    report_card: ReportCard = Field(default_factory=ReportCard)
    next_term: NextTerm = Field(default_factory=NextTerm)
    created_by: Optional[str] = None
    last_updated_by: Optional[str] = None
    status: ResultStatus = ResultStatus.DRAFT
    is_active: bool = True
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def cohort_key(self):
        return (self.school, self.class_name, self.academic_year, self.term)


# ---------------------------------------------------------------------------
# School
# ---------------------------------------------------------------------------

class GradeBand(BaseModel):
    """One interval of a school's custom grading scale."""
    grade: str
    min_score: float = Field(..., ge=0, le=100)
    max_score: float = Field(..., ge=0, le=100)
    description: Optional[str] = None
    grade_point: Optional[float] = Field(None, ge=0, le=4)


class GradingSystem(BaseModel):
    type: str = 'Percentage'
    scale: List[GradeBand] = Field(default_factory=list)
    pass_mark_default: float = Field(50.0, ge=0, le=100)


class Term(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    start_date: date
    end_date: date
    is_active: bool = False


class AcademicYear(BaseModel):
    current: str
    start_date: date
    end_date: date


class SchoolSubject(BaseModel):
    name: str
    code: str
    level: Optional[str] = None
    is_core: bool = False
    pass_mark: float = Field(50.0, ge=0, le=100)


class SchoolClass(BaseModel):
    name: str
    level: Optional[str] = None
    capacity: int = 30
    class_teacher: Optional[str] = None


class School(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    academic_year: Optional[AcademicYear] = None
    terms: List[Term] = Field(default_factory=list)
    grading_system: GradingSystem = Field(default_factory=GradingSystem)
    subjects: List[SchoolSubject] = Field(default_factory=list)
    classes: List[SchoolClass] = Field(default_factory=list)
    is_active: bool = True

    @property
    def class_progression(self) -> List[str]:
        return [c.name for c in self.classes]


class Student(BaseModel):
    id: str = Field(default_factory=new_id)
    student_id: Optional[str] = None
    school: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    current_class: str
    level: Optional[str] = None
    admission_date: date = Field(default_factory=date.today)
    admission_number: Optional[str] = None
    status: str = 'Active'
    is_active: bool = True

    @property
    def full_name(self) -> str:
        if self.middle_name:
            return f"{self.first_name} {self.middle_name} {self.last_name}"
        return f"{self.first_name} {self.last_name}"


# ---------------------------------------------------------------------------
# Ranking output
# ---------------------------------------------------------------------------

class RankingEntry(BaseModel):
    """Position of one result within its cohort."""
    result_id: str
    student: str
    score: float
    position: int
    total_students: int


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class SubjectInput(BaseModel):
    subject_name: str
    subject_code: str
    teacher: Optional[str] = None
    scores: SubjectComponentScores = Field(default_factory=SubjectComponentScores)
    weightings: Optional[SubjectWeightings] = None
    pass_mark: Optional[float] = Field(None, ge=0, le=100)
    teacher_comment: Optional[str] = Field(None, max_length=200)


class ResultCreateRequest(BaseModel):
    student: str
    school: str
    academic_year: str
    term: str
    class_name: str
    exam_type: ExamType
    subjects: List[SubjectInput] = Field(..., min_length=1)
    attendance: Optional[Attendance] = None


class SubjectScoresUpdate(BaseModel):
    scores: Optional[SubjectComponentScores] = None
    weightings: Optional[SubjectWeightings] = None
    pass_mark: Optional[float] = Field(None, ge=0, le=100)
    teacher_comment: Optional[str] = Field(None, max_length=200)


class CalculatePositionsRequest(BaseModel):
    school: str
    class_name: str
    academic_year: str
    term: str
    tie_policy: Optional[TiePolicy] = None


class CalculatePositionsResponse(BaseModel):
    cohort_size: int
    rankings: List[RankingEntry]


class StatusUpdateRequest(BaseModel):
    status: ResultStatus


class StudentCreateRequest(BaseModel):
    school: str
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    current_class: str
    level: Optional[str] = None
    admission_date: Optional[date] = None
    admission_number: Optional[str] = None


class TermCreateRequest(BaseModel):
    name: str
    start_date: date
    end_date: date


class TermUpdateRequest(BaseModel):
    name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ClassCreateRequest(SchoolClass):
    position: Optional[int] = Field(None, ge=0)


class BulkUploadResponse(BaseModel):
    success: bool
    message: str
    results: List[Result]
    summary: Dict[str, int]
