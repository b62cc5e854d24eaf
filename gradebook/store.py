"""In-memory persistence for schools, students and results.

Every result write goes through :meth:`ResultStore.save_result`, which runs
the full recompute before storing. Cohort ranking and term activation run
under the store lock so readers never see a half-updated class or calendar.
"""

import logging
import threading
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from gradebook.compute import compute_for_school
from gradebook.config import EngineConfig
from gradebook.errors import NotFoundError, StaleResultError, StateError, ValidationError
from gradebook.grading import validate_grading_scale
from gradebook.identifiers import SequentialIdentifierAllocator
from gradebook.lifecycle import (
    archive_result,
    generate_report_card,
    publish_report_card,
    reset_report_card,
    transition,
    unpublish_report_card,
)
from gradebook.models import (
    AcademicYear,
    Activity,
    Attendance,
    Behavior,
    Comments,
    GradingSystem,
    RankingEntry,
    Result,
    ResultCreateRequest,
    ResultStatus,
    School,
    SchoolClass,
    SchoolSubject,
    Student,
    SubjectInput,
    SubjectRecord,
    SubjectScoresUpdate,
    SubjectWeightings,
    Term,
    TiePolicy,
)
from gradebook.notices import LoggingNotifier, Notifier, generate_publication_notice
from gradebook.ranking import clear_positions, rank_cohort, ranking_inputs
from gradebook.rendering import ReportRenderer, UrlTemplateRenderer
from gradebook import catalogue
from gradebook import terms as term_manager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultStore:
    """Thread-safe store and service layer for the result engine."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        renderer: Optional[ReportRenderer] = None,
        notifier: Optional[Notifier] = None,
        allocator: Optional[SequentialIdentifierAllocator] = None
    ):
        self.config = config or EngineConfig()
        self.renderer = renderer or UrlTemplateRenderer(self.config.report_url_template)
        self.notifier = notifier or LoggingNotifier()
        self.allocator = allocator or SequentialIdentifierAllocator(self.config.student_id_prefix)
        self._lock = threading.RLock()
        self._schools: Dict[str, School] = {}
        self._students: Dict[str, Student] = {}
        self._results: Dict[str, Result] = {}
        # cohorts whose positions no longer match their scores
        self._unranked: Set[Tuple[str, str, str, str]] = set()

    def clear(self) -> None:
        with self._lock:
            self._schools.clear()
            self._students.clear()
            self._results.clear()
            self._unranked.clear()

    # ------------------------------------------------------------------
    # Schools
    # ------------------------------------------------------------------

    def get_school(self, school_id: str) -> School:
        with self._lock:
            school = self._schools.get(school_id)
            if school is None:
                raise NotFoundError(f"School {school_id} not found")
            return school.model_copy(deep=True)

    def save_school(self, school: School) -> School:
        """Persist a school after checking its calendar and grading scale."""
        school = term_manager.ensure_single_active_term(school, strict=self.config.strict_term_invariant)
        validate_grading_scale(school.grading_system.scale)
        with self._lock:
            self._schools[school.id] = school.model_copy(deep=True)
        return school.model_copy(deep=True)

    def create_school(self, school: School) -> School:
        with self._lock:
            if school.id in self._schools:
                raise ValidationError(f"School {school.id} already exists")
            return self.save_school(school)

    def update_grading_system(self, school_id: str, grading: GradingSystem) -> School:
        validate_grading_scale(grading.scale)
        with self._lock:
            school = self.get_school(school_id)
            school.grading_system = grading
            return self.save_school(school)

    def add_term(self, school_id: str, name: str, start_date: date, end_date: date) -> Term:
        with self._lock:
            school, term = term_manager.create_term(self.get_school(school_id), name, start_date, end_date)
            self.save_school(school)
            return term

    def activate_term(self, school_id: str, term_id: str) -> School:
        with self._lock:
            school = term_manager.activate_term(self.get_school(school_id), term_id)
            return self.save_school(school)

    def update_term(self, school_id: str, term_id: str, name: Optional[str] = None,
                    start_date: Optional[date] = None, end_date: Optional[date] = None) -> Term:
        with self._lock:
            school = term_manager.update_term(self.get_school(school_id), term_id,
                                              name, start_date, end_date)
            self.save_school(school)
            return term_manager.find_term(school, term_id)

    def _change_school(self, school_id: str, change) -> School:
        with self._lock:
            return self.save_school(change(self.get_school(school_id)))

    def add_subject(self, school_id: str, subject: SchoolSubject) -> School:
        return self._change_school(school_id, lambda s: catalogue.add_subject(s, subject))

    def update_subject_catalogue(self, school_id: str, code: str, subject: SchoolSubject) -> School:
        return self._change_school(school_id, lambda s: catalogue.update_subject(s, code, subject))

    def remove_subject(self, school_id: str, code: str) -> School:
        return self._change_school(school_id, lambda s: catalogue.remove_subject(s, code))

    def add_class(self, school_id: str, school_class: SchoolClass, position: Optional[int] = None) -> School:
        return self._change_school(school_id, lambda s: catalogue.add_class(s, school_class, position))

    def update_class(self, school_id: str, name: str, school_class: SchoolClass) -> School:
        return self._change_school(school_id, lambda s: catalogue.update_class(s, name, school_class))

    def remove_class(self, school_id: str, name: str) -> School:
        return self._change_school(school_id, lambda s: catalogue.remove_class(s, name))

    def start_new_academic_year(self, school_id: str, academic_year: AcademicYear) -> School:
        with self._lock:
            school = term_manager.start_new_academic_year(self.get_school(school_id), academic_year)
            return self.save_school(school)

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def get_student(self, student_id: str) -> Student:
        with self._lock:
            student = self._students.get(student_id)
            if student is None:
                raise NotFoundError(f"Student {student_id} not found")
            return student.model_copy(deep=True)

    def find_student(self, school_id: str, identifier: str) -> Student:
        """Look a student up by record id or by school-scoped identifier."""
        with self._lock:
            student = self._students.get(identifier)
            if student is None or student.school != school_id:
                student = next(
                    (s for s in self._students.values()
                     if s.school == school_id and identifier in (s.student_id, s.admission_number)),
                    None
                )
            if student is None:
                raise NotFoundError(f"Student {identifier} not found in school {school_id}")
            return student.model_copy(deep=True)

    def admit_student(self, student: Student) -> Student:
        """
        Store a new student, allocating its school-scoped identifier.

        An identifier supplied by the caller is kept if it is unused in the
        school; it is never changed afterwards.
        """
        with self._lock:
            self.get_school(student.school)
            if student.id in self._students:
                raise ValidationError(f"Student {student.id} already exists")
            in_school = [s for s in self._students.values() if s.school == student.school]
            taken = {s.student_id for s in in_school}

            student = student.model_copy(deep=True)
            if student.student_id:
                if student.student_id in taken:
                    raise ValidationError(f"Student ID {student.student_id} is already in use")
            else:
                self.allocator.seed(student.school, len(in_school))
                student.student_id = self.allocator.allocate(student.school, student.admission_date)
                while student.student_id in taken:
                    student.student_id = self.allocator.allocate(student.school, student.admission_date)

            self._students[student.id] = student
            logger.info(f"Admitted student {student.student_id} to school {student.school}")
            return student.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Results: reads
    # ------------------------------------------------------------------

    def get_result(self, result_id: str) -> Result:
        with self._lock:
            result = self._results.get(result_id)
            if result is None:
                raise NotFoundError(f"Result {result_id} not found")
            return result.model_copy(deep=True)

    def list_results(
        self,
        school: Optional[str] = None,
        class_name: Optional[str] = None,
        student: Optional[str] = None,
        academic_year: Optional[str] = None,
        term: Optional[str] = None,
        include_archived: bool = False
    ) -> List[Result]:
        filters = {
            'school': school,
            'class_name': class_name,
            'student': student,
            'academic_year': academic_year,
            'term': term,
        }
        with self._lock:
            matched = [
                r.model_copy(deep=True)
                for r in self._results.values()
                if all(v is None or getattr(r, k) == v for k, v in filters.items())
                and (include_archived or r.is_active)
            ]
        matched.sort(key=lambda r: (r.class_name, r.student, r.created_at or _utcnow()))
        return matched

    def cohort(self, school: str, class_name: str, academic_year: str, term: str) -> List[Result]:
        return self.list_results(school=school, class_name=class_name,
                                 academic_year=academic_year, term=term)

    # ------------------------------------------------------------------
    # Results: writes
    # ------------------------------------------------------------------

    def build_subject(self, school: School, subject: SubjectInput) -> SubjectRecord:
        """Fill pass mark and weightings from the school's subject catalogue."""
        pass_mark = subject.pass_mark
        if pass_mark is None:
            by_code = {s.code: s for s in school.subjects}
            if subject.subject_code in by_code:
                pass_mark = by_code[subject.subject_code].pass_mark
            else:
                pass_mark = school.grading_system.pass_mark_default
        return SubjectRecord(
            subject_name=subject.subject_name,
            subject_code=subject.subject_code,
            teacher=subject.teacher,
            scores=subject.scores,
            weightings=subject.weightings or SubjectWeightings(),
            pass_mark=pass_mark,
            teacher_comment=subject.teacher_comment,
        )

    def build_result(self, request: ResultCreateRequest, actor: Optional[str] = None) -> Result:
        school = self.get_school(request.school)
        student = self.get_student(request.student)
        if student.school != school.id:
            raise ValidationError(f"Student {student.id} does not belong to school {school.id}")
        return Result(
            student=student.id,
            school=school.id,
            academic_year=request.academic_year,
            term=request.term,
            class_name=request.class_name,
            exam_type=request.exam_type,
            subjects=[self.build_subject(school, s) for s in request.subjects],
            attendance=request.attendance or Attendance(),
            created_by=actor,
            last_updated_by=actor,
        )

    def create_result(self, request: ResultCreateRequest, actor: Optional[str] = None) -> Result:
        return self.save_result(self.build_result(request, actor), actor)

    def _computed(self, result: Result) -> Result:
        school = self.get_school(result.school)
        return compute_for_school(result, school, self.config.promotion_policy())

    def _write(self, computed: Result, expected_version: int, actor: Optional[str]) -> Result:
        # caller holds the lock
        stored = self._results.get(computed.id)
        if stored is not None and stored.version != expected_version:
            raise StaleResultError(
                f"Result {computed.id} was modified (version {stored.version}, "
                f"saving from {expected_version})"
            )
        now = _utcnow()
        computed.version = expected_version + 1
        computed.created_at = stored.created_at if stored else (computed.created_at or now)
        computed.updated_at = now
        if actor:
            computed.last_updated_by = actor
        self._results[computed.id] = computed.model_copy(deep=True)
        return computed

    def _prepare(self, result: Result) -> Tuple[Result, Optional[Result], bool]:
        """
        Apply the lifecycle rules for a write before it is recomputed.

        Returns the result to compute, the stored version (if any) and whether
        the write invalidates its class positions.
        """
        with self._lock:
            stored = self._results.get(result.id)
            stored = stored.model_copy(deep=True) if stored else None

        prepared = result.model_copy(deep=True)
        if stored is not None:
            # lifecycle fields only change through the report-card operations
            prepared.status = stored.status
            prepared.is_active = stored.is_active
            prepared.report_card = stored.report_card
            prepared = reset_report_card(prepared)

        reranks = (
            stored is None
            or stored.cohort_key != prepared.cohort_key
            or ranking_inputs(stored) != ranking_inputs(prepared)
        )
        if reranks:
            prepared = clear_positions(prepared)
        return prepared, stored, reranks

    def _mark_unranked(self, result: Result, stored: Optional[Result] = None) -> None:
        # caller holds the lock
        self._unranked.add(result.cohort_key)
        if stored is not None and stored.cohort_key != result.cohort_key:
            self._unranked.add(stored.cohort_key)

    def needs_ranking(self, result: Result) -> bool:
        with self._lock:
            return result.cohort_key in self._unranked

    def save_result(self, result: Result, actor: Optional[str] = None) -> Result:
        """
        Recompute all derived fields and store the result.

        Either the fully recomputed result is written or nothing is. A result
        saved from an outdated version raises StaleResultError. Saving over a
        Published or Archived result raises StateError, and saving over a
        Completed one discards its generated card. New results and score
        changes clear the result's positions and mark its class as needing
        a new ranking pass.
        """
        prepared, stored, reranks = self._prepare(result)
        computed = self._computed(prepared)
        with self._lock:
            saved = self._write(computed, result.version, actor)
            if reranks:
                self._mark_unranked(saved, stored)
            return saved

    def _edit(self, result_id: str, actor: Optional[str], change) -> Result:
        result = self.get_result(result_id)
        change(result)
        return self.save_result(result, actor)

    def update_subject(self, result_id: str, index: int, update: SubjectScoresUpdate,
                       actor: Optional[str] = None) -> Result:
        def change(result: Result):
            if index < 0 or index >= len(result.subjects):
                raise NotFoundError(f"Result {result_id} has no subject at index {index}")
            subject = result.subjects[index]
            if update.scores is not None:
                subject.scores = update.scores
            if update.weightings is not None:
                subject.weightings = update.weightings
            if update.pass_mark is not None:
                subject.pass_mark = update.pass_mark
            if update.teacher_comment is not None:
                subject.teacher_comment = update.teacher_comment
        return self._edit(result_id, actor, change)

    def update_attendance(self, result_id: str, attendance: Attendance, actor: Optional[str] = None) -> Result:
        def change(result: Result):
            result.attendance = attendance
        return self._edit(result_id, actor, change)

    def update_behavior(self, result_id: str, behavior: Behavior, actor: Optional[str] = None) -> Result:
        def change(result: Result):
            result.behavior = behavior
        return self._edit(result_id, actor, change)

    def update_comments(self, result_id: str, comments: Comments, actor: Optional[str] = None) -> Result:
        def change(result: Result):
            result.comments = comments
        return self._edit(result_id, actor, change)

    def update_activities(self, result_id: str, activities: List[Activity], actor: Optional[str] = None) -> Result:
        def change(result: Result):
            result.activities = list(activities)
        return self._edit(result_id, actor, change)

    def bulk_create_results(self, results: Iterable[Result], actor: Optional[str] = None) -> List[Result]:
        """Compute every result first, then store them all or none."""
        prepared = [self._prepare(r) for r in results]
        computed = [(self._computed(result), stored, reranks) for result, stored, reranks in prepared]
        with self._lock:
            for result, _, _ in computed:
                current = self._results.get(result.id)
                if current is not None and current.version != result.version:
                    raise StaleResultError(f"Result {result.id} was modified")
            saved = []
            for result, stored, reranks in computed:
                saved.append(self._write(result, result.version, actor))
                if reranks:
                    self._mark_unranked(result, stored)
        logger.info(f"Stored {len(saved)} results from bulk upload")
        return saved

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def calculate_positions(
        self,
        school: str,
        class_name: str,
        academic_year: str,
        term: str,
        tie_policy: Optional[TiePolicy] = None
    ) -> List[RankingEntry]:
        """
        Rank one class for a term and write positions to every member.

        Published members are ranked too and their stored positions change,
        but a card already rendered and the notice already sent keep the
        position they were published with until the card is unpublished and
        generated again.
        """
        self.get_school(school)
        tie_policy = tie_policy or self.config.ranking_tie_policy
        with self._lock:
            members = self.cohort(school, class_name, academic_year, term)
            ranked, entries = rank_cohort(members, tie_policy)
            now = _utcnow()
            for result in ranked:
                result.version += 1
                result.updated_at = now
                self._results[result.id] = result
            self._unranked.discard((school, class_name, academic_year, term))
        return entries

    # ------------------------------------------------------------------
    # Report-card lifecycle
    # ------------------------------------------------------------------

    def _store_transition(self, before: Result, after: Result) -> Result:
        with self._lock:
            stored = self._results.get(before.id)
            if stored is None or stored.version != before.version:
                raise StaleResultError(f"Result {before.id} was modified during the transition")
            after.version = before.version + 1
            after.updated_at = _utcnow()
            self._results[after.id] = after.model_copy(deep=True)
        return after

    def _notify(self, event: str, result: Result, notice=None) -> None:
        try:
            self.notifier.notify(event, result, notice)
        except Exception as e:
            logger.warning(f"Notifier failed for '{event}' on result {result.id}: {e}")

    def _student_name(self, student_id: str) -> str:
        with self._lock:
            student = self._students.get(student_id)
        return student.full_name if student else student_id

    def _ensure_ranked(self, result: Result) -> None:
        if self.config.require_ranking_before_generate and self.needs_ranking(result):
            raise StateError(
                f"Class positions for {result.class_name} {result.term} {result.academic_year} "
                f"are out of date; calculate class positions before generating reports"
            )

    def generate_report_card(self, result_id: str, actor: Optional[str] = None) -> Result:
        result = self.get_result(result_id)
        self._ensure_ranked(result)
        updated = generate_report_card(
            result, actor, self.renderer,
            require_ranking=self.config.require_ranking_before_generate,
        )
        return self._store_transition(result, updated)

    def publish_report_card(self, result_id: str, actor: Optional[str] = None) -> Result:
        result = self.get_result(result_id)
        updated = self._store_transition(result, publish_report_card(result, actor))
        notice = generate_publication_notice(self._student_name(updated.student), updated, self.config.sender)
        self._notify('report_published', updated, notice)
        return updated

    def unpublish_report_card(self, result_id: str, actor: Optional[str] = None) -> Result:
        result = self.get_result(result_id)
        updated = self._store_transition(result, unpublish_report_card(result, actor))
        self._notify('status_changed', updated)
        return updated

    def archive_result(self, result_id: str, actor: Optional[str] = None) -> Result:
        with self._lock:
            if result_id not in self._results:
                raise StateError(f"Cannot archive result {result_id}: it does not exist")
        result = self.get_result(result_id)
        updated = self._store_transition(result, archive_result(result, actor))
        if result.is_active:
            with self._lock:
                self._mark_unranked(result)
        self._notify('status_changed', updated)
        return updated

    def set_status(self, result_id: str, status: ResultStatus, actor: Optional[str] = None) -> Result:
        status = ResultStatus(status)
        if status == ResultStatus.ARCHIVED:
            return self.archive_result(result_id, actor)
        if status == ResultStatus.PUBLISHED:
            return self.publish_report_card(result_id, actor)
        result = self.get_result(result_id)
        if status == ResultStatus.COMPLETED and result.status == ResultStatus.DRAFT:
            self._ensure_ranked(result)
        updated = transition(
            result, status, actor, self.renderer,
            require_ranking=self.config.require_ranking_before_generate,
        )
        if updated is result:
            return result
        updated = self._store_transition(result, updated)
        self._notify('status_changed', updated)
        return updated
