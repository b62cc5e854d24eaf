"""FastAPI application exposing the result engine."""

import logging
import os
import traceback
from typing import Dict, List, Optional

from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gradebook.config import load_config
from gradebook.errors import GradebookError
from gradebook.models import (
    AcademicYear,
    Activity,
    Attendance,
    Behavior,
    BulkUploadResponse,
    CalculatePositionsRequest,
    ClassCreateRequest,
    CalculatePositionsResponse,
    Comments,
    ExamType,
    GradingSystem,
    Result,
    ResultCreateRequest,
    School,
    SchoolClass,
    SchoolSubject,
    StatusUpdateRequest,
    Student,
    StudentCreateRequest,
    SubjectScoresUpdate,
    Term,
    TermCreateRequest,
    TermUpdateRequest,
)
from gradebook.parsers import load_score_sheet, parse_score_rows
from gradebook.reports import class_statistics, export_results_csv, result_statistics
from gradebook.store import ResultStore
from gradebook import terms as term_manager

config = load_config()

logging.basicConfig(
    level=getattr(logging, config.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Gradebook Result Engine", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# In-memory persistence shared by all requests
store = ResultStore(config)


@app.exception_handler(GradebookError)
async def gradebook_error_handler(request: Request, exc: GradebookError):
    """Map engine errors to JSON responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": exc.code}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "type": "validation_error"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    error_detail = str(exc)
    if os.getenv('DEBUG', 'False').lower() == 'true':
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"
    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


@app.get("/health")
async def health_check():
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


# ---------------------------------------------------------------------------
# Schools and terms
# ---------------------------------------------------------------------------

@app.post("/schools", response_model=School, status_code=201)
def create_school(school: School):
    return store.create_school(school)


@app.get("/schools/{school_id}", response_model=School)
def get_school(school_id: str):
    return store.get_school(school_id)


@app.put("/schools/{school_id}/grading-system", response_model=School)
def update_grading_system(school_id: str, grading: GradingSystem):
    return store.update_grading_system(school_id, grading)


@app.post("/schools/{school_id}/academic-year", response_model=School)
def start_academic_year(school_id: str, academic_year: AcademicYear):
    return store.start_new_academic_year(school_id, academic_year)


@app.post("/schools/{school_id}/terms", response_model=Term, status_code=201)
def create_term(school_id: str, payload: TermCreateRequest):
    return store.add_term(school_id, payload.name, payload.start_date, payload.end_date)


@app.put("/schools/{school_id}/terms/{term_id}", response_model=Term)
def update_term(school_id: str, term_id: str, payload: TermUpdateRequest):
    """Rename or re-date a term; activation has its own endpoint."""
    return store.update_term(school_id, term_id, payload.name, payload.start_date, payload.end_date)


@app.post("/schools/{school_id}/subjects", response_model=School, status_code=201)
def add_subject(school_id: str, subject: SchoolSubject):
    return store.add_subject(school_id, subject)


@app.put("/schools/{school_id}/subjects/{code}", response_model=School)
def update_subject(school_id: str, code: str, subject: SchoolSubject):
    return store.update_subject_catalogue(school_id, code, subject)


@app.delete("/schools/{school_id}/subjects/{code}", response_model=School)
def delete_subject(school_id: str, code: str):
    return store.remove_subject(school_id, code)


@app.post("/schools/{school_id}/classes", response_model=School, status_code=201)
def add_class(school_id: str, payload: ClassCreateRequest):
    school_class = SchoolClass(**payload.model_dump(exclude={'position'}))
    return store.add_class(school_id, school_class, payload.position)


@app.put("/schools/{school_id}/classes/{class_name}", response_model=School)
def update_class(school_id: str, class_name: str, school_class: SchoolClass):
    return store.update_class(school_id, class_name, school_class)


@app.delete("/schools/{school_id}/classes/{class_name}", response_model=School)
def delete_class(school_id: str, class_name: str):
    return store.remove_class(school_id, class_name)


@app.put("/schools/{school_id}/terms/{term_id}/activate", response_model=School)
def activate_term(school_id: str, term_id: str):
    return store.activate_term(school_id, term_id)


@app.get("/schools/{school_id}/terms/active", response_model=Term)
def get_active_term(school_id: str):
    term = term_manager.active_term(store.get_school(school_id))
    if term is None:
        raise HTTPException(status_code=404, detail="No active term")
    return term


# ---------------------------------------------------------------------------
# Students
# ---------------------------------------------------------------------------

@app.post("/students", response_model=Student, status_code=201)
def admit_student(payload: StudentCreateRequest):
    data = payload.model_dump(exclude_none=True)
    return store.admit_student(Student(**data))


@app.get("/students/{student_id}", response_model=Student)
def get_student(student_id: str):
    return store.get_student(student_id)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@app.post("/results", response_model=Result, status_code=201)
def create_result(payload: ResultCreateRequest, x_user_id: Optional[str] = Header(None)):
    return store.create_result(payload, x_user_id)


@app.get("/results", response_model=List[Result])
def list_results(
    school: Optional[str] = None,
    class_name: Optional[str] = None,
    academic_year: Optional[str] = None,
    term: Optional[str] = None,
    include_archived: bool = False
):
    return store.list_results(school=school, class_name=class_name, academic_year=academic_year,
                              term=term, include_archived=include_archived)


@app.get("/results/statistics")
def get_result_statistics(
    school: Optional[str] = None,
    class_name: Optional[str] = None,
    academic_year: Optional[str] = None,
    term: Optional[str] = None,
    by_class: bool = False
):
    results = store.list_results(school=school, class_name=class_name,
                                 academic_year=academic_year, term=term)
    if by_class:
        return class_statistics(results)
    return result_statistics(results)


@app.get("/results/student/{student_id}", response_model=List[Result])
def get_student_results(student_id: str, include_archived: bool = False):
    store.get_student(student_id)
    return store.list_results(student=student_id, include_archived=include_archived)


@app.get("/results/class/{class_name}", response_model=List[Result])
def get_class_results(
    class_name: str,
    school: str,
    academic_year: Optional[str] = None,
    term: Optional[str] = None
):
    return store.list_results(school=school, class_name=class_name,
                              academic_year=academic_year, term=term)


@app.get("/results/class/{class_name}/export")
def export_class_results(
    class_name: str,
    school: str,
    academic_year: Optional[str] = None,
    term: Optional[str] = None
):
    """Download a class's results as CSV."""
    results = store.list_results(school=school, class_name=class_name,
                                 academic_year=academic_year, term=term)
    if not results:
        raise HTTPException(status_code=404, detail="No results available")

    def student_name(student_id: str) -> str:
        try:
            return store.get_student(student_id).full_name
        except GradebookError:
            return student_id

    content = export_results_csv(results, student_name)
    filename = f"results_{class_name}_{term or 'all'}.csv".replace(' ', '_')
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.post("/results/calculate-positions", response_model=CalculatePositionsResponse)
def calculate_positions(payload: CalculatePositionsRequest):
    entries = store.calculate_positions(
        payload.school, payload.class_name, payload.academic_year, payload.term,
        payload.tie_policy
    )
    return CalculatePositionsResponse(cohort_size=len(entries), rankings=entries)


@app.post("/results/bulk-upload", response_model=BulkUploadResponse)
async def bulk_upload_results(
    file: UploadFile = File(...),
    school: str = Form(...),
    academic_year: str = Form(...),
    term: str = Form(...),
    class_name: str = Form(...),
    exam_type: ExamType = Form(...),
    x_user_id: Optional[str] = Header(None)
):
    """Create results for a class from a score sheet (one row per student and subject)."""
    file_bytes = await file.read()
    if len(file_bytes) > config.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {config.max_upload_size_mb}MB"
        )

    try:
        df = load_score_sheet(file_bytes, file.filename or 'scores.xlsx')
    except GradebookError:
        raise
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Error loading score sheet: {str(e)}")

    if df.empty:
        raise HTTPException(status_code=400, detail="No score rows found in the uploaded file.")

    subjects_by_student = parse_score_rows(df)
    pending = []
    for identifier, subjects in subjects_by_student.items():
        student = store.find_student(school, identifier)
        request = ResultCreateRequest(
            student=student.id,
            school=school,
            academic_year=academic_year,
            term=term,
            class_name=class_name,
            exam_type=exam_type,
            subjects=subjects,
        )
        pending.append(store.build_result(request, x_user_id))

    saved = store.bulk_create_results(pending, x_user_id)
    promoted = sum(1 for r in saved if r.overall_performance.is_promoted)
    summary: Dict[str, int] = {
        'Total': len(saved),
        'Promoted': promoted,
        'Not Promoted': len(saved) - promoted,
        'Subject Rows': int(len(df)),
    }
    logger.info(f"Bulk upload for {class_name}: {summary}")

    return BulkUploadResponse(
        success=True,
        message=f"Successfully processed {len(saved)} students",
        results=saved,
        summary=summary
    )


@app.get("/results/{result_id}", response_model=Result)
def get_result(result_id: str):
    return store.get_result(result_id)


@app.put("/results/{result_id}/subject/{subject_index}", response_model=Result)
def update_subject_result(result_id: str, subject_index: int, payload: SubjectScoresUpdate,
                          x_user_id: Optional[str] = Header(None)):
    return store.update_subject(result_id, subject_index, payload, x_user_id)


@app.put("/results/{result_id}/attendance", response_model=Result)
def update_attendance(result_id: str, payload: Attendance, x_user_id: Optional[str] = Header(None)):
    return store.update_attendance(result_id, payload, x_user_id)


@app.put("/results/{result_id}/behavior", response_model=Result)
def update_behavior(result_id: str, payload: Behavior, x_user_id: Optional[str] = Header(None)):
    return store.update_behavior(result_id, payload, x_user_id)


@app.put("/results/{result_id}/comments", response_model=Result)
def update_comments(result_id: str, payload: Comments, x_user_id: Optional[str] = Header(None)):
    return store.update_comments(result_id, payload, x_user_id)


@app.put("/results/{result_id}/activities", response_model=Result)
def update_activities(result_id: str, payload: List[Activity], x_user_id: Optional[str] = Header(None)):
    return store.update_activities(result_id, payload, x_user_id)


@app.post("/results/{result_id}/generate-report", response_model=Result)
def generate_report(result_id: str, x_user_id: Optional[str] = Header(None)):
    return store.generate_report_card(result_id, x_user_id)


@app.put("/results/{result_id}/publish-report", response_model=Result)
def publish_report(result_id: str, x_user_id: Optional[str] = Header(None)):
    return store.publish_report_card(result_id, x_user_id)


@app.put("/results/{result_id}/unpublish-report", response_model=Result)
def unpublish_report(result_id: str, x_user_id: Optional[str] = Header(None)):
    return store.unpublish_report_card(result_id, x_user_id)


@app.put("/results/{result_id}/status", response_model=Result)
def update_result_status(result_id: str, payload: StatusUpdateRequest,
                         x_user_id: Optional[str] = Header(None)):
    return store.set_status(result_id, payload.status, x_user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
