import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import aggregation
from aggregation import ALL_PLATFORMS, SIMPLE_METRICS, Snapshot
from database import DocumentStore, StoreError, create_document, fetch_snapshot, get_store
from schemas import (
    Achievement,
    AchievementCreate,
    AchievementRow,
    AttendanceCreate,
    AttendanceRecord,
    AttendanceRow,
    AttendanceSummary,
    Course,
    CourseCreate,
    DashboardStats,
    Enrollment,
    EnrollmentCreate,
    Exam,
    ExamCreate,
    ExamResult,
    ExamRow,
    GradeResult,
    LeaderboardEntry,
    ResultCreate,
    ResultRow,
    SimpleLeaderboardEntry,
    Student,
    StudentCreate,
    StudentReport,
    StudentUpdate,
    Teacher,
    TeacherCreate,
    normalize,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Student Management System API")

frontend_origin = os.getenv("FRONTEND_URL", "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": f"Data store unavailable: {exc}"})


# Utility functions

def generate_id(store: DocumentStore, collection: str, field: str, prefix: str) -> str:
    """Next free id of the form PREFIX001, counting from the collection size."""
    n = store.count(collection) + 1
    candidate = f"{prefix}{str(n).zfill(3)}"
    while store.find_one(collection, {field: candidate}):
        n += 1
        candidate = f"{prefix}{str(n).zfill(3)}"
    return candidate


def load_snapshot(store: DocumentStore, *collections: str) -> Snapshot:
    return Snapshot.from_documents(fetch_snapshot(store, *collections))


def insert_unique(store: DocumentStore, collection: str, field: str, record, label: str):
    value = getattr(record, field)
    if store.find_one(collection, {field: value}):
        raise HTTPException(status_code=400, detail=f"{label} with id {value} already exists")
    create_document(collection, record, store=store)
    return record


@app.get("/")
def read_root():
    return {"message": "Student Management System API"}


@app.get("/health")
def health():
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/test")
def test_database(store: DocumentStore = Depends(get_store)):
    """Test endpoint to check if the data store is available and accessible"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response.update(store.status())
        if response.get("connection_status") == "Connected":
            response["database"] = "✅ Connected & Working"
        else:
            response["database"] = "⚠️  Connected but Error"
    except Exception as e:
        logger.exception("Store status check failed")
        response["database"] = f"❌ Error: {str(e)[:50]}"
    response["env"] = {
        "DATABASE_URL": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "DATABASE_NAME": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
    }
    return response


# ------------------- STUDENTS -------------------
@app.post("/students", status_code=201, response_model=Student)
def create_student(payload: StudentCreate, store: DocumentStore = Depends(get_store)):
    student = Student(**payload.model_dump())
    return insert_unique(store, "student", "student_id", student, "Student")


@app.get("/students", response_model=List[Student])
def list_students(store: DocumentStore = Depends(get_store)):
    return normalize(Student, store.find("student"))


@app.get("/students/{student_id}", response_model=Student)
def get_student(student_id: str, store: DocumentStore = Depends(get_store)):
    doc = store.find_one("student", {"student_id": student_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Student not found")
    return Student.model_validate(doc)


@app.put("/students/{student_id}", response_model=Student)
def update_student(student_id: str, payload: StudentUpdate, store: DocumentStore = Depends(get_store)):
    changes = payload.model_dump(exclude_none=True)
    if not store.update("student", {"student_id": student_id}, changes):
        raise HTTPException(status_code=404, detail="Student not found")
    logger.info("Updated student %s (%s)", student_id, ", ".join(sorted(changes)) or "no changes")
    return Student.model_validate(store.find_one("student", {"student_id": student_id}))


@app.delete("/students/{student_id}")
def delete_student(student_id: str, store: DocumentStore = Depends(get_store)):
    if not store.delete("student", {"student_id": student_id}):
        raise HTTPException(status_code=404, detail="Student not found")
    logger.info("Deleted student %s", student_id)
    return {"message": "Student deleted"}


@app.get("/students/{student_id}/report", response_model=StudentReport)
def get_student_report(student_id: str, store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "student", "course", "attendance", "exam", "exam_result", "achievement")
    report = aggregation.student_report(student_id, snapshot)
    if report is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return report


# ------------------- COURSES & TEACHERS -------------------
@app.post("/courses", status_code=201, response_model=Course)
def create_course(payload: CourseCreate, store: DocumentStore = Depends(get_store)):
    course = Course(**payload.model_dump())
    if not course.course_id:
        course.course_id = generate_id(store, "course", "course_id", "C")
    return insert_unique(store, "course", "course_id", course, "Course")


@app.get("/courses", response_model=List[Course])
def list_courses(store: DocumentStore = Depends(get_store)):
    return normalize(Course, store.find("course"))


@app.delete("/courses/{course_id}")
def delete_course(course_id: str, store: DocumentStore = Depends(get_store)):
    if not store.delete("course", {"course_id": course_id}):
        raise HTTPException(status_code=404, detail="Course not found")
    logger.info("Deleted course %s", course_id)
    return {"message": "Course deleted"}


@app.post("/teachers", status_code=201, response_model=Teacher)
def create_teacher(payload: TeacherCreate, store: DocumentStore = Depends(get_store)):
    teacher = Teacher(**payload.model_dump())
    if not teacher.teacher_id:
        teacher.teacher_id = generate_id(store, "teacher", "teacher_id", "T")
    return insert_unique(store, "teacher", "teacher_id", teacher, "Teacher")


@app.get("/teachers", response_model=List[Teacher])
def list_teachers(store: DocumentStore = Depends(get_store)):
    return normalize(Teacher, store.find("teacher"))


# ------------------- ENROLLMENTS -------------------
@app.post("/enrollments", status_code=201, response_model=Enrollment)
def create_enrollment(payload: EnrollmentCreate, store: DocumentStore = Depends(get_store)):
    existing = store.find_one("enrollment", {"student_id": payload.student_id, "course_id": payload.course_id})
    if existing:
        raise HTTPException(status_code=400, detail="Already enrolled")
    enrollment = Enrollment(**payload.model_dump())
    if not enrollment.enrollment_id:
        enrollment.enrollment_id = generate_id(store, "enrollment", "enrollment_id", "E")
    if not enrollment.enrollment_date:
        enrollment.enrollment_date = datetime.now(timezone.utc).date().isoformat()
    return insert_unique(store, "enrollment", "enrollment_id", enrollment, "Enrollment")


@app.get("/enrollments", response_model=List[Enrollment])
def list_enrollments(student_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    filter_q = {"student_id": student_id} if student_id else None
    return normalize(Enrollment, store.find("enrollment", filter_q))


# ------------------- EXAMS & RESULTS -------------------
@app.post("/exams", status_code=201, response_model=Exam)
def create_exam(payload: ExamCreate, store: DocumentStore = Depends(get_store)):
    exam = Exam(**payload.model_dump())
    if not exam.exam_id:
        exam.exam_id = generate_id(store, "exam", "exam_id", "EX")
    return insert_unique(store, "exam", "exam_id", exam, "Exam")


@app.get("/exams", response_model=List[ExamRow])
def list_exams(store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "exam", "course", "exam_result")
    return aggregation.exam_rows(snapshot.exams, snapshot.courses, snapshot.results)


@app.post("/results", status_code=201, response_model=ExamResult)
def create_result(payload: ResultCreate, store: DocumentStore = Depends(get_store)):
    exams = normalize(Exam, store.find("exam", {"exam_id": payload.exam_id}))
    total_marks = aggregation.exam_total_marks(exams, payload.exam_id)
    result = ExamResult(
        result_id=payload.result_id or generate_id(store, "exam_result", "result_id", "R"),
        student_id=payload.student_id,
        exam_id=payload.exam_id,
        marks_obtained=payload.marks_obtained,
        grade=aggregation.grade_of(payload.marks_obtained, total_marks),
    )
    return insert_unique(store, "exam_result", "result_id", result, "Result")


@app.get("/results", response_model=List[ResultRow])
def list_results(student_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "exam_result", "student", "exam")
    results = snapshot.results
    if student_id:
        results = [r for r in results if r.student_id == student_id]
    return aggregation.result_rows(results, snapshot.students, snapshot.exams)


@app.get("/grades/calculate", response_model=GradeResult)
def calculate_grade(marks_obtained: float = Query(..., ge=0), total_marks: float = Query(100, gt=0)):
    return aggregation.grade_result(marks_obtained, total_marks)


# ------------------- ATTENDANCE -------------------
@app.post("/attendance", status_code=201, response_model=AttendanceRecord)
def mark_attendance(payload: AttendanceCreate, store: DocumentStore = Depends(get_store)):
    record = AttendanceRecord(**payload.model_dump())
    if not record.attendance_id:
        record.attendance_id = generate_id(store, "attendance", "attendance_id", "A")
    return insert_unique(store, "attendance", "attendance_id", record, "Attendance record")


@app.get("/attendance", response_model=List[AttendanceRow])
def list_attendance(student_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "attendance", "student", "course")
    records = snapshot.attendance
    if student_id:
        records = [r for r in records if r.student_id == student_id]
    return aggregation.attendance_rows(records, snapshot.students, snapshot.courses)


@app.get("/attendance/summary", response_model=List[AttendanceSummary])
def attendance_summary(course_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "attendance", "student")
    return aggregation.attendance_summaries(snapshot.attendance, snapshot.students, course_id)


@app.get("/attendance/summary/{student_id}", response_model=AttendanceSummary)
def student_attendance_summary(student_id: str, course_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "attendance", "student")
    return aggregation.attendance_summary(snapshot.attendance, student_id, snapshot.students, course_id)


# ------------------- ACHIEVEMENTS & LEADERBOARD -------------------
@app.post("/achievements", status_code=201, response_model=Achievement)
def create_achievement(payload: AchievementCreate, store: DocumentStore = Depends(get_store)):
    achievement = Achievement(**payload.model_dump())
    if not achievement.achievement_id:
        achievement.achievement_id = generate_id(store, "achievement", "achievement_id", "ACH")
    return insert_unique(store, "achievement", "achievement_id", achievement, "Achievement")


@app.get("/achievements", response_model=List[Achievement])
def list_achievements(student_id: Optional[str] = Query(None), store: DocumentStore = Depends(get_store)):
    filter_q = {"student_id": student_id} if student_id else None
    return normalize(Achievement, store.find("achievement", filter_q))


@app.get("/achievements/recent", response_model=List[AchievementRow])
def recent_achievements(limit: int = Query(10, ge=1, le=100), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "achievement", "student")
    return aggregation.recent_achievements(snapshot.achievements, snapshot.students, limit)


@app.get("/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(platform: str = Query(ALL_PLATFORMS), store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "achievement", "student")
    return aggregation.build_leaderboard(snapshot.achievements, snapshot.students, platform)


@app.get("/leaderboard/top", response_model=List[SimpleLeaderboardEntry])
def leaderboard_top(metric: str = Query("score"), limit: int = Query(5, ge=1, le=100), store: DocumentStore = Depends(get_store)):
    if metric not in SIMPLE_METRICS:
        raise HTTPException(status_code=400, detail=f"Unknown metric {metric!r}; expected one of {sorted(SIMPLE_METRICS)}")
    snapshot = load_snapshot(store, "achievement", "student")
    return aggregation.simple_leaderboard(snapshot.achievements, snapshot.students, metric, limit)


# ------------------- DASHBOARD -------------------
@app.get("/dashboard", response_model=DashboardStats)
def dashboard(store: DocumentStore = Depends(get_store)):
    snapshot = load_snapshot(store, "student", "course", "attendance", "exam", "exam_result", "achievement")
    return aggregation.dashboard_stats(snapshot)


# Demo seed
DEMO_STUDENTS = [
    {"student_id": "S001", "first_name": "Aarav", "last_name": "Sharma", "email": "aarav@example.com", "department": "Computer Science", "class_section": "A"},
    {"student_id": "S002", "first_name": "Diya", "last_name": "Patel", "email": "diya@example.com", "department": "Computer Science", "class_section": "A"},
    {"student_id": "S003", "first_name": "Kabir", "last_name": "Singh", "email": "kabir@example.com", "department": "Electronics", "class_section": "B"},
]
DEMO_COURSES = [
    {"course_id": "C001", "course_code": "CS101", "course_name": "Intro to Programming", "credits": 4},
    {"course_id": "C002", "course_code": "CS201", "course_name": "Data Structures", "credits": 4},
    {"course_id": "C003", "course_code": "CS301", "course_name": "Databases", "credits": 3},
]
DEMO_ACHIEVEMENTS = [
    {"achievement_id": "ACH001", "student_id": "S001", "problem_name": "Two Sum", "platform_name": "LeetCode", "score": 100, "achievement_type": "Problem Solved", "date_achieved": "2024-01-10"},
    {"achievement_id": "ACH002", "student_id": "S002", "problem_name": "Weekly Contest", "platform_name": "Codeforces", "score": 80, "achievement_type": "Contest Win", "date_achieved": "2024-01-12"},
    {"achievement_id": "ACH003", "student_id": "S001", "problem_name": "Graph Paths", "platform_name": "HackerRank", "score": 60, "achievement_type": "Problem Solved", "date_achieved": "2024-01-15"},
]


@app.post("/seed")
def seed(store: DocumentStore = Depends(get_store)):
    if store.count("student") > 0:
        return {"message": "Already seeded"}
    for collection, model, rows in (
        ("student", Student, DEMO_STUDENTS),
        ("course", Course, DEMO_COURSES),
        ("achievement", Achievement, DEMO_ACHIEVEMENTS),
    ):
        for row in rows:
            create_document(collection, model(**row), store=store)
    count = len(DEMO_STUDENTS) + len(DEMO_COURSES) + len(DEMO_ACHIEVEMENTS)
    logger.info("Seeded %d demo documents", count)
    return {"message": "Seeded", "count": count}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
