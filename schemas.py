"""
Database Schemas for Student Management System

Each Pydantic model represents a collection in the document store.
Collection name is lowercase of class name by default (ExamResult is
stored in "exam_result").

Field names are snake_case. Every field also accepts its camelCase
spelling on input so that records written by older front-ends
(studentId, firstName, ...) load into the same shape.
"""

import logging
import math
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
)

logger = logging.getLogger(__name__)

PRESENT = "Present"
ABSENT = "Absent"

PLATFORMS = ("LeetCode", "HackerRank", "CodeChef", "Codeforces")

Platform = Literal["LeetCode", "HackerRank", "CodeChef", "Codeforces"]
AchievementType = Literal["Problem Solved", "Contest Win", "Milestone", "Badge Earned"]
AttendanceStatus = Literal["Present", "Absent"]
Band = Literal["good", "average", "poor"]


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def aliased(name: str, default: Any = ..., **kwargs) -> Any:
    """Field that loads from either `name` or its camelCase spelling."""
    return Field(default, validation_alias=AliasChoices(name, camel_case(name)), **kwargs)


def to_number(value: Any) -> float:
    """Safe numeric coercion: numbers and numeric strings pass, anything else is 0."""
    if isinstance(value, bool):
        number = float(value)
    elif isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def to_int(value: Any) -> int:
    return int(to_number(value))


def normalize_status(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ("present", "absent"):
        return value.strip().title()
    return value


Number = Annotated[float, BeforeValidator(to_number)]
Count = Annotated[int, BeforeValidator(to_int)]
Status = Annotated[str, BeforeValidator(normalize_status)]


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class Student(Record):
    """
    Students collection schema
    Collection name: "student"
    """
    student_id: str = aliased("student_id", description="Unique student id e.g., S001")
    first_name: str = aliased("first_name", "")
    last_name: str = aliased("last_name", "")
    email: Optional[str] = aliased("email", None)
    phone_number: Optional[str] = aliased("phone_number", None)
    department: Optional[str] = aliased("department", None)
    class_section: Optional[str] = aliased("class_section", None)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Course(Record):
    course_id: str = aliased("course_id", description="Unique course id e.g., C001")
    course_code: str = aliased("course_code", "")
    course_name: str = aliased("course_name", "")
    credits: Optional[int] = aliased("credits", None)
    teacher_id: Optional[str] = aliased("teacher_id", None)

    @property
    def label(self) -> str:
        return f"{self.course_code} - {self.course_name}"


class Teacher(Record):
    teacher_id: str = aliased("teacher_id")
    first_name: str = aliased("first_name", "")
    last_name: str = aliased("last_name", "")
    email: Optional[str] = aliased("email", None)
    department: Optional[str] = aliased("department", None)


class Enrollment(Record):
    enrollment_id: str = aliased("enrollment_id")
    student_id: str = aliased("student_id")
    course_id: str = aliased("course_id")
    enrollment_date: Optional[str] = aliased("enrollment_date", None)


class AttendanceRecord(Record):
    """
    Attendance collection schema (one document per student per class day)
    Collection name: "attendance"
    """
    attendance_id: str = aliased("attendance_id")
    student_id: str = aliased("student_id")
    course_id: str = aliased("course_id", "")
    date: Optional[str] = aliased("date", None)
    status: Status = aliased("status", ABSENT)


class Exam(Record):
    exam_id: str = aliased("exam_id")
    exam_name: str = aliased("exam_name", "")
    exam_date: Optional[str] = aliased("exam_date", None)
    exam_type: str = aliased("exam_type", "Written")
    total_marks: Count = aliased("total_marks", 100)
    course_id: str = aliased("course_id", "")


class ExamResult(Record):
    """
    Exam results collection schema
    Collection name: "exam_result"

    `grade` is derived from marks_obtained when the result is created.
    """
    result_id: str = aliased("result_id")
    student_id: str = aliased("student_id")
    exam_id: str = aliased("exam_id")
    marks_obtained: Number = aliased("marks_obtained", 0)
    grade: Optional[str] = aliased("grade", None)


class Achievement(Record):
    """
    Coding achievements collection schema
    Collection name: "achievement"
    """
    achievement_id: Optional[str] = aliased("achievement_id", None)
    student_id: str = aliased("student_id")
    problem_name: Optional[str] = aliased("problem_name", None)
    platform_name: Optional[str] = aliased("platform_name", None)
    score: Count = aliased("score", 0)
    achievement_type: Optional[str] = aliased("achievement_type", None)
    date_achieved: Optional[str] = aliased("date_achieved", None)
    leetcode_solved: Count = aliased("leetcode_solved", 0)
    codechef_solved: Count = aliased("codechef_solved", 0)


# ------------------- NORMALIZATION -------------------
R = TypeVar("R", bound=Record)


def normalize(model: Type[R], rows: Optional[List[Dict[str, Any]]]) -> List[R]:
    """Load raw store documents as `model`, skipping rows that cannot be loaded."""
    items: List[R] = []
    for row in rows or []:
        try:
            items.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping malformed %s row: %s", model.__name__, e.errors()[0].get("msg"))
    return items


# ------------------- CREATE PAYLOADS -------------------
class StudentCreate(Student):
    first_name: str = aliased("first_name", min_length=1)
    last_name: str = aliased("last_name", min_length=1)
    email: str = aliased("email", min_length=3)


class StudentUpdate(Record):
    first_name: Optional[str] = aliased("first_name", None)
    last_name: Optional[str] = aliased("last_name", None)
    email: Optional[str] = aliased("email", None)
    phone_number: Optional[str] = aliased("phone_number", None)
    department: Optional[str] = aliased("department", None)
    class_section: Optional[str] = aliased("class_section", None)


class CourseCreate(Course):
    course_id: str = aliased("course_id", "")
    course_code: str = aliased("course_code", min_length=1)
    course_name: str = aliased("course_name", min_length=1)


class TeacherCreate(Teacher):
    teacher_id: str = aliased("teacher_id", "")
    first_name: str = aliased("first_name", min_length=1)
    last_name: str = aliased("last_name", min_length=1)


class EnrollmentCreate(Enrollment):
    enrollment_id: str = aliased("enrollment_id", "")


class AttendanceCreate(AttendanceRecord):
    attendance_id: str = aliased("attendance_id", "")
    course_id: str = aliased("course_id")
    date: str = aliased("date")
    status: Annotated[AttendanceStatus, BeforeValidator(normalize_status)] = aliased("status", PRESENT)


class ExamCreate(Exam):
    exam_id: str = aliased("exam_id", "")
    exam_name: str = aliased("exam_name", min_length=1)
    total_marks: Count = aliased("total_marks", 100, gt=0)
    course_id: str = aliased("course_id")


class ResultCreate(Record):
    result_id: str = aliased("result_id", "")
    student_id: str = aliased("student_id")
    exam_id: str = aliased("exam_id")
    marks_obtained: Number = aliased("marks_obtained", ge=0)


class AchievementCreate(Achievement):
    achievement_id: str = aliased("achievement_id", "")
    problem_name: str = aliased("problem_name", min_length=1)
    platform_name: Platform = aliased("platform_name", "LeetCode")
    score: Count = aliased("score", 100, ge=0, le=100)
    achievement_type: AchievementType = aliased("achievement_type", "Problem Solved")


# ------------------- VIEW MODELS -------------------
class AttendanceSummary(BaseModel):
    student_id: str
    student_name: str = ""
    percentage: int = Field(..., ge=0, le=100)
    present: int
    total: int
    band: Band


class GradeResult(BaseModel):
    percentage: float
    grade: str


class LeaderboardEntry(BaseModel):
    student_id: str
    student_name: str
    total_score: int
    problems_solved: int
    achievement_count: int
    average_score: int
    platform_scores: Dict[str, int]
    rank: int = Field(..., ge=1)


class SimpleLeaderboardEntry(BaseModel):
    student_id: str
    student_name: str
    total: int
    rank: int = Field(..., ge=1)


class AttendanceRow(BaseModel):
    attendance_id: str
    date: Optional[str]
    student_id: str
    student_name: str
    course_id: str
    course_name: str
    status: str


class ExamRow(BaseModel):
    exam_id: str
    exam_name: str
    exam_date: Optional[str]
    exam_type: str
    total_marks: int
    course_id: str
    course_label: str
    results_submitted: int = 0


class AchievementRow(BaseModel):
    achievement_id: Optional[str]
    student_id: str
    student_name: str
    problem_name: Optional[str]
    platform_name: Optional[str]
    score: int
    achievement_type: Optional[str]
    date_achieved: Optional[str]


class ResultRow(BaseModel):
    result_id: str
    student_id: str
    student_name: str
    exam_id: str
    exam_name: str
    marks_obtained: float
    total_marks: int
    percentage: float
    grade: str


class CourseAttendance(BaseModel):
    course_id: str
    course_name: str
    percentage: int
    present: int
    total: int
    band: Band


class StudentReport(BaseModel):
    student: Student
    attendance: AttendanceSummary
    course_attendance: List[CourseAttendance]
    results: List[ResultRow]
    average_percentage: float
    leaderboard: Optional[LeaderboardEntry] = None


class DashboardStats(BaseModel):
    counts: Dict[str, int]
    recent_students: List[Student]
    top_students: List[SimpleLeaderboardEntry]
