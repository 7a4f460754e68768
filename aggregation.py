"""
Derived views over store snapshots.

Everything here is a pure function of already-fetched collections:
attendance percentages, exam grades, joined labels and the coding
leaderboard. Nothing is cached and nothing is written back.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from schemas import (
    PLATFORMS,
    PRESENT,
    Achievement,
    AchievementRow,
    AttendanceRecord,
    AttendanceRow,
    AttendanceSummary,
    Course,
    CourseAttendance,
    DashboardStats,
    Enrollment,
    Exam,
    ExamResult,
    ExamRow,
    GradeResult,
    LeaderboardEntry,
    ResultRow,
    SimpleLeaderboardEntry,
    Student,
    StudentReport,
    Teacher,
    normalize,
)

UNKNOWN = "Unknown"
ALL_PLATFORMS = "all"
PROBLEM_SOLVED = "Problem Solved"
DEFAULT_TOTAL_MARKS = 100

# (lower bound in percent, grade), checked highest first
GRADE_THRESHOLDS = (
    (90, "A+"),
    (80, "A"),
    (70, "B+"),
    (60, "B"),
    (50, "C"),
    (40, "D"),
)
FAIL_GRADE = "F"

GOOD_ATTENDANCE = 75
AVERAGE_ATTENDANCE = 50

T = TypeVar("T")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage_of(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return 100.0 * part / whole


# ------------------- JOINS -------------------
@dataclass(frozen=True)
class Found(Generic[T]):
    record: T


@dataclass(frozen=True)
class NotFound:
    field: str
    value: Any


Lookup = Union[Found[T], NotFound]


def lookup(records: Iterable[T], field_name: str, value: Any) -> Lookup:
    """First record whose `field_name` equals `value`."""
    for record in records:
        if getattr(record, field_name, None) == value:
            return Found(record)
    return NotFound(field_name, value)


def label_or_unknown(result: Lookup, render: Callable[[Any], str]) -> str:
    if isinstance(result, Found):
        return render(result.record)
    if isinstance(result, NotFound):
        return UNKNOWN
    raise TypeError(f"Unexpected lookup result: {result!r}")


def student_name(students: Sequence[Student], student_id: str) -> str:
    return label_or_unknown(lookup(students, "student_id", student_id), lambda s: s.full_name)


# ------------------- ATTENDANCE -------------------
def _attendance_for(records: Iterable[AttendanceRecord], student_id: str, course_id: Optional[str]) -> List[AttendanceRecord]:
    return [
        r for r in records
        if r.student_id == student_id and (course_id is None or r.course_id == course_id)
    ]


def attendance_count(records: Iterable[AttendanceRecord], student_id: str, course_id: Optional[str] = None) -> Tuple[int, int]:
    """(present, total) for one student, optionally within one course."""
    mine = _attendance_for(records, student_id, course_id)
    present = sum(1 for r in mine if r.status == PRESENT)
    return present, len(mine)


def attendance_percentage(records: Iterable[AttendanceRecord], student_id: str, course_id: Optional[str] = None) -> int:
    present, total = attendance_count(records, student_id, course_id)
    return round_half_up(percentage_of(present, total))


def attendance_band(percentage: float) -> str:
    if percentage >= GOOD_ATTENDANCE:
        return "good"
    if percentage >= AVERAGE_ATTENDANCE:
        return "average"
    return "poor"


def attendance_summary(records: Sequence[AttendanceRecord], student_id: str, students: Sequence[Student] = (), course_id: Optional[str] = None) -> AttendanceSummary:
    present, total = attendance_count(records, student_id, course_id)
    percentage = round_half_up(percentage_of(present, total))
    return AttendanceSummary(
        student_id=student_id,
        student_name=student_name(students, student_id),
        percentage=percentage,
        present=present,
        total=total,
        band=attendance_band(percentage),
    )


def attendance_summaries(records: Sequence[AttendanceRecord], students: Sequence[Student], course_id: Optional[str] = None) -> List[AttendanceSummary]:
    return [attendance_summary(records, s.student_id, students, course_id) for s in students]


def attendance_rows(records: Sequence[AttendanceRecord], students: Sequence[Student], courses: Sequence[Course]) -> List[AttendanceRow]:
    """Attendance log, newest first, with student and course names joined in."""
    rows = []
    for r in reversed(records):
        rows.append(AttendanceRow(
            attendance_id=r.attendance_id,
            date=r.date,
            student_id=r.student_id,
            student_name=student_name(students, r.student_id),
            course_id=r.course_id,
            course_name=label_or_unknown(lookup(courses, "course_id", r.course_id), lambda c: c.course_name),
            status=r.status,
        ))
    return rows


# ------------------- GRADES -------------------
def grade_for_percentage(percentage: float) -> str:
    for lower_bound, grade in GRADE_THRESHOLDS:
        if percentage >= lower_bound:
            return grade
    return FAIL_GRADE


def grade_of(marks_obtained: float, total_marks: float) -> str:
    """Letter grade for a mark; marks above the total still map through the thresholds."""
    return grade_for_percentage(percentage_of(marks_obtained, total_marks))


def grade_result(marks_obtained: float, total_marks: float) -> GradeResult:
    percentage = percentage_of(marks_obtained, total_marks)
    return GradeResult(percentage=round(percentage, 2), grade=grade_for_percentage(percentage))


def exam_total_marks(exams: Sequence[Exam], exam_id: str) -> int:
    found = lookup(exams, "exam_id", exam_id)
    if isinstance(found, Found):
        return found.record.total_marks
    return DEFAULT_TOTAL_MARKS


def exam_rows(exams: Sequence[Exam], courses: Sequence[Course], results: Sequence[ExamResult] = ()) -> List[ExamRow]:
    return [
        ExamRow(
            exam_id=e.exam_id,
            exam_name=e.exam_name,
            exam_date=e.exam_date,
            exam_type=e.exam_type,
            total_marks=e.total_marks,
            course_id=e.course_id,
            course_label=label_or_unknown(lookup(courses, "course_id", e.course_id), lambda c: c.label),
            results_submitted=sum(1 for r in results if r.exam_id == e.exam_id),
        )
        for e in exams
    ]


def result_row(result: ExamResult, students: Sequence[Student], exams: Sequence[Exam]) -> ResultRow:
    exam = lookup(exams, "exam_id", result.exam_id)
    total = exam.record.total_marks if isinstance(exam, Found) else DEFAULT_TOTAL_MARKS
    graded = grade_result(result.marks_obtained, total)
    return ResultRow(
        result_id=result.result_id,
        student_id=result.student_id,
        student_name=student_name(students, result.student_id),
        exam_id=result.exam_id,
        exam_name=label_or_unknown(exam, lambda e: e.exam_name),
        marks_obtained=result.marks_obtained,
        total_marks=total,
        percentage=graded.percentage,
        # grade recorded at creation; recomputed only for rows stored without one
        grade=result.grade or graded.grade,
    )


def result_rows(results: Sequence[ExamResult], students: Sequence[Student], exams: Sequence[Exam]) -> List[ResultRow]:
    return [result_row(r, students, exams) for r in results]


# ------------------- LEADERBOARD -------------------
def _score_sum(achievements: Iterable[Achievement]) -> int:
    return sum(a.score for a in achievements)


def leaderboard_entry(student: Student, achievements: Sequence[Achievement], platform: str = ALL_PLATFORMS) -> Dict[str, Any]:
    mine = [a for a in achievements if a.student_id == student.student_id]
    platform_scores = {
        p: _score_sum(a for a in mine if a.platform_name == p)
        for p in PLATFORMS
    }
    if platform != ALL_PLATFORMS:
        mine = [a for a in mine if a.platform_name == platform]

    total_score = _score_sum(mine)
    count = len(mine)
    return {
        "student_id": student.student_id,
        "student_name": student.full_name,
        "total_score": total_score,
        "problems_solved": sum(1 for a in mine if a.achievement_type == PROBLEM_SOLVED),
        "achievement_count": count,
        "average_score": round_half_up(total_score / count) if count else 0,
        "platform_scores": platform_scores,
    }


def build_leaderboard(achievements: Sequence[Achievement], students: Sequence[Student], platform: str = ALL_PLATFORMS) -> List[LeaderboardEntry]:
    """
    Rank every student by total score, highest first.

    Per-platform columns always cover every achievement; only the totals,
    counts and average honour `platform`. Equal totals keep student order.
    """
    rows = [leaderboard_entry(s, achievements, platform) for s in students]
    rows.sort(key=lambda row: row["total_score"], reverse=True)
    return [LeaderboardEntry(rank=i, **row) for i, row in enumerate(rows, start=1)]


def _solved_total(achievements: Iterable[Achievement]) -> int:
    return sum(a.leetcode_solved + a.codechef_solved for a in achievements)


SIMPLE_METRICS: Dict[str, Callable[[Iterable[Achievement]], int]] = {
    "score": _score_sum,
    "solved": _solved_total,
}


def simple_leaderboard(achievements: Sequence[Achievement], students: Sequence[Student], metric: str = "score", limit: int = 5) -> List[SimpleLeaderboardEntry]:
    """Compact top-N by one summed metric ("score" or "solved")."""
    summed = SIMPLE_METRICS[metric]
    totals = [
        (s, summed(a for a in achievements if a.student_id == s.student_id))
        for s in students
    ]
    # sorted() is stable, equal totals keep student order
    totals = sorted(totals, key=lambda item: item[1], reverse=True)[:max(limit, 0)]
    return [
        SimpleLeaderboardEntry(student_id=s.student_id, student_name=s.full_name, total=total, rank=i)
        for i, (s, total) in enumerate(totals, start=1)
    ]


def recent_achievements(achievements: Sequence[Achievement], students: Sequence[Student], limit: int = 10) -> List[AchievementRow]:
    """Newest achievements first by date achieved; undated ones go last."""
    newest = sorted(achievements, key=lambda a: a.date_achieved or "", reverse=True)[:max(limit, 0)]
    return [
        AchievementRow(
            achievement_id=a.achievement_id,
            student_id=a.student_id,
            student_name=student_name(students, a.student_id),
            problem_name=a.problem_name,
            platform_name=a.platform_name,
            score=a.score,
            achievement_type=a.achievement_type,
            date_achieved=a.date_achieved,
        )
        for a in newest
    ]


# ------------------- SNAPSHOT VIEWS -------------------
@dataclass
class Snapshot:
    """Canonical records of every collection, fetched together before aggregation."""

    students: List[Student] = field(default_factory=list)
    courses: List[Course] = field(default_factory=list)
    teachers: List[Teacher] = field(default_factory=list)
    enrollments: List[Enrollment] = field(default_factory=list)
    attendance: List[AttendanceRecord] = field(default_factory=list)
    exams: List[Exam] = field(default_factory=list)
    results: List[ExamResult] = field(default_factory=list)
    achievements: List[Achievement] = field(default_factory=list)

    @classmethod
    def from_documents(cls, docs: Dict[str, List[Dict[str, Any]]]) -> "Snapshot":
        return cls(
            students=normalize(Student, docs.get("student")),
            courses=normalize(Course, docs.get("course")),
            teachers=normalize(Teacher, docs.get("teacher")),
            enrollments=normalize(Enrollment, docs.get("enrollment")),
            attendance=normalize(AttendanceRecord, docs.get("attendance")),
            exams=normalize(Exam, docs.get("exam")),
            results=normalize(ExamResult, docs.get("exam_result")),
            achievements=normalize(Achievement, docs.get("achievement")),
        )


def dashboard_stats(snapshot: Snapshot, recent: int = 3) -> DashboardStats:
    return DashboardStats(
        counts={
            "students": len(snapshot.students),
            "courses": len(snapshot.courses),
            "attendance": len(snapshot.attendance),
            "exams": len(snapshot.exams),
            "results": len(snapshot.results),
        },
        recent_students=list(reversed(snapshot.students[-recent:])) if recent > 0 else [],
        top_students=simple_leaderboard(snapshot.achievements, snapshot.students),
    )


def student_report(student_id: str, snapshot: Snapshot) -> Optional[StudentReport]:
    found = lookup(snapshot.students, "student_id", student_id)
    if isinstance(found, NotFound):
        return None
    student = found.record

    course_ids = []
    for r in snapshot.attendance:
        if r.student_id == student_id and r.course_id not in course_ids:
            course_ids.append(r.course_id)
    course_attendance = []
    for course_id in course_ids:
        present, total = attendance_count(snapshot.attendance, student_id, course_id)
        percentage = round_half_up(percentage_of(present, total))
        course_attendance.append(CourseAttendance(
            course_id=course_id,
            course_name=label_or_unknown(lookup(snapshot.courses, "course_id", course_id), lambda c: c.course_name),
            percentage=percentage,
            present=present,
            total=total,
            band=attendance_band(percentage),
        ))

    results = result_rows([r for r in snapshot.results if r.student_id == student_id], snapshot.students, snapshot.exams)
    average = sum(r.percentage for r in results) / len(results) if results else 0.0
    board = build_leaderboard(snapshot.achievements, snapshot.students)
    entry = lookup(board, "student_id", student_id)

    return StudentReport(
        student=student,
        attendance=attendance_summary(snapshot.attendance, student_id, snapshot.students),
        course_attendance=course_attendance,
        results=results,
        average_percentage=round(average, 2),
        leaderboard=entry.record if isinstance(entry, Found) else None,
    )


