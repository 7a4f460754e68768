from unittest import TestCase
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from database import MemoryStore, MongoStore, StoreError, get_store
from main import app


class ApiTestCase(TestCase):
    """Runs the app against an in-memory store."""

    def setUp(self):
        self.store = MemoryStore()
        app.dependency_overrides[get_store] = lambda: self.store
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def add_student(self, student_id, first="Test", last="Student"):
        response = self.client.post("/students", json={
            "studentId": student_id, "firstName": first, "lastName": last, "email": f"{student_id}@example.com",
        })
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class HealthTest(ApiTestCase):

    def test_root_and_health(self):
        self.assertEqual(self.client.get("/").status_code, 200)
        self.assertEqual(self.client.get("/health").json()["status"], "ok")

    def test_store_status(self):
        data = self.client.get("/test").json()
        self.assertEqual(data["backend"], "✅ Running")
        self.assertEqual(data["database"], "✅ Connected & Working")

    def test_store_failure_is_503(self):
        self.store.find = MagicMock(side_effect=StoreError("connection refused"))
        response = self.client.get("/students")
        self.assertEqual(response.status_code, 503)
        self.assertIn("connection refused", response.json()["detail"])

    def test_store_failure_is_logged_with_traceback(self):
        self.store.find = MagicMock(side_effect=StoreError("connection refused"))
        with self.assertLogs("main", "ERROR") as logs:
            self.client.get("/students")
        self.assertIn("/students", logs.output[0])
        self.assertIsNotNone(logs.records[0].exc_info)

    def test_mongo_status_keeps_database_name(self):
        store = MongoStore("mongodb://unused", "smsdb", client=MagicMock())
        store.db.name = "smsdb"
        store.db.list_collection_names.return_value = ["student"]
        app.dependency_overrides[get_store] = lambda: store
        data = self.client.get("/test").json()
        self.assertEqual(data["database_name"], "smsdb")
        self.assertEqual(data["collections"], ["student"])
        self.assertEqual(set(data["env"]), {"DATABASE_URL", "DATABASE_NAME"})


class StudentRoutesTest(ApiTestCase):

    def test_create_and_get(self):
        created = self.add_student("S001", "Ada", "Lovelace")
        self.assertEqual(created["student_id"], "S001")
        self.assertEqual(self.client.get("/students/S001").json()["first_name"], "Ada")
        self.assertEqual(len(self.client.get("/students").json()), 1)

    def test_duplicate_is_rejected(self):
        self.add_student("S001")
        response = self.client.post("/students", json={
            "student_id": "S001", "first_name": "A", "last_name": "B", "email": "x@y.z",
        })
        self.assertEqual(response.status_code, 400)

    def test_missing_fields_rejected(self):
        response = self.client.post("/students", json={"studentId": "S001"})
        self.assertEqual(response.status_code, 422)

    def test_update_and_delete(self):
        self.add_student("S001")
        response = self.client.put("/students/S001", json={"department": "Computer Science"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["department"], "Computer Science")
        self.assertEqual(self.client.delete("/students/S001").status_code, 200)
        self.assertEqual(self.client.get("/students/S001").status_code, 404)
        self.assertEqual(self.client.delete("/students/S001").status_code, 404)
        self.assertEqual(self.client.put("/students/S001", json={}).status_code, 404)


class CamelCaseRecordsTest(ApiTestCase):
    """Records stored with camelCase keys are found by id like any other."""

    def setUp(self):
        super().setUp()
        self.store = MemoryStore({
            "student": [{"studentId": "S001", "firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com"}],
            "course": [{"courseId": "C002", "courseCode": "CS201", "courseName": "Data Structures"}],
        })

    def test_get_by_id(self):
        response = self.client.get("/students/S001")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["first_name"], "Ada")

    def test_duplicate_is_rejected(self):
        self.assertEqual(self.client.post("/students", json={
            "student_id": "S001", "first_name": "A", "last_name": "B", "email": "x@y.z",
        }).status_code, 400)
        self.assertEqual(len(self.client.get("/students").json()), 1)

    def test_update_and_delete(self):
        response = self.client.put("/students/S001", json={"department": "Mathematics", "firstName": "Augusta"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual((response.json()["first_name"], response.json()["department"]), ("Augusta", "Mathematics"))
        self.assertEqual(self.client.delete("/students/S001").status_code, 200)
        self.assertEqual(self.client.get("/students/S001").status_code, 404)
        self.assertEqual(self.client.get("/students").json(), [])

    def test_generated_id_skips_taken_one(self):
        created = self.client.post("/courses", json={"courseCode": "CS101", "courseName": "Programming"})
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["course_id"], "C003")
        self.assertEqual(self.client.post("/courses", json={
            "courseId": "C002", "courseCode": "CS999", "courseName": "Copy",
        }).status_code, 400)


class CourseAndEnrollmentRoutesTest(ApiTestCase):

    def test_course_ids_are_generated(self):
        first = self.client.post("/courses", json={"courseCode": "CS101", "courseName": "Programming"}).json()
        second = self.client.post("/courses", json={"courseCode": "CS201", "courseName": "Data Structures"}).json()
        self.assertEqual((first["course_id"], second["course_id"]), ("C001", "C002"))
        self.assertEqual(self.client.delete("/courses/C001").status_code, 200)
        third = self.client.post("/courses", json={"courseCode": "CS301", "courseName": "Databases"}).json()
        self.assertEqual(third["course_id"], "C003")

    def test_teachers(self):
        response = self.client.post("/teachers", json={"firstName": "Grace", "lastName": "Hopper"})
        self.assertEqual(response.json()["teacher_id"], "T001")
        self.assertEqual(len(self.client.get("/teachers").json()), 1)

    def test_enrollment_once(self):
        body = {"studentId": "S001", "courseId": "C001"}
        created = self.client.post("/enrollments", json=body)
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["enrollment_id"], "E001")
        self.assertIsNotNone(created.json()["enrollment_date"])
        self.assertEqual(self.client.post("/enrollments", json=body).status_code, 400)
        self.assertEqual(len(self.client.get("/enrollments", params={"student_id": "S001"}).json()), 1)
        self.assertEqual(self.client.get("/enrollments", params={"student_id": "S002"}).json(), [])


class ExamRoutesTest(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.add_student("S001", "Ada", "Lovelace")
        self.client.post("/courses", json={"courseId": "C001", "courseCode": "CS101", "courseName": "Programming"})
        self.client.post("/exams", json={"examName": "Midterm", "examDate": "2024-03-01", "totalMarks": 50, "courseId": "C001"})

    def test_exams_listed_with_course_label(self):
        exams = self.client.get("/exams").json()
        self.assertEqual(exams[0]["exam_id"], "EX001")
        self.assertEqual(exams[0]["course_label"], "CS101 - Programming")

    def test_exams_count_submitted_results(self):
        self.client.post("/exams", json={"examName": "Final", "totalMarks": 100, "courseId": "C001"})
        self.client.post("/results", json={"studentId": "S001", "examId": "EX001", "marksObtained": 45})
        self.client.post("/results", json={"studentId": "S404", "examId": "EX001", "marksObtained": 10})
        exams = self.client.get("/exams").json()
        self.assertEqual([(e["exam_id"], e["results_submitted"]) for e in exams], [("EX001", 2), ("EX002", 0)])

    def test_grade_is_derived_not_supplied(self):
        response = self.client.post("/results", json={
            "studentId": "S001", "examId": "EX001", "marksObtained": 30, "grade": "A+",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["result_id"], "R001")
        self.assertEqual(response.json()["grade"], "B")

    def test_unknown_exam_grades_out_of_hundred(self):
        response = self.client.post("/results", json={"studentId": "S001", "examId": "EX999", "marksObtained": 45})
        self.assertEqual(response.json()["grade"], "D")

    def test_results_listing(self):
        self.client.post("/results", json={"studentId": "S001", "examId": "EX001", "marksObtained": 45})
        self.client.post("/results", json={"studentId": "S404", "examId": "EX001", "marksObtained": 10})
        rows = self.client.get("/results").json()
        self.assertEqual([r["student_name"] for r in rows], ["Ada Lovelace", "Unknown"])
        self.assertEqual(rows[0]["percentage"], 90.0)
        self.assertEqual(len(self.client.get("/results", params={"student_id": "S001"}).json()), 1)

    def test_calculate(self):
        self.assertEqual(self.client.get("/grades/calculate", params={"marks_obtained": 89}).json()["grade"], "A")
        response = self.client.get("/grades/calculate", params={"marks_obtained": 10, "total_marks": 0})
        self.assertEqual(response.status_code, 422)


class AttendanceRoutesTest(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.add_student("S1", "Ada", "Lovelace")
        self.add_student("S2", "Alan", "Turing")
        for status in ("Present", "Absent", "Present"):
            response = self.client.post("/attendance", json={
                "studentId": "S1", "courseId": "C001", "date": "2024-01-01", "status": status,
            })
            self.assertEqual(response.status_code, 201, response.text)

    def test_ids_generated(self):
        ids = [row["attendance_id"] for row in self.client.get("/attendance").json()]
        self.assertEqual(ids, ["A003", "A002", "A001"])

    def test_summary(self):
        summaries = self.client.get("/attendance/summary").json()
        self.assertEqual([(s["student_id"], s["percentage"], s["band"]) for s in summaries],
                         [("S1", 67, "average"), ("S2", 0, "poor")])

    def test_student_summary(self):
        summary = self.client.get("/attendance/summary/S1").json()
        self.assertEqual((summary["present"], summary["total"], summary["percentage"]), (2, 3, 67))
        self.assertEqual(self.client.get("/attendance/summary/S1", params={"course_id": "C404"}).json()["total"], 0)

    def test_invalid_status(self):
        response = self.client.post("/attendance", json={
            "studentId": "S1", "courseId": "C001", "date": "2024-01-02", "status": "Late",
        })
        self.assertEqual(response.status_code, 422)


class LeaderboardRoutesTest(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.add_student("S1", "Ada", "Lovelace")
        self.add_student("S2", "Alan", "Turing")
        for student_id, score, platform in (("S1", 50, "LeetCode"), ("S2", 80, "CodeChef"), ("S1", 60, "LeetCode")):
            self.client.post("/achievements", json={
                "studentId": student_id, "problemName": "Problem", "platformName": platform, "score": score,
            })

    def test_full_leaderboard(self):
        board = self.client.get("/leaderboard").json()
        self.assertEqual([(e["student_id"], e["total_score"], e["rank"]) for e in board], [("S1", 110, 1), ("S2", 80, 2)])

    def test_platform_filter(self):
        board = self.client.get("/leaderboard", params={"platform": "CodeChef"}).json()
        self.assertEqual(board[0]["student_id"], "S2")
        self.assertEqual(board[1]["platform_scores"]["LeetCode"], 110)

    def test_top(self):
        top = self.client.get("/leaderboard/top").json()
        self.assertEqual([e["total"] for e in top], [110, 80])
        self.assertEqual(self.client.get("/leaderboard/top", params={"metric": "stars"}).status_code, 400)

    def test_achievement_ids(self):
        ids = [a["achievement_id"] for a in self.client.get("/achievements").json()]
        self.assertEqual(ids, ["ACH001", "ACH002", "ACH003"])

    def test_recent_achievements(self):
        self.client.post("/achievements", json={
            "studentId": "S404", "problemName": "Late", "score": 10, "dateAchieved": "2024-05-01",
        })
        self.client.post("/achievements", json={
            "studentId": "S2", "problemName": "Early", "score": 20, "dateAchieved": "2024-04-01",
        })
        recent = self.client.get("/achievements/recent", params={"limit": 2}).json()
        self.assertEqual([(a["problem_name"], a["student_name"]) for a in recent],
                         [("Late", "Unknown"), ("Early", "Alan Turing")])
        self.assertEqual(len(self.client.get("/achievements/recent").json()), 5)
        self.assertEqual(self.client.get("/achievements/recent", params={"limit": 0}).status_code, 422)


class DashboardAndReportTest(ApiTestCase):

    def test_seed_then_dashboard(self):
        self.assertEqual(self.client.post("/seed").json()["message"], "Seeded")
        self.assertEqual(self.client.post("/seed").json()["message"], "Already seeded")
        stats = self.client.get("/dashboard").json()
        self.assertEqual(stats["counts"]["students"], 3)
        self.assertEqual(stats["counts"]["courses"], 3)
        self.assertEqual([s["student_id"] for s in stats["recent_students"]], ["S003", "S002", "S001"])
        self.assertEqual(stats["top_students"][0]["student_id"], "S001")

    def test_report(self):
        self.client.post("/seed")
        report = self.client.get("/students/S001/report").json()
        self.assertEqual(report["student"]["student_id"], "S001")
        self.assertEqual(report["attendance"]["percentage"], 0)
        self.assertEqual(report["leaderboard"]["total_score"], 160)
        self.assertEqual(self.client.get("/students/S999/report").status_code, 404)
