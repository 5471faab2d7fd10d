"""
End-to-end API tests over SQLite
"""
from unittest.mock import patch

import pytest


@pytest.fixture
def student_tokens(seeded_exam, register_user):
    return register_user()


@pytest.fixture
def headers(student_tokens, bearer):
    return bearer(student_tokens)


def login(client, email, password):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "exam-integrity-api"}

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Exam Integrity API"


class TestExamFlow:
    def test_start_hides_correct_answers(self, client, headers):
        response = client.post("/exam/1/start", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["exam"]["totalQuestions"] == 2
        assert body["questions"][0]["options"] == ["Link", "Network", "Transport", "Session"]
        assert all("correctOptionIndex" not in q and "correct_option_index" not in q
                   for q in body["questions"])
        assert body["progress"]["timeRemaining"] == 600
        assert body["progress"]["status"] == "in-progress"

    def test_save_submit_results(self, client, headers):
        client.post("/exam/1/start", headers=headers)

        saved = client.post("/answer/save", headers=headers, json={
            "examId": 1,
            "answers": [
                {"questionIndex": 0, "selectedOption": 1, "timeSpent": 12},
                {"questionIndex": "one", "selectedOption": 0},
            ],
            "timeRemaining": 480,
        })
        assert saved.status_code == 200
        assert saved.json()["timeRemaining"] == 480

        progress = client.get("/answer/1/progress", headers=headers).json()
        assert [a["selectedOption"] for a in progress["answers"]] == [1, None]

        submitted = client.post("/exam/1/submit", headers=headers, json={
            "answers": [{"questionIndex": 1, "selectedOption": 2}],
            "timeRemaining": 300,
        })
        assert submitted.status_code == 200
        assert submitted.json()["score"] == 50.0
        assert submitted.json()["correctAnswers"] == 1
        assert submitted.json()["passed"] is False

        results = client.get("/exam/1/results", headers=headers).json()
        assert results["grade"] == "F"
        assert results["status"] == "submitted"
        assert results["autoSubmitted"] is False

    def test_submit_twice_conflicts(self, client, headers):
        client.post("/exam/1/start", headers=headers)
        client.post("/exam/1/submit", headers=headers, json={})

        response = client.post("/exam/1/submit", headers=headers, json={})

        assert response.status_code == 409
        assert response.json()["code"] == "already_submitted"

    def test_save_after_submit_conflicts(self, client, headers):
        client.post("/exam/1/start", headers=headers)
        client.post("/exam/1/submit", headers=headers, json={})

        response = client.post("/answer/save", headers=headers, json={"examId": 1, "answers": []})
        assert response.status_code == 409

    def test_unknown_exam(self, client, headers):
        response = client.post("/exam/99/start", headers=headers)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_results_before_submit(self, client, headers):
        client.post("/exam/1/start", headers=headers)
        assert client.get("/exam/1/results", headers=headers).status_code == 400

    def test_requires_token(self, client, seeded_exam):
        response = client.post("/exam/1/start")
        assert response.status_code == 401
        assert response.json()["error"] == "Access denied. No token provided."

    def test_instructor_cannot_take_exam(self, client, seeded_exam, bearer):
        tokens = login(client, "rao@example.com", "instructor-pass")
        assert client.post("/exam/1/start", headers=bearer(tokens)).status_code == 403


class TestViolations:
    def report(self, client, headers, vtype="TAB_SWITCH", **extra):
        return client.post("/violation", headers=headers, json={"examId": 1, "type": vtype, **extra})

    def test_limit_triggers_auto_submit(self, client, headers):
        client.post("/exam/1/start", headers=headers)
        client.post("/answer/save", headers=headers, json={
            "examId": 1,
            "answers": [{"questionIndex": 0, "selectedOption": 1},
                        {"questionIndex": 1, "selectedOption": 0}],
        })

        first = self.report(client, headers, description="switched tabs")
        assert first.status_code == 201
        assert first.json()["violationCount"] == 1
        assert first.json()["autoSubmitted"] is False
        assert first.json()["submission"] is None

        second = self.report(client, headers, "DEVTOOLS_OPEN", timeRemaining=200)
        body = second.json()
        assert body["violation"]["severity"] == "high"
        assert body["autoSubmitted"] is True
        assert body["maxViolations"] == 2
        assert body["submission"] == {
            "score": 100.0, "correctAnswers": 2, "totalQuestions": 2, "passed": True,
        }

        third = self.report(client, headers)
        assert third.json()["autoSubmitted"] is False
        assert third.json()["violationCount"] == 3

        results = client.get("/exam/1/results", headers=headers).json()
        assert results["status"] == "auto-submitted"
        assert results["autoSubmitReason"] == "VIOLATION_LIMIT"

    def test_unknown_type(self, client, headers):
        response = self.report(client, headers, "SCREENSHOT")
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_session_header_recorded(self, client, headers, db_session):
        from database.models import Violation

        self.report(client, {**headers, "X-Session-Id": "tab-42"})
        assert db_session.query(Violation).one().session_id == "tab-42"

    def test_student_lists_own(self, client, headers):
        self.report(client, headers)
        response = client.get("/violation", headers=headers)
        assert response.status_code == 200
        assert len(response.json()["violations"]) == 1

    def test_stats_for_instructor(self, client, headers, bearer):
        self.report(client, headers)
        self.report(client, headers, "RIGHT_CLICK")
        instructor = login(client, "rao@example.com", "instructor-pass")

        stats = client.get("/violation/stats", params={"examId": 1}, headers=bearer(instructor)).json()

        assert stats["total"] == 2
        assert stats["bySeverity"] == {"medium": 1, "low": 1}

    def test_stats_forbidden_for_students(self, client, headers):
        assert client.get("/violation/stats", headers=headers).status_code == 403


class TestAuth:
    def test_register_validation(self, client, seeded_exam, register_user):
        short = client.post("/auth/register", json={
            "name": "Bo", "email": "bo@example.com", "password": "short",
        })
        assert short.status_code == 400

        bad_email = client.post("/auth/register", json={
            "name": "Bo", "email": "not-an-email", "password": "long-enough",
        })
        assert bad_email.status_code == 400

        admin = client.post("/auth/register", json={
            "name": "Bo", "email": "bo@example.com", "password": "long-enough", "role": "admin",
        })
        assert admin.status_code == 400

        register_user("bo@example.com")
        duplicate = client.post("/auth/register", json={
            "name": "Bo", "email": "BO@example.com", "password": "long-enough",
        })
        assert duplicate.status_code == 409

    def test_bad_password(self, client, student_tokens):
        response = client.post("/auth/login", json={"email": "asha@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_refresh_rotation_and_reuse(self, client, student_tokens, bearer):
        rotated = client.post("/auth/refresh", json={"refreshToken": student_tokens["refreshToken"]})
        assert rotated.status_code == 200
        assert rotated.json()["refreshToken"] != student_tokens["refreshToken"]

        reused = client.post("/auth/refresh", json={"refreshToken": student_tokens["refreshToken"]})
        assert reused.status_code == 401
        assert reused.json()["code"] == "token_revoked"

        assert client.get("/auth/profile", headers=bearer(rotated.json())).status_code == 200

    def test_second_device_ends_first_session(self, client, student_tokens):
        login(client, "asha@example.com", "correct-horse")

        response = client.post("/auth/refresh", json={"refreshToken": student_tokens["refreshToken"]})

        assert response.status_code == 401
        assert response.json()["code"] == "no_active_session"

    def test_refresh_with_access_token(self, client, student_tokens):
        response = client.post("/auth/refresh", json={"refreshToken": student_tokens["accessToken"]})
        assert response.json()["code"] == "wrong_token_type"

    def test_logout(self, client, student_tokens, headers):
        response = client.post("/auth/logout", headers=headers,
                               json={"refreshToken": student_tokens["refreshToken"]})
        assert response.status_code == 200

        profile = client.get("/auth/profile", headers=headers)
        assert profile.status_code == 401
        assert profile.json()["code"] == "token_revoked"

        refresh = client.post("/auth/refresh", json={"refreshToken": student_tokens["refreshToken"]})
        assert refresh.status_code == 401

    def test_profile(self, client, headers):
        body = client.get("/auth/profile", headers=headers).json()
        assert body["email"] == "asha@example.com"
        assert body["role"] == "student"

    def test_sessions_list_and_revoke(self, client, student_tokens, headers):
        sessions = client.get("/auth/sessions", headers=headers).json()["sessions"]
        assert len(sessions) == 1
        assert "refreshTokenId" not in sessions[0]

        revoked = client.delete(f"/auth/sessions/{sessions[0]['id']}", headers=headers)
        assert revoked.status_code == 200

        refresh = client.post("/auth/refresh", json={"refreshToken": student_tokens["refreshToken"]})
        assert refresh.status_code == 401

    def test_revoke_unknown_session(self, client, headers):
        assert client.delete("/auth/sessions/999", headers=headers).status_code == 404

    def test_google_login_creates_student(self, client, seeded_exam):
        claims = {"sub": "g-123", "email": "Lee@Example.com", "name": "Lee", "picture": "https://img/lee.png"}
        with patch("routers.auth.verify_google_credential", return_value=claims):
            response = client.post("/auth/google", json={"credential": "google-id-token"})

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["email"] == "lee@example.com"
        assert user["role"] == "student"
        assert user["avatar"] == "https://img/lee.png"

    def test_google_account_cannot_use_password_login(self, client, seeded_exam):
        claims = {"sub": "g-9", "email": "kim@example.com", "name": "Kim"}
        with patch("routers.auth.verify_google_credential", return_value=claims):
            client.post("/auth/google", json={"credential": "google-id-token"})

        response = client.post("/auth/login", json={"email": "kim@example.com", "password": "anything"})
        assert response.status_code == 400
