"""
Tests for the SQLAlchemy repositories against SQLite
"""
from datetime import datetime, timedelta, timezone

from database.models import AttemptStatus
from database.records import AnswerRecord, AttemptRecord, ViolationRecord
from database.repositories import (
    SqlAttemptRepository, SqlExamRepository, SqlRevocationList,
    SqlSessionStore, SqlUserRepository, SqlViolationRepository,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
STUDENT = 7


def new_attempt():
    return AttemptRecord(
        id=None,
        exam_id=1,
        student_id=STUDENT,
        status=AttemptStatus.IN_PROGRESS,
        answers=[AnswerRecord(question_index=0), AnswerRecord(question_index=1)],
        total_questions=2,
        time_remaining=600,
        started_at=NOW,
        last_saved_at=NOW,
    )


class TestExamRepository:
    def test_loads_definition_in_question_order(self, db_session, seeded_exam):
        exam = SqlExamRepository(db_session).get(1)

        assert exam.title == "Networks Midterm"
        assert exam.duration_seconds == 600
        assert exam.max_violations == 2
        assert [q.correct_option_index for q in exam.questions] == [1, 0]
        assert exam.questions[0].category == "Networking"

    def test_missing(self, db_session):
        assert SqlExamRepository(db_session).get(99) is None

    def test_ids_for_instructor(self, db_session, seeded_exam):
        assert SqlExamRepository(db_session).ids_for_instructor(50) == [1]
        assert SqlExamRepository(db_session).ids_for_instructor(51) == []


def test_user_repository(db_session, seeded_exam):
    user = SqlUserRepository(db_session).get(50)
    assert user.email == "rao@example.com"
    assert user.role == "instructor"


class TestAttemptRepository:
    def test_create_if_absent_returns_existing(self, db_session, seeded_exam):
        repo = SqlAttemptRepository(db_session)

        first = repo.create_if_absent(new_attempt())
        second = repo.create_if_absent(new_attempt())

        assert first.id == second.id
        assert first.started_at == NOW

    def test_update_only_while_in_progress(self, db_session, seeded_exam):
        repo = SqlAttemptRepository(db_session)
        attempt = repo.create_if_absent(new_attempt())

        assert repo.update_in_progress(attempt.id, {
            "answers": [AnswerRecord(question_index=0, selected_option=1, is_correct=True),
                        AnswerRecord(question_index=1)],
            "correct_answers": 1,
            "status": AttemptStatus.SUBMITTED,
            "submitted_at": NOW,
        })
        assert not repo.update_in_progress(attempt.id, {"correct_answers": 2})

        stored = repo.get(1, STUDENT)
        assert stored.status is AttemptStatus.SUBMITTED
        assert stored.correct_answers == 1
        assert stored.answers[0].selected_option == 1
        assert stored.answers[0].is_correct is True


class TestViolationRepository:
    def _violation(self, vtype, severity, student_id=STUDENT, minutes=0):
        return ViolationRecord(
            id=None, exam_id=1, student_id=student_id, violation_type=vtype,
            severity=severity, description="", occurred_at=NOW + timedelta(minutes=minutes),
            metadata={"key": "F12"},
        )

    def test_count_list_and_breakdown(self, db_session, seeded_exam):
        repo = SqlViolationRepository(db_session)
        repo.add(self._violation("TAB_SWITCH", "medium"))
        repo.add(self._violation("DEVTOOLS_OPEN", "high", minutes=1))
        repo.add(self._violation("TAB_SWITCH", "medium", student_id=8, minutes=2))

        assert repo.count(1, STUDENT) == 2
        newest = repo.list(student_id=STUDENT)
        assert [v.violation_type for v in newest] == ["DEVTOOLS_OPEN", "TAB_SWITCH"]
        assert newest[0].metadata == {"key": "F12"}
        assert repo.list(exam_ids=[]) == []
        assert repo.breakdown([1]) == {("TAB_SWITCH", "medium"): 2, ("DEVTOOLS_OPEN", "high"): 1}


class TestSessionStore:
    def test_rotate_requires_current_token(self, db_session, seeded_exam):
        store = SqlSessionStore(db_session)
        session = store.create(50, "jti-1", {"userAgent": "pytest"}, NOW + timedelta(days=7), NOW)

        assert store.rotate(session.id, "jti-1", "jti-2", NOW + timedelta(days=7), NOW)
        assert not store.rotate(session.id, "jti-1", "jti-3", NOW + timedelta(days=7), NOW)
        assert store.find_active("jti-2").id == session.id
        assert store.find_active("jti-1") is None

    def test_deactivate_all(self, db_session, seeded_exam):
        store = SqlSessionStore(db_session)
        store.create(50, "jti-a", {}, NOW + timedelta(days=7), NOW)

        assert store.deactivate_all(50) == 1
        assert store.list_active(50) == []

    def test_purge_expired(self, db_session, seeded_exam):
        store = SqlSessionStore(db_session)
        store.create(50, "old", {}, NOW - timedelta(days=1), NOW - timedelta(days=8))
        store.create(50, "new", {}, NOW + timedelta(days=7), NOW)

        assert store.purge_expired(NOW) == 1
        assert store.find_active("new") is not None


class TestRevocationList:
    def test_second_revoke_loses(self, db_session):
        revoked = SqlRevocationList(db_session)
        expires = NOW + timedelta(days=7)

        assert revoked.revoke("jti-1", 7, "refresh", expires, "refresh")
        assert not revoked.revoke("jti-1", 7, "refresh", expires, "refresh")
        assert revoked.is_revoked("jti-1")
        assert not revoked.is_revoked("jti-2")
