"""
Repository interfaces and their SQLAlchemy implementations.

Services depend only on the abstract classes below; routers/deps.py wires the
SQL versions per request and tests use database/memory.py. Every state
transition that must not happen twice is a conditional UPDATE whose rowcount
tells the caller whether it won.
"""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from database import models
from database.models import AttemptStatus
from database.records import (
    AnswerRecord, AttemptRecord, ExamDefinition, QuestionDef,
    SessionRecord, UserRecord, ViolationRecord,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything in this service is UTC."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ==========================================
# INTERFACES
# ==========================================

class ExamRepository(ABC):
    @abstractmethod
    def get(self, exam_id: int) -> Optional[ExamDefinition]:
        ...

    @abstractmethod
    def ids_for_instructor(self, instructor_id: int) -> List[int]:
        ...


class UserRepository(ABC):
    @abstractmethod
    def get(self, user_id: int) -> Optional[UserRecord]:
        ...


class AttemptRepository(ABC):
    @abstractmethod
    def get(self, exam_id: int, student_id: int) -> Optional[AttemptRecord]:
        ...

    @abstractmethod
    def create_if_absent(self, attempt: AttemptRecord) -> AttemptRecord:
        """Insert the attempt, or return the row that already holds (exam, student)."""

    @abstractmethod
    def update_in_progress(self, attempt_id: Any, changes: Dict[str, Any]) -> bool:
        """Apply `changes` (AttemptRecord field names) only while the attempt is IN_PROGRESS.

        Returns False when the attempt had already reached a terminal state.
        """


class ViolationRepository(ABC):
    @abstractmethod
    def add(self, violation: ViolationRecord) -> ViolationRecord:
        ...

    @abstractmethod
    def count(self, exam_id: int, student_id: int) -> int:
        ...

    @abstractmethod
    def list(
        self,
        student_id: Optional[int] = None,
        exam_ids: Optional[Sequence[int]] = None,
        limit: int = 25,
    ) -> List[ViolationRecord]:
        """Newest first."""

    @abstractmethod
    def breakdown(self, exam_ids: Optional[Sequence[int]] = None) -> Dict[tuple, int]:
        """Counts keyed by (violation_type, severity)."""


class SessionStore(ABC):
    @abstractmethod
    def deactivate_all(self, user_id: int) -> int:
        ...

    @abstractmethod
    def create(
        self,
        user_id: int,
        refresh_token_id: str,
        device_info: Dict[str, Any],
        expires_at: datetime,
        now: datetime,
    ) -> SessionRecord:
        ...

    @abstractmethod
    def find_active(self, refresh_token_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def rotate(
        self,
        session_id: Any,
        old_token_id: str,
        new_token_id: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Swap the refresh token id in place if the session still holds `old_token_id` and is active."""

    @abstractmethod
    def deactivate(self, refresh_token_id: str) -> bool:
        ...

    @abstractmethod
    def get(self, session_id: Any) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def deactivate_session(self, session_id: Any) -> bool:
        ...

    @abstractmethod
    def list_active(self, user_id: int, limit: int = 10) -> List[SessionRecord]:
        """Most recent activity first."""


class RevocationList(ABC):
    @abstractmethod
    def revoke(
        self,
        token_id: str,
        user_id: int,
        token_type: str,
        expires_at: datetime,
        reason: str,
    ) -> bool:
        """Insert-if-absent. Returns False when the token was already revoked."""

    @abstractmethod
    def is_revoked(self, token_id: str) -> bool:
        ...


# ==========================================
# SQLALCHEMY IMPLEMENTATIONS
# ==========================================

class SqlExamRepository(ExamRepository):
    def __init__(self, db: Session):
        self.db = db

    def get(self, exam_id: int) -> Optional[ExamDefinition]:
        exam = (
            self.db.query(models.Exam)
            .options(selectinload(models.Exam.questions))
            .filter(models.Exam.id == exam_id)
            .first()
        )
        if not exam:
            return None
        return ExamDefinition(
            id=exam.id,
            title=exam.title,
            description=exam.description,
            duration=exam.duration,
            max_violations=exam.max_violations,
            passing_percentage=exam.passing_percentage,
            is_active=exam.is_active,
            instructor_id=exam.instructor_id,
            questions=[
                QuestionDef(
                    prompt=q.prompt,
                    options=list(q.options),
                    correct_option_index=q.correct_option_index,
                    category=q.category,
                    difficulty=q.difficulty,
                )
                for q in sorted(exam.questions, key=lambda q: q.question_index)
            ],
        )

    def ids_for_instructor(self, instructor_id: int) -> List[int]:
        rows = self.db.query(models.Exam.id).filter(models.Exam.instructor_id == instructor_id).all()
        return [row.id for row in rows]


class SqlUserRepository(UserRepository):
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> Optional[UserRecord]:
        user = self.db.query(models.User).filter(models.User.id == user_id).first()
        if not user:
            return None
        return UserRecord(
            id=user.id, email=user.email, name=user.name,
            role=user.role, is_active=user.is_active,
        )


def _attempt_record(row: models.Attempt) -> AttemptRecord:
    return AttemptRecord(
        id=row.id,
        exam_id=row.exam_id,
        student_id=row.student_id,
        status=AttemptStatus(row.status),
        answers=[AnswerRecord.from_dict(a) for a in (row.answers or [])],
        correct_answers=row.correct_answers,
        total_questions=row.total_questions,
        percentage=row.percentage,
        started_at=_aware(row.started_at),
        submitted_at=_aware(row.submitted_at),
        last_saved_at=_aware(row.last_saved_at),
        time_remaining=row.time_remaining,
        duration_used=row.duration_used,
        violations_count=row.violations_count,
        auto_submitted=row.auto_submitted,
        auto_submit_reason=row.auto_submit_reason,
    )


def _attempt_columns(changes: Dict[str, Any]) -> Dict[str, Any]:
    values = dict(changes)
    if "answers" in values:
        values["answers"] = [a.to_dict() for a in values["answers"]]
    if "status" in values:
        values["status"] = AttemptStatus(values["status"]).value
    return values


class SqlAttemptRepository(AttemptRepository):
    def __init__(self, db: Session):
        self.db = db

    def _query(self, exam_id: int, student_id: int):
        return self.db.query(models.Attempt).filter(
            models.Attempt.exam_id == exam_id,
            models.Attempt.student_id == student_id,
        )

    def get(self, exam_id: int, student_id: int) -> Optional[AttemptRecord]:
        row = self._query(exam_id, student_id).first()
        return _attempt_record(row) if row else None

    def create_if_absent(self, attempt: AttemptRecord) -> AttemptRecord:
        row = models.Attempt(
            exam_id=attempt.exam_id,
            student_id=attempt.student_id,
            **_attempt_columns({
                "status": attempt.status,
                "answers": attempt.answers,
                "correct_answers": attempt.correct_answers,
                "total_questions": attempt.total_questions,
                "percentage": attempt.percentage,
                "started_at": attempt.started_at,
                "last_saved_at": attempt.last_saved_at,
                "time_remaining": attempt.time_remaining,
            }),
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # unique (exam_id, student_id): another request created it first
            self.db.rollback()
            return self.get(attempt.exam_id, attempt.student_id)
        self.db.refresh(row)
        return _attempt_record(row)

    def update_in_progress(self, attempt_id: Any, changes: Dict[str, Any]) -> bool:
        updated = (
            self.db.query(models.Attempt)
            .filter(
                models.Attempt.id == attempt_id,
                models.Attempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .update(_attempt_columns(changes), synchronize_session=False)
        )
        self.db.commit()
        return updated == 1


def _violation_record(row: models.Violation) -> ViolationRecord:
    return ViolationRecord(
        id=row.id,
        exam_id=row.exam_id,
        student_id=row.student_id,
        violation_type=row.violation_type,
        severity=row.severity,
        description=row.description or "",
        occurred_at=_aware(row.occurred_at),
        metadata=row.metadata_ or {},
        ip_address=row.ip_address,
        session_id=row.session_id,
    )


class SqlViolationRepository(ViolationRepository):
    def __init__(self, db: Session):
        self.db = db

    def add(self, violation: ViolationRecord) -> ViolationRecord:
        row = models.Violation(
            exam_id=violation.exam_id,
            student_id=violation.student_id,
            violation_type=violation.violation_type,
            severity=violation.severity,
            description=violation.description,
            metadata_=violation.metadata,
            ip_address=violation.ip_address,
            session_id=violation.session_id,
            occurred_at=violation.occurred_at,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return _violation_record(row)

    def count(self, exam_id: int, student_id: int) -> int:
        return (
            self.db.query(func.count(models.Violation.id))
            .filter(models.Violation.exam_id == exam_id, models.Violation.student_id == student_id)
            .scalar()
        )

    def list(self, student_id=None, exam_ids=None, limit=25) -> List[ViolationRecord]:
        query = self.db.query(models.Violation)
        if student_id is not None:
            query = query.filter(models.Violation.student_id == student_id)
        if exam_ids is not None:
            query = query.filter(models.Violation.exam_id.in_(list(exam_ids)))
        rows = (
            query.order_by(models.Violation.occurred_at.desc(), models.Violation.id.desc())
            .limit(limit)
            .all()
        )
        return [_violation_record(row) for row in rows]

    def breakdown(self, exam_ids=None) -> Dict[tuple, int]:
        query = self.db.query(
            models.Violation.violation_type,
            models.Violation.severity,
            func.count(models.Violation.id),
        )
        if exam_ids is not None:
            query = query.filter(models.Violation.exam_id.in_(list(exam_ids)))
        rows = query.group_by(models.Violation.violation_type, models.Violation.severity).all()
        return Counter({(vtype, severity): count for vtype, severity, count in rows})


def _session_record(row: models.UserSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        refresh_token_id=row.refresh_token_id,
        device_info=row.device_info or {},
        expires_at=_aware(row.expires_at),
        last_activity=_aware(row.last_activity),
        created_at=_aware(row.created_at),
        is_active=row.is_active,
    )


class SqlSessionStore(SessionStore):
    def __init__(self, db: Session):
        self.db = db

    def deactivate_all(self, user_id: int) -> int:
        count = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.user_id == user_id, models.UserSession.is_active == True)
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        return count

    def create(self, user_id, refresh_token_id, device_info, expires_at, now) -> SessionRecord:
        row = models.UserSession(
            user_id=user_id,
            refresh_token_id=refresh_token_id,
            device_info=device_info,
            expires_at=expires_at,
            last_activity=now,
            created_at=now,
            is_active=True,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return _session_record(row)

    def find_active(self, refresh_token_id: str) -> Optional[SessionRecord]:
        row = (
            self.db.query(models.UserSession)
            .filter(
                models.UserSession.refresh_token_id == refresh_token_id,
                models.UserSession.is_active == True,
            )
            .first()
        )
        return _session_record(row) if row else None

    def rotate(self, session_id, old_token_id, new_token_id, expires_at, now) -> bool:
        updated = (
            self.db.query(models.UserSession)
            .filter(
                models.UserSession.id == session_id,
                models.UserSession.refresh_token_id == old_token_id,
                models.UserSession.is_active == True,
            )
            .update(
                {"refresh_token_id": new_token_id, "expires_at": expires_at, "last_activity": now},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def deactivate(self, refresh_token_id: str) -> bool:
        updated = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.refresh_token_id == refresh_token_id)
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def get(self, session_id) -> Optional[SessionRecord]:
        row = self.db.query(models.UserSession).filter(models.UserSession.id == session_id).first()
        return _session_record(row) if row else None

    def deactivate_session(self, session_id) -> bool:
        updated = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.id == session_id)
            .update({"is_active": False}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def list_active(self, user_id: int, limit: int = 10) -> List[SessionRecord]:
        rows = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.user_id == user_id, models.UserSession.is_active == True)
            .order_by(models.UserSession.last_activity.desc())
            .limit(limit)
            .all()
        )
        return [_session_record(row) for row in rows]

    def purge_expired(self, now: datetime) -> int:
        count = (
            self.db.query(models.UserSession)
            .filter(models.UserSession.expires_at < now)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return count


class SqlRevocationList(RevocationList):
    def __init__(self, db: Session):
        self.db = db

    def revoke(self, token_id, user_id, token_type, expires_at, reason) -> bool:
        self.db.add(models.RevokedToken(
            token_id=token_id,
            user_id=user_id,
            token_type=token_type,
            expires_at=expires_at,
            reason=reason,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def is_revoked(self, token_id: str) -> bool:
        return (
            self.db.query(models.RevokedToken.id)
            .filter(models.RevokedToken.token_id == token_id)
            .first()
        ) is not None

    def purge_expired(self, now: datetime) -> int:
        count = (
            self.db.query(models.RevokedToken)
            .filter(models.RevokedToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return count
