"""
In-memory repositories.

Used by the test-suite and for local experiments without Postgres/Redis.
Each store guards its state with a lock so the conditional updates keep the
same exactly-one-winner guarantee as the SQL versions.
"""

import itertools
import threading
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from database.models import AttemptStatus
from database.records import (
    AttemptRecord, ExamDefinition, SessionRecord, UserRecord, ViolationRecord,
)
from database.repositories import (
    AttemptRepository, ExamRepository, RevocationList, SessionStore,
    UserRepository, ViolationRepository,
)


class InMemoryExamRepository(ExamRepository):
    def __init__(self, exams: Optional[List[ExamDefinition]] = None):
        self._exams = {exam.id: exam for exam in exams or []}

    def add(self, exam: ExamDefinition) -> ExamDefinition:
        self._exams[exam.id] = exam
        return exam

    def get(self, exam_id: int) -> Optional[ExamDefinition]:
        return self._exams.get(exam_id)

    def ids_for_instructor(self, instructor_id: int) -> List[int]:
        return [e.id for e in self._exams.values() if e.instructor_id == instructor_id]


class InMemoryUserRepository(UserRepository):
    def __init__(self, users: Optional[List[UserRecord]] = None):
        self._users = {user.id: user for user in users or []}

    def add(self, user: UserRecord) -> UserRecord:
        self._users[user.id] = user
        return user

    def get(self, user_id: int) -> Optional[UserRecord]:
        return self._users.get(user_id)


class InMemoryAttemptRepository(AttemptRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._rows: Dict[tuple, AttemptRecord] = {}

    def get(self, exam_id: int, student_id: int) -> Optional[AttemptRecord]:
        with self._lock:
            row = self._rows.get((exam_id, student_id))
            return row.copy() if row else None

    def create_if_absent(self, attempt: AttemptRecord) -> AttemptRecord:
        key = (attempt.exam_id, attempt.student_id)
        with self._lock:
            if key not in self._rows:
                stored = attempt.copy()
                stored.id = next(self._ids)
                self._rows[key] = stored
            return self._rows[key].copy()

    def update_in_progress(self, attempt_id: Any, changes: Dict[str, Any]) -> bool:
        with self._lock:
            for key, row in self._rows.items():
                if row.id != attempt_id:
                    continue
                if row.status is not AttemptStatus.IN_PROGRESS:
                    return False
                updated = replace(row, **changes)
                updated.answers = [replace(a) for a in updated.answers]
                self._rows[key] = updated
                return True
            return False


class InMemoryViolationRepository(ViolationRepository):
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._rows: List[ViolationRecord] = []

    def add(self, violation: ViolationRecord) -> ViolationRecord:
        with self._lock:
            stored = replace(violation, id=next(self._ids))
            self._rows.append(stored)
            return stored

    def count(self, exam_id: int, student_id: int) -> int:
        with self._lock:
            return sum(1 for v in self._rows if v.exam_id == exam_id and v.student_id == student_id)

    def list(self, student_id=None, exam_ids=None, limit=25) -> List[ViolationRecord]:
        with self._lock:
            rows = [
                v for v in self._rows
                if (student_id is None or v.student_id == student_id)
                and (exam_ids is None or v.exam_id in exam_ids)
            ]
        rows.sort(key=lambda v: (v.occurred_at, v.id), reverse=True)
        return rows[:limit]

    def breakdown(self, exam_ids=None) -> Dict[tuple, int]:
        with self._lock:
            return Counter(
                (v.violation_type, v.severity)
                for v in self._rows
                if exam_ids is None or v.exam_id in exam_ids
            )


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._rows: Dict[int, SessionRecord] = {}

    def deactivate_all(self, user_id: int) -> int:
        with self._lock:
            active = [s for s in self._rows.values() if s.user_id == user_id and s.is_active]
            for session in active:
                self._rows[session.id] = replace(session, is_active=False)
            return len(active)

    def create(self, user_id, refresh_token_id, device_info, expires_at, now) -> SessionRecord:
        with self._lock:
            session = SessionRecord(
                id=next(self._ids),
                user_id=user_id,
                refresh_token_id=refresh_token_id,
                device_info=dict(device_info or {}),
                expires_at=expires_at,
                last_activity=now,
                created_at=now,
                is_active=True,
            )
            self._rows[session.id] = session
            return session

    def find_active(self, refresh_token_id: str) -> Optional[SessionRecord]:
        with self._lock:
            for session in self._rows.values():
                if session.refresh_token_id == refresh_token_id and session.is_active:
                    return session
            return None

    def rotate(self, session_id, old_token_id, new_token_id, expires_at, now) -> bool:
        with self._lock:
            session = self._rows.get(session_id)
            if not session or not session.is_active or session.refresh_token_id != old_token_id:
                return False
            self._rows[session_id] = replace(
                session, refresh_token_id=new_token_id, expires_at=expires_at, last_activity=now,
            )
            return True

    def deactivate(self, refresh_token_id: str) -> bool:
        with self._lock:
            for session in self._rows.values():
                if session.refresh_token_id == refresh_token_id:
                    self._rows[session.id] = replace(session, is_active=False)
                    return True
            return False

    def get(self, session_id) -> Optional[SessionRecord]:
        with self._lock:
            return self._rows.get(session_id)

    def deactivate_session(self, session_id) -> bool:
        with self._lock:
            session = self._rows.get(session_id)
            if not session:
                return False
            self._rows[session_id] = replace(session, is_active=False)
            return True

    def list_active(self, user_id: int, limit: int = 10) -> List[SessionRecord]:
        with self._lock:
            rows = [s for s in self._rows.values() if s.user_id == user_id and s.is_active]
        rows.sort(key=lambda s: s.last_activity, reverse=True)
        return rows[:limit]


class InMemoryRevocationList(RevocationList):
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, dict] = {}

    def revoke(self, token_id, user_id, token_type, expires_at, reason) -> bool:
        with self._lock:
            if token_id in self._entries:
                return False
            self._entries[token_id] = {
                "user_id": user_id,
                "type": token_type,
                "expires_at": expires_at,
                "reason": reason,
            }
            return True

    def is_revoked(self, token_id: str) -> bool:
        with self._lock:
            return token_id in self._entries

    def entry(self, token_id: str) -> Optional[dict]:
        with self._lock:
            return self._entries.get(token_id)

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, v in self._entries.items() if v["expires_at"] < now]
            for key in expired:
                del self._entries[key]
            return len(expired)
