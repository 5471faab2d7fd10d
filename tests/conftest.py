"""
Pytest Configuration for Exam Integrity API Tests
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.security import TokenCodec, hash_password
from auth.sessions import SessionManager
from database import models
from database.database import Base
from database.memory import (
    InMemoryAttemptRepository, InMemoryExamRepository, InMemoryRevocationList,
    InMemorySessionStore, InMemoryUserRepository, InMemoryViolationRepository,
)
from database.records import ExamDefinition, QuestionDef, UserRecord
from services.attempts import AttemptService
from services.violations import ViolationLedger

INSTRUCTOR_ID = 50
STUDENT_ID = 7


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def exam():
    """Two questions, correct options 1 and 0, auto-submit on the 2nd violation."""
    return ExamDefinition(
        id=1,
        title="Networks Midterm",
        duration=10,
        max_violations=2,
        instructor_id=INSTRUCTOR_ID,
        questions=[
            QuestionDef(prompt="Layer of IP?", options=["Link", "Network", "Transport", "Session"],
                        correct_option_index=1, category="Networking"),
            QuestionDef(prompt="Port of HTTP?", options=["80", "443", "21"], correct_option_index=0),
        ],
    )


# ─── In-memory services ────────────────────────────────────────────────────────

@pytest.fixture
def exams(exam):
    return InMemoryExamRepository([exam])


@pytest.fixture
def attempts():
    return InMemoryAttemptRepository()


@pytest.fixture
def violations():
    return InMemoryViolationRepository()


@pytest.fixture
def attempt_service(exams, attempts, clock):
    return AttemptService(exams, attempts, clock=clock)


@pytest.fixture
def ledger(exams, violations, attempt_service, clock):
    return ViolationLedger(exams, violations, attempt_service, clock=clock)


@pytest.fixture
def codec():
    return TokenCodec(secret_key="test-access-secret", refresh_secret_key="test-refresh-secret")


@pytest.fixture
def student():
    return UserRecord(id=STUDENT_ID, email="asha@example.com", name="Asha", role="student")


@pytest.fixture
def revocations():
    return InMemoryRevocationList()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def session_manager(codec, session_store, revocations, student):
    return SessionManager(
        codec=codec,
        sessions=session_store,
        revocations=revocations,
        users=InMemoryUserRepository([student]),
    )


# ─── SQLite ────────────────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def seeded_exam(db_session):
    """Persist the same two-question exam plus its instructor."""
    instructor = models.User(
        id=INSTRUCTOR_ID, name="Dr. Rao", email="rao@example.com",
        role="instructor", hashed_password=hash_password("instructor-pass"),
    )
    exam_row = models.Exam(
        id=1, title="Networks Midterm", duration=10, max_violations=2,
        passing_percentage=60, instructor_id=INSTRUCTOR_ID,
    )
    exam_row.questions = [
        models.ExamQuestion(question_index=0, prompt="Layer of IP?",
                            options=["Link", "Network", "Transport", "Session"],
                            correct_option_index=1, category="Networking"),
        models.ExamQuestion(question_index=1, prompt="Port of HTTP?",
                            options=["80", "443", "21"], correct_option_index=0),
    ]
    db_session.add_all([instructor, exam_row])
    db_session.commit()
    return exam_row


# ─── API ───────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(db_session):
    """FastAPI app wired to SQLite and an in-memory revocation list"""
    from main import app
    from database.database import get_db
    from routers.deps import get_revocation_list

    revoked = InMemoryRevocationList()

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_revocation_list] = lambda: revoked
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """FastAPI test client (lifespan not started; tables come from the engine fixture)"""
    return TestClient(app)


@pytest.fixture
def register_user(client):
    """Register through the API and return the token response."""
    def _register(email="asha@example.com", role="student", password="correct-horse"):
        response = client.post("/auth/register", json={
            "name": email.split("@")[0].title(),
            "email": email,
            "password": password,
            "role": role,
        })
        assert response.status_code == 201, response.text
        return response.json()
    return _register


@pytest.fixture
def bearer():
    """Authorization headers for a token response"""
    return lambda tokens: {"Authorization": f"Bearer {tokens['accessToken']}"}
