"""
SQLAlchemy models for the exam integrity engine.

Exams and users are owned by the authoring/account subsystems and are only
read here. Attempts, violations, sessions and revoked tokens are written by
the services in this repository.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Text, Float, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from database.database import Base


class AttemptStatus(str, enum.Enum):
    """Lifecycle of one student's run through one exam"""
    IN_PROGRESS = "in-progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto-submitted"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


class UserRole(str, enum.Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


# ==========================================
# ACCOUNTS (read-only except registration)
# ==========================================

class User(Base):
    """
    Account used for authentication.
    hashed_password is NULL for accounts created through Google sign-in.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)
    is_active = Column(Boolean, default=True, nullable=False)
    auth_provider = Column(String(20), nullable=False, default="local")
    google_id = Column(String(255), unique=True, nullable=True, index=True)
    avatar = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ==========================================
# EXAMS (read-only)
# ==========================================

class Exam(Base):
    """
    Exam definition owned by the authoring subsystem.
    duration is in minutes; max_violations is the proctoring threshold that
    forces an auto-submit.
    """
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration = Column(Integer, nullable=False)
    max_violations = Column(Integer, nullable=False, default=5)
    passing_percentage = Column(Float, nullable=False, default=60)
    is_active = Column(Boolean, default=True, nullable=False)
    instructor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    questions = relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.question_index",
    )

    def __repr__(self):
        return f"<Exam(id={self.id}, title='{self.title}')>"


class ExamQuestion(Base):
    """One multiple-choice question, positioned by question_index within its exam."""
    __tablename__ = "exam_questions"
    __table_args__ = (UniqueConstraint("exam_id", "question_index", name="uq_exam_question_index"),)

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    question_index = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)  # 2..6 option strings
    correct_option_index = Column(Integer, nullable=False)
    category = Column(String(100), nullable=False, default="General")
    difficulty = Column(String(20), nullable=False, default="Medium")

    exam = relationship("Exam", back_populates="questions")

    def __repr__(self):
        return f"<ExamQuestion(exam_id={self.exam_id}, index={self.question_index})>"


# ==========================================
# ATTEMPTS
# ==========================================

class Attempt(Base):
    """
    One student's attempt at one exam.
    answers is a JSON list indexed by question_index:
    {questionIndex, selectedOption, timeSpent, isCorrect}.
    """
    __tablename__ = "attempts"
    __table_args__ = (UniqueConstraint("exam_id", "student_id", name="uq_attempt_exam_student"),)

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value, index=True)
    answers = Column(JSON, nullable=False, default=list)
    correct_answers = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False, default=0)
    percentage = Column(Float, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    last_saved_at = Column(DateTime(timezone=True), nullable=False)
    time_remaining = Column(Integer, nullable=True)
    duration_used = Column(Integer, nullable=False, default=0)
    violations_count = Column(Integer, nullable=False, default=0)
    auto_submitted = Column(Boolean, nullable=False, default=False)
    auto_submit_reason = Column(String(50), nullable=True)

    def __repr__(self):
        return f"<Attempt(exam_id={self.exam_id}, student_id={self.student_id}, status='{self.status}')>"


# ==========================================
# PROCTORING VIOLATIONS
# ==========================================

class Violation(Base):
    """Append-only proctoring violation recorded during an attempt."""
    __tablename__ = "violations"
    __table_args__ = (Index("ix_violations_student_exam", "student_id", "exam_id"),)

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(Integer, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    violation_type = Column(String(50), nullable=False, index=True)  # WINDOW_BLUR, SHORTCUT_ATTEMPT, TAB_SWITCH, etc.
    severity = Column(String(10), nullable=False, default="medium")
    description = Column(Text, nullable=False, default="")
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    ip_address = Column(String(64), nullable=True)
    session_id = Column(String(255), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<Violation(id={self.id}, exam_id={self.exam_id}, type='{self.violation_type}')>"


# ==========================================
# AUTH: SESSIONS + REVOKED TOKENS
# ==========================================

class UserSession(Base):
    """
    Server-side record of one refresh token.
    At most one row per user has is_active = true; rotation rewrites
    refresh_token_id in place.
    """
    __tablename__ = "user_sessions"
    __table_args__ = (Index("ix_user_sessions_user_active", "user_id", "is_active"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token_id = Column(String(64), unique=True, nullable=False, index=True)
    device_info = Column(JSON, nullable=False, default=dict)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_activity = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="sessions")

    def __repr__(self):
        return f"<UserSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"


class RevokedToken(Base):
    """Revoked token ids. Rows past expires_at can be purged."""
    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token_id = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    token_type = Column(String(10), nullable=False)  # access | refresh
    reason = Column(String(20), nullable=False, default="logout")
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<RevokedToken(token_id='{self.token_id}', type='{self.token_type}', reason='{self.reason}')>"
