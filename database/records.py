"""
Plain records passed between repositories and services.

Repositories assemble these from whatever storage backs them, so the
services never touch ORM objects or query mechanics.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from database.models import AttemptStatus


@dataclass(frozen=True)
class QuestionDef:
    prompt: str
    options: List[str]
    correct_option_index: int
    category: str = "General"
    difficulty: str = "Medium"


@dataclass(frozen=True)
class ExamDefinition:
    id: int
    title: str
    duration: int  # minutes
    questions: List[QuestionDef]
    max_violations: int = 5
    passing_percentage: float = 60
    is_active: bool = True
    description: Optional[str] = None
    instructor_id: Optional[int] = None

    @property
    def duration_seconds(self) -> int:
        return self.duration * 60


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    name: str
    role: str = "student"
    is_active: bool = True


@dataclass
class AnswerRecord:
    question_index: int
    selected_option: Optional[int] = None
    time_spent: int = 0
    is_correct: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionIndex": self.question_index,
            "selectedOption": self.selected_option,
            "timeSpent": self.time_spent,
            "isCorrect": self.is_correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerRecord":
        return cls(
            question_index=data["questionIndex"],
            selected_option=data.get("selectedOption"),
            time_spent=data.get("timeSpent", 0),
            is_correct=data.get("isCorrect", False),
        )


@dataclass
class AttemptRecord:
    id: Any
    exam_id: int
    student_id: int
    status: AttemptStatus
    started_at: datetime
    last_saved_at: datetime
    total_questions: int
    time_remaining: Optional[int]
    answers: List[AnswerRecord] = field(default_factory=list)
    correct_answers: int = 0
    percentage: float = 0
    submitted_at: Optional[datetime] = None
    duration_used: int = 0
    violations_count: int = 0
    auto_submitted: bool = False
    auto_submit_reason: Optional[str] = None

    def copy(self) -> "AttemptRecord":
        return replace(self, answers=[replace(a) for a in self.answers])


@dataclass(frozen=True)
class ViolationRecord:
    id: Any
    exam_id: int
    student_id: int
    violation_type: str
    severity: str
    description: str
    occurred_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class SessionRecord:
    id: Any
    user_id: int
    refresh_token_id: str
    device_info: Dict[str, Any]
    expires_at: datetime
    last_activity: datetime
    created_at: datetime
    is_active: bool = True
