"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts

Request bodies use the camelCase field names the exam client sends. Loose
client payloads are normalized here, once, so the services only ever see
AnswerRecord lists.
"""

from numbers import Number
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.records import AnswerRecord


def _as_int(value: Any) -> Optional[int]:
    """Integers only; bools and numeric strings are not indices."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def normalise_answers(raw: Any) -> List[AnswerRecord]:
    """Turn a client answers array into AnswerRecords.

    Entries without an integer questionIndex are dropped. A non-integer
    selectedOption becomes unanswered; a missing, negative or non-numeric
    timeSpent becomes 0.
    """
    if not isinstance(raw, list):
        return []

    answers = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        question_index = _as_int(entry.get("questionIndex"))
        if question_index is None:
            continue
        time_spent = entry.get("timeSpent")
        if isinstance(time_spent, bool) or not isinstance(time_spent, Number) or time_spent < 0:
            time_spent = 0
        answers.append(AnswerRecord(
            question_index=question_index,
            selected_option=_as_int(entry.get("selectedOption")),
            time_spent=int(time_spent),
        ))
    return answers


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return _as_int(value)


# ==========================================
# ATTEMPT SCHEMAS
# ==========================================

class AnswerPayload(BaseModel):
    """Shared answers + timer fields of save and submit bodies."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    answers: List[AnswerRecord] = Field(default_factory=list)
    timeRemaining: Optional[int] = None

    @field_validator("answers", mode="before")
    @classmethod
    def _normalise_answers(cls, value):
        return normalise_answers(value)

    @field_validator("timeRemaining", mode="before")
    @classmethod
    def _normalise_time(cls, value):
        return _optional_int(value)


class SaveProgressRequest(AnswerPayload):
    examId: int


class SubmitRequest(AnswerPayload):
    violationsCount: Optional[int] = None

    @field_validator("violationsCount", mode="before")
    @classmethod
    def _normalise_count(cls, value):
        return _optional_int(value)


# ==========================================
# VIOLATION SCHEMAS
# ==========================================

class ViolationRequest(BaseModel):
    examId: int
    type: str
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    severity: Optional[str] = None
    timeRemaining: Optional[int] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, value):
        return value.strip() if isinstance(value, str) else ""

    @field_validator("timeRemaining", mode="before")
    @classmethod
    def _normalise_time(cls, value):
        return _optional_int(value)


# ==========================================
# AUTH SCHEMAS
# ==========================================

class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str
    password: str
    role: Optional[str] = None


class GoogleAuthRequest(BaseModel):
    credential: str


class RefreshRequest(BaseModel):
    refreshToken: str


class LogoutRequest(BaseModel):
    refreshToken: Optional[str] = None


class TokenResponse(BaseModel):
    message: str
    accessToken: str
    refreshToken: str
    user: Optional[Dict[str, Any]] = None
