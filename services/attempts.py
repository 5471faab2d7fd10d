"""
Attempt state machine.

IN_PROGRESS → SUBMITTED       (student submits)
IN_PROGRESS → AUTO_SUBMITTED  (violation limit or time expiry)

Both targets are terminal. Every write goes through
AttemptRepository.update_in_progress, so the terminal check and the write
are one conditional update at the storage layer.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from database.models import AttemptStatus
from database.records import AnswerRecord, AttemptRecord, ExamDefinition
from database.repositories import AttemptRepository, ExamRepository
from services.errors import AlreadySubmitted, Forbidden, NotFound, ValidationError
from services.scoring import is_passing, letter_grade, merge_answers, score_answers

log = logging.getLogger("integrity.attempts")

REASON_VIOLATION_LIMIT = "VIOLATION_LIMIT"
REASON_TIME_EXPIRED = "TIME_EXPIRED"

# Client timers and the last autosave can lag the server clock slightly
EXPIRY_GRACE = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SubmissionResult:
    percentage: float
    correct_answers: int
    total_questions: int
    passed: bool
    status: AttemptStatus
    auto_submitted: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "score": self.percentage,
            "correctAnswers": self.correct_answers,
            "totalQuestions": self.total_questions,
            "passed": self.passed,
        }


@dataclass(frozen=True)
class AttemptResult:
    attempt: AttemptRecord
    passed: bool
    grade: str
    time_taken: int  # seconds between start and submission


class AttemptService:
    def __init__(
        self,
        exams: ExamRepository,
        attempts: AttemptRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.exams = exams
        self.attempts = attempts
        self.clock = clock

    # ─── Helpers ───────────────────────────────────────────────────────────────

    def _exam(self, exam_id: int) -> ExamDefinition:
        exam = self.exams.get(exam_id)
        if exam is None:
            raise NotFound("Exam not found")
        return exam

    def _new_attempt(self, exam: ExamDefinition, student_id: int) -> AttemptRecord:
        now = self.clock()
        return self.attempts.create_if_absent(AttemptRecord(
            id=None,
            exam_id=exam.id,
            student_id=student_id,
            status=AttemptStatus.IN_PROGRESS,
            answers=merge_answers(len(exam.questions), [], []),
            total_questions=len(exam.questions),
            time_remaining=exam.duration_seconds,
            started_at=now,
            last_saved_at=now,
        ))

    @staticmethod
    def _clamp_time(exam: ExamDefinition, time_remaining: Optional[int]) -> Optional[int]:
        """None for absent or negative values; otherwise capped at the exam duration."""
        if time_remaining is None or time_remaining < 0:
            return None
        return min(int(time_remaining), exam.duration_seconds)

    def _is_overdue(self, exam: ExamDefinition, attempt: AttemptRecord) -> bool:
        deadline = attempt.started_at + timedelta(seconds=exam.duration_seconds) + EXPIRY_GRACE
        return self.clock() >= deadline

    def _expire_if_overdue(self, exam: ExamDefinition, attempt: AttemptRecord) -> None:
        """Auto-submit an attempt whose time ran out, then refuse the caller's request."""
        if attempt.status is not AttemptStatus.IN_PROGRESS or not self._is_overdue(exam, attempt):
            return
        result = self._finalize(
            exam, attempt, [], time_remaining=0, violations_count=None,
            auto_submitted=True, reason=REASON_TIME_EXPIRED,
        )
        if result is not None:
            log.info("attempt %s auto-submitted: time expired", attempt.id)
        raise AlreadySubmitted("Exam time expired and was auto-submitted")

    def _finalize(
        self,
        exam: ExamDefinition,
        attempt: AttemptRecord,
        answers: Iterable[AnswerRecord],
        time_remaining: Optional[int],
        violations_count: Optional[int],
        auto_submitted: bool,
        reason: Optional[str],
    ) -> Optional[SubmissionResult]:
        """Score and close the attempt. None if another request closed it first."""
        score = score_answers(exam.questions, answers, attempt.answers)
        remaining = self._clamp_time(exam, time_remaining)
        if remaining is None:
            remaining = attempt.time_remaining if attempt.time_remaining is not None else 0
        status = AttemptStatus.AUTO_SUBMITTED if auto_submitted else AttemptStatus.SUBMITTED
        now = self.clock()

        changes = {
            "answers": score.answers,
            "correct_answers": score.correct_answers,
            "total_questions": score.total_questions,
            "percentage": score.percentage,
            "status": status,
            "submitted_at": now,
            "last_saved_at": now,
            "time_remaining": remaining,
            "duration_used": max(0, exam.duration_seconds - remaining),
            "auto_submitted": auto_submitted,
            "auto_submit_reason": reason if auto_submitted else None,
        }
        if violations_count is not None and violations_count >= 0:
            changes["violations_count"] = violations_count

        if not self.attempts.update_in_progress(attempt.id, changes):
            return None

        return SubmissionResult(
            percentage=score.percentage,
            correct_answers=score.correct_answers,
            total_questions=score.total_questions,
            passed=is_passing(score.percentage, exam.passing_percentage),
            status=status,
            auto_submitted=auto_submitted,
            reason=changes["auto_submit_reason"],
        )

    # ─── Operations ────────────────────────────────────────────────────────────

    def start(self, exam_id: int, student_id: int) -> AttemptRecord:
        """Create the attempt, or resume the one already in progress."""
        exam = self._exam(exam_id)
        if not exam.is_active:
            raise Forbidden("This exam is not currently available")

        attempt = self.attempts.get(exam_id, student_id)
        if attempt is None:
            attempt = self._new_attempt(exam, student_id)
            log.info("attempt %s started: exam %s student %s", attempt.id, exam_id, student_id)

        if attempt.status.is_terminal:
            raise AlreadySubmitted()
        self._expire_if_overdue(exam, attempt)
        return attempt

    def save_progress(
        self,
        exam_id: int,
        student_id: int,
        answers: Iterable[AnswerRecord],
        time_remaining: Optional[int] = None,
    ) -> AttemptRecord:
        exam = self._exam(exam_id)
        if not exam.is_active:
            raise NotFound("Exam not available")

        attempt = self.attempts.get(exam_id, student_id)
        if attempt is None:
            attempt = self._new_attempt(exam, student_id)
        if attempt.status.is_terminal:
            raise AlreadySubmitted()
        self._expire_if_overdue(exam, attempt)

        score = score_answers(exam.questions, answers, attempt.answers)
        changes = {
            "answers": score.answers,
            "correct_answers": score.correct_answers,
            "total_questions": score.total_questions,
            "percentage": score.percentage,
            "last_saved_at": self.clock(),
        }
        remaining = self._clamp_time(exam, time_remaining)
        if remaining is not None:
            changes["time_remaining"] = remaining

        if not self.attempts.update_in_progress(attempt.id, changes):
            raise AlreadySubmitted()
        return replace(attempt, **changes)

    def submit(
        self,
        exam_id: int,
        student_id: int,
        answers: Iterable[AnswerRecord] = (),
        time_remaining: Optional[int] = None,
        violations_count: Optional[int] = None,
        auto_submitted: bool = False,
        reason: Optional[str] = None,
    ) -> SubmissionResult:
        exam = self._exam(exam_id)
        attempt = self.attempts.get(exam_id, student_id)
        if attempt is None:
            raise NotFound("No active attempt found")
        if attempt.status.is_terminal:
            raise AlreadySubmitted()

        result = self._finalize(
            exam, attempt, answers, time_remaining, violations_count, auto_submitted, reason,
        )
        if result is None:
            raise AlreadySubmitted()

        log.info(
            "attempt %s %s: %.2f%% (%d/%d)",
            attempt.id, result.status.value, result.percentage,
            result.correct_answers, result.total_questions,
        )
        return result

    def progress(self, exam_id: int, student_id: int) -> AttemptRecord:
        attempt = self.attempts.get(exam_id, student_id)
        if attempt is None:
            raise NotFound("No saved progress found")
        return attempt

    def current(self, exam_id: int, student_id: int) -> Optional[AttemptRecord]:
        return self.attempts.get(exam_id, student_id)

    def result(self, exam_id: int, student_id: int) -> AttemptResult:
        exam = self._exam(exam_id)
        attempt = self.attempts.get(exam_id, student_id)
        if attempt is None:
            raise NotFound("No submission found for this exam")
        if not attempt.status.is_terminal:
            raise ValidationError("Exam not yet submitted")

        time_taken = 0
        if attempt.submitted_at and attempt.started_at:
            time_taken = max(0, int((attempt.submitted_at - attempt.started_at).total_seconds()))
        return AttemptResult(
            attempt=attempt,
            passed=is_passing(attempt.percentage, exam.passing_percentage),
            grade=letter_grade(attempt.percentage),
            time_taken=time_taken,
        )
