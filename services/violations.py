"""
Violation ledger and auto-submit coordinator.

Violations are appended and never edited. After each append the per-attempt
count is compared with the exam's limit; crossing it force-submits the
attempt with whatever answers were last saved. The trigger may fire more
than once (concurrent reports), but AttemptService.submit refuses a second
transition, so the effect happens once.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from database.models import AttemptStatus, UserRole
from database.records import ViolationRecord
from database.repositories import ExamRepository, ViolationRepository
from services.attempts import REASON_VIOLATION_LIMIT, AttemptService, SubmissionResult
from services.errors import AlreadySubmitted, Forbidden, NotFound, ValidationError

log = logging.getLogger("integrity.violations")

MAX_LIST_LIMIT = 100


class ViolationType(str, enum.Enum):
    WINDOW_BLUR = "WINDOW_BLUR"
    SHORTCUT_ATTEMPT = "SHORTCUT_ATTEMPT"
    TAB_SWITCH = "TAB_SWITCH"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"
    COPY_PASTE = "COPY_PASTE"
    DEVTOOLS_OPEN = "DEVTOOLS_OPEN"
    RIGHT_CLICK = "RIGHT_CLICK"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


TYPE_SEVERITY = {
    ViolationType.WINDOW_BLUR: Severity.MEDIUM,
    ViolationType.SHORTCUT_ATTEMPT: Severity.HIGH,
    ViolationType.TAB_SWITCH: Severity.MEDIUM,
    ViolationType.FULLSCREEN_EXIT: Severity.MEDIUM,
    ViolationType.COPY_PASTE: Severity.HIGH,
    ViolationType.DEVTOOLS_OPEN: Severity.HIGH,
    ViolationType.RIGHT_CLICK: Severity.LOW,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def severity_for(violation_type: ViolationType, override: Optional[str] = None) -> Severity:
    if override is not None:
        try:
            return Severity(override)
        except ValueError:
            raise ValidationError("Unsupported severity.")
    return TYPE_SEVERITY.get(violation_type, Severity.MEDIUM)


@dataclass(frozen=True)
class ViolationOutcome:
    violation: ViolationRecord
    violation_count: int
    max_violations: int
    auto_submitted: bool = False
    submission: Optional[SubmissionResult] = None


class ViolationLedger:
    def __init__(
        self,
        exams: ExamRepository,
        violations: ViolationRepository,
        attempt_service: AttemptService,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.exams = exams
        self.violations = violations
        self.attempt_service = attempt_service
        self.clock = clock

    def record(
        self,
        exam_id: int,
        student_id: int,
        violation_type: str,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
        time_remaining: Optional[int] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ViolationOutcome:
        try:
            vtype = ViolationType(violation_type)
        except ValueError:
            raise ValidationError("Unsupported violation type.")

        exam = self.exams.get(exam_id)
        if exam is None:
            raise NotFound("Exam not found.")

        violation = self.violations.add(ViolationRecord(
            id=None,
            exam_id=exam_id,
            student_id=student_id,
            violation_type=vtype.value,
            severity=severity_for(vtype, severity).value,
            description=description or "",
            occurred_at=self.clock(),
            metadata=dict(metadata or {}),
            ip_address=ip_address,
            session_id=session_id,
        ))
        count = self.violations.count(exam_id, student_id)

        submission = None
        if count >= exam.max_violations:
            submission = self._auto_submit(exam_id, student_id, time_remaining, count)

        return ViolationOutcome(
            violation=violation,
            violation_count=count,
            max_violations=exam.max_violations,
            auto_submitted=submission is not None,
            submission=submission,
        )

    def _auto_submit(
        self,
        exam_id: int,
        student_id: int,
        time_remaining: Optional[int],
        violation_count: int,
    ) -> Optional[SubmissionResult]:
        """Force-submit the attempt with its stored answers. None when there is nothing to do.

        No answers are passed to submit: it re-reads the row, so an autosave
        that lands after the status check below is still what gets scored.
        """
        attempt = self.attempt_service.current(exam_id, student_id)
        if attempt is None or attempt.status is not AttemptStatus.IN_PROGRESS:
            return None

        try:
            result = self.attempt_service.submit(
                exam_id,
                student_id,
                answers=(),
                time_remaining=time_remaining,
                violations_count=violation_count,
                auto_submitted=True,
                reason=REASON_VIOLATION_LIMIT,
            )
        except AlreadySubmitted:
            # a concurrent request finalized the attempt first
            return None

        log.warning(
            "attempt %s auto-submitted after %d violations (exam %s, student %s)",
            attempt.id, violation_count, exam_id, student_id,
        )
        return result

    # ─── Reporting ─────────────────────────────────────────────────────────────

    def _visible_exam_ids(self, user_id: int, role: str, exam_id: Optional[int]) -> Optional[List[int]]:
        """Exam ids the caller may read; None means no exam filter.

        Instructors are limited to exams they own, with or without an explicit exam_id.
        """
        if exam_id is not None:
            if role == UserRole.INSTRUCTOR.value:
                exam = self.exams.get(exam_id)
                if exam is None or exam.instructor_id != user_id:
                    raise Forbidden("Not authorized for this exam.")
            return [exam_id]
        if role == UserRole.INSTRUCTOR.value:
            return self.exams.ids_for_instructor(user_id)
        return None

    def list_for(
        self,
        user_id: int,
        role: str,
        exam_id: Optional[int] = None,
        limit: int = 25,
    ) -> List[ViolationRecord]:
        """Students only ever see their own violations; instructors see their exams'."""
        limit = min(max(int(limit or 25), 1), MAX_LIST_LIMIT)
        student_id = user_id if role == UserRole.STUDENT.value else None
        return self.violations.list(
            student_id=student_id,
            exam_ids=self._visible_exam_ids(user_id, role, exam_id),
            limit=limit,
        )

    def stats(self, user_id: int, role: str, exam_id: Optional[int] = None) -> Dict[str, Any]:
        exam_ids = self._visible_exam_ids(user_id, role, exam_id)

        totals = {"total": 0, "byType": {}, "bySeverity": {}}
        for (vtype, severity), count in self.violations.breakdown(exam_ids).items():
            totals["total"] += count
            totals["byType"][vtype] = totals["byType"].get(vtype, 0) + count
            totals["bySeverity"][severity] = totals["bySeverity"].get(severity, 0) + count
        return totals
