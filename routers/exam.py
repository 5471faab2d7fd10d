"""
Exam router.
Start (or resume) an attempt, submit it, and read back the result.
"""

from fastapi import APIRouter, Body, Depends

from auth.security import TokenClaims
from database.models import UserRole
from database.records import AttemptRecord, ExamDefinition
from database.schemas import SubmitRequest
from routers.deps import get_attempt_service, require_role
from services.attempts import AttemptService

router = APIRouter(prefix="/exam", tags=["exam"])

student_only = require_role(UserRole.STUDENT.value)


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _exam_dict(exam: ExamDefinition) -> dict:
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "duration": exam.duration,
        "totalQuestions": len(exam.questions),
        "maxViolations": exam.max_violations,
        "passingPercentage": exam.passing_percentage,
    }


def _question_list(exam: ExamDefinition) -> list:
    # correct_option_index stays on the server
    return [
        {
            "questionIndex": index,
            "prompt": q.prompt,
            "options": list(q.options),
            "category": q.category,
            "difficulty": q.difficulty,
        }
        for index, q in enumerate(exam.questions)
    ]


def progress_dict(attempt: AttemptRecord) -> dict:
    return {
        "answers": [a.to_dict() for a in attempt.answers],
        "status": attempt.status.value,
        "timeRemaining": attempt.time_remaining,
        "startedAt": attempt.started_at.isoformat(),
        "lastSavedAt": attempt.last_saved_at.isoformat(),
    }


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("/{exam_id}/start")
def start_exam(
    exam_id: int,
    claims: TokenClaims = Depends(student_only),
    service: AttemptService = Depends(get_attempt_service),
):
    """Start the exam, or resume the attempt already in progress."""
    attempt = service.start(exam_id, claims.user_id)
    exam = service.exams.get(exam_id)
    return {
        "exam": _exam_dict(exam),
        "questions": _question_list(exam),
        "progress": progress_dict(attempt),
    }


@router.post("/{exam_id}/submit")
def submit_exam(
    exam_id: int,
    body: SubmitRequest = Body(default=SubmitRequest()),
    claims: TokenClaims = Depends(student_only),
    service: AttemptService = Depends(get_attempt_service),
):
    result = service.submit(
        exam_id,
        claims.user_id,
        answers=body.answers,
        time_remaining=body.timeRemaining,
        violations_count=body.violationsCount,
    )
    return {"message": "Exam submitted successfully", **result.to_dict()}


@router.get("/{exam_id}/results")
def exam_results(
    exam_id: int,
    claims: TokenClaims = Depends(student_only),
    service: AttemptService = Depends(get_attempt_service),
):
    outcome = service.result(exam_id, claims.user_id)
    attempt = outcome.attempt
    return {
        "score": attempt.percentage,
        "correctAnswers": attempt.correct_answers,
        "totalQuestions": attempt.total_questions,
        "passed": outcome.passed,
        "grade": outcome.grade,
        "status": attempt.status.value,
        "autoSubmitted": attempt.auto_submitted,
        "autoSubmitReason": attempt.auto_submit_reason,
        "violationsCount": attempt.violations_count,
        "timeTaken": outcome.time_taken,
        "submittedAt": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
        "answers": [a.to_dict() for a in attempt.answers],
    }
