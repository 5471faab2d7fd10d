"""
Answer router.
Periodic autosave of the student's answers and timer, and reading them back.
"""

from fastapi import APIRouter, Depends

from auth.security import TokenClaims
from database.models import UserRole
from database.schemas import SaveProgressRequest
from routers.deps import get_attempt_service, require_role
from routers.exam import progress_dict
from services.attempts import AttemptService

router = APIRouter(prefix="/answer", tags=["answer"])

student_only = require_role(UserRole.STUDENT.value)


@router.post("/save")
def save_answers(
    body: SaveProgressRequest,
    claims: TokenClaims = Depends(student_only),
    service: AttemptService = Depends(get_attempt_service),
):
    attempt = service.save_progress(
        body.examId, claims.user_id, body.answers, time_remaining=body.timeRemaining,
    )
    return {"message": "Progress saved", "timeRemaining": attempt.time_remaining}


@router.get("/{exam_id}/progress")
def get_progress(
    exam_id: int,
    claims: TokenClaims = Depends(student_only),
    service: AttemptService = Depends(get_attempt_service),
):
    return progress_dict(service.progress(exam_id, claims.user_id))
