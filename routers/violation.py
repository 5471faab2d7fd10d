"""
Violation router.
Students report integrity events while taking an exam; instructors and
admins read them back.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status

from auth.security import TokenClaims
from database.models import UserRole
from database.records import ViolationRecord
from database.schemas import ViolationRequest
from routers.deps import get_current_claims, get_violation_ledger, require_role
from services.violations import ViolationLedger

router = APIRouter(prefix="/violation", tags=["violation"])

student_only = require_role(UserRole.STUDENT.value)
staff_only = require_role(UserRole.INSTRUCTOR.value, UserRole.ADMIN.value)


def _violation_dict(v: ViolationRecord, full: bool = False) -> dict:
    data = {
        "id": v.id,
        "type": v.violation_type,
        "severity": v.severity,
        "createdAt": v.occurred_at.isoformat(),
    }
    if full:
        data.update({
            "examId": v.exam_id,
            "studentId": v.student_id,
            "description": v.description,
            "metadata": v.metadata,
        })
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
def report_violation(
    body: ViolationRequest,
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
    claims: TokenClaims = Depends(student_only),
    ledger: ViolationLedger = Depends(get_violation_ledger),
):
    """Record one violation; crossing the exam's limit auto-submits the attempt."""
    outcome = ledger.record(
        body.examId,
        claims.user_id,
        body.type,
        description=body.description,
        metadata=body.metadata,
        severity=body.severity,
        time_remaining=body.timeRemaining,
        ip_address=request.client.host if request.client else None,
        session_id=x_session_id,
    )
    return {
        "message": "Violation recorded",
        "violation": _violation_dict(outcome.violation),
        "violationCount": outcome.violation_count,
        "maxViolations": outcome.max_violations,
        "autoSubmitted": outcome.auto_submitted,
        "submission": outcome.submission.to_dict() if outcome.submission else None,
    }


@router.get("")
def list_violations(
    examId: Optional[int] = None,
    limit: int = Query(25),
    claims: TokenClaims = Depends(get_current_claims),
    ledger: ViolationLedger = Depends(get_violation_ledger),
):
    violations = ledger.list_for(claims.user_id, claims.role, exam_id=examId, limit=limit)
    return {"violations": [_violation_dict(v, full=True) for v in violations]}


@router.get("/stats")
def violation_stats(
    examId: Optional[int] = None,
    claims: TokenClaims = Depends(staff_only),
    ledger: ViolationLedger = Depends(get_violation_ledger),
):
    return ledger.stats(claims.user_id, claims.role, exam_id=examId)
