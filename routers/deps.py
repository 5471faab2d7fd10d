"""
FastAPI dependencies: build the services for one request and resolve the
caller from the bearer token.

Storage is chosen here and nowhere else. Tests override `get_db` and
`get_revocation_list` to swap in SQLite and the in-memory list.
"""

import os
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from auth.security import TokenClaims, TokenCodec
from auth.sessions import SessionManager
from database.database import get_db
from database.redis_client import RedisRevocationList
from database.repositories import (
    RevocationList, SqlAttemptRepository, SqlExamRepository, SqlRevocationList,
    SqlSessionStore, SqlUserRepository, SqlViolationRepository,
)
from services.attempts import AttemptService
from services.errors import AuthError, Forbidden
from services.violations import ViolationLedger

REVOCATION_BACKEND = os.getenv("REVOCATION_BACKEND", "redis")

_bearer = HTTPBearer(auto_error=False)
_codec = TokenCodec()


def get_token_codec() -> TokenCodec:
    return _codec


def get_revocation_list(db: Session = Depends(get_db)) -> RevocationList:
    if REVOCATION_BACKEND == "database":
        return SqlRevocationList(db)
    return RedisRevocationList()


def get_session_manager(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    revocations: RevocationList = Depends(get_revocation_list),
) -> SessionManager:
    return SessionManager(
        codec=codec,
        sessions=SqlSessionStore(db),
        revocations=revocations,
        users=SqlUserRepository(db),
    )


def get_attempt_service(db: Session = Depends(get_db)) -> AttemptService:
    return AttemptService(SqlExamRepository(db), SqlAttemptRepository(db))


def get_violation_ledger(
    db: Session = Depends(get_db),
    attempt_service: AttemptService = Depends(get_attempt_service),
) -> ViolationLedger:
    return ViolationLedger(SqlExamRepository(db), SqlViolationRepository(db), attempt_service)


# ─── Caller ────────────────────────────────────────────────────────────────────

def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> str:
    if credentials is None:
        raise AuthError("Access denied. No token provided.")
    return credentials.credentials


def get_current_claims(
    token: str = Depends(get_bearer_token),
    manager: SessionManager = Depends(get_session_manager),
) -> TokenClaims:
    return manager.authenticate(token)


def require_role(*roles: str):
    def _check(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in roles:
            raise Forbidden("Access denied.")
        return claims
    return _check


def device_info(request: Request) -> dict:
    return {
        "userAgent": request.headers.get("user-agent", "Unknown"),
        "ipAddress": request.client.host if request.client else "Unknown",
        "platform": request.headers.get("sec-ch-ua-platform", "Unknown"),
    }
