"""
Authentication router.
Login, registration and Google sign-in each open a fresh session (and close
every other one for the user); refresh rotates the refresh token; logout
revokes both tokens.
"""

import logging
import os
import re

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy.orm import Session

from auth.security import TokenClaims, TokenPair, hash_password, verify_password
from auth.sessions import SessionManager
from database.database import get_db
from database.models import User, UserRole
from database.records import UserRecord
from database.schemas import (
    GoogleAuthRequest, LoginRequest, LogoutRequest, RefreshRequest,
    RegisterRequest, TokenResponse,
)
from routers.deps import (
    device_info, get_bearer_token, get_current_claims, get_session_manager,
)
from services.errors import AuthError, Conflict, Forbidden, NotFound, ValidationError

router = APIRouter(prefix="/auth", tags=["auth"])
log = logging.getLogger("integrity.auth")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8
SELF_REGISTER_ROLES = {UserRole.STUDENT.value, UserRole.INSTRUCTOR.value}


# ─── Helpers ───────────────────────────────────────────────────────────────────

def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "avatar": user.avatar,
    }


def _record(user: User) -> UserRecord:
    return UserRecord(id=user.id, email=user.email, name=user.name, role=user.role, is_active=user.is_active)


def _token_response(message: str, pair: TokenPair, user: User = None) -> TokenResponse:
    return TokenResponse(
        message=message,
        accessToken=pair.access_token,
        refreshToken=pair.refresh_token,
        user=_user_dict(user) if user is not None else None,
    )


def verify_google_credential(credential: str) -> dict:
    """Verify a Google ID token and return its claims."""
    from google.auth.transport import requests as google_requests
    from google.oauth2 import id_token

    try:
        return id_token.verify_oauth2_token(credential, google_requests.Request(), GOOGLE_CLIENT_ID)
    except ValueError:
        raise AuthError("Invalid Google token")


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """Create a local account and sign it in."""
    email = body.email.strip().lower()
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Password must be at least 8 characters long")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")

    role = body.role or UserRole.STUDENT.value
    if role not in SELF_REGISTER_ROLES:
        raise ValidationError("Invalid role")

    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already registered")

    user = User(
        name=body.name.strip(),
        email=email,
        hashed_password=hash_password(body.password),
        role=role,
        auth_provider="local",
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    pair = manager.register(_record(user), device_info(request))
    return _token_response("User registered successfully", pair, user)


@router.post("/login", response_model=TokenResponse)
def login(
    body: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """Authenticate with email + password and return access + refresh tokens."""
    user = db.query(User).filter(User.email == body.email.strip().lower()).first()
    if not user:
        log.warning("login rejected: unknown email")
        raise AuthError("Invalid credentials")
    if not user.is_active:
        raise Forbidden("Account is deactivated")
    if not user.hashed_password:
        raise ValidationError("This account uses Google Sign-In. Please use the Google login button.")
    if not verify_password(body.password, user.hashed_password):
        log.warning("login rejected: bad password for user %s", user.id)
        raise AuthError("Invalid credentials")

    pair = manager.login(_record(user), device_info(request))
    return _token_response("Login successful", pair, user)


@router.post("/google", response_model=TokenResponse)
def google_login(
    body: GoogleAuthRequest,
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
):
    """Exchange a Google ID token for app tokens, linking or creating the account."""
    claims = verify_google_credential(body.credential)
    google_id = claims["sub"]
    email = claims["email"].lower()

    user = db.query(User).filter(User.google_id == google_id).first()
    if user is None:
        user = db.query(User).filter(User.email == email).first()
        if user is not None:
            user.google_id = google_id
            user.avatar = claims.get("picture") or user.avatar
        else:
            user = User(
                google_id=google_id,
                email=email,
                name=claims.get("name") or email,
                avatar=claims.get("picture"),
                auth_provider="google",
                role=UserRole.STUDENT.value,
            )
            db.add(user)
    else:
        user.name = claims.get("name") or user.name
        user.avatar = claims.get("picture") or user.avatar
    db.commit()
    db.refresh(user)

    pair = manager.oauth_exchange(_record(user), device_info(request))
    return _token_response("Google login successful", pair, user)


@router.post("/refresh", response_model=TokenResponse)
def refresh(body: RefreshRequest, manager: SessionManager = Depends(get_session_manager)):
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    pair = manager.refresh(body.refreshToken)
    return _token_response("Token refreshed successfully", pair)


@router.post("/logout")
def logout(
    body: LogoutRequest = Body(default=LogoutRequest()),
    token: str = Depends(get_bearer_token),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.logout(token, body.refreshToken)
    return {"message": "Logged out successfully"}


@router.get("/profile")
def profile(claims: TokenClaims = Depends(get_current_claims), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.id == claims.user_id).first()
    if not user:
        raise NotFound("User not found")
    return _user_dict(user)


@router.get("/sessions")
def list_sessions(
    claims: TokenClaims = Depends(get_current_claims),
    manager: SessionManager = Depends(get_session_manager),
):
    """Active sessions for the caller. Token ids are never exposed."""
    return {
        "sessions": [
            {
                "id": s.id,
                "deviceInfo": s.device_info,
                "lastActivity": s.last_activity.isoformat(),
                "expiresAt": s.expires_at.isoformat(),
                "createdAt": s.created_at.isoformat(),
            }
            for s in manager.list_sessions(claims.user_id)
        ]
    }


@router.delete("/sessions/{session_id}")
def revoke_session(
    session_id: int,
    claims: TokenClaims = Depends(get_current_claims),
    manager: SessionManager = Depends(get_session_manager),
):
    manager.revoke_session(claims.user_id, session_id)
    return {"message": "Session revoked successfully"}
