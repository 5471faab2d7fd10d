"""
Shared authentication utilities.
JWT access token (short-lived, stateless) + JWT refresh token (long-lived,
tracked server-side by a session row). Both carry a `jti` so they can be
revoked individually.
"""

import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt as _bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from services.errors import Expired, InvalidToken, WrongTokenType

# ─── Config ───────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "exam-integrity-secret-key-change-in-production")
REFRESH_SECRET_KEY = os.getenv("JWT_REFRESH_SECRET_KEY", "exam-integrity-refresh-secret-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

ACCESS = "access"
REFRESH = "refresh"


# ─── Password helpers ─────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    return _bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


# ─── Token types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: str
    type: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims


@dataclass(frozen=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken

    @property
    def access_token(self) -> str:
        return self.access.token

    @property
    def refresh_token(self) -> str:
        return self.refresh.token


# ─── Codec ────────────────────────────────────────────────────────────────────

class TokenCodec:
    """Encodes, decodes and verifies signed access and refresh tokens. Stateless."""

    def __init__(
        self,
        secret_key: str = SECRET_KEY,
        refresh_secret_key: str = REFRESH_SECRET_KEY,
        access_ttl: timedelta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl: timedelta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
        algorithm: str = ALGORITHM,
    ):
        self._keys = {ACCESS: secret_key, REFRESH: refresh_secret_key}
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm

    def _encode(self, token_type: str, user_id: int, email: str, role: str,
                ttl: timedelta, now: Optional[datetime]) -> IssuedToken:
        now = now or datetime.now(timezone.utc)
        claims = TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            type=token_type,
            token_id=secrets.token_hex(16),
            issued_at=now,
            expires_at=now + ttl,
        )
        payload = {
            "sub": str(user_id),
            "userId": user_id,
            "email": email,
            "role": role,
            "type": token_type,
            "jti": claims.token_id,
            "iat": int(claims.issued_at.timestamp()),
            "exp": int(claims.expires_at.timestamp()),
        }
        return IssuedToken(
            token=jwt.encode(payload, self._keys[token_type], algorithm=self.algorithm),
            claims=claims,
        )

    def create_access_token(self, user_id: int, email: str, role: str,
                            now: Optional[datetime] = None) -> IssuedToken:
        return self._encode(ACCESS, user_id, email, role, self.access_ttl, now)

    def create_refresh_token(self, user_id: int, email: str, role: str,
                             now: Optional[datetime] = None) -> IssuedToken:
        return self._encode(REFRESH, user_id, email, role, self.refresh_ttl, now)

    def create_pair(self, user_id: int, email: str, role: str,
                    now: Optional[datetime] = None) -> TokenPair:
        return TokenPair(
            access=self.create_access_token(user_id, email, role, now),
            refresh=self.create_refresh_token(user_id, email, role, now),
        )

    def peek(self, token: str) -> dict:
        """Unverified claims. Only used to find the jti before verification."""
        try:
            claims = jwt.get_unverified_claims(token)
        except (JWTError, ValueError, TypeError, AttributeError):
            raise InvalidToken("Invalid token.")
        if not isinstance(claims, dict) or not claims.get("jti"):
            raise InvalidToken("Invalid token.")
        return claims

    def decode(self, token: str, expected_type: str) -> TokenClaims:
        """Verify signature and expiry, then check the token type.

        The signing key is chosen by the token's own `type` claim; a forged
        type cannot be signed with the other key, so a valid token of the
        wrong kind is reported as WrongTokenType rather than InvalidToken.
        """
        claimed_type = self.peek(token).get("type")
        key = self._keys.get(claimed_type)
        if key is None:
            raise InvalidToken("Invalid token.")
        try:
            payload = jwt.decode(token, key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise Expired()
        except (JWTError, ValueError, TypeError):
            raise InvalidToken("Invalid token.")

        if payload.get("type") != expected_type:
            raise WrongTokenType()

        try:
            return TokenClaims(
                user_id=int(payload["userId"]),
                email=payload.get("email", ""),
                role=payload.get("role", ""),
                type=payload["type"],
                token_id=payload["jti"],
                issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, ValueError, TypeError):
            raise InvalidToken("Invalid token payload.")

    def expiry_of(self, token: str) -> Optional[datetime]:
        """Expiry from unverified claims, or None when the token carries none."""
        exp = self.peek(token).get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)
