"""
Session & token manager.

Issues token pairs under a single-active-session policy, rotates refresh
tokens (each one is usable exactly once) and revokes credentials on logout.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from auth.security import ACCESS, REFRESH, TokenClaims, TokenCodec, TokenPair
from database.records import SessionRecord, UserRecord
from database.repositories import RevocationList, SessionStore, UserRepository
from services.errors import AuthError, Forbidden, InvalidToken, NoActiveSession, NotFound, Revoked

log = logging.getLogger("integrity.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    def __init__(
        self,
        codec: TokenCodec,
        sessions: SessionStore,
        revocations: RevocationList,
        users: Optional[UserRepository] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.codec = codec
        self.sessions = sessions
        self.revocations = revocations
        self.users = users
        self.clock = clock

    # ─── Issuing ───────────────────────────────────────────────────────────────

    def _open_session(self, user: UserRecord, device_info: Optional[Dict[str, Any]]) -> TokenPair:
        if not user.is_active:
            raise Forbidden("Account is deactivated")

        now = self.clock()
        replaced = self.sessions.deactivate_all(user.id)
        pair = self.codec.create_pair(user.id, user.email, user.role, now=now)
        self.sessions.create(
            user_id=user.id,
            refresh_token_id=pair.refresh.claims.token_id,
            device_info=device_info or {},
            expires_at=now + self.codec.refresh_ttl,
            now=now,
        )
        if replaced:
            log.info("user %s signed in; %d previous session(s) deactivated", user.id, replaced)
        return pair

    def login(self, user: UserRecord, device_info: Optional[Dict[str, Any]] = None) -> TokenPair:
        return self._open_session(user, device_info)

    def register(self, user: UserRecord, device_info: Optional[Dict[str, Any]] = None) -> TokenPair:
        return self._open_session(user, device_info)

    def oauth_exchange(self, user: UserRecord, device_info: Optional[Dict[str, Any]] = None) -> TokenPair:
        return self._open_session(user, device_info)

    # ─── Rotation ──────────────────────────────────────────────────────────────

    def refresh(self, refresh_token: str) -> TokenPair:
        claims = self.codec.decode(refresh_token, REFRESH)

        if self.revocations.is_revoked(claims.token_id):
            log.warning("revoked refresh token presented for user %s", claims.user_id)
            raise Revoked()

        session = self.sessions.find_active(claims.token_id)
        if session is None:
            raise NoActiveSession()

        user = UserRecord(id=claims.user_id, email=claims.email, name="", role=claims.role)
        if self.users is not None:
            found = self.users.get(claims.user_id)
            if found is None or not found.is_active:
                raise InvalidToken("User not found or inactive")
            user = found

        # the revocation insert is the single point where concurrent reuse is decided
        if not self.revocations.revoke(
            claims.token_id, claims.user_id, REFRESH, claims.expires_at, "refresh",
        ):
            log.warning("refresh token reused concurrently for user %s", claims.user_id)
            raise Revoked()

        now = self.clock()
        pair = self.codec.create_pair(user.id, user.email, user.role, now=now)
        rotated = self.sessions.rotate(
            session.id,
            old_token_id=claims.token_id,
            new_token_id=pair.refresh.claims.token_id,
            expires_at=now + self.codec.refresh_ttl,
            now=now,
        )
        if not rotated:
            # deactivated by a concurrent login/logout between lookup and rotation
            raise NoActiveSession()

        log.info("session %s rotated for user %s", session.id, user.id)
        return pair

    # ─── Revocation ────────────────────────────────────────────────────────────

    def authenticate(self, access_token: str) -> TokenClaims:
        token_id = self.codec.peek(access_token)["jti"]
        if self.revocations.is_revoked(token_id):
            raise Revoked()
        return self.codec.decode(access_token, ACCESS)

    def logout(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        claims = self.authenticate(access_token)
        self.revocations.revoke(claims.token_id, claims.user_id, ACCESS, claims.expires_at, "logout")

        if refresh_token:
            try:
                refresh_claims = self.codec.decode(refresh_token, REFRESH)
            except AuthError:
                # unreadable or expired refresh token: nothing left to revoke
                refresh_claims = None
            if refresh_claims is not None and refresh_claims.user_id == claims.user_id:
                self.revocations.revoke(
                    refresh_claims.token_id, claims.user_id, REFRESH,
                    refresh_claims.expires_at, "logout",
                )
                self.sessions.deactivate(refresh_claims.token_id)

        log.info("user %s logged out", claims.user_id)

    def list_sessions(self, user_id: int) -> List[SessionRecord]:
        return self.sessions.list_active(user_id, limit=10)

    def revoke_session(self, user_id: int, session_id: Any) -> None:
        session = self.sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise NotFound("Session not found")

        self.revocations.revoke(
            session.refresh_token_id, user_id, REFRESH, session.expires_at, "security",
        )
        self.sessions.deactivate_session(session.id)
        log.info("session %s revoked by user %s", session.id, user_id)
