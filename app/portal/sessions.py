"""
Cookie-backed server-side sessions.

The store never touches Flask's request globals: callers pass the ORM session
and a RequestContext explicitly. Writes are flushed, not committed; the
caller owns the transaction.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.portal.context import RequestContext
from app.portal.models import IP_MAX_LENGTH, User, UserSession, utcnow

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_id"
SESSION_DURATION_DAYS = 30
SESSION_TOKEN_BYTES = 32


class SessionStore:
    def __init__(
        self,
        *,
        duration: timedelta = timedelta(days=SESSION_DURATION_DAYS),
        cookie_name: str = SESSION_COOKIE_NAME,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.duration = duration
        self.cookie_name = cookie_name
        self._clock = clock

    def create(
        self,
        s: Session,
        ctx: RequestContext,
        user_id: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> UserSession:
        now = self._clock()
        sess = UserSession(
            id=secrets.token_urlsafe(SESSION_TOKEN_BYTES),
            user_id=user_id,
            ip=ip[:IP_MAX_LENGTH] if ip else None,
            user_agent=user_agent[:512] if user_agent else None,
            created_at=now,
            expires_at=now + self.duration,
        )
        s.add(sess)
        s.flush()
        ctx.set_cookie(self.cookie_name, sess.id, expires=sess.expires_at)
        return sess

    def get(self, s: Session, ctx: RequestContext) -> UserSession | None:
        session_id = ctx.get_cookie(self.cookie_name)
        if not session_id:
            return None

        sess = s.get(UserSession, session_id)
        if sess is None or sess.is_expired(self._clock()):
            # Unknown or expired: drop whatever is left and clear the cookie.
            self.delete(s, ctx, session_id)
            return None
        return sess

    def delete(self, s: Session, ctx: RequestContext, session_id: str | None = None) -> None:
        session_id = session_id or ctx.get_cookie(self.cookie_name)
        if session_id:
            s.execute(delete(UserSession).where(UserSession.id == session_id))
        ctx.delete_cookie(self.cookie_name)

    def resolve_user(self, s: Session, ctx: RequestContext) -> User | None:
        sess = self.get(s, ctx)
        if sess is None:
            return None

        user = s.get(User, sess.user_id)
        if user is None or not user.is_active:
            logger.info(
                "Dropping session for unavailable user (user_id=%s status=%s)",
                sess.user_id,
                user.status if user else None,
            )
            self.delete(s, ctx, sess.id)
            return None

        # Last-write-wins; concurrent requests on the same session may race here.
        user.last_login_at = self._clock()
        return user

    def cleanup_expired(self, s: Session) -> int:
        result = s.execute(delete(UserSession).where(UserSession.expires_at < self._clock()))
        count = result.rowcount or 0
        if count:
            logger.info("Removed %s expired sessions", count)
        return count
