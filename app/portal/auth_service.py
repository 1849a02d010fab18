from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.portal.audit import record_event
from app.portal.context import RequestContext
from app.portal.errors import AccountSuspendedError, ConflictError, InvalidCredentialsError
from app.portal.models import AccountStatus, User, UserSession, utcnow
from app.portal.passwords import hash_password, verify_password
from app.portal.sessions import SessionStore
from app.portal.validation import normalize_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    user: User
    session: UserSession

    def to_public(self) -> dict:
        return {
            "user": {"id": self.user.id, "email": self.user.email, "name": self.user.name},
            "session": self.session.to_public(),
        }


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Verified against for unknown emails so both failure paths cost one scrypt.
    return hash_password("unused-password-placeholder")


class AuthService:
    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def find_user_by_email(self, s: Session, email: str) -> User | None:
        return s.scalars(select(User).where(User.email == normalize_email(email))).one_or_none()

    def register(
        self,
        s: Session,
        ctx: RequestContext,
        name: str,
        email: str,
        password: str,
        phone: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        if self.find_user_by_email(s, email) is not None:
            raise ConflictError()

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            phone=phone,
            status=AccountStatus.ACTIVE,
        )
        s.add(user)
        try:
            s.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            s.rollback()
            raise ConflictError()

        session = self.store.create(s, ctx, user.id, ip=ip, user_agent=user_agent)
        record_event(s, actor=user, action="auth.register", client_ip=ip, entity_type="User", entity_id=user.id)
        return AuthResult(user=user, session=session)

    def login(
        self,
        s: Session,
        ctx: RequestContext,
        email: str,
        password: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        user = self.find_user_by_email(s, email)

        if user is None or not user.password_hash:
            verify_password(password, _dummy_hash())
            self._record_failure(s, email, ip, "unknown_email")
            raise InvalidCredentialsError()

        if not verify_password(password, user.password_hash):
            self._record_failure(s, email, ip, "bad_password")
            raise InvalidCredentialsError()

        if not user.is_active:
            self._record_failure(s, email, ip, f"status_{user.status}")
            raise AccountSuspendedError()

        session = self.store.create(s, ctx, user.id, ip=ip, user_agent=user_agent)
        user.last_login_at = utcnow()
        record_event(s, actor=user, action="auth.login", client_ip=ip, entity_type="User", entity_id=user.id)
        return AuthResult(user=user, session=session)

    def logout(self, s: Session, ctx: RequestContext) -> None:
        sess = self.store.get(s, ctx)
        self.store.delete(s, ctx, sess.id if sess else None)
        if sess is not None:
            record_event(s, actor=None, action="auth.logout", client_ip=ctx.ip, entity_type="User", entity_id=sess.user_id)

    def current_user(self, s: Session, ctx: RequestContext) -> User | None:
        return self.store.resolve_user(s, ctx)

    def _record_failure(self, s: Session, email: str, ip: str | None, reason: str) -> None:
        # The reason stays internal; callers only ever see the generic error.
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            client_ip=ip,
            entity_type="User",
            metadata={"email": email, "reason": reason},
        )
