from datetime import datetime, timedelta

import pytest
from flask import Response

from app.portal import create_app
from app.portal.context import RequestContext
from app.portal.db import session_scope
from app.portal.models import AccountStatus, Base, User, UserSession
from app.portal.passwords import hash_password
from app.portal.rate_limit import RateLimiter
from app.portal.sessions import SESSION_COOKIE_NAME, SessionStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app(rate_limiter=RateLimiter(cleanup_interval=0))
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(User(id="u1", name="Ada", email="ada@example.com", password_hash=hash_password("pw-ada-123")))
        s.add(User(id="u2", name="Bob", email="bob@example.com", status=AccountStatus.SUSPENDED))
    return app


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return SessionStore(clock=clock)


def test_create_then_get_returns_same_session(app, store, clock):
    ctx = RequestContext()
    with session_scope(app) as s:
        created = store.create(s, ctx, "u1", ip="1.2.3.4", user_agent="pytest")
        assert created.expires_at == clock.now + timedelta(days=30)
        assert ctx.get_cookie(SESSION_COOKIE_NAME) == created.id

    # A later request presenting the issued cookie.
    later = RequestContext.with_cookies({SESSION_COOKIE_NAME: created.id})
    with session_scope(app) as s:
        found = store.get(s, later)
        assert found is not None
        assert found.user_id == "u1"
        assert found.ip == "1.2.3.4"
        assert found.user_agent == "pytest"


def test_expired_session_is_deleted_on_get(app, store, clock):
    ctx = RequestContext()
    with session_scope(app) as s:
        sid = store.create(s, ctx, "u1").id

    with session_scope(app) as s:
        s.get(UserSession, sid).expires_at = clock.now - timedelta(seconds=1)

    later = RequestContext.with_cookies({SESSION_COOKIE_NAME: sid})
    with session_scope(app) as s:
        assert store.get(s, later) is None
    with session_scope(app) as s:
        assert s.get(UserSession, sid) is None
        # Second read of the same dead cookie is just as quiet.
        assert store.get(s, RequestContext.with_cookies({SESSION_COOKIE_NAME: sid})) is None
    assert later.pending[-1].delete is True


def test_session_expiring_exactly_now_is_invalid(app, store, clock):
    with session_scope(app) as s:
        sid = store.create(s, RequestContext(), "u1").id
        s.get(UserSession, sid).expires_at = clock.now

    with session_scope(app) as s:
        assert store.get(s, RequestContext.with_cookies({SESSION_COOKIE_NAME: sid})) is None


def test_get_without_cookie_returns_none(app, store):
    ctx = RequestContext()
    with session_scope(app) as s:
        assert store.get(s, ctx) is None
    assert ctx.pending == []


def test_delete_is_idempotent_and_always_clears_cookie(app, store):
    with session_scope(app) as s:
        sid = store.create(s, RequestContext(), "u1").id

    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: sid})
    with session_scope(app) as s:
        store.delete(s, ctx)
        store.delete(s, ctx)
        store.delete(s, ctx, "never-existed")
    with session_scope(app) as s:
        assert s.get(UserSession, sid) is None
    assert ctx.get_cookie(SESSION_COOKIE_NAME) is None
    assert all(c.delete for c in ctx.pending)


def test_resolve_user_touches_last_login(app, store, clock):
    with session_scope(app) as s:
        sid = store.create(s, RequestContext(), "u1").id

    with session_scope(app) as s:
        user = store.resolve_user(s, RequestContext.with_cookies({SESSION_COOKIE_NAME: sid}))
        assert user is not None and user.id == "u1"
    with session_scope(app) as s:
        assert s.get(User, "u1").last_login_at == clock.now


def test_resolve_user_drops_session_of_inactive_user(app, store):
    with session_scope(app) as s:
        sid = store.create(s, RequestContext(), "u2").id

    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: sid})
    with session_scope(app) as s:
        assert store.resolve_user(s, ctx) is None
    with session_scope(app) as s:
        assert s.get(UserSession, sid) is None
    assert ctx.get_cookie(SESSION_COOKIE_NAME) is None


def test_cleanup_expired_removes_only_past_sessions(app, store, clock):
    with session_scope(app) as s:
        old = [store.create(s, RequestContext(), "u1").id for _ in range(3)]
        keep = store.create(s, RequestContext(), "u1").id
        for sid in old:
            s.get(UserSession, sid).expires_at = clock.now - timedelta(minutes=1)

    with session_scope(app) as s:
        assert store.cleanup_expired(s) == 3
    with session_scope(app) as s:
        assert [row.id for row in s.query(UserSession).all()] == [keep]
        assert store.cleanup_expired(s) == 0


def test_deleting_user_cascades_to_sessions(app, store):
    with session_scope(app) as s:
        sid = store.create(s, RequestContext(), "u1").id
    with session_scope(app) as s:
        s.delete(s.get(User, "u1"))
    with session_scope(app) as s:
        assert s.get(UserSession, sid) is None


def test_cookie_attributes_on_response(app, store):
    ctx = RequestContext(secure_cookies=True)
    with session_scope(app) as s:
        sid = store.create(s, ctx, "u1").id

    resp = ctx.apply(Response())
    [header] = resp.headers.getlist("Set-Cookie")
    assert header.startswith(f"{SESSION_COOKIE_NAME}={sid}")
    assert "HttpOnly" in header
    assert "Secure" in header
    assert "SameSite=Lax" in header
    assert "Path=/" in header
    assert "Expires=" in header
    assert ctx.pending == []
