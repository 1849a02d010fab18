"""
Per-request admission check, run before any route handler.

    public route            -> pass
    no session cookie       -> redirect to the landing login page
    session check fails     -> redirect to login, clear the cookie
    "/" with valid session  -> redirect to the dashboard
    otherwise               -> pass

Any error raised while checking the session is treated as an invalid session.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlencode, urljoin

import requests
from sqlalchemy.orm import Session

from app.portal.context import RequestContext
from app.portal.sessions import SESSION_COOKIE_NAME, SessionStore

logger = logging.getLogger(__name__)

PUBLIC_ROUTES = frozenset({"/api/auth/login", "/api/auth/register", "/api/auth/session", "/health", "/healthz"})
PUBLIC_PREFIXES = ("/api/auth/", "/static/")
DASHBOARD_PATH = "/dashboard"
LOGIN_PATH = "/login"

# Receives the raw session id; returns True when the session is valid.
SessionCheck = Callable[[str], bool]


class GateAction(str, enum.Enum):
    PASS = "pass"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    location: str | None = None
    clear_cookie: bool = False

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(GateAction.PASS)

    @classmethod
    def redirect_to(cls, location: str, *, clear_cookie: bool = False) -> "GateDecision":
        return cls(GateAction.REDIRECT, location=location, clear_cookie=clear_cookie)


class LocalSessionCheck:
    """Validates in-process through the session store (same rules as GET /api/auth/session)."""

    def __init__(self, store: SessionStore, session_factory: Callable[[], Session]) -> None:
        self.store = store
        self.session_factory = session_factory

    def __call__(self, session_id: str) -> bool:
        s = self.session_factory()
        ctx = RequestContext.with_cookies({self.store.cookie_name: session_id})
        try:
            user = self.store.resolve_user(s, ctx)
            s.commit()
        except Exception:
            s.rollback()
            raise
        return user is not None


class HttpSessionCheck:
    """
    Calls the session-check endpoint, forwarding the session cookie.

    Timeouts and connection errors propagate to the gatekeeper, which fails closed.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        http: requests.Session | None = None,
        cookie_name: str = SESSION_COOKIE_NAME,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.http = http or requests.Session()
        self.cookie_name = cookie_name

    def __call__(self, session_id: str) -> bool:
        resp = self.http.get(
            self.url,
            headers={"Cookie": f"{self.cookie_name}={session_id}"},
            timeout=self.timeout,
            allow_redirects=False,
        )
        return resp.status_code == 200


class Gatekeeper:
    def __init__(
        self,
        check_session: SessionCheck,
        *,
        landing_url: str,
        cookie_name: str = SESSION_COOKIE_NAME,
        public_routes: frozenset[str] = PUBLIC_ROUTES,
        public_prefixes: tuple[str, ...] = PUBLIC_PREFIXES,
        dashboard_path: str = DASHBOARD_PATH,
    ) -> None:
        self.check_session = check_session
        self.landing_url = landing_url.rstrip("/")
        self.cookie_name = cookie_name
        self.public_routes = public_routes
        self.public_prefixes = public_prefixes
        self.dashboard_path = dashboard_path

    def is_public(self, path: str) -> bool:
        return path in self.public_routes or path.startswith(self.public_prefixes)

    def login_url(self, return_to: str) -> str:
        return f"{self.landing_url}{LOGIN_PATH}?{urlencode({'redirect': return_to})}"

    def evaluate(self, method: str, path: str, url: str, ctx: RequestContext) -> GateDecision:
        if method == "OPTIONS" or self.is_public(path):
            return GateDecision.allow()

        session_id = ctx.get_cookie(self.cookie_name)
        if not session_id:
            return GateDecision.redirect_to(self.login_url(url))

        try:
            valid = self.check_session(session_id)
        except Exception as e:
            logger.warning("Session check failed; denying request (path=%s): %s", path, e)
            valid = False

        if not valid:
            ctx.delete_cookie(self.cookie_name)
            return GateDecision.redirect_to(self.login_url(url), clear_cookie=True)

        if path == "/":
            return GateDecision.redirect_to(urljoin(url, self.dashboard_path))

        return GateDecision.allow()
