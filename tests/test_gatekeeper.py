from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from app.portal.context import RequestContext
from app.portal.gatekeeper import GateAction, Gatekeeper, HttpSessionCheck
from app.portal.sessions import SESSION_COOKIE_NAME

LANDING = "http://landing.test"


class RecordingCheck:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, session_id):
        self.calls.append(session_id)
        if self.error is not None:
            raise self.error
        return self.result


def _gate(check) -> Gatekeeper:
    return Gatekeeper(check, landing_url=LANDING + "/")


def _redirect_param(location: str) -> str:
    parts = urlsplit(location)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == f"{LANDING}/login"
    return parse_qs(parts.query)["redirect"][0]


@pytest.mark.parametrize(
    "path",
    ["/api/auth/login", "/api/auth/register", "/api/auth/session", "/api/auth/logout", "/static/app.css", "/health", "/healthz"],
)
def test_public_routes_pass_without_cookie(path):
    check = RecordingCheck()
    d = _gate(check).evaluate("GET", path, "http://app.test" + path, RequestContext())
    assert d.action is GateAction.PASS
    assert check.calls == []


@pytest.mark.parametrize("path", ["/healthy-page", "/healthcare", "/healthz/admin", "/api/authority", "/staticfiles"])
def test_lookalike_paths_are_not_public(path):
    check = RecordingCheck()
    url = "http://app.test" + path
    d = _gate(check).evaluate("GET", path, url, RequestContext())
    assert d.action is GateAction.REDIRECT
    assert _redirect_param(d.location) == url


def test_preflight_passes():
    d = _gate(RecordingCheck(False)).evaluate("OPTIONS", "/dashboard", "http://app.test/dashboard", RequestContext())
    assert d.action is GateAction.PASS


def test_protected_route_without_cookie_redirects_with_return_url():
    check = RecordingCheck()
    url = "http://app.test/dashboard/reports?tab=2"
    d = _gate(check).evaluate("GET", "/dashboard/reports", url, RequestContext())
    assert d.action is GateAction.REDIRECT
    assert _redirect_param(d.location) == url
    assert d.clear_cookie is False
    assert check.calls == []


def test_invalid_session_redirects_and_clears_cookie():
    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: "sid-1"})
    check = RecordingCheck(False)
    d = _gate(check).evaluate("GET", "/dashboard", "http://app.test/dashboard", ctx)
    assert d.action is GateAction.REDIRECT
    assert d.clear_cookie is True
    assert _redirect_param(d.location) == "http://app.test/dashboard"
    assert check.calls == ["sid-1"]
    assert ctx.get_cookie(SESSION_COOKIE_NAME) is None
    assert ctx.pending[-1].delete is True


def test_check_error_fails_closed():
    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: "sid-1"})
    d = _gate(RecordingCheck(error=RuntimeError("db down"))).evaluate(
        "GET", "/dashboard", "http://app.test/dashboard", ctx
    )
    assert d.action is GateAction.REDIRECT
    assert _redirect_param(d.location) == "http://app.test/dashboard"


def test_root_with_valid_session_goes_to_dashboard():
    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: "sid-1"})
    d = _gate(RecordingCheck(True)).evaluate("GET", "/", "http://app.test/", ctx)
    assert d.action is GateAction.REDIRECT
    assert d.location == "http://app.test/dashboard"
    assert ctx.pending == []


def test_valid_session_passes():
    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: "sid-1"})
    d = _gate(RecordingCheck(True)).evaluate("POST", "/api/things", "http://app.test/api/things", ctx)
    assert d.action is GateAction.PASS


class FakeHttp:
    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error

        class _Resp:
            pass

        r = _Resp()
        r.status_code = self.status_code
        return r


def test_http_check_forwards_cookie_with_timeout():
    http = FakeHttp(200)
    check = HttpSessionCheck("http://app.test/api/auth/session", timeout=2.5, http=http)
    assert check("sid-9") is True
    url, kwargs = http.calls[0]
    assert url == "http://app.test/api/auth/session"
    assert kwargs["headers"] == {"Cookie": f"{SESSION_COOKIE_NAME}=sid-9"}
    assert kwargs["timeout"] == 2.5


def test_http_check_rejects_non_200():
    assert HttpSessionCheck("http://x", http=FakeHttp(401))("sid") is False


def test_http_check_timeout_fails_closed_at_gate():
    check = HttpSessionCheck("http://x", http=FakeHttp(error=requests.Timeout("slow")))
    ctx = RequestContext.with_cookies({SESSION_COOKIE_NAME: "sid-1"})
    d = _gate(check).evaluate("GET", "/dashboard", "http://app.test/dashboard", ctx)
    assert d.action is GateAction.REDIRECT
    assert d.clear_cookie is True
