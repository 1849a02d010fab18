from __future__ import annotations

from typing import assert_never

from flask import Blueprint, Response, current_app, g, jsonify, request

from app.portal.context import RequestContext
from app.portal.db import db_session
from app.portal.errors import AuthError, ErrorKind, RateLimitedError, SessionInvalidError
from app.portal.rate_limit import RATE_LIMITS, RateLimiter, client_ip, rate_limit_key
from app.portal.auth_service import AuthService
from app.portal.validation import parse_login, parse_register

bp = Blueprint("auth", __name__)


def _auth_service() -> AuthService:
    return current_app.extensions["auth_service"]


def _rate_limiter() -> RateLimiter:
    return current_app.extensions["rate_limiter"]


def _ctx() -> RequestContext:
    return g.auth_ctx


def _enforce_rate_limit(endpoint: str, message: str) -> None:
    result = _rate_limiter().check_rule(rate_limit_key(endpoint, client_ip(request)), RATE_LIMITS["auth"])
    if not result.allowed:
        raise RateLimitedError(result.retry_after_seconds, message)


def error_response(err: AuthError) -> tuple[Response, int]:
    """Map a tagged auth error to its JSON response."""
    body: dict = {"success": False, "error": err.message}
    match err.kind:
        case ErrorKind.VALIDATION:
            body["details"] = err.details  # type: ignore[attr-defined]
            return jsonify(body), 400
        case ErrorKind.CONFLICT:
            return jsonify(body), 400
        case ErrorKind.INVALID_CREDENTIALS | ErrorKind.ACCOUNT_SUSPENDED:
            return jsonify(body), 401
        case ErrorKind.RATE_LIMITED:
            resp = jsonify(body)
            resp.headers["Retry-After"] = str(err.retry_after_seconds)  # type: ignore[attr-defined]
            return resp, 429
        case ErrorKind.SESSION_INVALID:
            return jsonify({"success": False, "authenticated": False}), 401
        case _:
            assert_never(err.kind)


@bp.after_request
def _cors_headers(response: Response) -> Response:
    response.headers["Access-Control-Allow-Origin"] = current_app.config["LANDING_URL"]
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers.add("Vary", "Origin")
    return response


@bp.post("/login")
def login_post():
    _enforce_rate_limit("login", "Too many login attempts. Please try again later.")
    data = parse_login(request.get_json(silent=True))
    ctx = _ctx()

    s = db_session()
    try:
        result = _auth_service().login(s, ctx, data.email, data.password, ip=ctx.ip, user_agent=ctx.user_agent)
        s.commit()
    except AuthError as e:
        s.commit()  # keep the failed-attempt audit event
        current_app.logger.warning("Login failed (email=%s ip=%s kind=%s)", data.email, ctx.ip, e.kind.value)
        raise
    except Exception:
        s.rollback()
        current_app.logger.exception(
            "Login crashed (email=%s ip=%s request_id=%s)", data.email, ctx.ip, getattr(g, "request_id", None)
        )
        raise

    current_app.logger.info("User logged in (user_id=%s email=%s ip=%s)", result.user.id, data.email, ctx.ip)
    return jsonify({"success": True, "data": result.to_public(), "message": "Login successful"}), 200


@bp.post("/register")
def register_post():
    _enforce_rate_limit("register", "Too many registration attempts. Please try again later.")
    data = parse_register(request.get_json(silent=True))
    ctx = _ctx()

    s = db_session()
    try:
        result = _auth_service().register(
            s,
            ctx,
            data.name,
            data.email,
            data.password,
            phone=data.phone,
            ip=ctx.ip,
            user_agent=ctx.user_agent,
        )
        s.commit()
    except AuthError as e:
        s.rollback()
        current_app.logger.warning("Registration rejected (email=%s ip=%s kind=%s)", data.email, ctx.ip, e.kind.value)
        raise
    except Exception:
        s.rollback()
        current_app.logger.exception(
            "Registration crashed (email=%s ip=%s request_id=%s)", data.email, ctx.ip, getattr(g, "request_id", None)
        )
        raise

    current_app.logger.info("User registered (user_id=%s email=%s ip=%s)", result.user.id, result.user.email, ctx.ip)
    return jsonify({"success": True, "data": result.to_public(), "message": "Registration successful"}), 201


@bp.post("/logout")
def logout_post():
    ctx = _ctx()
    s = db_session()
    try:
        _auth_service().logout(s, ctx)
        s.commit()
    except Exception:
        s.rollback()
        current_app.logger.exception("Logout failed (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"success": False, "error": "Failed to logout"}), 500

    current_app.logger.info("User logged out (ip=%s)", ctx.ip)
    return jsonify({"success": True, "message": "Logout successful"}), 200


@bp.get("/session")
def session_get():
    ctx = _ctx()
    s = db_session()
    try:
        user = _auth_service().current_user(s, ctx)
        s.commit()
    except Exception:
        s.rollback()
        current_app.logger.exception("Failed to get session (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"success": False, "authenticated": False, "error": "Failed to get session"}), 500

    if user is None:
        raise SessionInvalidError()
    return jsonify({"success": True, "authenticated": True, "data": {"user": user.to_public()}}), 200
