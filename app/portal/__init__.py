from __future__ import annotations

import atexit
import logging
import sys
import uuid
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, redirect, request

from app.portal.auth import bp as auth_bp, error_response
from app.portal.auth_service import AuthService
from app.portal.config import is_production, load_config
from app.portal.context import RequestContext
from app.portal.db import db_session, init_db, teardown_db_session
from app.portal.errors import AuthError
from app.portal.gatekeeper import GateAction, Gatekeeper, HttpSessionCheck, LocalSessionCheck, SessionCheck
from app.portal.rate_limit import RateLimiter
from app.portal.routes import bp as routes_bp
from app.portal.sessions import SessionStore


def _configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=numeric_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            stream=sys.stdout,
        )
    logging.getLogger("app.portal").setLevel(numeric_level)


def create_app(
    *,
    rate_limiter: RateLimiter | None = None,
    session_check: SessionCheck | None = None,
) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    _configure_logging(app.config["LOG_LEVEL"])

    # Production guardrails (fail fast with clear logs)
    if is_production(app.config.get("ENV")):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be set to Postgres in production (not sqlite).")
        if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    store = SessionStore(duration=timedelta(days=app.config["SESSION_DURATION_DAYS"]))
    auth_service = AuthService(store)

    if rate_limiter is None:
        rate_limiter = RateLimiter(cleanup_interval=app.config["RATE_LIMIT_CLEANUP_INTERVAL"])
        atexit.register(rate_limiter.stop)

    if session_check is None:
        if app.config["SESSION_CHECK_URL"]:
            session_check = HttpSessionCheck(
                app.config["SESSION_CHECK_URL"],
                timeout=app.config["SESSION_CHECK_TIMEOUT"],
                cookie_name=store.cookie_name,
            )
        else:
            session_check = LocalSessionCheck(store, db_session)

    gatekeeper = Gatekeeper(session_check, landing_url=app.config["LANDING_URL"], cookie_name=store.cookie_name)

    app.extensions["session_store"] = store
    app.extensions["auth_service"] = auth_service
    app.extensions["rate_limiter"] = rate_limiter
    app.extensions["gatekeeper"] = gatekeeper

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/auth")

    @app.before_request
    def _prepare_request():
        g.request_id = uuid.uuid4().hex
        g.auth_ctx = RequestContext.from_request(request, secure_cookies=app.config["SESSION_COOKIE_SECURE"])

    @app.before_request
    def _gate():
        decision = gatekeeper.evaluate(request.method, request.path, request.url, g.auth_ctx)
        if decision.action is GateAction.PASS:
            return None
        return redirect(decision.location or "/")

    @app.after_request
    def _apply_cookies(response):
        ctx: RequestContext | None = getattr(g, "auth_ctx", None)
        if ctx is not None:
            ctx.apply(response)
        return response

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(AuthError)
    def _auth_error(e: AuthError):
        return error_response(e)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"success": False, "error": "Internal server error"}), 500

    app.logger.info("create_app() complete; app ready to serve")
    return app
