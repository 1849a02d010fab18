from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, redirect, request

from app.portal.db import db_session
from app.portal.errors import RateLimitedError
from app.portal.rate_limit import RATE_LIMITS, client_ip, rate_limit_key


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Resolve the signed-in user into g.current_user, or send the browser to the
    landing login page with a return URL. Signed-in calls count against the
    per-IP "api" rate limit.
    """

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        s = db_session()
        user = current_app.extensions["auth_service"].current_user(s, g.auth_ctx)
        s.commit()
        if user is None:
            gatekeeper = current_app.extensions["gatekeeper"]
            return redirect(gatekeeper.login_url(request.url))

        result = current_app.extensions["rate_limiter"].check_rule(
            rate_limit_key("api", client_ip(request)), RATE_LIMITS["api"]
        )
        if not result.allowed:
            raise RateLimitedError(result.retry_after_seconds)

        g.current_user = user
        return fn(*args, **kwargs)

    return wrapped
