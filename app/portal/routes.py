from flask import Blueprint, g, redirect, url_for

from app.portal.guards import require_auth

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    # The gatekeeper normally answers "/" itself; this covers a disabled gate.
    return redirect(url_for("routes.dashboard"))


@bp.get("/dashboard")
@require_auth
def dashboard():
    """Dashboard shell: who is signed in."""
    return {"success": True, "data": {"user": g.current_user.to_public()}}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access.
    """
    return "ok", 200
