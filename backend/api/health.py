"""Health check endpoints."""
from flask import Blueprint, current_app

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once startup data (rights and roles) has been initialized."""
    services = current_app.config.get("SERVICES")
    if services is None or services.rights.count_all() == 0 or services.roles.count_all() == 0:
        return ("not ready", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})
