"""
pos/main/routes.py
──────────────────
Health check for load balancers and monitoring.
"""
from datetime import datetime

from flask import current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from pos import db
from pos.main import main


@main.route("/health")
def health():
    status = "ok"
    failures = []

    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        status = "error"
        failures.append(f"DB: {str(e)}")
        current_app.logger.error(f"Health check failed (DB): {e}")

    code = 200 if status == "ok" else 503
    return jsonify({
        "status": status,
        "failures": failures,
        "timestamp": datetime.utcnow().isoformat(),
    }), code
