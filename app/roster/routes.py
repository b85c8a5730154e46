from flask import Blueprint, g, redirect, render_template, url_for

from app.roster.db import db_session
from app.roster.models import Group

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    person = getattr(g, "current_user", None)
    if person and person.primary_group_id:
        return redirect(url_for("people.person_show", group_id=person.primary_group_id, person_id=person.id))
    roots = (
        db_session()
        .query(Group)
        .filter(Group.parent_id.is_(None))
        .filter(Group.deleted_at.is_(None))
        .order_by(Group.name.asc())
        .all()
    )
    return render_template("public/index.html", roots=roots)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200
