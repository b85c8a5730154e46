from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.roster.db import db_session
from app.roster.models import Group, Person
from app.roster.modules.people.cleanup import CleanupFinder
from app.roster.modules.people.service import destroy_people, minimize_people, person_history, root_person
from app.roster.rbac import can_manage_group, can_show_person, deny, require_login, require_permission

bp = Blueprint("people", __name__)


def _current_user() -> Person:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _load(group_id: int, person_id: int) -> tuple[Group, Person]:
    s = db_session()
    group = s.get(Group, group_id)
    person = s.get(Person, person_id)
    if not group or not person:
        abort(404)
    if not can_show_person(_current_user(), person):
        deny("group_read")
    return group, person


# ---------- Show ----------
@bp.get("/people/<int:person_id>")
@require_login
def person_redirect(person_id: int):
    person = db_session().get(Person, person_id)
    if not person:
        abort(404)
    group_id = person.primary_group_id or next((r.group_id for r in person.roles), None)
    if group_id is None:
        if not can_show_person(_current_user(), person):
            deny("group_read")
        return render_template("people/show.html", group=None, person=person, roles=[], manageable=set())
    return redirect(url_for("people.person_show", group_id=group_id, person_id=person.id))


@bp.get("/groups/<int:group_id>/people/<int:person_id>")
@require_login
def person_show(group_id: int, person_id: int):
    group, person = _load(group_id, person_id)
    u = _current_user()
    roles = person.active_roles
    manageable = {r.id for r in roles if can_manage_group(u, r.group)}
    return render_template("people/show.html", group=group, person=person, roles=roles, manageable=manageable)


# ---------- History ----------
@bp.get("/groups/<int:group_id>/people/<int:person_id>/history")
@require_login
def person_history_view(group_id: int, person_id: int):
    group, person = _load(group_id, person_id)
    roles, inactive_roles, future_roles = person_history(db_session(), person)
    return render_template(
        "people/history.html",
        group=group,
        person=person,
        roles=roles,
        inactive_roles=inactive_roles,
        future_roles=future_roles,
    )


# ---------- Cleanup ----------
def _finder() -> CleanupFinder:
    s = db_session()
    root = root_person(s, current_app.config.get("ROOT_EMAIL") or "")
    return CleanupFinder.from_config(s, current_app.config, root_person_id=root.id if root else None)


@bp.get("/admin/people/cleanup")
@require_permission("admin")
def cleanup_get():
    finder = _finder()
    return render_template(
        "admin/people_cleanup.html",
        people=finder.run(),
        roles_cutoff=finder.last_role_deleted_at,
        sign_in_cutoff=finder.current_sign_in_at,
    )


@bp.post("/admin/people/cleanup")
@require_permission("admin")
def cleanup_post():
    s = db_session()
    u = _current_user()
    if request.form.get("confirm") != "1":
        flash("Please confirm the cleanup.", "danger")
        return redirect(url_for("people.cleanup_get"))

    selected = {int(v) for v in request.form.getlist("person_ids") if v.isdigit()}
    # Re-run the finder so only current candidates are touched.
    people = [p for p in _finder().run() if not selected or p.id in selected]
    if request.form.get("action") == "minimize":
        count = minimize_people(s, people, actor=u)
        s.commit()
        flash(f"{count} people minimized.", "success")
    else:
        count = destroy_people(s, people, actor=u)
        s.commit()
        flash(f"{count} people deleted.", "success")
    current_app.logger.info("People cleanup by %s: action=%s count=%d", u.id, request.form.get("action") or "destroy", count)
    return redirect(url_for("people.cleanup_get"))
