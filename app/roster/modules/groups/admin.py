from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, send_file, url_for

from app.roster.db import db_session
from app.roster.models import Group, Person
from app.roster.modules.groups.service import (
    ancestors,
    remove_privacy_policy,
    update_group,
    upload_privacy_policy,
    validate_group_payload,
)
from app.roster.modules.people.service import group_members
from app.roster.rbac import can_manage_group, can_read_group, deny, require_login
from app.roster.storage import StorageError, storage_from_config

bp = Blueprint("groups", __name__)

PRIVACY_POLICY_MAX_BYTES = 2 * 1024 * 1024


def _current_user() -> Person:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_group(group_id: int) -> Group:
    group = db_session().get(Group, group_id)
    if not group or group.deleted_at is not None:
        abort(404)
    return group


# ---------- Show ----------
@bp.get("/groups/<int:group_id>")
def group_show(group_id: int):
    group = _get_group(group_id)
    u = getattr(g, "current_user", None)
    children = [c for c in group.children if c.deleted_at is None]
    return render_template(
        "groups/show.html",
        group=group,
        ancestors=ancestors(group),
        children=children,
        can_read=can_read_group(u, group),
        can_manage=can_manage_group(u, group),
        registration_open=bool(current_app.config.get("SELF_REGISTRATION_ENABLED")) and group.self_registration_active,
    )


# ---------- People ----------
@bp.get("/groups/<int:group_id>/people")
@require_login
def group_people(group_id: int):
    s = db_session()
    u = _current_user()
    group = _get_group(group_id)
    if not can_read_group(u, group):
        deny("group_read")
    return render_template(
        "groups/people.html",
        group=group,
        members=group_members(s, group),
        can_manage=can_manage_group(u, group),
    )


# ---------- Edit ----------
@bp.get("/groups/<int:group_id>/edit")
@require_login
def group_edit_get(group_id: int):
    group = _get_group(group_id)
    if not can_manage_group(_current_user(), group):
        deny("group_full")
    return render_template("groups/edit.html", group=group, errors={}, payload=None)


@bp.post("/groups/<int:group_id>/edit")
@require_login
def group_edit_post(group_id: int):
    s = db_session()
    u = _current_user()
    group = _get_group(group_id)
    if not can_manage_group(u, group):
        deny("group_full")

    payload = {
        "name": request.form.get("name"),
        "short_name": request.form.get("short_name"),
        "email": request.form.get("email"),
        "self_registration_role_type": request.form.get("self_registration_role_type"),
        "self_registration_notification_email": request.form.get("self_registration_notification_email"),
    }
    errors = validate_group_payload(group, payload)

    f = request.files.get("privacy_policy")
    file_bytes = b""
    if f and f.filename:
        if not group.is_layer:
            errors.setdefault("privacy_policy", []).append("can only be set on layer groups")
        else:
            file_bytes = f.read()
            if len(file_bytes) > PRIVACY_POLICY_MAX_BYTES:
                errors.setdefault("privacy_policy", []).append("is too large (maximum is 2 MB)")
            elif (f.mimetype or "") != "application/pdf" and not f.filename.lower().endswith(".pdf"):
                errors.setdefault("privacy_policy", []).append("must be a PDF document")

    if errors:
        return render_template("groups/edit.html", group=group, errors=errors, payload=payload), 422

    update_group(s, group, payload, u)
    if request.form.get("remove_privacy_policy") == "1":
        remove_privacy_policy(s, group, actor=u, config=current_app.config)
    if file_bytes:
        upload_privacy_policy(
            s,
            group,
            file_bytes,
            f.filename,
            (f.mimetype or "application/pdf").strip(),
            title=request.form.get("privacy_policy_title"),
            actor=u,
            config=current_app.config,
        )
    elif group.privacy_policy_key and "privacy_policy_title" in request.form:
        group.privacy_policy_title = (request.form.get("privacy_policy_title") or "").strip() or None
    s.commit()

    flash("Group updated.", "success")
    return redirect(url_for("groups.group_show", group_id=group.id))


# ---------- Privacy policy ----------
@bp.get("/groups/<int:group_id>/privacy_policy")
def privacy_policy_download(group_id: int):
    group = _get_group(group_id)
    if not group.privacy_policy_key:
        abort(404)
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(group.privacy_policy_key)
    except StorageError:
        current_app.logger.error("Privacy policy of group %s missing in storage (%s)", group.id, group.privacy_policy_key)
        abort(404)
    return send_file(
        fobj,
        mimetype="application/pdf",
        as_attachment=False,
        download_name=group.privacy_policy_filename or "privacy_policy.pdf",
        max_age=0,
    )
