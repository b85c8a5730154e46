from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.roster.db import db_session
from app.roster.models import Group
from app.roster.modules.groups.service import privacy_policies_in_hierarchy
from app.roster.modules.self_registration.service import (
    already_inscribed,
    build_registration,
    inscribe,
    privacy_policy_accepted,
    register,
    registration_open,
    send_registration_mails,
)
from app.roster.rbac import require_login
from app.roster.utils import nested_params

bp = Blueprint("self_registration", __name__)


def _get_group(group_id: int) -> Group:
    group = db_session().get(Group, group_id)
    if not group or group.deleted_at is not None:
        abort(404)
    return group


def _redirect_if_closed(group: Group):
    if not registration_open(group, current_app.config):
        return redirect(url_for("groups.group_show", group_id=group.id))
    if getattr(g, "current_user", None):
        return redirect(url_for("self_registration.self_inscription_get", group_id=group.id))
    return None


def _render(group: Group, person, role, *, person_errors=None, role_errors=None, status=200):
    return (
        render_template(
            "self_registration/new.html",
            group=group,
            person=person,
            role=role,
            person_errors=person_errors or {},
            role_errors=role_errors or {},
            privacy_policies=privacy_policies_in_hierarchy(group),
        ),
        status,
    )


@bp.get("/groups/<int:group_id>/self_registration")
def self_registration_new(group_id: int):
    group = _get_group(group_id)
    closed = _redirect_if_closed(group)
    if closed is not None:
        return closed
    person, role = build_registration(group, {})
    return _render(group, person, role)


@bp.post("/groups/<int:group_id>/self_registration")
def self_registration_create(group_id: int):
    s = db_session()
    group = _get_group(group_id)
    closed = _redirect_if_closed(group)
    if closed is not None:
        return closed

    # Bots fill every field, people never see this one.
    if (request.form.get("verification") or "").strip():
        current_app.logger.info("Self-registration honeypot triggered (group_id=%s ip=%s)", group.id, request.remote_addr)
        return redirect(url_for("auth.login_get"))

    params = nested_params(request.form, "role")
    person_attrs = params.get("new_person") if isinstance(params.get("new_person"), dict) else {}
    person, role = build_registration(group, person_attrs)

    saved, role_errors, person_errors = register(
        s,
        group,
        person,
        role,
        policy_accepted=privacy_policy_accepted(group, person_attrs),
    )
    if not saved:
        return _render(group, person, role, person_errors=person_errors, role_errors=role_errors, status=422)
    s.commit()

    send_registration_mails(person, group)
    s.commit()

    if person.email:
        flash("You have successfully registered. You will receive an email with instructions to set your password.", "success")
    else:
        flash("You have successfully registered.", "success")
    return redirect(url_for("auth.login_get"))


@bp.get("/groups/<int:group_id>/self_inscription")
@require_login
def self_inscription_get(group_id: int):
    group = _get_group(group_id)
    if not registration_open(group, current_app.config):
        return redirect(url_for("groups.group_show", group_id=group.id))
    return render_template(
        "self_registration/inscription.html",
        group=group,
        role_type=group.group_type.find_role_type(group.self_registration_role_type),
        inscribed=already_inscribed(g.current_user, group),
    )


@bp.post("/groups/<int:group_id>/self_inscription")
@require_login
def self_inscription_create(group_id: int):
    s = db_session()
    group = _get_group(group_id)
    person = g.current_user
    if not registration_open(group, current_app.config):
        return redirect(url_for("groups.group_show", group_id=group.id))
    if already_inscribed(person, group):
        flash(f"You are already registered in {group}.", "info")
        return redirect(url_for("groups.group_show", group_id=group.id))

    role, errors = inscribe(s, person, group)
    if role is None:
        for attr, messages in errors.items():
            for msg in messages:
                flash(f"{attr}: {msg}", "danger")
        return redirect(url_for("groups.group_show", group_id=group.id))
    s.commit()
    flash(f"You have joined {group} as {role}.", "success")
    return redirect(url_for("people.person_show", group_id=group.id, person_id=person.id))
