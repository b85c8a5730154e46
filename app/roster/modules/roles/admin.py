from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.roster.db import db_session
from app.roster.group_types import ROLE_ATTRIBUTES
from app.roster.models import Group, Person, Role
from app.roster.modules.groups.service import groups_in_same_layer, privacy_policy_needed
from app.roster.modules.people.service import build_person
from app.roster.modules.roles.service import (
    assign_attributes,
    build_role,
    change_role_type,
    copy_errors,
    create_role,
    destroy_role,
    distinct_group_count,
    permitted_attributes,
    update_role,
    was_last_primary_group_role,
)
from app.roster.rbac import can_create_in_subgroup, can_destroy_role, can_manage_group, can_show_person, deny, require_login
from app.roster.utils import nested_params, safe_return_path, utcnow

bp = Blueprint("roles", __name__)


def _current_user() -> Person:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _wants_json() -> bool:
    if request.headers.get("X-Requested-With") == "XMLHttpRequest":
        return True
    best = request.accept_mimetypes.best_match(["text/html", "application/json"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def _get_group(s, group_id) -> Group:
    try:
        group = s.get(Group, int(group_id))
    except (TypeError, ValueError):
        abort(404)
    if not group or group.deleted_at is not None:
        abort(404)
    return group


def _get_role(s, group: Group, role_id: int) -> Role:
    role = s.get(Role, role_id)
    # archived roles are history; only the new-role form may still look them up
    if not role or role.group_id != group.id or role.is_deleted:
        abort(404)
    return role


def _find_group(s, params: dict, fallback: Group) -> Group:
    group_id = params.pop("group_id", None)
    return _get_group(s, group_id) if group_id else fallback


def _group_selection(s, actor: Person, group: Group) -> list[Group] | None:
    if can_create_in_subgroup(actor, group):
        return groups_in_same_layer(s, group)
    return None


def _role_json(role: Role) -> dict:
    return {
        "id": role.id,
        "person_id": role.person_id,
        "group_id": role.group_id,
        "type": role.type,
        "convert_to": role.convert_to,
        "convert_on": role.convert_on.isoformat() if role.convert_on else None,
        "label": role.label,
        "created_at": role.created_at.isoformat() if role.created_at else None,
        "delete_on": role.delete_on.isoformat() if role.delete_on else None,
        "deleted_at": role.deleted_at.isoformat() if role.deleted_at else None,
        "name": str(role),
    }


def _render_form(template: str, *, group: Group, role: Role, person: Person | None, errors: dict, person_errors: dict | None = None, status: int = 200):
    s = db_session()
    actor = _current_user()
    if _wants_json() and status == 422:
        return jsonify({"errors": errors, "person_errors": person_errors or {}}), 422
    return (
        render_template(
            template,
            group=group,
            role=role,
            person=person,
            errors=errors,
            person_errors=person_errors or {},
            group_selection=_group_selection(s, actor, group),
            role_group=role.group or group,
            privacy_policy_needed=privacy_policy_needed(role.group or group),
            return_url=safe_return_path(request.values.get("return_url")),
        ),
        status,
    )


def _full_entry_label(role: Role) -> str:
    return f"Role {role} for {role.person} in {role.group}"


def _after_update_location(role: Role, group: Group) -> str:
    if not role.is_deleted:
        return url_for("people.person_show", group_id=role.group_id, person_id=role.person_id)
    if can_show_person(_current_user(), role.person):
        return url_for("people.person_show", group_id=group.id, person_id=role.person_id)
    return url_for("groups.group_show", group_id=group.id)


def _flash_primary_group_change(person: Person, was_last: bool) -> None:
    if was_last and distinct_group_count(person) > 1:
        flash(f"Primary group changed to {person.primary_group}.", "warning")


# ---------- New ----------
@bp.get("/groups/<int:group_id>/roles/new")
@require_login
def role_new(group_id: int):
    s = db_session()
    actor = _current_user()
    group = _get_group(s, group_id)
    if not can_manage_group(actor, group):
        deny("group_full")

    person = None
    if request.args.get("role_id"):
        # deleted roles included
        source = s.get(Role, request.args.get("role_id", type=int) or 0)
        if not source:
            abort(404)
        person = source.person
    elif request.args.get("person_id"):
        person = s.get(Person, request.args.get("person_id", type=int) or 0)
        if not person:
            abort(404)

    role = Role(group_id=group.id, type=None)
    role.group = group
    return _render_form("roles/new.html", group=group, role=role, person=person, errors={})


# ---------- Create ----------
@bp.post("/groups/<int:group_id>/roles")
@require_login
def role_create(group_id: int):
    s = db_session()
    actor = _current_user()
    url_group = _get_group(s, group_id)

    params = nested_params(request.form, "role")
    params.pop("person", None)
    group = _find_group(s, params, url_group)
    role, rt = build_role(group, params)

    person_id = params.get("person_id")
    new_person_attrs = params.get("new_person") if isinstance(params.get("new_person"), dict) else {}
    if person_id:
        person = s.get(Person, int(person_id)) if str(person_id).isdigit() else None
        if not person:
            abort(404)
        new_person = False
    else:
        person = build_person(new_person_attrs)
        new_person = True

    if not can_manage_group(actor, group):
        deny("group_full")

    assign_attributes(role, params, permitted_attributes(rt))

    accepted = (new_person_attrs or {}).get("privacy_policy_accepted") in ("1", "true", "on")
    policy_needed = privacy_policy_needed(group)
    if new_person and accepted:
        person.privacy_policy_accepted_at = utcnow()

    role.person = person
    if not new_person:
        role.person_id = person.id

    created, errors, person_errors = create_role(
        s,
        role,
        new_person=new_person,
        privacy_policy_accepted=accepted or not policy_needed,
        actor=actor,
    )
    if not created:
        if not new_person and role in person.roles:
            person.roles.remove(role)
        return _render_form("roles/new.html", group=group, role=role, person=person, errors=errors, person_errors=person_errors, status=422)

    s.commit()
    current_app.logger.info("Role %s created for person %s in group %s", role.id, person.id, group.id)

    if _wants_json():
        return jsonify({"role": _role_json(role)}), 201

    flash(f"{_full_entry_label(role)} was successfully created.", "success")
    back = safe_return_path(request.form.get("return_url"))
    if back:
        return redirect(back)
    if "add_another" in request.form:
        return redirect(url_for("roles.role_new", group_id=role.group_id))
    if new_person:
        return redirect(url_for("people.person_show", group_id=role.group_id, person_id=person.id))
    return redirect(url_for("groups.group_people", group_id=role.group_id))


# ---------- Edit ----------
@bp.get("/groups/<int:group_id>/roles/<int:role_id>/edit")
@require_login
def role_edit_get(group_id: int, role_id: int):
    s = db_session()
    actor = _current_user()
    group = _get_group(s, group_id)
    role = _get_role(s, group, role_id)
    if not can_manage_group(actor, group):
        deny("group_full")
    return _render_form("roles/edit.html", group=group, role=role, person=role.person, errors={})


@bp.post("/groups/<int:group_id>/roles/<int:role_id>/edit")
@require_login
def role_edit_post(group_id: int, role_id: int):
    s = db_session()
    actor = _current_user()
    url_group = _get_group(s, group_id)
    entry = _get_role(s, url_group, role_id)
    if not can_manage_group(actor, url_group):
        deny("group_full")

    person = entry.person
    was_last = was_last_primary_group_role(entry)
    minimum_days = int(current_app.config["ROLE_MINIMUM_DAYS_TO_ARCHIVE"])

    params = nested_params(request.form, "role")
    params.pop("person_id", None)
    target = _find_group(s, params, url_group)
    type_key = (params.get("type") or "").strip() or None

    # A future role shows its target type in the form.
    current_type = entry.convert_to if entry.is_future else entry.type
    if target.id != entry.group_id or (type_key and type_key != current_type):
        return _change_type(s, actor, url_group, entry, target, params, minimum_days, was_last)

    before = {a: getattr(entry, a) for a in ROLE_ATTRIBUTES + ("convert_on",)}
    assign_attributes(entry, params, permitted_attributes(entry.role_type))
    changes = {a: {"old": old, "new": getattr(entry, a)} for a, old in before.items() if getattr(entry, a) != old}

    if entry.delete_on and entry.delete_on < utcnow().date():
        label = _full_entry_label(entry)
        destroy_role(s, entry, actor=actor, minimum_days=minimum_days, reason="delete_on in the past")
        s.commit()
        flash(f"{label} was successfully deleted.", "success")
        _flash_primary_group_change(person, was_last)
        return redirect(_after_update_location(entry, url_group))

    errors = update_role(s, entry, actor=actor, changes=changes)
    if errors:
        return _render_form("roles/edit.html", group=url_group, role=entry, person=person, errors=errors, status=422)

    s.commit()
    if _wants_json():
        return jsonify({"role": _role_json(entry)})
    flash(f"{_full_entry_label(entry)} was successfully updated.", "success")
    _flash_primary_group_change(person, was_last)
    return redirect(_after_update_location(entry, url_group))


def _change_type(s, actor: Person, url_group: Group, entry: Role, target: Group, params: dict, minimum_days: int, was_last: bool):
    new_role, rt = build_role(target, params)
    new_role.person_id = entry.person_id
    new_role.group_id = target.id
    assign_attributes(new_role, params, permitted_attributes(rt))
    if not can_manage_group(actor, target):
        deny("group_full")

    old_label = _full_entry_label(entry)
    old_group_id = entry.group_id
    person = entry.person
    new_role.person = person

    errors = change_role_type(s, entry, new_role, actor=actor, minimum_days=minimum_days)
    if errors:
        if new_role in person.roles:
            person.roles.remove(new_role)
        copy_errors(entry, new_role)
        return _render_form("roles/edit.html", group=url_group, role=entry, person=person, errors=errors, status=422)

    s.commit()
    if target.id == old_group_id:
        message = f"{old_label} was changed to {new_role}."
    else:
        message = f"{old_label} was changed to {new_role} in {target}."
    current_app.logger.info("Role %s changed: %s", entry.id, message)

    if _wants_json():
        return jsonify({"role": _role_json(new_role), "replaced_role_id": entry.id, "message": message})
    flash(message, "success")
    _flash_primary_group_change(person, was_last)
    return redirect(url_for("people.person_show", group_id=new_role.group_id, person_id=person.id))


# ---------- Destroy ----------
@bp.post("/groups/<int:group_id>/roles/<int:role_id>/delete")
@require_login
def role_delete(group_id: int, role_id: int):
    s = db_session()
    actor = _current_user()
    group = _get_group(s, group_id)
    role = _get_role(s, group, role_id)
    if not can_destroy_role(actor, role):
        deny("group_full")

    person = role.person
    was_last = was_last_primary_group_role(role)
    label = _full_entry_label(role)
    destroy_role(s, role, actor=actor, minimum_days=int(current_app.config["ROLE_MINIMUM_DAYS_TO_ARCHIVE"]))
    s.commit()

    if _wants_json():
        return jsonify({"ok": True, "role_id": role_id})
    flash(f"{label} was successfully deleted.", "success")
    _flash_primary_group_change(person, was_last)
    if can_show_person(actor, person):
        return redirect(url_for("people.person_show", group_id=group.id, person_id=person.id))
    return redirect(url_for("groups.group_show", group_id=group.id))


# ---------- Form fragments ----------
@bp.get("/groups/<int:group_id>/roles/details")
@require_login
def role_details(group_id: int):
    s = db_session()
    params = nested_params(request.args, "role")
    group = _find_group(s, params, _get_group(s, group_id))
    type_key = (params.get("type") or "").strip()
    rt = group.group_type.find_role_type_or_raise(type_key) if type_key else None
    return render_template("roles/_details.html", group=group, role_type=rt)


@bp.get("/groups/<int:group_id>/roles/role_types")
@require_login
def role_types(group_id: int):
    s = db_session()
    params = nested_params(request.args, "role")
    group = _get_group(s, params.get("group_id") or group_id)
    return render_template("roles/_role_types.html", group=group, role_types=group.group_type.role_types, selected=group.default_role)
