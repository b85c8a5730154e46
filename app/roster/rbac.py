"""
Permission checks.

Permissions are not stored per person: they come from the role types of a
person's active roles and apply relative to the group a role lives in
(same group, the group and its subgroups, the layer, or the layer and the
layers below it).
"""
from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.roster.models import Group, Person, Role
from app.roster.modules.groups.service import hierarchy, layer_hierarchy

WRITE_PERMISSIONS = ("layer_and_below_full", "layer_full", "group_and_below_full", "group_full")
READ_PERMISSIONS = ("layer_and_below_read", "layer_read", "group_read")
LAYER_WRITE_PERMISSIONS = ("layer_and_below_full", "layer_full")


def _permissions(role: Role) -> tuple[str, ...]:
    rt = role.role_type
    return rt.permissions if rt else ()


def _active_roles(person: Person | None) -> list[Role]:
    if not person or not person.is_active:
        return []
    return person.active_roles


def has_permission(person: Person | None, permission: str) -> bool:
    """True when any active role carries `permission`, regardless of the group."""
    return any(permission in _permissions(r) for r in _active_roles(person))


def _covers(role: Role, permission: str, group: Group) -> bool:
    if permission in ("layer_and_below_full", "layer_and_below_read"):
        return role.group.layer_group_id in {l.id for l in layer_hierarchy(group)}
    if permission in ("layer_full", "layer_read"):
        return role.group.layer_group_id == group.layer_group_id
    if permission == "group_and_below_full":
        return role.group.layer_group_id == group.layer_group_id and role.group_id in {h.id for h in hierarchy(group)}
    if permission in ("group_full", "group_read"):
        return role.group_id == group.id
    return False


def _any_covering(person: Person | None, group: Group, permissions: Iterable[str]) -> bool:
    wanted = set(permissions)
    for role in _active_roles(person):
        for perm in _permissions(role):
            if perm in wanted and _covers(role, perm, group):
                return True
    return False


def can_manage_group(person: Person | None, group: Group) -> bool:
    """Create, edit and destroy roles in `group`; edit the group."""
    return _any_covering(person, group, WRITE_PERMISSIONS)


def can_read_group(person: Person | None, group: Group) -> bool:
    return _any_covering(person, group, WRITE_PERMISSIONS + READ_PERMISSIONS)


def can_create_in_subgroup(person: Person | None, group: Group) -> bool:
    """Role forms may offer every group of the layer."""
    return _any_covering(person, group, LAYER_WRITE_PERMISSIONS)


def can_show_person(actor: Person | None, person: Person) -> bool:
    if actor is None or not actor.is_active:
        return False
    if actor.id == person.id or has_permission(actor, "admin"):
        return True
    return any(can_read_group(actor, r.group) for r in person.roles if not r.is_deleted)


def can_destroy_role(actor: Person | None, role: Role) -> bool:
    return can_manage_group(actor, role.group)


def deny(missing_permission: str) -> None:
    """Abort with 403 and remember what was missing (logged by the 403 handler)."""
    g.missing_permission = missing_permission
    abort(403)


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        person: Person | None = getattr(g, "current_user", None)
        if not person or not person.is_active:
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Global permission (e.g. "admin"), held through any active role."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            person: Person | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login (UX + reduces confusion).
            if not person or not person.is_active:
                return _login_redirect()
            # Authenticated but unauthorized → 403
            if not has_permission(person, permission_key):
                deny(permission_key)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
