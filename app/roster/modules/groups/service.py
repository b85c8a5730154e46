"""
Group hierarchy helpers and group maintenance.
"""
from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.roster.audit import record_event
from app.roster.group_types import group_type
from app.roster.models import Group
from app.roster.storage import privacy_policy_key, storage_from_config
from app.roster.utils import blank_to_none, utcnow

if TYPE_CHECKING:
    from app.roster.models import Person

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def ancestors(group: Group) -> list[Group]:
    """Parents of `group`, root first."""
    out: list[Group] = []
    node = group.parent
    while node is not None:
        out.append(node)
        node = node.parent
    out.reverse()
    return out


def hierarchy(group: Group) -> list[Group]:
    return ancestors(group) + [group]


def layer_hierarchy(group: Group) -> list[Group]:
    """Layer groups from the top down to the group's own layer."""
    return [g for g in hierarchy(group) if g.is_layer]


def hierarchy_sort_key(group: Group) -> tuple:
    """Upper layers sort before the layers below them, then by group path."""
    return (
        tuple(layer.name.lower() for layer in layer_hierarchy(group)),
        tuple(g.name.lower() for g in hierarchy(group)),
    )


def groups_in_same_layer(s: Session, group: Group) -> list[Group]:
    return (
        s.query(Group)
        .filter(Group.layer_group_id == group.layer_group_id)
        .filter(Group.deleted_at.is_(None))
        .order_by(Group.name.asc())
        .all()
    )


def descendants(s: Session, group: Group) -> list[Group]:
    out: list[Group] = []
    frontier = [group.id]
    while frontier:
        children = (
            s.query(Group)
            .filter(Group.parent_id.in_(frontier))
            .filter(Group.deleted_at.is_(None))
            .order_by(Group.name.asc())
            .all()
        )
        out.extend(children)
        frontier = [c.id for c in children]
    return out


def privacy_policies_in_hierarchy(group: Group) -> list[Group]:
    return [g for g in layer_hierarchy(group) if g.privacy_policy_key]


def privacy_policy_needed(group: Group) -> bool:
    return bool(privacy_policies_in_hierarchy(group))


def create_group(
    s: Session,
    *,
    type_key: str,
    name: str,
    parent: Group | None = None,
    short_name: str | None = None,
    email: str | None = None,
    actor: "Person | None" = None,
) -> Group:
    gt = group_type(type_key)
    if parent is not None and type_key not in parent.group_type.child_types:
        raise ValueError(f"A {gt.label} group cannot be created below {parent.group_type.label}.")
    if parent is None and not gt.layer:
        raise ValueError("Root groups must be layers.")

    now = utcnow()
    group = Group(
        type=type_key,
        name=name.strip(),
        short_name=blank_to_none(short_name),
        email=blank_to_none(email),
        parent=parent,
        created_at=now,
        updated_at=now,
    )
    s.add(group)
    s.flush()
    # A layer is its own layer group; other groups inherit the parent's.
    group.layer_group = group if gt.layer else parent.layer_group  # type: ignore[union-attr]
    group.layer_group_id = group.id if gt.layer else parent.layer_group_id  # type: ignore[union-attr]

    record_event(
        s,
        actor=actor,
        action="group.create",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"name": group.name, "type": group.type, "parent_id": group.parent_id},
    )
    return group


def validate_group_payload(group: Group, payload: dict) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not (payload.get("name") or "").strip():
        errors.setdefault("name", []).append("can't be blank")
    for field in ("email", "self_registration_notification_email"):
        value = (payload.get(field) or "").strip()
        if value and not EMAIL_RE.match(value):
            errors.setdefault(field, []).append("is not a valid email address")
    rt_key = (payload.get("self_registration_role_type") or "").strip()
    if rt_key and group.group_type.find_role_type(rt_key) is None:
        errors.setdefault("self_registration_role_type", []).append("is not a role type of this group")
    return errors


def update_group(s: Session, group: Group, payload: dict, actor: "Person") -> Group:
    changes = {}
    for field in ("name", "short_name", "email", "self_registration_role_type", "self_registration_notification_email"):
        new = blank_to_none(payload.get(field))
        old = getattr(group, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(group, field, new)
    group.updated_at = utcnow()

    record_event(
        s,
        actor=actor,
        action="group.edit",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"name": group.name, "changes": changes},
    )
    return group


def upload_privacy_policy(
    s: Session,
    group: Group,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    *,
    title: str | None,
    actor: "Person",
    config: dict,
) -> None:
    if not group.is_layer:
        raise ValueError("Only layer groups carry a privacy policy.")
    key = privacy_policy_key(group.id, filename)
    storage = storage_from_config(config)
    storage.put_bytes(key, file_bytes, content_type=content_type)

    group.privacy_policy_key = key
    group.privacy_policy_filename = key.rsplit("/", 1)[-1]
    group.privacy_policy_title = blank_to_none(title)
    group.updated_at = utcnow()

    record_event(
        s,
        actor=actor,
        action="group.privacy_policy_upload",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={
            "filename": group.privacy_policy_filename,
            "sha256": hashlib.sha256(file_bytes).hexdigest(),
            "size_bytes": len(file_bytes),
        },
    )


def remove_privacy_policy(s: Session, group: Group, *, actor: "Person", config: dict) -> None:
    if not group.privacy_policy_key:
        return
    storage_from_config(config).delete(group.privacy_policy_key)
    record_event(
        s,
        actor=actor,
        action="group.privacy_policy_remove",
        entity_type="Group",
        entity_id=str(group.id),
        metadata={"filename": group.privacy_policy_filename},
    )
    group.privacy_policy_key = None
    group.privacy_policy_filename = None
    group.privacy_policy_title = None
    group.updated_at = utcnow()
