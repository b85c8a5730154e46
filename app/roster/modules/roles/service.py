"""
Roles service layer.
Handles building roles from form params, validation, the role type/group
change, destroy (archive vs. delete), primary group upkeep and the scheduled
conversion/expiry of roles.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.roster.audit import record_event
from app.roster.group_types import RoleType
from app.roster.models import FUTURE_ROLE, Group, Person, Role
from app.roster.utils import blank_to_none, parse_date, utcnow

logger = logging.getLogger(__name__)

Errors = dict[str, list[str]]

# Everything a role-type change carries over from the new role onto the
# entry when the change fails.
COPIED_ATTRIBUTES = (
    "person_id",
    "group_id",
    "type",
    "label",
    "created_at",
    "delete_on",
    "deleted_at",
    "convert_to",
    "convert_on",
)


def add_error(errors: Errors, attribute: str, message: str) -> None:
    errors.setdefault(attribute, []).append(message)


def extract_start_at(params: dict) -> date | None:
    """Pop `created_at`/`convert_on` from the params; the first present value is the start date."""
    raw = blank_to_none(params.pop("created_at", None))
    if raw is None:
        raw = blank_to_none(params.pop("convert_on", None))
    return parse_date(raw)


def build_role(group: Group, params: dict, *, now: datetime | None = None) -> tuple[Role, RoleType | None]:
    """
    Unsaved role for `group` from form params (the params are consumed).

    Raises RoleTypeNotFound when the type is not defined for the group's type.
    A start date after today yields a future role.
    """
    now = now or utcnow()
    type_key = blank_to_none(params.pop("type", None))
    start_at = extract_start_at(params)
    if not type_key:
        created_at = datetime.combine(start_at, time.min) if start_at and start_at <= now.date() else now
        return Role(group=group, group_id=group.id, created_at=created_at), None

    rt = group.group_type.find_role_type_or_raise(type_key)
    if start_at and start_at > now.date():
        role = Role(type=FUTURE_ROLE, convert_to=rt.key, convert_on=start_at, created_at=now)
    else:
        role = Role(type=rt.key, created_at=datetime.combine(start_at, time.min) if start_at else now)
    role.group = group
    role.group_id = group.id
    return role, rt


def permitted_attributes(rt: RoleType | None) -> tuple[str, ...]:
    """Form attributes a role accepts: the type's used attributes plus `convert_on`."""
    return tuple(rt.used_attributes if rt else ("label", "created_at", "delete_on", "deleted_at")) + ("convert_on",)


def assign_attributes(role: Role, params: dict, permitted: tuple[str, ...]) -> None:
    for attr in permitted:
        if attr not in params:
            continue
        raw = params.get(attr)
        if attr == "label":
            role.label = blank_to_none(raw)
        elif attr == "created_at":
            start = parse_date(raw)
            if start is not None:
                role.created_at = datetime.combine(start, time.min)
        elif attr == "deleted_at":
            end = parse_date(raw)
            role.deleted_at = datetime.combine(end, time.max.replace(microsecond=0)) if end else None
        elif attr == "delete_on":
            role.delete_on = parse_date(raw)
        elif attr == "convert_on":
            if role.is_future:
                role.convert_on = parse_date(raw)


def validate_role(role: Role, *, today: date | None = None) -> Errors:
    today = today or utcnow().date()
    errors: Errors = {}
    group = role.group

    if role.is_future:
        if group is None or not group.group_type.find_role_type(role.convert_to):
            add_error(errors, "type", "is not allowed in this group")
        if role.convert_on is None:
            add_error(errors, "convert_on", "can't be blank")
        elif role.convert_on <= today:
            add_error(errors, "convert_on", "must be after today")
    elif not role.type:
        add_error(errors, "type", "Please select a role type")
    elif group is None or not group.group_type.find_role_type(role.type):
        add_error(errors, "type", "is not allowed in this group")
    elif role.created_at and role.created_at.date() > today:
        add_error(errors, "created_at", "must not be in the future")

    if group is None:
        add_error(errors, "group", "can't be blank")
    if role.person is None and role.person_id is None:
        add_error(errors, "person", "can't be blank")

    start = role.start_on
    if role.delete_on and start and role.delete_on < start:
        add_error(errors, "delete_on", "must not be before the start date")
    if role.deleted_at and role.created_at and role.deleted_at < role.created_at:
        add_error(errors, "deleted_at", "must not be before the start date")
    if role.label and len(role.label) > 255:
        add_error(errors, "label", "is too long (maximum is 255 characters)")
    return errors


def _audit_metadata(role: Role) -> dict:
    return {
        "person_id": role.person_id,
        "group_id": role.group_id,
        "type": role.type,
        "convert_to": role.convert_to,
        "convert_on": role.convert_on,
        "label": role.label,
    }


def ensure_primary_group(person: Person, group: Group) -> None:
    if person.primary_group_id is None:
        person.primary_group = group
        person.primary_group_id = group.id


def was_last_primary_group_role(role: Role) -> bool:
    person = role.person
    if person is None or role.group_id != person.primary_group_id:
        return False
    same_group = [r for r in person.roles if r.group_id == role.group_id and not r.is_deleted]
    return len(same_group) == 1


def reset_primary_group(person: Person, removed: Role) -> None:
    """After `removed` is gone, move the primary group away from a group the person left."""
    if person.primary_group_id != removed.group_id:
        return
    remaining = [r for r in person.roles if r is not removed and not r.is_deleted]
    if any(r.group_id == removed.group_id for r in remaining):
        return
    alternative = max(remaining, key=lambda r: (r.updated_at or r.created_at, r.id or 0), default=None)
    person.primary_group = alternative.group if alternative else None
    person.primary_group_id = alternative.group_id if alternative else None


def distinct_group_count(person: Person) -> int:
    return len({r.group_id for r in person.roles if not r.is_deleted})


def create_role(
    s: Session,
    role: Role,
    *,
    new_person: bool,
    privacy_policy_accepted: bool,
    actor: Person | None,
    now: datetime | None = None,
) -> tuple[bool, Errors, Errors]:
    """
    Save `role` and, for a new person, the person too; all or nothing.

    Returns (created, role errors, person errors).
    """
    from app.roster.modules.people.service import validate_person

    now = now or utcnow()
    person = role.person
    person_errors: Errors = {}
    if new_person and person is not None:
        if not privacy_policy_accepted:
            add_error(person_errors, "base", "Privacy policy must be accepted")
        else:
            person_errors = validate_person(s, person)
    role_errors = validate_role(role, today=now.date())
    if role_errors or person_errors:
        return False, role_errors, person_errors

    try:
        if new_person:
            person.created_at = person.updated_at = now
            s.add(person)
        role.updated_at = now
        s.add(role)
        s.flush()
    except IntegrityError as e:
        s.rollback()
        logger.warning("Role create failed (person_id=%s group_id=%s): %s", role.person_id, role.group_id, e.orig)
        add_error(role_errors, "base", "could not be saved")
        return False, role_errors, person_errors

    ensure_primary_group(person, role.group)
    if new_person:
        record_event(
            s,
            actor=actor,
            action="person.create",
            entity_type="Person",
            entity_id=str(person.id),
            metadata={"name": str(person), "email": person.email},
        )
    record_event(
        s,
        actor=actor,
        action="role.create",
        entity_type="Role",
        entity_id=str(role.id),
        metadata=_audit_metadata(role),
    )
    return True, role_errors, person_errors


def update_role(s: Session, role: Role, *, actor: Person | None, changes: dict, now: datetime | None = None) -> Errors:
    now = now or utcnow()
    errors = validate_role(role, today=now.date())
    if errors:
        return errors
    role.updated_at = now
    record_event(
        s,
        actor=actor,
        action="role.edit",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"changes": changes, **_audit_metadata(role)},
    )
    return errors


def old_enough_to_archive(role: Role, *, minimum_days: int, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return role.created_at is not None and role.created_at < now - timedelta(days=minimum_days)


def destroy_role(
    s: Session,
    role: Role,
    *,
    actor: Person | None,
    minimum_days: int,
    now: datetime | None = None,
    reason: str | None = None,
) -> bool:
    """
    Future roles and roles younger than `minimum_days` are deleted, older ones
    are archived (`deleted_at` set). Returns True when archived.
    """
    now = now or utcnow()
    person = role.person
    archived = not role.is_future and old_enough_to_archive(role, minimum_days=minimum_days, now=now)
    metadata = _audit_metadata(role)
    role_id = role.id

    if archived:
        role.deleted_at = now
        role.updated_at = now
    if person is not None:
        reset_primary_group(person, role)
    if not archived:
        if person is not None and role in person.roles:
            person.roles.remove(role)
        s.delete(role)

    record_event(
        s,
        actor=actor,
        action="role.archive" if archived else "role.destroy",
        entity_type="Role",
        entity_id=str(role_id),
        reason=reason,
        metadata=metadata,
    )
    return archived


def change_role_type(
    s: Session,
    entry: Role,
    new_role: Role,
    *,
    actor: Person | None,
    minimum_days: int,
    now: datetime | None = None,
) -> Errors:
    """Replace `entry` with `new_role` (other type and/or group): save the new one, destroy the old one."""
    now = now or utcnow()
    errors = validate_role(new_role, today=now.date())
    if errors:
        return errors

    try:
        new_role.updated_at = now
        s.add(new_role)
        s.flush()
        destroy_role(s, entry, actor=actor, minimum_days=minimum_days, now=now, reason="role type change")
        s.flush()
    except IntegrityError as e:
        s.rollback()
        logger.warning("Role type change failed (role_id=%s): %s", entry.id, e.orig)
        add_error(errors, "base", "could not be saved")
        return errors

    record_event(
        s,
        actor=actor,
        action="role.change_type",
        entity_type="Role",
        entity_id=str(new_role.id),
        metadata={"replaced_role_id": entry.id, **_audit_metadata(new_role)},
    )
    logger.info(
        "Role %s (%s in group %s) replaced by role %s (%s in group %s)",
        entry.id, entry.type, entry.group_id, new_role.id, new_role.type, new_role.group_id,
    )
    return errors


def copy_errors(entry: Role, new_role: Role) -> None:
    """Show the rejected values on the entry form (never saved)."""
    for attr in COPIED_ATTRIBUTES:
        setattr(entry, attr, getattr(new_role, attr))
    entry.group = new_role.group


def convert_future_roles(s: Session, *, today: date | None = None, actor: Person | None = None) -> list[Role]:
    """Turn every due future role into a role of its target type, starting on its conversion date."""
    today = today or utcnow().date()
    due = (
        s.query(Role)
        .filter(Role.type == FUTURE_ROLE)
        .filter(Role.convert_on <= today)
        .order_by(Role.convert_on.asc(), Role.id.asc())
        .all()
    )
    converted: list[Role] = []
    for future in due:
        rt = future.group.group_type.find_role_type(future.convert_to)
        if rt is None:
            logger.warning("Future role %s: %r is not a role type of group %s; skipped", future.id, future.convert_to, future.group_id)
            continue
        person = future.person
        role = Role(
            person=person,
            group=future.group,
            type=rt.key,
            label=future.label,
            created_at=datetime.combine(future.convert_on, time.min),
            delete_on=future.delete_on,
            updated_at=utcnow(),
        )
        s.add(role)
        person.roles.remove(future)
        s.delete(future)
        ensure_primary_group(person, future.group)
        s.flush()
        record_event(
            s,
            actor=actor,
            action="role.convert",
            entity_type="Role",
            entity_id=str(role.id),
            metadata={"future_role_id": future.id, **_audit_metadata(role)},
        )
        converted.append(role)
    logger.info("Converted %d future roles (due on or before %s)", len(converted), today.isoformat())
    return converted


def expire_roles(
    s: Session,
    *,
    minimum_days: int,
    now: datetime | None = None,
    actor: Person | None = None,
) -> int:
    """Destroy every running role whose `delete_on` date has passed."""
    now = now or utcnow()
    expired = (
        s.query(Role)
        .filter(Role.type != FUTURE_ROLE)
        .filter(Role.deleted_at.is_(None))
        .filter(Role.delete_on < now.date())
        .order_by(Role.id.asc())
        .all()
    )
    for role in expired:
        destroy_role(s, role, actor=actor, minimum_days=minimum_days, now=now, reason="delete_on reached")
    logger.info("Expired %d roles (delete_on before %s)", len(expired), now.date().isoformat())
    return len(expired)
