"""
People service layer.
Handles person validation, role history, password tokens and cleanup actions.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.roster.audit import record_event
from app.roster.models import Person, Role
from app.roster.modules.events.models import EventParticipation
from app.roster.modules.groups.service import EMAIL_RE, hierarchy_sort_key
from app.roster.utils import blank_to_none, parse_date, utcnow

if TYPE_CHECKING:
    from app.roster.models import Group

logger = logging.getLogger(__name__)

# Attributes a role form may set on a new person.
PERSON_ATTRIBUTES = ("first_name", "last_name", "nickname", "email", "address", "zip_code", "town", "birthday")

Errors = dict[str, list[str]]


def root_person(s: Session, root_email: str) -> Person | None:
    if not root_email:
        return None
    return s.query(Person).filter(func.lower(Person.email) == root_email.lower()).one_or_none()


def build_person(attrs: dict | None) -> Person:
    """New, unsaved person from permitted form attributes."""
    attrs = attrs or {}
    person = Person()
    for field in PERSON_ATTRIBUTES:
        value = attrs.get(field)
        if field == "birthday":
            person.birthday = parse_date(value)
        elif field == "email":
            email = blank_to_none(value)
            person.email = email.lower() if email else None
        else:
            setattr(person, field, blank_to_none(value))
    return person


def email_taken(s: Session, email: str | None, *, except_id: int | None = None) -> bool:
    if not email:
        return False
    q = s.query(Person.id).filter(func.lower(Person.email) == email.lower())
    if except_id is not None:
        q = q.filter(Person.id != except_id)
    return q.first() is not None


def validate_person(s: Session, person: Person) -> Errors:
    errors: Errors = {}
    if not any((person.first_name, person.last_name, person.nickname, person.email)):
        errors.setdefault("base", []).append("Please enter a first name, last name, nickname or email.")
    if person.email:
        if not EMAIL_RE.match(person.email):
            errors.setdefault("email", []).append("is not a valid email address")
        elif email_taken(s, person.email, except_id=person.id):
            errors.setdefault("email", []).append("is already taken")
    for field, limit in (("first_name", 128), ("last_name", 128), ("nickname", 128), ("zip_code", 16), ("town", 128)):
        value = getattr(person, field)
        if value and len(value) > limit:
            errors.setdefault(field, []).append(f"is too long (maximum is {limit} characters)")
    return errors


def person_history(s: Session, person: Person) -> tuple[list[Role], list[Role], list[Role]]:
    """
    Split all roles of `person` into (active, inactive, future).

    Active roles are ordered by layer and group hierarchy, inactive ones by
    end date (latest first), future ones by activation date.
    """
    roles = s.query(Role).filter(Role.person_id == person.id).order_by(Role.id.asc()).all()
    active = [r for r in roles if r.is_active]
    inactive = [r for r in roles if not r.is_future and r.is_deleted]
    future = [r for r in roles if r.is_future]

    active.sort(key=lambda r: (hierarchy_sort_key(r.group), r.id))
    inactive.sort(key=lambda r: (r.deleted_at, r.id), reverse=True)
    future.sort(key=lambda r: (r.convert_on, r.id))
    return active, inactive, future


def _token_digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def issue_password_token(person: Person, *, now: datetime | None = None) -> str:
    """Store a fresh single-use token (hashed) and return the raw value for the mail link."""
    raw = secrets.token_urlsafe(32)
    person.reset_password_token = _token_digest(raw)
    person.reset_password_sent_at = now or utcnow()
    return raw


def person_for_password_token(s: Session, raw: str | None, *, valid_hours: int, now: datetime | None = None) -> Person | None:
    if not raw:
        return None
    person = s.query(Person).filter(Person.reset_password_token == _token_digest(raw)).one_or_none()
    if person is None or person.reset_password_sent_at is None:
        return None
    if person.reset_password_sent_at < (now or utcnow()) - timedelta(hours=valid_hours):
        return None
    return person


def destroy_people(s: Session, people: list[Person], *, actor: Person | None) -> int:
    """Delete people together with all their roles and event participations."""
    count = 0
    for person in people:
        s.query(EventParticipation).filter(EventParticipation.person_id == person.id).delete(synchronize_session=False)
        record_event(
            s,
            actor=actor,
            action="person.cleanup_destroy",
            entity_type="Person",
            entity_id=str(person.id),
            metadata={"name": str(person), "roles": len(person.roles)},
        )
        s.delete(person)  # roles cascade
        count += 1
    logger.info("People cleanup: destroyed %d people", count)
    return count


def minimize_people(s: Session, people: list[Person], *, actor: Person | None) -> int:
    """Wipe contact data and credentials, keep names and role history."""
    now = utcnow()
    count = 0
    for person in people:
        if person.minimized_at is not None:
            continue
        person.email = None
        person.password_hash = None
        person.address = None
        person.zip_code = None
        person.town = None
        person.birthday = None
        person.reset_password_token = None
        person.reset_password_sent_at = None
        person.minimized_at = now
        person.updated_at = now
        record_event(
            s,
            actor=actor,
            action="person.cleanup_minimize",
            entity_type="Person",
            entity_id=str(person.id),
            metadata={"name": str(person)},
        )
        count += 1
    logger.info("People cleanup: minimized %d people", count)
    return count


def group_members(s: Session, group: "Group") -> list[tuple[Person, list[Role]]]:
    """People with active roles in `group`, sorted by name."""
    roles = (
        s.query(Role)
        .filter(Role.group_id == group.id)
        .filter(Role.type.isnot(None))
        .order_by(Role.id.asc())
        .all()
    )
    by_person: dict[int, tuple[Person, list[Role]]] = {}
    for role in roles:
        if not role.is_active:
            continue
        by_person.setdefault(role.person_id, (role.person, []))[1].append(role)
    return sorted(by_person.values(), key=lambda item: (str(item[0]).lower(), item[0].id))
