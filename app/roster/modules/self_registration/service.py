"""
Self-registration service layer.
Builds the person and role of a public sign-up, saves both or neither, and
sends the follow-up mails.
"""
from __future__ import annotations

import logging
from datetime import datetime

from flask import render_template, url_for
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.roster.audit import record_event
from app.roster.mailer import send_mail
from app.roster.models import Group, Person, Role
from app.roster.modules.groups.service import privacy_policy_needed
from app.roster.modules.people.service import build_person, email_taken, issue_password_token, validate_person
from app.roster.modules.roles.service import add_error, ensure_primary_group, validate_role
from app.roster.utils import utcnow

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "This email is already in use. Please sign in or reset your password."
PRIVACY_POLICY_NOT_ACCEPTED = "Privacy policy must be accepted"

Errors = dict[str, list[str]]


def registration_open(group: Group, config: dict) -> bool:
    return bool(config.get("SELF_REGISTRATION_ENABLED")) and group.self_registration_active


def build_registration(group: Group, person_attrs: dict | None, *, now: datetime | None = None) -> tuple[Person, Role]:
    now = now or utcnow()
    person = build_person(person_attrs)
    role = Role(type=group.self_registration_role_type, created_at=now, updated_at=now)
    role.group = group
    role.group_id = group.id
    role.person = person
    return person, role


def privacy_policy_accepted(group: Group, person_attrs: dict | None) -> bool:
    if not privacy_policy_needed(group):
        return True
    return (person_attrs or {}).get("privacy_policy_accepted") in ("1", "true", "on")


def register(
    s: Session,
    group: Group,
    person: Person,
    role: Role,
    *,
    policy_accepted: bool,
    now: datetime | None = None,
) -> tuple[bool, Errors, Errors]:
    """Save person and role together. Returns (saved, role errors, person errors)."""
    now = now or utcnow()
    person_errors: Errors = {}
    if not policy_accepted:
        add_error(person_errors, "base", PRIVACY_POLICY_NOT_ACCEPTED)
        return False, {}, person_errors

    if person.email and email_taken(s, person.email):
        add_error(person_errors, "base", EMAIL_TAKEN)
        return False, {}, person_errors

    person_errors = validate_person(s, person)
    role_errors = validate_role(role, today=now.date())
    if person_errors or role_errors:
        return False, role_errors, person_errors

    if privacy_policy_needed(group):
        person.privacy_policy_accepted_at = now
    person.created_at = person.updated_at = now
    try:
        s.add(person)
        s.flush()
    except IntegrityError as e:
        s.rollback()
        logger.warning("Self-registration for group %s failed: %s", group.id, e.orig)
        add_error(person_errors, "base", EMAIL_TAKEN)
        return False, {}, person_errors

    ensure_primary_group(person, group)
    record_event(
        s,
        actor=person,
        action="person.self_register",
        entity_type="Person",
        entity_id=str(person.id),
        metadata={"group_id": group.id, "role_type": role.type, "name": str(person)},
    )
    logger.info("Person %s registered in group %s as %s", person.id, group.id, role.type)
    return True, {}, {}


def send_registration_mails(person: Person, group: Group) -> None:
    """Password instructions for the new person, notification for the group."""
    if person.email:
        token = issue_password_token(person)
        send_mail(
            person.email,
            "Set your password",
            render_template(
                "mail/password_instructions.txt",
                person=person,
                group=group,
                link=url_for("auth.password_edit", token=token, _external=True),
            ),
        )
    if group.self_registration_notification_email:
        send_mail(
            group.self_registration_notification_email,
            f"New registration in {group}",
            render_template(
                "mail/self_registration_notification.txt",
                person=person,
                group=group,
                link=url_for("people.person_show", group_id=group.id, person_id=person.id, _external=True),
            ),
        )


def already_inscribed(person: Person, group: Group) -> bool:
    return any(r.group_id == group.id and r.type == group.self_registration_role_type for r in person.active_roles)


def inscribe(s: Session, person: Person, group: Group, *, now: datetime | None = None) -> tuple[Role | None, Errors]:
    now = now or utcnow()
    role = Role(type=group.self_registration_role_type, created_at=now, updated_at=now, person_id=person.id, group_id=group.id)
    role.group = group
    errors = validate_role(role, today=now.date())
    if errors:
        return None, errors
    role.person = person
    s.add(role)
    s.flush()
    ensure_primary_group(person, group)
    record_event(
        s,
        actor=person,
        action="role.self_inscription",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"group_id": group.id, "type": role.type},
    )
    return role, errors
