"""
Finder for stale person records.

A person is a cleanup candidate when all of the following hold:

- they have no role at all, or every role they ever had was deleted on or
  before the roles cutoff,
- they do not participate in an event with a date that starts or finishes
  after now,
- they last signed in on or before the sign-in cutoff, or never signed in.

The root person is never a candidate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.roster.models import Person, Role
from app.roster.modules.events.models import EventDate, EventParticipation
from app.roster.utils import months_ago, utcnow


@dataclass
class CleanupFinder:
    s: Session
    roles_cutoff_months: int
    sign_in_cutoff_months: int
    root_person_id: int | None = None
    now: datetime = field(default_factory=utcnow)

    @classmethod
    def from_config(cls, s: Session, config: dict, *, root_person_id: int | None = None, now: datetime | None = None) -> "CleanupFinder":
        return cls(
            s=s,
            roles_cutoff_months=int(config["PEOPLE_CLEANUP_ROLES_MONTHS"]),
            sign_in_cutoff_months=int(config["PEOPLE_CLEANUP_SIGN_IN_MONTHS"]),
            root_person_id=root_person_id,
            now=now or utcnow(),
        )

    @property
    def last_role_deleted_at(self) -> datetime:
        return months_ago(self.roles_cutoff_months, self.now)

    @property
    def current_sign_in_at(self) -> datetime:
        return months_ago(self.sign_in_cutoff_months, self.now)

    def run(self) -> list[Person]:
        return list(self.s.scalars(self.statement().order_by(Person.id)).all())

    def statement(self):
        stmt = select(Person).distinct()
        if self.root_person_id is not None:
            stmt = stmt.where(Person.id != self.root_person_id)
        return stmt.where(
            self._without_roles_or_with_roles_outside_cutoff(),
            self._not_participating_in_future_events(),
            self._with_current_sign_in_at_outside_cutoff(),
        )

    def _without_roles_or_with_roles_outside_cutoff(self):
        # "No role" and "only roles deleted before the cutoff" both mean: no role
        # that is still running, scheduled or deleted after the cutoff.
        kept_role = (
            select(Role.id)
            .where(Role.person_id == Person.id)
            .where(or_(Role.deleted_at.is_(None), Role.deleted_at > self.last_role_deleted_at))
        )
        return ~kept_role.exists()

    def _not_participating_in_future_events(self):
        upcoming = (
            select(EventParticipation.id)
            .join(EventDate, EventDate.event_id == EventParticipation.event_id)
            .where(EventParticipation.person_id == Person.id)
            .where(or_(EventDate.start_at > self.now, and_(EventDate.finish_at.isnot(None), EventDate.finish_at > self.now)))
        )
        return ~upcoming.exists()

    def _with_current_sign_in_at_outside_cutoff(self):
        return or_(Person.current_sign_in_at <= self.current_sign_in_at, Person.current_sign_in_at.is_(None))
