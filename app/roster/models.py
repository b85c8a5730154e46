from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.roster.group_types import GroupType, RoleType, group_type, role_type
from app.roster.utils import utcnow

FUTURE_ROLE = "future_role"


class Base(DeclarativeBase):
    pass


class Group(Base):
    __tablename__ = "groups"
    __table_args__ = (
        Index("idx_groups_parent_id", "parent_id"),
        Index("idx_groups_layer_group_id", "layer_group_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id", ondelete="RESTRICT"), nullable=True)
    layer_group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)  # key in GROUP_TYPES
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Public sign-up (blank role type = registration inactive)
    self_registration_role_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    self_registration_notification_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # Privacy policy document (layer groups)
    privacy_policy_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    privacy_policy_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    privacy_policy_title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    parent: Mapped["Group | None"] = relationship(
        "Group",
        remote_side=[id],
        foreign_keys=[parent_id],
        back_populates="children",
    )
    children: Mapped[list["Group"]] = relationship(
        "Group",
        foreign_keys=[parent_id],
        back_populates="parent",
        order_by="Group.name",
    )
    layer_group: Mapped["Group | None"] = relationship(
        "Group",
        remote_side=[id],
        foreign_keys=[layer_group_id],
        post_update=True,
    )

    @property
    def group_type(self) -> GroupType:
        return group_type(self.type)

    @property
    def is_layer(self) -> bool:
        return self.group_type.layer

    @property
    def self_registration_active(self) -> bool:
        return bool((self.self_registration_role_type or "").strip())

    @property
    def default_role(self) -> RoleType | None:
        return self.group_type.default_role_type

    def __str__(self) -> str:
        return self.name


class Person(Base):
    __tablename__ = "people"
    __table_args__ = (
        UniqueConstraint("email", name="uq_people_email"),
        Index("idx_people_last_name", "last_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nickname: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    town: Mapped[str | None] = mapped_column(String(128), nullable=True)
    birthday: Mapped[date | None] = mapped_column(Date, nullable=True)

    primary_group_id: Mapped[int | None] = mapped_column(ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)

    current_sign_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_sign_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    privacy_policy_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reset_password_token: Mapped[str | None] = mapped_column(String(64), nullable=True)  # sha256 hex
    reset_password_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    minimized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    primary_group: Mapped[Group | None] = relationship("Group", foreign_keys=[primary_group_id])
    # All roles, including soft-deleted and future ones.
    roles: Mapped[list["Role"]] = relationship(
        "Role",
        back_populates="person",
        cascade="all, delete-orphan",
        order_by="Role.id",
    )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @property
    def is_active(self) -> bool:
        return self.minimized_at is None

    @property
    def active_roles(self) -> list["Role"]:
        return [r for r in self.roles if r.is_active]

    def __str__(self) -> str:
        name = self.full_name
        if name and self.nickname:
            return f"{name} / {self.nickname}"
        return name or self.nickname or self.email or f"#{self.id}"


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        Index("idx_roles_person_id", "person_id"),
        Index("idx_roles_group_id", "group_id"),
        Index("idx_roles_type", "type"),
        Index("idx_roles_deleted_at", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    person_id: Mapped[int] = mapped_column(ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # role type key or FUTURE_ROLE
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    delete_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # FutureRole only
    convert_to: Mapped[str | None] = mapped_column(String(128), nullable=True)
    convert_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    person: Mapped[Person] = relationship("Person", back_populates="roles")
    group: Mapped[Group] = relationship("Group")

    @property
    def is_future(self) -> bool:
        return self.type == FUTURE_ROLE

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None and self.deleted_at <= utcnow()

    @property
    def is_active(self) -> bool:
        return not self.is_future and not self.is_deleted

    @property
    def role_type(self) -> RoleType | None:
        return role_type(self.convert_to if self.is_future else self.type)

    @property
    def start_on(self) -> date | None:
        if self.is_future:
            return self.convert_on
        return self.created_at.date() if self.created_at else None

    def __str__(self) -> str:
        rt = self.role_type
        text = rt.label if rt else (self.type or "Role")
        if self.label:
            text = f"{text} ({self.label})"
        if self.is_future and self.convert_on:
            text = f"{text} from {self.convert_on.isoformat()}"
        return text


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_action", "action"),
        Index("idx_audit_events_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_person_id: Mapped[int | None] = mapped_column(ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "role.create"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Role"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.roster.modules.events.models import Event, EventDate, EventParticipation  # noqa: E402,F401
