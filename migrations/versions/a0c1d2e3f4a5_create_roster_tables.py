"""Create groups, people, roles, events and audit tables.

Revision ID: a0c1d2e3f4a5
Revises:
Create Date: 2026-09-28
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0c1d2e3f4a5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("layer_group_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("short_name", sa.String(64), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("self_registration_role_type", sa.String(128), nullable=True),
        sa.Column("self_registration_notification_email", sa.String(320), nullable=True),
        sa.Column("privacy_policy_key", sa.String(512), nullable=True),
        sa.Column("privacy_policy_filename", sa.String(255), nullable=True),
        sa.Column("privacy_policy_title", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["groups.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["layer_group_id"], ["groups.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_groups_parent_id", "groups", ["parent_id"])
    op.create_index("idx_groups_layer_group_id", "groups", ["layer_group_id"])

    op.create_table(
        "people",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(128), nullable=True),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("nickname", sa.String(128), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("town", sa.String(128), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("primary_group_id", sa.Integer(), nullable=True),
        sa.Column("current_sign_in_at", sa.DateTime(), nullable=True),
        sa.Column("last_sign_in_at", sa.DateTime(), nullable=True),
        sa.Column("privacy_policy_accepted_at", sa.DateTime(), nullable=True),
        sa.Column("reset_password_token", sa.String(64), nullable=True),
        sa.Column("reset_password_sent_at", sa.DateTime(), nullable=True),
        sa.Column("minimized_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["primary_group_id"], ["groups.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email", name="uq_people_email"),
    )
    op.create_index("idx_people_last_name", "people", ["last_name"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(128), nullable=True),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("delete_on", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("convert_to", sa.String(128), nullable=True),
        sa.Column("convert_on", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_roles_person_id", "roles", ["person_id"])
    op.create_index("idx_roles_group_id", "roles", ["group_id"])
    op.create_index("idx_roles_type", "roles", ["type"])
    op.create_index("idx_roles_deleted_at", "roles", ["deleted_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("actor_person_id", sa.Integer(), nullable=True),
        sa.Column("actor_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["actor_person_id"], ["people.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_audit_events_action", "audit_events", ["action"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "event_dates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("finish_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_event_dates_event_id", "event_dates", ["event_id"])

    op.create_table(
        "event_participations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("person_id", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["person_id"], ["people.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("event_id", "person_id", name="uq_event_participations_event_person"),
    )
    op.create_index("idx_event_participations_person_id", "event_participations", ["person_id"])


def downgrade() -> None:
    op.drop_index("idx_event_participations_person_id", table_name="event_participations")
    op.drop_table("event_participations")
    op.drop_index("idx_event_dates_event_id", table_name="event_dates")
    op.drop_table("event_dates")
    op.drop_table("events")
    op.drop_index("idx_audit_events_entity", table_name="audit_events")
    op.drop_index("idx_audit_events_action", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("idx_roles_deleted_at", table_name="roles")
    op.drop_index("idx_roles_type", table_name="roles")
    op.drop_index("idx_roles_group_id", table_name="roles")
    op.drop_index("idx_roles_person_id", table_name="roles")
    op.drop_table("roles")
    op.drop_index("idx_people_last_name", table_name="people")
    op.drop_table("people")
    op.drop_index("idx_groups_layer_group_id", table_name="groups")
    op.drop_index("idx_groups_parent_id", table_name="groups")
    op.drop_table("groups")
