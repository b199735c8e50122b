"""create authz tables

Revision ID: a7c3e9f1b2d4
Revises:
Create Date: 2026-10-19 09:12:40.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c3e9f1b2d4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _timestamps(soft_delete: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
    ]
    if soft_delete:
        cols.append(sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True))
    return cols


def _worktime() -> list[sa.Column]:
    cols = [sa.Column("worktime_timezone", sa.String(length=64), nullable=True)]
    for day in WEEKDAYS:
        cols.append(sa.Column(f"{day}_worktime_start", sa.Time(), nullable=True))
        cols.append(sa.Column(f"{day}_worktime_end", sa.Time(), nullable=True))
    return cols


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "institutions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("short_name", sa.String(length=3), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("logo_url", sa.String(length=1024), nullable=True),
        *_worktime(),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("personal_identification_code", sa.String(length=11), nullable=False),
        sa.Column("forename", sa.String(length=255), nullable=False),
        sa.Column("surname", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("personal_identification_code", name="uq_users_personal_identification_code"),
    )

    op.create_table(
        "privileges",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        *_timestamps(soft_delete=False),
        sa.UniqueConstraint("key", name="uq_privileges_key"),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_root", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_id"], ["institutions.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_roles_institution", "roles", ["institution_id"])

    op.create_table(
        "departments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_id"], ["institutions.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_departments_institution", "departments", ["institution_id"])

    op.create_table(
        "institution_users",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("department_id", sa.String(length=36), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("deactivation_date", sa.Date(), nullable=True),
        *_worktime(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_id"], ["institutions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_institution_users_institution", "institution_users", ["institution_id"])
    op.create_index("idx_institution_users_user", "institution_users", ["user_id"])

    op.create_table(
        "privilege_roles",
        sa.Column("privilege_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("role_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.ForeignKeyConstraint(["privilege_id"], ["privileges.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "institution_user_roles",
        sa.Column("institution_user_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("role_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.ForeignKeyConstraint(["institution_user_id"], ["institution_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "institution_vacations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_id", sa.String(length=36), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_id"], ["institutions.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_institution_vacations_institution", "institution_vacations", ["institution_id"])

    op.create_table(
        "institution_user_vacations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_user_id", sa.String(length=36), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_user_id"], ["institution_users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_institution_user_vacations_user", "institution_user_vacations", ["institution_user_id"])

    op.create_table(
        "institution_vacation_exclusions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("institution_user_id", sa.String(length=36), nullable=False),
        sa.Column("institution_vacation_id", sa.String(length=36), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["institution_user_id"], ["institution_users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["institution_vacation_id"], ["institution_vacations.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_vacation_exclusions_user", "institution_vacation_exclusions", ["institution_user_id"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("happened_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("failure_type", sa.String(length=64), nullable=True),
        sa.Column("context_institution_id", sa.String(length=36), nullable=True),
        sa.Column("context_department_id", sa.String(length=36), nullable=True),
        sa.Column("acting_institution_user_id", sa.String(length=36), nullable=True),
        sa.Column("acting_user_pic", sa.String(length=11), nullable=True),
        sa.Column("acting_user_forename", sa.String(length=255), nullable=True),
        sa.Column("acting_user_surname", sa.String(length=255), nullable=True),
        sa.Column("event_parameters_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_events_institution", "audit_events", ["context_institution_id"])
    op.create_index("idx_audit_events_trace", "audit_events", ["trace_id"])

    op.create_table(
        "sync_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("event_name", sa.String(length=64), nullable=False),
        sa.Column("institution_user_id", sa.String(length=36), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=False), nullable=True),
    )
    op.create_index("idx_sync_events_unpublished", "sync_events", ["published_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_sync_events_unpublished", table_name="sync_events")
    op.drop_table("sync_events")

    op.drop_index("idx_audit_events_trace", table_name="audit_events")
    op.drop_index("idx_audit_events_institution", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("idx_vacation_exclusions_user", table_name="institution_vacation_exclusions")
    op.drop_table("institution_vacation_exclusions")
    op.drop_index("idx_institution_user_vacations_user", table_name="institution_user_vacations")
    op.drop_table("institution_user_vacations")
    op.drop_index("idx_institution_vacations_institution", table_name="institution_vacations")
    op.drop_table("institution_vacations")

    op.drop_table("institution_user_roles")
    op.drop_table("privilege_roles")

    op.drop_index("idx_institution_users_user", table_name="institution_users")
    op.drop_index("idx_institution_users_institution", table_name="institution_users")
    op.drop_table("institution_users")
    op.drop_index("idx_departments_institution", table_name="departments")
    op.drop_table("departments")
    op.drop_index("idx_roles_institution", table_name="roles")
    op.drop_table("roles")
    op.drop_table("privileges")
    op.drop_table("users")
    op.drop_table("institutions")
