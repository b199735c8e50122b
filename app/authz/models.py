from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.authz.dates import now_utc

if TYPE_CHECKING:
    from app.authz.constants import InstitutionUserStatus
    from app.authz.modules.departments.models import Department


def new_uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=now_utc, onupdate=now_utc
    )


class SoftDeleteMixin:
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        self.deleted_at = now_utc()


class WorktimeMixin:
    """Weekly working hours; a day with both bounds NULL is a day off."""

    worktime_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    monday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    monday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    tuesday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    tuesday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    wednesday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    wednesday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    thursday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    thursday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    friday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    friday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    saturday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    saturday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    sunday_worktime_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    sunday_worktime_end: Mapped[time | None] = mapped_column(Time, nullable=True)


class InstitutionUserRole(Base):
    __tablename__ = "institution_user_roles"
    institution_user_id: Mapped[str] = mapped_column(
        ForeignKey("institution_users.id", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[str] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class PrivilegeRole(Base):
    __tablename__ = "privilege_roles"
    privilege_id: Mapped[str] = mapped_column(ForeignKey("privileges.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[str] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class Privilege(TimestampMixin, Base):
    __tablename__ = "privileges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # PrivilegeKey value

    roles: Mapped[list["Role"]] = relationship(secondary="privilege_roles", back_populates="privileges", lazy="selectin")


class Institution(TimestampMixin, SoftDeleteMixin, WorktimeMixin, Base):
    __tablename__ = "institutions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(3), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    institution_users: Mapped[list["InstitutionUser"]] = relationship(back_populates="institution", lazy="select")
    roles: Mapped[list["Role"]] = relationship(back_populates="institution", lazy="select")

    def identity_subset(self) -> dict:
        return {"id": self.id, "name": self.name}


class Role(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "roles"
    __table_args__ = (
        Index("idx_roles_institution", "institution_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_id: Mapped[str] = mapped_column(ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_root: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    institution: Mapped[Institution] = relationship(back_populates="roles", lazy="selectin")
    privileges: Mapped[list[Privilege]] = relationship(
        secondary="privilege_roles",
        back_populates="roles",
        lazy="selectin",
    )
    institution_users: Mapped[list["InstitutionUser"]] = relationship(
        secondary="institution_user_roles",
        back_populates="roles",
        lazy="select",
    )

    @property
    def privilege_keys(self) -> list[str]:
        return sorted(p.key for p in self.privileges)

    def identity_subset(self) -> dict:
        return {"id": self.id, "name": self.name}


class User(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    personal_identification_code: Mapped[str] = mapped_column(String(11), nullable=False, unique=True)
    forename: Mapped[str] = mapped_column(String(255), nullable=False)
    surname: Mapped[str] = mapped_column(String(255), nullable=False)

    institution_users: Mapped[list["InstitutionUser"]] = relationship(back_populates="user", lazy="select")

    @property
    def full_name(self) -> str:
        return f"{self.forename} {self.surname}"


class InstitutionUser(TimestampMixin, SoftDeleteMixin, WorktimeMixin, Base):
    """
    Membership of a User in an Institution.
    Status is derived from archived_at/deactivation_date, never stored.
    """

    __tablename__ = "institution_users"
    __table_args__ = (
        Index("idx_institution_users_institution", "institution_id"),
        Index("idx_institution_users_user", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_id: Mapped[str] = mapped_column(ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    department_id: Mapped[str | None] = mapped_column(ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deactivation_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    institution: Mapped[Institution] = relationship(back_populates="institution_users", lazy="selectin")
    user: Mapped[User] = relationship(back_populates="institution_users", lazy="selectin")
    department: Mapped["Department | None"] = relationship(back_populates="institution_users", lazy="selectin")
    roles: Mapped[list[Role]] = relationship(
        secondary="institution_user_roles",
        back_populates="institution_users",
        lazy="selectin",
    )

    @property
    def status(self) -> "InstitutionUserStatus":
        from app.authz.modules.institution_users.status import resolve_status

        return resolve_status(self.archived_at, self.deactivation_date)

    @property
    def privilege_keys(self) -> list[str]:
        return sorted({p.key for r in self.roles for p in r.privileges})

    def identity_subset(self) -> dict:
        return {
            "id": self.id,
            "user": {
                "id": self.user.id,
                "personal_identification_code": self.user.personal_identification_code,
                "forename": self.user.forename,
                "surname": self.user.surname,
            },
        }


class AuditEvent(Base):
    """
    Append-only audit trail event, one row per audit-log message.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_events_institution", "context_institution_id"),
        Index("idx_audit_events_trace", "trace_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    happened_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=now_utc)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)  # AuditEventType
    failure_type: Mapped[str | None] = mapped_column(String(64), nullable=True)  # AuditFailureType

    context_institution_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    context_department_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    acting_institution_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    acting_user_pic: Mapped[str | None] = mapped_column(String(11), nullable=True)
    acting_user_forename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    acting_user_surname: Mapped[str | None] = mapped_column(String(255), nullable=True)

    event_parameters_json: Mapped[str | None] = mapped_column(Text, nullable=True)


class SyncEvent(Base):
    """
    Outbox row announcing an institution-user change to downstream services.
    """

    __tablename__ = "sync_events"
    __table_args__ = (
        Index("idx_sync_events_unpublished", "published_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=now_utc)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_name: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "institution-user.saved"
    institution_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.authz.modules.departments.models import Department  # noqa: E402,F401
from app.authz.modules.vacations.models import (  # noqa: E402,F401
    InstitutionUserVacation,
    InstitutionVacation,
    InstitutionVacationExclusion,
)
