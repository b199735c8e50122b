from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.authz.models import Base, SoftDeleteMixin, TimestampMixin, new_uuid

if TYPE_CHECKING:
    from app.authz.models import InstitutionUser


class InstitutionVacation(TimestampMixin, SoftDeleteMixin, Base):
    """Institution-wide day(s) off."""

    __tablename__ = "institution_vacations"
    __table_args__ = (
        Index("idx_institution_vacations_institution", "institution_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_id: Mapped[str] = mapped_column(ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)


class InstitutionUserVacation(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "institution_user_vacations"
    __table_args__ = (
        Index("idx_institution_user_vacations_user", "institution_user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_user_id: Mapped[str] = mapped_column(
        ForeignKey("institution_users.id", ondelete="CASCADE"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    institution_user: Mapped["InstitutionUser"] = relationship(lazy="select")


class InstitutionVacationExclusion(TimestampMixin, SoftDeleteMixin, Base):
    """An institution vacation the given institution user works through."""

    __tablename__ = "institution_vacation_exclusions"
    __table_args__ = (
        Index("idx_vacation_exclusions_user", "institution_user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_user_id: Mapped[str] = mapped_column(
        ForeignKey("institution_users.id", ondelete="CASCADE"), nullable=False
    )
    institution_vacation_id: Mapped[str] = mapped_column(
        ForeignKey("institution_vacations.id", ondelete="CASCADE"), nullable=False
    )

    institution_vacation: Mapped[InstitutionVacation] = relationship(lazy="selectin")
