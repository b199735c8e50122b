from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.authz.models import Base, SoftDeleteMixin, TimestampMixin, new_uuid

if TYPE_CHECKING:
    from app.authz.models import Institution, InstitutionUser


class Department(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "departments"
    __table_args__ = (
        Index("idx_departments_institution", "institution_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    institution_id: Mapped[str] = mapped_column(ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False)
    # Unique per institution among non-deleted rows; enforced in service.
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    institution: Mapped["Institution"] = relationship(lazy="selectin")
    institution_users: Mapped[list["InstitutionUser"]] = relationship(back_populates="department", lazy="select")

    def identity_subset(self) -> dict:
        return {"id": self.id, "name": self.name}
