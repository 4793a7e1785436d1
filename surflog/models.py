from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, SmallInteger, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .schemas import EquipmentType, TideState


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class EntryRecord(Base):
    __tablename__ = "entries"

    owner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    tide_state: Mapped[TideState] = mapped_column(
        Enum(TideState, native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    equipment_type: Mapped[EquipmentType | None] = mapped_column(
        Enum(EquipmentType, native_enum=False, values_callable=_enum_values, length=16)
    )
    equipment_detail: Mapped[str | None] = mapped_column(Text)
    conditions_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rating: Mapped[int | None] = mapped_column(SmallInteger)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("entries_owner_created_idx", "owner_id", created_at.desc()),
    )
