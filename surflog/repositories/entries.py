from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import EntryRecord
from ..schemas import Entry

ENTRY_FIELDS = tuple(Entry.model_fields)
MUTABLE_FIELDS = frozenset(ENTRY_FIELDS) - {"id", "created_at"}


def _record_to_entry(record: EntryRecord) -> Entry:
    return Entry.model_validate({name: getattr(record, name) for name in ENTRY_FIELDS})


class EntryRepository:
    """Per-identity entry collection backed by the ``entries`` table."""

    async def list_entries(self, session: AsyncSession, owner_id: str) -> list[Entry]:
        """Full collection for one identity, newest first."""
        result = await session.execute(
            select(EntryRecord)
            .where(EntryRecord.owner_id == owner_id)
            .order_by(EntryRecord.created_at.desc())
        )
        return [_record_to_entry(record) for record in result.scalars().all()]

    async def get_entry(
        self, session: AsyncSession, owner_id: str, entry_id: str
    ) -> Entry | None:
        record = await session.get(EntryRecord, (owner_id, entry_id))
        return _record_to_entry(record) if record else None

    async def put_entry(self, session: AsyncSession, owner_id: str, entry: Entry) -> bool:
        """Create the record keyed by the entry's own id.

        A second put for an id that already exists leaves the stored record alone,
        which is what makes retried migrations safe. Returns True when a row was
        written.
        """
        existing = await session.get(EntryRecord, (owner_id, entry.id))
        if existing is not None:
            return False
        session.add(EntryRecord(owner_id=owner_id, **entry.model_dump()))
        await session.commit()
        return True

    async def merge_entry(
        self,
        session: AsyncSession,
        owner_id: str,
        entry_id: str,
        fields: dict[str, Any],
    ) -> Entry | None:
        """Merge-write ``fields`` onto an existing record."""
        record = await session.get(EntryRecord, (owner_id, entry_id))
        if record is None:
            return None
        for key, value in fields.items():
            if key in MUTABLE_FIELDS:
                setattr(record, key, value)
        await session.commit()
        await session.refresh(record)
        return _record_to_entry(record)

    async def delete_entry(self, session: AsyncSession, owner_id: str, entry_id: str) -> bool:
        result = await session.execute(
            delete(EntryRecord).where(
                EntryRecord.owner_id == owner_id, EntryRecord.id == entry_id
            )
        )
        await session.commit()
        return bool(result.rowcount)

    async def clear_entries(self, session: AsyncSession, owner_id: str) -> int:
        """Delete every record that exists when the call starts, as one batch.

        Ids are read first and the delete is bounded to that id set, so an entry
        created while the batch runs survives it.
        """
        result = await session.execute(
            select(EntryRecord.id).where(EntryRecord.owner_id == owner_id)
        )
        ids = list(result.scalars().all())
        if not ids:
            return 0
        await session.execute(
            delete(EntryRecord).where(
                EntryRecord.owner_id == owner_id, EntryRecord.id.in_(ids)
            )
        )
        await session.commit()
        return len(ids)
