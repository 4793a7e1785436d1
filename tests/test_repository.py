import pytest
from sqlalchemy import Delete, Select

from surflog.models import EntryRecord
from surflog.repositories import EntryRepository
from tests.utils import make_entry


class FakeResult:
    def __init__(self, rows):
        self._rows = list(rows)
        self.rowcount = len(self._rows)

    def scalars(self):
        return self

    def all(self):
        return list(self._rows)


class FakeSession:
    """Just enough of AsyncSession to drive EntryRepository without a database."""

    def __init__(self, records=None, ids=()):
        self.records = dict(records or {})
        self.ids = list(ids)
        self.added: list[EntryRecord] = []
        self.statements = []
        self.commits = 0

    async def get(self, model, key):
        return self.records.get(key)

    def add(self, record):
        self.added.append(record)

    async def execute(self, statement):
        self.statements.append(statement)
        return FakeResult(self.ids)

    async def commit(self):
        self.commits += 1

    async def refresh(self, record):
        return None


def record_for(owner_id: str, entry) -> EntryRecord:
    return EntryRecord(owner_id=owner_id, **entry.model_dump())


def compiled(statement) -> str:
    return str(statement.compile(compile_kwargs={"literal_binds": True}))


@pytest.mark.asyncio
async def test_put_entry_writes_new_record():
    session = FakeSession()

    written = await EntryRepository().put_entry(session, "alice", make_entry("abc", 7))

    assert written is True
    assert session.commits == 1
    [record] = session.added
    assert (record.owner_id, record.id, record.created_at) == ("alice", "abc", 7)


@pytest.mark.asyncio
async def test_put_entry_leaves_existing_record_alone():
    existing = record_for("alice", make_entry("abc", 7, notes_text="first"))
    session = FakeSession(records={("alice", "abc"): existing})

    written = await EntryRepository().put_entry(
        session, "alice", make_entry("abc", 9, notes_text="second")
    )

    assert written is False
    assert session.added == []
    assert session.commits == 0
    assert existing.notes_text == "first"


@pytest.mark.asyncio
async def test_merge_entry_ignores_fixed_fields():
    existing = record_for("alice", make_entry("abc", 7, rating=2))
    session = FakeSession(records={("alice", "abc"): existing})

    entry = await EntryRepository().merge_entry(
        session,
        "alice",
        "abc",
        {"rating": 5, "created_at": 1, "id": "other", "owner_id": "bob"},
    )

    assert entry.rating == 5
    assert entry.created_at == 7
    assert entry.id == "abc"
    assert existing.owner_id == "alice"


@pytest.mark.asyncio
async def test_merge_missing_entry_returns_none():
    assert await EntryRepository().merge_entry(FakeSession(), "alice", "abc", {"rating": 5}) is None


@pytest.mark.asyncio
async def test_clear_entries_deletes_only_ids_read_first():
    session = FakeSession(ids=["a", "b"])

    deleted = await EntryRepository().clear_entries(session, "alice")

    assert deleted == 2
    select_stmt, delete_stmt = session.statements
    assert isinstance(select_stmt, Select)
    assert isinstance(delete_stmt, Delete)
    sql = compiled(delete_stmt)
    assert "entries.owner_id = 'alice'" in sql
    assert "entries.id IN ('a', 'b')" in sql
    assert session.commits == 1


@pytest.mark.asyncio
async def test_clear_entries_with_nothing_stored_skips_delete():
    session = FakeSession(ids=[])

    assert await EntryRepository().clear_entries(session, "alice") == 0
    assert len(session.statements) == 1
    assert session.commits == 0
