import asyncio
import json
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx

from surflog.database import get_session
from surflog.main import app, get_broker, get_repository
from surflog.notify import SnapshotBroker, Subscription
from surflog.remote import RemoteStoreError
from surflog.schemas import Entry, TideState
from surflog.search import sort_entries


def make_entry(entry_id: str, created_at: int, **overrides: Any) -> Entry:
    fields: dict[str, Any] = {
        "id": entry_id,
        "location": "Pipeline",
        "timestamp": datetime(2024, 3, 1, 7, 30),
        "tide_state": TideState.LOW,
        "conditions_text": "Clean, offshore",
        "notes_text": "",
        "created_at": created_at,
    }
    fields.update(overrides)
    return Entry(**fields)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class SnapshotStream(httpx.AsyncByteStream):
    def __init__(self, snapshots: list[list[Entry]]):
        self._snapshots = snapshots

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield b": connected\n\n"
        for entries in self._snapshots:
            payload = {"entries": [entry.model_dump(mode="json") for entry in entries]}
            yield f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def build_mock_transport(handler):
    return httpx.MockTransport(handler)


class FakeRemoteStore:
    """In-memory remote tier that pushes snapshots like the real service."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Entry]] = defaultdict(dict)
        self.broker = SnapshotBroker()
        self.calls: list[tuple[str, str, str]] = []
        self.subscriptions: list[Subscription] = []
        self.fail_create_ids: set[str] = set()
        self.fail_writes = False

    def snapshot(self, identity: str) -> list[Entry]:
        return sort_entries(self.collections[identity].values())

    def _publish(self, identity: str) -> None:
        self.broker.publish(identity, self.snapshot(identity))

    def _maybe_fail(self, action: str) -> None:
        if self.fail_writes:
            raise RemoteStoreError(f"{action} failed (503): unavailable")

    def subscribe(self, identity: str) -> Subscription:
        subscription = self.broker.subscribe(identity)
        self.subscriptions.append(subscription)
        subscription.publish(self.snapshot(identity))
        return subscription

    async def create(self, identity: str, entry: Entry) -> None:
        self.calls.append(("create", identity, entry.id))
        self._maybe_fail("Create entry")
        if entry.id in self.fail_create_ids:
            raise RemoteStoreError("Create entry failed (403): permission denied")
        if entry.id in self.collections[identity]:
            return
        self.collections[identity][entry.id] = entry
        self._publish(identity)

    async def update(self, identity: str, entry: Entry) -> None:
        self.calls.append(("update", identity, entry.id))
        self._maybe_fail("Update entry")
        existing = self.collections[identity].get(entry.id)
        if existing is None:
            raise RemoteStoreError("Update entry failed (404): not found")
        self.collections[identity][entry.id] = entry.model_copy(
            update={"created_at": existing.created_at}
        )
        self._publish(identity)

    async def delete(self, identity: str, entry_id: str) -> None:
        self.calls.append(("delete", identity, entry_id))
        self._maybe_fail("Delete entry")
        if self.collections[identity].pop(entry_id, None) is not None:
            self._publish(identity)

    async def clear_all(self, identity: str) -> int:
        self.calls.append(("clear_all", identity, ""))
        self._maybe_fail("Clear entries")
        deleted = len(self.collections[identity])
        self.collections[identity].clear()
        self._publish(identity)
        return deleted


class FakeEntryRepository:
    """EntryRepository stand-in keyed by owner; the session argument is ignored."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Entry]] = defaultdict(dict)

    async def list_entries(self, session, owner_id: str) -> list[Entry]:
        return sort_entries(self.rows[owner_id].values())

    async def get_entry(self, session, owner_id: str, entry_id: str) -> Entry | None:
        return self.rows[owner_id].get(entry_id)

    async def put_entry(self, session, owner_id: str, entry: Entry) -> bool:
        if entry.id in self.rows[owner_id]:
            return False
        self.rows[owner_id][entry.id] = entry
        return True

    async def merge_entry(self, session, owner_id: str, entry_id: str, fields: dict) -> Entry | None:
        existing = self.rows[owner_id].get(entry_id)
        if existing is None:
            return None
        merged = existing.model_copy(update=fields)
        self.rows[owner_id][entry_id] = merged
        return merged

    async def delete_entry(self, session, owner_id: str, entry_id: str) -> bool:
        return self.rows[owner_id].pop(entry_id, None) is not None

    async def clear_entries(self, session, owner_id: str) -> int:
        deleted = len(self.rows[owner_id])
        self.rows[owner_id].clear()
        return deleted


@asynccontextmanager
async def app_client(repository: FakeEntryRepository, broker: SnapshotBroker | None = None):
    broker = broker or SnapshotBroker()

    async def override_get_session():
        yield None

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_broker] = lambda: broker
    asgi_transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=asgi_transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()
