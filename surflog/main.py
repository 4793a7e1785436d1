import logging
import os
from collections.abc import AsyncGenerator, AsyncIterator, Sequence
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session, shutdown_db, startup_db
from .notify import SnapshotBroker, Subscription
from .repositories import EntryRepository
from .schemas import ClearResult, Entry, EntryUpdate, SnapshotEvent

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await startup_db()
    try:
        yield
    finally:
        await shutdown_db()


app = FastAPI(title="Surflog API", lifespan=lifespan)

cors_origins = [origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if origin.strip()]
if cors_origins:
    allow_all = "*" in cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else cors_origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

_repository = EntryRepository()
_broker = SnapshotBroker()


def get_repository() -> EntryRepository:
    return _repository


def get_broker() -> SnapshotBroker:
    return _broker


async def get_identity(x_identity: str | None = Header(default=None)) -> str:
    identity = (x_identity or "").strip()
    if not identity:
        raise HTTPException(status_code=401, detail="Identity token required")
    return identity


def _snapshot_event(entries: Sequence[Entry]) -> bytes:
    payload = SnapshotEvent(entries=list(entries)).model_dump_json()
    return f"data: {payload}\n\n".encode("utf-8")


async def _publish_snapshot(
    session: AsyncSession,
    repository: EntryRepository,
    broker: SnapshotBroker,
    owner_id: str,
) -> None:
    if not broker.subscriber_count(owner_id):
        return
    broker.publish(owner_id, await repository.list_entries(session, owner_id))


async def _stream_snapshots(
    subscription: Subscription, initial: Sequence[Entry]
) -> AsyncGenerator[bytes, None]:
    try:
        yield _snapshot_event(initial)
        async for entries in subscription:
            yield _snapshot_event(entries)
    finally:
        await subscription.cancel()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/entries", response_model=list[Entry])
async def list_entries(
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
):
    return await repository.list_entries(session, owner_id)


@app.get("/v1/entries/stream")
async def stream_entries(
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
    broker: SnapshotBroker = Depends(get_broker),
):
    # Subscribe before reading so a write landing in between is not lost.
    subscription = broker.subscribe(owner_id)
    try:
        initial = await repository.list_entries(session, owner_id)
    except Exception:
        await subscription.cancel()
        raise
    return StreamingResponse(
        _stream_snapshots(subscription, initial),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/v1/entries/{entry_id}", response_model=Entry)
async def get_entry(
    entry_id: str,
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
):
    entry = await repository.get_entry(session, owner_id, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@app.put("/v1/entries/{entry_id}", response_model=Entry)
async def put_entry(
    entry_id: str,
    request: Entry,
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
    broker: SnapshotBroker = Depends(get_broker),
):
    if request.id != entry_id:
        raise HTTPException(status_code=400, detail="Entry id does not match path")
    if await repository.put_entry(session, owner_id, request):
        await _publish_snapshot(session, repository, broker, owner_id)
    stored = await repository.get_entry(session, owner_id, entry_id)
    return stored or request


@app.patch("/v1/entries/{entry_id}", response_model=Entry)
async def update_entry(
    entry_id: str,
    request: EntryUpdate,
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
    broker: SnapshotBroker = Depends(get_broker),
):
    fields = request.fields()
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    entry = await repository.merge_entry(session, owner_id, entry_id, fields)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    await _publish_snapshot(session, repository, broker, owner_id)
    return entry


@app.delete("/v1/entries/{entry_id}", status_code=204)
async def delete_entry(
    entry_id: str,
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
    broker: SnapshotBroker = Depends(get_broker),
):
    if await repository.delete_entry(session, owner_id, entry_id):
        await _publish_snapshot(session, repository, broker, owner_id)
    return Response(status_code=204)


@app.delete("/v1/entries", response_model=ClearResult)
async def clear_entries(
    owner_id: str = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    repository: EntryRepository = Depends(get_repository),
    broker: SnapshotBroker = Depends(get_broker),
):
    deleted = await repository.clear_entries(session, owner_id)
    LOGGER.info("Cleared %s entries for %s", deleted, owner_id)
    if deleted:
        await _publish_snapshot(session, repository, broker, owner_id)
    return ClearResult(deleted=deleted)
