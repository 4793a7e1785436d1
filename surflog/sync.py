"""Tier selection, migration and the uniform entry API used by the interface.

Two tiers hold entries: the device-local store while nobody is signed in, and
the remote per-identity store once an identity is known. ``SyncCoordinator``
tracks which tier is active, keeps one live snapshot subscription for the
current identity, moves anonymous entries to the remote tier the first time an
identity appears, and routes every mutation to whichever tier is active when
the call is made.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .identity import IdentityProvider
from .local import LocalStorage
from .notify import Subscription
from .remote import RemoteStore
from .schemas import Entry, IdentityState
from .search import filter_entries, sort_entries

LOGGER = logging.getLogger(__name__)

FREE_ENTRY_LIMIT = int(os.getenv("FREE_ENTRY_LIMIT", "1"))


class Tier(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


_TRANSITIONS = {
    (Tier.LOCAL, Tier.REMOTE),
    (Tier.REMOTE, Tier.LOCAL),
    (Tier.REMOTE, Tier.REMOTE),
}


class SyncCoordinator:
    def __init__(
        self,
        local: LocalStorage,
        remote: RemoteStore,
        *,
        on_change: Callable[[], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._local = local.entries
        self._remote = remote
        self._on_change = on_change
        self._on_error = on_error

        self._tier = Tier.LOCAL
        self._identity: str | None = None
        self._identity_loading = False
        self._local_entries: list[Entry] = self._local.read()
        self._local_lock = asyncio.Lock()

        self._remote_entries: list[Entry] = []
        self._subscription: Subscription | None = None
        self._listener: asyncio.Task[None] | None = None
        self._snapshot_loaded = False
        self._remote_settled = False

        # Bumped on every identity transition; work started under an older
        # session must not touch the new one.
        self._session = 0
        # Identities whose current session has finished migrating.
        self._migrated: set[str] = set()
        self._migrating: int | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def tier(self) -> Tier:
        return self._tier

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def entries(self) -> list[Entry]:
        """Active tier's collection, newest first."""
        if self._identity is not None:
            return sort_entries(self._remote_entries)
        return sort_entries(self._local_entries)

    @property
    def is_loading(self) -> bool:
        if self._identity_loading:
            return True
        return self._tier is Tier.REMOTE and not self._remote_settled

    def migration_complete(self, identity: str) -> bool:
        return identity in self._migrated

    def search(self, query: str) -> list[Entry]:
        return filter_entries(self.entries, query)

    def requires_identity_for_new_entry(self) -> bool:
        """Whether a new entry should prompt for sign-in first.

        Only advisory: ``add_entry`` still accepts the write.
        """
        return self._identity is None and len(self._local_entries) >= FREE_ENTRY_LIMIT

    def form_defaults(self) -> dict[str, Any]:
        """Prefill for a new entry, carried over from the most recent one."""
        entries = self.entries
        if not entries:
            return {"location": "", "equipment_type": None, "equipment_detail": None}
        latest = entries[0]
        return {
            "location": latest.location,
            "equipment_type": latest.equipment_type,
            "equipment_detail": latest.equipment_detail,
        }

    # -------------------------------------------------------------------------
    # Identity transitions
    # -------------------------------------------------------------------------

    async def attach(self, provider: IdentityProvider) -> Callable[[], None]:
        """Follow ``provider`` from now on. Returns the detach callback."""
        detach = provider.listen(self.set_identity)
        await self.set_identity(provider.state)
        return detach

    async def set_identity(self, state: IdentityState) -> None:
        self._identity_loading = state.loading
        if state.loading:
            self._changed()
            return

        identity = state.identity or None
        if identity == self._identity:
            self._changed()
            return

        target = Tier.REMOTE if identity is not None else Tier.LOCAL
        if (self._tier, target) not in _TRANSITIONS:
            raise RuntimeError(f"Invalid tier transition {self._tier.value} -> {target.value}")

        # The old listener must be gone before anything for the new identity starts.
        await self._close_subscription()
        self._migrated.clear()
        self._session += 1

        self._identity = identity
        self._tier = target
        self._remote_entries = []
        self._snapshot_loaded = False
        self._remote_settled = False
        if identity is not None:
            self._open_subscription(identity)
        LOGGER.info("Active tier is %s", target.value)
        self._changed()

    async def close(self) -> None:
        await self._close_subscription()

    def _open_subscription(self, identity: str) -> None:
        subscription = self._remote.subscribe(identity)
        self._subscription = subscription
        self._listener = asyncio.create_task(self._consume(subscription))

    async def _close_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        listener, self._listener = self._listener, None
        if subscription is not None:
            await subscription.cancel()
        if listener is not None and not listener.done():
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener

    async def _consume(self, subscription: Subscription) -> None:
        try:
            async for snapshot in subscription:
                if subscription is not self._subscription:
                    return
                self._remote_entries = sort_entries(snapshot)
                self._snapshot_loaded = True
                self._remote_settled = True
                self._changed()
                await self.migrate()
        except Exception:
            if subscription is not self._subscription:
                return
            LOGGER.exception("Snapshot subscription for %s failed", subscription.identity)
            self._subscription_lost()
            return
        if subscription is self._subscription:
            LOGGER.warning("Snapshot stream for %s ended", subscription.identity)
            self._subscription_lost()

    def _subscription_lost(self) -> None:
        # The collection stays as last seen; it no longer updates this session.
        self._remote_settled = True
        self._notify_error("Could not load entries")
        self._changed()

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    async def migrate(self) -> bool:
        """Move every anonymous entry to the signed-in identity's collection.

        Runs only once the first remote snapshot has arrived. All creates are
        issued together and keep each entry's id and creation stamp; the local
        copy is dropped only if every one of them succeeded. A failed run
        leaves everything in place and is retried on the next snapshot, which
        is safe because creating an existing id is a no-op.

        Returns True when migration is complete for the current identity.
        """
        identity = self._identity
        session = self._session
        if identity is None or not self._snapshot_loaded or self._migrating == session:
            return False
        if identity in self._migrated:
            return True

        self._migrating = session
        try:
            pending = list(self._local_entries)
            if not pending:
                self._migrated.add(identity)
                return True

            results = await asyncio.gather(
                *(self._remote.create(identity, entry) for entry in pending),
                return_exceptions=True,
            )
            if session != self._session:
                LOGGER.info("Identity changed during migration; local entries kept")
                return False
            failures = [result for result in results if isinstance(result, BaseException)]
            if failures:
                LOGGER.warning(
                    "Migration of %s local entries failed (%s errors); will retry",
                    len(pending),
                    len(failures),
                    exc_info=failures[0],
                )
                return False

            moved = {entry.id for entry in pending}
            async with self._local_lock:
                if session != self._session:
                    return False
                self._local_entries = [
                    entry for entry in self._local_entries if entry.id not in moved
                ]
                self._local.write(self._local_entries)
            self._migrated.add(identity)
            LOGGER.info("Migrated %s local entries to the remote store", len(pending))
            self._changed()
            return True
        finally:
            if self._migrating == session:
                self._migrating = None

    # -------------------------------------------------------------------------
    # Entry operations
    # -------------------------------------------------------------------------

    async def add_entry(self, entry: Entry) -> bool:
        identity = self._identity
        if identity is None:
            return await self._mutate_local(
                lambda entries: [entry, *(item for item in entries if item.id != entry.id)]
            )
        self._remote_entries = [
            entry,
            *(item for item in self._remote_entries if item.id != entry.id),
        ]
        self._changed()
        return await self._remote_call(
            self._remote.create(identity, entry), "Could not save entry"
        )

    async def update_entry(self, entry: Entry) -> bool:
        identity = self._identity
        if identity is None:
            return await self._mutate_local(lambda entries: _replace(entries, entry))
        self._remote_entries = _replace(self._remote_entries, entry)
        self._changed()
        return await self._remote_call(
            self._remote.update(identity, entry), "Could not update entry"
        )

    async def delete_entry(self, entry_id: str) -> bool:
        identity = self._identity
        if identity is None:
            if not any(item.id == entry_id for item in self._local_entries):
                return True
            return await self._mutate_local(
                lambda entries: [item for item in entries if item.id != entry_id]
            )
        self._remote_entries = [item for item in self._remote_entries if item.id != entry_id]
        self._changed()
        return await self._remote_call(
            self._remote.delete(identity, entry_id), "Could not delete entry"
        )

    async def clear_all(self) -> bool:
        identity = self._identity
        if identity is None:
            return await self._mutate_local(lambda entries: [])
        self._remote_entries = []
        self._changed()
        return await self._remote_call(
            self._remote.clear_all(identity), "Could not clear entries"
        )

    async def _mutate_local(self, mutate: Callable[[list[Entry]], list[Entry]]) -> bool:
        async with self._local_lock:
            self._local_entries = mutate(self._local_entries)
            persisted = self._local.write(self._local_entries)
        self._changed()
        if not persisted:
            self._notify_error("Could not save entries on this device")
        return persisted

    async def _remote_call(self, call: Awaitable[Any], message: str) -> bool:
        # Optimistic state is left as is on failure; the next snapshot corrects it.
        try:
            await call
        except Exception:
            LOGGER.exception(message)
            self._notify_error(message)
            return False
        return True

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def _notify_error(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)


def _replace(entries: list[Entry], updated: Entry) -> list[Entry]:
    result = []
    for item in entries:
        if item.id == updated.id:
            # Creation stamp belongs to the original record.
            item = updated.model_copy(update={"created_at": item.created_at})
        result.append(item)
    return result
