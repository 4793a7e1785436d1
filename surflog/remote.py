from __future__ import annotations

import asyncio
import os
from typing import Protocol

import httpx
from pydantic import ValidationError

from .notify import Subscription
from .schemas import ClearResult, Entry, SnapshotEvent, entry_update_from

SURFLOG_API_URL = os.getenv("SURFLOG_API_URL", "http://localhost:8000")
SURFLOG_API_TIMEOUT = float(os.getenv("SURFLOG_API_TIMEOUT", "30"))
IDENTITY_HEADER = "X-Identity"


class RemoteStoreError(RuntimeError):
    pass


class RemoteStore(Protocol):
    def subscribe(self, identity: str) -> Subscription: ...

    async def create(self, identity: str, entry: Entry) -> None: ...

    async def update(self, identity: str, entry: Entry) -> None: ...

    async def delete(self, identity: str, entry_id: str) -> None: ...

    async def clear_all(self, identity: str) -> int: ...


def _stream_timeout() -> httpx.Timeout:
    # Snapshots arrive whenever the collection changes; never time out a read.
    return httpx.Timeout(
        connect=SURFLOG_API_TIMEOUT,
        read=None,
        write=SURFLOG_API_TIMEOUT,
        pool=SURFLOG_API_TIMEOUT,
    )


def _check(response: httpx.Response, action: str) -> None:
    if response.is_success:
        return
    raise RemoteStoreError(f"{action} failed ({response.status_code}): {response.text}")


class RemoteEntryStore:
    """Device-side adapter for the per-identity entry collection served by the API."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=SURFLOG_API_URL, timeout=httpx.Timeout(SURFLOG_API_TIMEOUT)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _headers(identity: str) -> dict[str, str]:
        return {IDENTITY_HEADER: identity}

    async def _request(
        self, method: str, url: str, identity: str, action: str, **kwargs
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers=self._headers(identity), **kwargs
            )
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{action} failed: {exc}") from exc
        _check(response, action)
        return response

    def subscribe(self, identity: str) -> Subscription:
        """Open the live snapshot stream; the first event is the current collection."""
        subscription = Subscription(identity)
        subscription.attach(asyncio.create_task(self._read_stream(identity, subscription)))
        return subscription

    async def _read_stream(self, identity: str, subscription: Subscription) -> None:
        try:
            async with self._client.stream(
                "GET",
                "/v1/entries/stream",
                headers=self._headers(identity),
                timeout=_stream_timeout(),
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    _check(response, "Snapshot stream")
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    event = SnapshotEvent.model_validate_json(line[len("data:") :].strip())
                    subscription.publish(event.entries)
        except (httpx.HTTPError, RemoteStoreError, ValidationError) as exc:
            subscription.fail(exc)
            return
        subscription.close()

    async def list_entries(self, identity: str) -> list[Entry]:
        response = await self._request("GET", "/v1/entries", identity, "List entries")
        return [Entry.model_validate(item) for item in response.json()]

    async def create(self, identity: str, entry: Entry) -> None:
        await self._request(
            "PUT",
            f"/v1/entries/{entry.id}",
            identity,
            "Create entry",
            json=entry.model_dump(mode="json"),
        )

    async def update(self, identity: str, entry: Entry) -> None:
        await self._request(
            "PATCH",
            f"/v1/entries/{entry.id}",
            identity,
            "Update entry",
            json=entry_update_from(entry).model_dump(mode="json"),
        )

    async def delete(self, identity: str, entry_id: str) -> None:
        await self._request("DELETE", f"/v1/entries/{entry_id}", identity, "Delete entry")

    async def clear_all(self, identity: str) -> int:
        response = await self._request("DELETE", "/v1/entries", identity, "Clear entries")
        return ClearResult.model_validate(response.json()).deleted
