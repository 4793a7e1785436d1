from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from .schemas import IdentityState

LOGGER = logging.getLogger(__name__)

IdentityListener = Callable[[IdentityState], Awaitable[None]]


class IdentityProvider:
    """Holds the current identity signal and tells listeners when it changes.

    Signing in and out happens elsewhere; whatever performs it reports the
    outcome through ``set_state``.
    """

    def __init__(self, state: IdentityState | None = None) -> None:
        self._state = state or IdentityState(loading=True)
        self._listeners: list[IdentityListener] = []

    @property
    def state(self) -> IdentityState:
        return self._state

    def listen(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_state(self, state: IdentityState) -> None:
        previous, self._state = self._state, state
        if previous == state:
            return
        if previous.identity != state.identity:
            LOGGER.info(
                "Identity changed: %s -> %s",
                "signed-in" if previous.identity else "anonymous",
                "signed-in" if state.identity else "anonymous",
            )
        for listener in list(self._listeners):
            await listener(state)

    async def signed_in(
        self,
        identity: str,
        *,
        display_name: str | None = None,
        photo_url: str | None = None,
    ) -> None:
        await self.set_state(
            IdentityState(identity=identity, display_name=display_name, photo_url=photo_url)
        )

    async def signed_out(self) -> None:
        await self.set_state(IdentityState())
