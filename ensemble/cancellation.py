"""Cooperative cancellation checked at every suspension point of a conversation."""

import asyncio


class ConversationCancelled(Exception):
    """Raised inside the loop once the token fires; never escapes the orchestrator."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ConversationCancelled()

    async def wait(self) -> None:
        await self._event.wait()
