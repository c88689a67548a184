"""Cooperative cancellation shared between the controller and the client."""

import asyncio


class CancellationToken:
    """One-shot cancellation signal for a single generation.

    ``cancel()`` is idempotent: cancelling twice, or after the generation
    already finished, has no further effect.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Request cancellation. Returns False if it was already requested."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()
