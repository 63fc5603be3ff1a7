"""AbortSignal — cooperative cancellation shared by a whole run."""

import asyncio


class AbortSignal:
    """One-shot flag checked by the scheduler and every dispatched unit.

    ``abort()`` is idempotent. ``wait()`` lets a unit race its work against
    the signal instead of polling.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self.aborted})"
