"""Cancellation tokens for aborting in-flight waits when a run is stopped."""

from __future__ import annotations

import asyncio
import contextlib

from rehearse.core.errors import OperationCancelled


class CancellationToken:
    """Cooperative cancellation flag shared between a run and its tests.

    Cancelling a token cancels every child created from it. Waiting code
    calls ``raise_if_cancelled`` between polls and sleeps through
    ``sleep`` so a cancel wakes it immediately.
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: list[CancellationToken] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason or "parent cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)

    def detach(self, child: CancellationToken) -> None:
        with contextlib.suppress(ValueError):
            self._children.remove(child)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless cancelled first."""
        self.raise_if_cancelled()
        if delay <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except TimeoutError:
            return
        self.raise_if_cancelled()
