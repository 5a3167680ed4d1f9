"""Cooperative cancellation tokens with linked child scopes.

A root token is created once per process. Every background run gets a
child token, so cancelling the root cancels every outstanding run while
cancelling a child affects only that run.

Jobs check ``token.cancelled`` / ``token.raise_if_cancelled()`` at their own
pace; suspension points owned by the agent (message polling, waiting on a
pipeline, reasoning calls) are raced against the token with ``guard``.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Awaitable, Optional, Set, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when work is abandoned because its token was cancelled."""


class CancelToken:
    """A cancellation signal that propagates to linked children."""

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = asyncio.Event()
        self._children: Set["CancelToken"] = set()
        self._parent = parent
        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation to this token and every linked child."""
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()

    def child(self) -> "CancelToken":
        """Derive a child scope that is cancelled together with this one."""
        return CancelToken(parent=self)

    def release(self) -> None:
        """Unlink from the parent once the scope's work has finished."""
        if self._parent is not None:
            self._parent._children.discard(self)
            self._parent = None

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises ``OperationCancelled`` (after cancelling the inner awaitable)
        when the token is cancelled before the awaitable completes.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        with suppress(asyncio.CancelledError):
            await work
        raise OperationCancelled()
