"""
SightMate - Cancellation Registry
Monotonic interaction ids; starting a new interaction aborts every external
call still bound to the previous one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class InteractionCancelled(Exception):
    """Raised inside a superseded interaction. Not an error: callers drop it silently."""


class CancellationToken:
    """Abort signal shared by every external call of one interaction."""

    def __init__(self):
        self._cancelled = False
        self._tasks: Set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """Signal abort to every pending call bound to this token."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def raise_if_cancelled(self):
        if self._cancelled:
            raise InteractionCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await an external call, aborting it when this token is cancelled.

        Raises:
            InteractionCancelled: the token was cancelled before or during the call
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise InteractionCancelled()

        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._cancelled:
                raise InteractionCancelled() from None
            raise
        finally:
            self._tasks.discard(task)


@dataclass
class Interaction:
    """One logical user- or system-initiated task."""
    id: int
    token: CancellationToken
    registry: 'CancellationRegistry' = field(repr=False)

    @property
    def is_current(self) -> bool:
        return self.registry.is_current(self.id)

    def checkpoint(self):
        """Abandon the interaction if a newer one has started."""
        if not self.is_current:
            raise InteractionCancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await an external call bound to this interaction, re-checking currency afterwards."""
        result = await self.token.run(awaitable)
        self.checkpoint()
        return result


class CancellationRegistry:
    """Issues interaction ids. Exactly one interaction is current at a time."""

    def __init__(self):
        self._last_id = 0
        self._current: Optional[Interaction] = None

    @property
    def current(self) -> Optional[Interaction]:
        return self._current

    def begin_interaction(self) -> Interaction:
        """Create the new current interaction and cancel the previous one's token."""
        self._last_id += 1
        if self._current is not None:
            self._current.token.cancel()
            logger.debug(f"Interaction {self._current.id} superseded by {self._last_id}")
        self._current = Interaction(id=self._last_id, token=CancellationToken(), registry=self)
        return self._current

    def is_current(self, interaction_id: int) -> bool:
        return self._current is not None and self._current.id == interaction_id
