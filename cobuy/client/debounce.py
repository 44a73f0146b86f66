"""Trailing-edge debouncer for rapid local changes such as a slider drag."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Coalesce values scheduled within ``delay`` seconds; only the last one is delivered."""

    def __init__(self, delay: float, callback: Callable[[T], Awaitable[None]]) -> None:
        self._delay = delay
        self._callback = callback
        self._value: T | None = None
        self._has_value = False
        self._timer: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._has_value

    def schedule(self, value: T) -> None:
        self._value = value
        self._has_value = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait_then_fire())

    async def _wait_then_fire(self) -> None:
        await asyncio.sleep(self._delay)
        self._timer = None
        await self._fire()

    async def _fire(self) -> None:
        if not self._has_value:
            return
        value = self._value
        self._value = None
        self._has_value = False
        await self._callback(value)  # type: ignore[arg-type]

    async def flush(self) -> None:
        """Deliver the pending value now instead of waiting for the timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self._fire()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._value = None
        self._has_value = False
