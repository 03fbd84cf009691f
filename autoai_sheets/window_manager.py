"""Fixed pool of browser windows; one running task per window."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from .browser import BrowserWindow
from .executor import AITaskExecutor
from .models import Task, TaskResult
from .waiting import CancelToken

LOGGER = logging.getLogger(__name__)


class WindowFactory(Protocol):
    async def open(self, ai_type: str, slot: int) -> BrowserWindow:
        ...


@dataclass(slots=True)
class _Slot:
    index: int
    window: Optional[BrowserWindow] = None
    busy: bool = False


class StreamingWindowManager:
    """Hands tasks to free window slots, waiting while every slot is busy.

    Slot selection runs under a single ``asyncio.Condition`` so two concurrent
    ``assign`` calls never obtain the same slot.
    """

    def __init__(
        self,
        factory: WindowFactory,
        executor: AITaskExecutor,
        max_windows: int = 4,
        *,
        close_after_task: bool = True,
        token: Optional[CancelToken] = None,
    ) -> None:
        if max_windows < 1:
            raise ValueError("max_windows must be at least 1")
        self._factory = factory
        self._executor = executor
        self._close_after_task = close_after_task
        self._token = token or CancelToken()
        self._slots: List[_Slot] = [_Slot(index=i) for i in range(max_windows)]
        self._condition = asyncio.Condition()

    def capacity(self) -> int:
        return len(self._slots)

    def busy_slots(self) -> int:
        return sum(1 for slot in self._slots if slot.busy)

    async def _acquire(self, ai_type: str) -> _Slot:
        async with self._condition:
            while True:
                free = [slot for slot in self._slots if not slot.busy]
                if free:
                    same_type = [s for s in free if s.window is not None and s.window.ai_type == ai_type]
                    empty = [s for s in free if s.window is None]
                    slot = (same_type or empty or free)[0]
                    slot.busy = True
                    return slot
                await self._condition.wait()

    async def _release(self, slot: _Slot) -> None:
        async with self._condition:
            slot.busy = False
            self._condition.notify()

    async def _recycle(self, slot: _Slot) -> None:
        window, slot.window = slot.window, None
        if window is None:
            return
        try:
            await window.close()
        except Exception as exc:
            LOGGER.warning("Closing the %s window in slot %s failed: %s", window.ai_type, slot.index, exc)

    async def _window_for(self, slot: _Slot, ai_type: str) -> BrowserWindow:
        if slot.window is not None and slot.window.ai_type == ai_type:
            await slot.window.reset()
            return slot.window
        await self._recycle(slot)
        slot.window = await self._factory.open(ai_type, slot.index)
        return slot.window

    async def assign(self, task: Task) -> TaskResult:
        slot = await self._acquire(task.ai_type)
        try:
            if self._token.cancelled:
                return TaskResult(task=task, success=False, error="cancelled", cancelled=True)
            try:
                window = await self._window_for(slot, task.ai_type)
            except Exception as exc:
                LOGGER.warning(
                    "Could not open a %s window for %s: %s", task.ai_type, task.cell_key, exc
                )
                await self._recycle(slot)
                return TaskResult(
                    task=task, success=False, error=f"window could not be opened: {exc}", fatal=True
                )

            LOGGER.debug("Running %s in slot %s", task.cell_key, slot.index)
            result = await self._executor.execute_ai_task(window, task)
            if not result.success or self._close_after_task:
                await self._recycle(slot)
            return result
        finally:
            await self._release(slot)

    async def close_all(self) -> None:
        async with self._condition:
            for slot in self._slots:
                await self._recycle(slot)
