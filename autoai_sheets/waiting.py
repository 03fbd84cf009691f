"""Cooperative, resumable polling used by every wait on a browser window."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)


class OperationCancelled(Exception):
    """Raised at a sleep boundary once the run has been asked to stop."""


class CancelToken:
    """Run-level stop flag shared by the queue, the window pool and every wait."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            LOGGER.info("Cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Run was cancelled")

    async def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return
        raise OperationCancelled("Run was cancelled")


class WaitState(str, Enum):
    AWAITING_STOP_BUTTON = "awaiting-stop-button"
    AWAITING_COMPLETION_DEBOUNCE = "awaiting-completion-debounce"
    COMPLETE = "complete"
    TIMED_OUT = "timed-out"

    @property
    def terminal(self) -> bool:
        return self in (WaitState.COMPLETE, WaitState.TIMED_OUT)


@dataclass(slots=True, frozen=True)
class WaitPolicy:
    poll_interval_s: float
    appear_timeout_s: float
    max_wait_s: float
    debounce_s: float = 0.0
    early_stop_window_s: float = 0.0
    is_special: bool = False

    @classmethod
    def normal(
        cls,
        poll_interval_s: float = 2.0,
        appear_timeout_s: float = 30.0,
        max_wait_s: float = 300.0,
    ) -> "WaitPolicy":
        return cls(
            poll_interval_s=poll_interval_s,
            appear_timeout_s=appear_timeout_s,
            max_wait_s=max_wait_s,
        )

    @classmethod
    def special(
        cls,
        poll_interval_s: float = 2.0,
        appear_timeout_s: float = 30.0,
        max_wait_s: float = 2400.0,
        debounce_s: float = 10.0,
        early_stop_window_s: float = 120.0,
    ) -> "WaitPolicy":
        return cls(
            poll_interval_s=poll_interval_s,
            appear_timeout_s=appear_timeout_s,
            max_wait_s=max_wait_s,
            debounce_s=debounce_s,
            early_stop_window_s=early_stop_window_s,
            is_special=True,
        )

    def ticks(self, seconds: float) -> int:
        return max(1, math.ceil(seconds / self.poll_interval_s))


@dataclass(slots=True)
class WaitProgress:
    """Persistable marker of an in-progress wait."""

    state: WaitState = WaitState.AWAITING_STOP_BUTTON
    elapsed_ticks: int = 0
    absent_ticks: int = 0
    phase_started_tick: int = 0
    reprompted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "elapsed_ticks": self.elapsed_ticks,
            "absent_ticks": self.absent_ticks,
            "phase_started_tick": self.phase_started_tick,
            "reprompted": self.reprompted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WaitProgress":
        return cls(
            state=WaitState(data.get("state", WaitState.AWAITING_STOP_BUTTON.value)),
            elapsed_ticks=int(data.get("elapsed_ticks", 0)),
            absent_ticks=int(data.get("absent_ticks", 0)),
            phase_started_tick=int(data.get("phase_started_tick", 0)),
            reprompted=bool(data.get("reprompted", False)),
        )


GeneratingCheck = Callable[[], Awaitable[bool]]


async def wait_for_completion(
    is_generating: GeneratingCheck,
    policy: WaitPolicy,
    token: CancelToken,
    progress: Optional[WaitProgress] = None,
    reprompt: Optional[Callable[[], Awaitable[None]]] = None,
    on_progress: Optional[Callable[[WaitProgress], None]] = None,
) -> WaitProgress:
    """Poll ``is_generating`` (True while the AI is generating) until the answer is complete.

    The indicator must first appear within ``appear_timeout_s``; if it never does the
    response is treated as already finished. Once seen it has to stay absent for
    ``debounce_s`` (special mode) or for one poll (normal mode). In special mode a
    completion inside ``early_stop_window_s`` triggers ``reprompt`` once, after which
    the indicator is awaited again. A saved ``progress`` resumes where it stopped.
    """

    progress = progress or WaitProgress()
    max_ticks = policy.ticks(policy.max_wait_s)
    appear_ticks = policy.ticks(policy.appear_timeout_s)

    while not progress.state.terminal:
        token.raise_if_cancelled()
        if progress.elapsed_ticks >= max_ticks:
            progress.state = WaitState.TIMED_OUT
            LOGGER.warning(
                "Response wait timed out after %.0fs", progress.elapsed_ticks * policy.poll_interval_s
            )
            break

        generating = await is_generating()

        if progress.state is WaitState.AWAITING_STOP_BUTTON:
            if generating:
                progress.state = WaitState.AWAITING_COMPLETION_DEBOUNCE
                progress.absent_ticks = 0
            elif progress.elapsed_ticks - progress.phase_started_tick >= appear_ticks:
                LOGGER.debug("Generation indicator never appeared; treating response as complete")
                progress.state = WaitState.COMPLETE
        elif generating:
            progress.absent_ticks = 0
        else:
            progress.absent_ticks += 1
            if progress.absent_ticks * policy.poll_interval_s >= policy.debounce_s:
                elapsed = progress.elapsed_ticks * policy.poll_interval_s
                if (
                    policy.is_special
                    and reprompt is not None
                    and not progress.reprompted
                    and elapsed < policy.early_stop_window_s
                ):
                    LOGGER.info("Generation stopped after %.0fs; sending follow-up prompt", elapsed)
                    progress.reprompted = True
                    progress.state = WaitState.AWAITING_STOP_BUTTON
                    progress.phase_started_tick = progress.elapsed_ticks
                    progress.absent_ticks = 0
                    await reprompt()
                else:
                    progress.state = WaitState.COMPLETE

        if on_progress is not None:
            on_progress(progress)
        if progress.state.terminal:
            break

        await token.sleep(policy.poll_interval_s)
        progress.elapsed_ticks += 1

    return progress
