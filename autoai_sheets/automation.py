"""Per-AI automation contract and the shared send / wait choreography."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .catalog import is_normal_function, is_special_function
from .config import WaitConfig
from .models import Task
from .waiting import CancelToken, WaitPolicy, WaitProgress, WaitState, wait_for_completion

LOGGER = logging.getLogger(__name__)


class AutomationError(RuntimeError):
    """Base class of failures inside one AI window."""


class SubmissionError(AutomationError):
    """The prompt was never acknowledged by the page."""


class ResponseTimeoutError(AutomationError):
    """The answer did not complete within the wait ceiling."""


class EmptyResponseError(AutomationError):
    """Generation finished but no answer text could be read."""


@dataclass(slots=True)
class AutomationOutcome:
    response: str
    url: Optional[str]
    sent_at: datetime


class AIAutomation(ABC):
    """Drives one AI web application inside one browser window.

    Subclasses provide the page primitives; ``run`` combines them into model and
    feature selection, submission with retry, and completion detection.
    """

    def __init__(self, ai_type: str, waits: WaitConfig, token: CancelToken) -> None:
        self.ai_type = ai_type
        self._waits = waits
        self._token = token

    # Page primitives ---------------------------------------------------------
    @abstractmethod
    async def select_model(self, name: str) -> bool:
        ...

    @abstractmethod
    async def select_function(self, name: str) -> bool:
        ...

    @abstractmethod
    async def input_text(self, text: str) -> None:
        ...

    @abstractmethod
    async def click_send(self) -> None:
        ...

    @abstractmethod
    async def is_generating(self) -> bool:
        ...

    @abstractmethod
    async def is_send_available(self) -> bool:
        ...

    @abstractmethod
    async def get_response(self) -> Optional[str]:
        ...

    @abstractmethod
    async def current_url(self) -> Optional[str]:
        ...

    # Choreography ------------------------------------------------------------
    async def _acknowledged(self) -> bool:
        if await self.is_generating():
            return True
        return not await self.is_send_available()

    async def send(self) -> int:
        """Click send until the page shows it is working; returns the attempt used."""

        attempts = self._waits.submit_attempts
        interval = min(self._waits.poll_interval_s, 0.5)
        for attempt in range(1, attempts + 1):
            self._token.raise_if_cancelled()
            await self.click_send()

            deadline = time.monotonic() + self._waits.submit_ack_timeout_s
            while True:
                if await self._acknowledged():
                    if attempt > 1:
                        LOGGER.info("%s accepted the prompt on attempt %s", self.ai_type, attempt)
                    return attempt
                if time.monotonic() >= deadline:
                    break
                await self._token.sleep(interval)

            LOGGER.warning(
                "%s did not acknowledge the prompt (attempt %s/%s)",
                self.ai_type,
                attempt,
                attempts,
            )

        raise SubmissionError(
            f"{self.ai_type}: prompt not accepted after {attempts} send attempts"
        )

    def wait_policy(self, special: bool) -> WaitPolicy:
        waits = self._waits
        if special:
            return WaitPolicy.special(
                poll_interval_s=waits.poll_interval_s,
                appear_timeout_s=waits.indicator_appear_timeout_s,
                max_wait_s=waits.special_max_wait_s,
                debounce_s=waits.debounce_s,
                early_stop_window_s=waits.early_stop_window_s,
            )
        return WaitPolicy.normal(
            poll_interval_s=waits.poll_interval_s,
            appear_timeout_s=waits.indicator_appear_timeout_s,
            max_wait_s=waits.normal_max_wait_s,
        )

    async def _reprompt(self) -> None:
        await self.input_text(self._waits.auto_reply_message)
        await self.send()

    async def wait_for_response(
        self,
        special: bool,
        progress: Optional[WaitProgress] = None,
        on_progress: Optional[Callable[[WaitProgress], None]] = None,
    ) -> WaitProgress:
        reprompt = self._reprompt if special and self._waits.reprompt_on_early_stop else None
        result = await wait_for_completion(
            self.is_generating,
            self.wait_policy(special),
            self._token,
            progress=progress,
            reprompt=reprompt,
            on_progress=on_progress,
        )
        if result.state is WaitState.TIMED_OUT:
            limit = self._waits.special_max_wait_s if special else self._waits.normal_max_wait_s
            raise ResponseTimeoutError(f"{self.ai_type}: no complete answer within {limit:.0f}s")
        return result

    async def run(
        self,
        task: Task,
        resume: Optional[WaitProgress] = None,
        on_progress: Optional[Callable[[WaitProgress], None]] = None,
    ) -> AutomationOutcome:
        """Submit the task's prompt and return the finished answer.

        With ``resume`` the prompt is assumed to be submitted already and only the
        interrupted wait is continued.
        """

        special = is_special_function(task.function)
        sent_at = datetime.now()

        if resume is None:
            if task.model and not await self.select_model(task.model):
                LOGGER.warning("%s: model %r not found; using the current one", self.ai_type, task.model)
            if not is_normal_function(task.function) and not await self.select_function(task.function):
                LOGGER.warning("%s: feature %r not found; sending without it", self.ai_type, task.function)
            await self.input_text(task.prompt)
            await self.send()
            if on_progress is not None:
                on_progress(WaitProgress())
        else:
            LOGGER.info("%s: resuming the wait for %s at %s", self.ai_type, task.cell_key, resume.state.value)

        await self.wait_for_response(special, progress=resume, on_progress=on_progress)

        response = await self.get_response()
        if not response or not response.strip():
            raise EmptyResponseError(f"{self.ai_type}: the answer for {task.cell_key} is empty")
        return AutomationOutcome(response=response.strip(), url=await self.current_url(), sent_at=sent_at)
