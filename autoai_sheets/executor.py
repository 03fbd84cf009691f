from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .automation import AIAutomation, AutomationError
from .browser import BrowserWindow
from .models import Task, TaskResult
from .progress_store import STATUS_COMPLETED, STATUS_FAILED, STATUS_RUNNING, ProgressStore
from .waiting import OperationCancelled, WaitProgress

LOGGER = logging.getLogger(__name__)

AutomationFactory = Callable[[BrowserWindow, str], AIAutomation]


class AITaskExecutor:
    """Runs one task in one window and always answers with a ``TaskResult``."""

    def __init__(
        self,
        automation_factory: AutomationFactory,
        progress_store: Optional[ProgressStore] = None,
    ) -> None:
        self._automation_factory = automation_factory
        self._store = progress_store

    async def _resume_marker(self, window: BrowserWindow, task: Task) -> Optional[WaitProgress]:
        if self._store is None:
            return None
        saved = self._store.load_wait(task.task_id)
        if saved is None or saved.progress.state.terminal or not saved.url:
            return None
        LOGGER.info("Found an interrupted wait for %s; reopening %s", task.cell_key, saved.url)
        await window.navigate(saved.url)
        return saved.progress

    async def execute_ai_task(self, window: BrowserWindow, task: Task) -> TaskResult:
        store = self._store
        started_at = datetime.now()

        def _save_progress(progress: WaitProgress) -> None:
            if store is not None:
                store.save_wait(task.task_id, progress, window.url)

        try:
            if store is not None:
                store.record_task(task, STATUS_RUNNING)
            resume = await self._resume_marker(window, task)
            automation = self._automation_factory(window, task.ai_type)
            outcome = await automation.run(task, resume=resume, on_progress=_save_progress)
        except OperationCancelled:
            LOGGER.info("Task %s interrupted by cancellation", task.cell_key)
            return TaskResult(task=task, success=False, error="cancelled", cancelled=True)
        except AutomationError as exc:
            LOGGER.warning("%s task %s failed: %s", task.ai_type, task.cell_key, exc)
            self._finish(task, STATUS_FAILED, error=str(exc))
            return TaskResult(
                task=task, success=False, error=str(exc), sent_at=started_at, finished_at=datetime.now()
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error while running %s task %s", task.ai_type, task.cell_key)
            self._finish(task, STATUS_FAILED, error=str(exc))
            return TaskResult(
                task=task, success=False, error=str(exc), sent_at=started_at, finished_at=datetime.now()
            )

        self._finish(task, STATUS_COMPLETED, url=outcome.url)
        return TaskResult(
            task=task,
            success=True,
            response=outcome.response,
            url=outcome.url,
            sent_at=outcome.sent_at,
            finished_at=datetime.now(),
        )

    def _finish(
        self, task: Task, status: str, *, error: Optional[str] = None, url: Optional[str] = None
    ) -> None:
        if self._store is None:
            return
        self._store.record_task(task, status, error=error, url=url)
        self._store.clear_wait(task.task_id)
