"""Wires the sheet store, the queue, the window pool and the report generator for one run."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .columns import cell_key
from .config import AppConfig
from .models import TASK_KIND_REPORT, QueueSummary, SheetSnapshot, Task, TaskResult
from .report_builder import ReportGenerator
from .sheet_logger import SheetLogger, format_log_entry
from .task_factory import TaskFactory
from .task_queue import DynamicTaskQueue
from .waiting import CancelToken
from .window_manager import StreamingWindowManager

LOGGER = logging.getLogger(__name__)


class SheetStore(Protocol):
    def read_sheet(self) -> SheetSnapshot:
        ...

    def write_cell(self, cell_range: str, value: str) -> dict:
        ...

    def write_value(self, column: str, row: int, value: str) -> List[str]:
        ...

    def build_cell_url(self, column: str, row: int) -> str:
        ...


@dataclass(slots=True)
class RunSummary:
    queue: Optional[QueueSummary]
    written_ranges: List[str] = field(default_factory=list)
    failed_cells: Dict[str, str] = field(default_factory=dict)
    planned_tasks: List[Task] = field(default_factory=list)
    dry_run: bool = False


class SheetRun:
    """One pass over a sheet: plan, dispatch in batches, write answers and logs."""

    def __init__(
        self,
        config: AppConfig,
        store: SheetStore,
        windows: Optional[StreamingWindowManager],
        reports: ReportGenerator,
        token: Optional[CancelToken] = None,
        *,
        max_iterations: Optional[int] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._windows = windows
        self._reports = reports
        self._token = token or CancelToken()
        self._max_iterations = max_iterations or config.scheduler.max_iterations
        self._factory = TaskFactory(config.scheduler.default_ai_type)
        self._sheet_logger = SheetLogger(store)
        self._queue: Optional[DynamicTaskQueue] = None
        self._written: List[str] = []
        self._tasks_by_cell: Dict[str, Task] = {}

    async def read_snapshot(self) -> SheetSnapshot:
        return await asyncio.to_thread(self._store.read_sheet)

    def _latest_snapshot(self) -> Optional[SheetSnapshot]:
        return self._queue.snapshot if self._queue is not None else None

    def _source_answer(self, task: Task) -> str:
        if not task.source_column:
            return ""
        key = cell_key(task.source_column, task.cell_info.row)
        if self._queue is not None and key in self._queue.completed_cells:
            return self._queue.completed_cells[key]
        snapshot = self._latest_snapshot()
        return snapshot.cell(task.source_column, task.cell_info.row) if snapshot else ""

    async def _write_log(self, result: TaskResult) -> None:
        task = result.task
        if not self._config.writes.write_log or not task.log_column:
            return
        written_at = datetime.now()
        entry = format_log_entry(task, result.url, result.sent_at or written_at, written_at)
        snapshot = self._latest_snapshot()
        existing = snapshot.cell(task.log_column, task.cell_info.row) if snapshot else ""
        try:
            await self._sheet_logger.append(task.log_column, task.cell_info.row, entry, existing)
        except Exception as exc:
            LOGGER.warning("Could not write the log entry for %s: %s", task.cell_key, exc)

    async def _write_result(self, result: TaskResult) -> TaskResult:
        task = result.task
        try:
            ranges = await asyncio.to_thread(
                self._store.write_value, task.cell_info.column, task.cell_info.row, result.response or ""
            )
        except Exception as exc:
            LOGGER.exception("Writing the answer for %s failed", task.cell_key)
            result.success = False
            result.error = f"answer could not be written: {exc}"
            return result

        self._written.extend(ranges)
        LOGGER.info("Wrote %s answer to %s", task.ai_type, task.cell_key)
        if task.kind != TASK_KIND_REPORT:
            await self._write_log(result)
        return result

    async def _run_task(self, task: Task) -> TaskResult:
        if task.kind == TASK_KIND_REPORT:
            result = await self._reports.execute_report_task(task, self._source_answer(task))
        elif self._windows is None:
            result = TaskResult(task=task, success=False, error="no browser windows available")
        else:
            result = await self._windows.assign(task)

        if result.success:
            result = await self._write_result(result)
        return result

    async def handle_batch(self, batch: List[Task]) -> List[TaskResult]:
        for task in batch:
            self._tasks_by_cell[task.cell_key] = task
        results = await asyncio.gather(*(self._run_task(task) for task in batch))
        return list(results)

    async def run(self, dry_run: bool = False) -> RunSummary:
        snapshot = await self.read_snapshot()
        plan = self._factory.analyze(snapshot)
        tasks = self._factory.initial_tasks(snapshot, plan)

        if dry_run:
            return RunSummary(queue=None, planned_tasks=tasks, dry_run=True)

        queue = DynamicTaskQueue(
            self._factory,
            self.read_snapshot,
            self.handle_batch,
            batch_size=self._config.scheduler.batch_size,
            max_iterations=self._max_iterations,
            attempt_cap=self._config.scheduler.attempt_cap,
            work_row_start_index=self._config.scheduler.work_row_start_index,
            token=self._token,
        )
        self._queue = queue
        queue.load(snapshot, plan)
        queue.enqueue(tasks)

        summary = await queue.process_all()
        for key, error in sorted(queue.failed_cells.items()):
            task = self._tasks_by_cell.get(key)
            link = self._store.build_cell_url(task.cell_info.column, task.cell_info.row) if task else key
            LOGGER.warning("Unfinished cell %s (%s): %s", key, link, error)

        LOGGER.info(
            "Run finished: %s completed, %s failed, %s still queued after %s iterations",
            summary.completed,
            summary.failed,
            summary.remaining,
            summary.iterations,
        )
        return RunSummary(
            queue=summary,
            written_ranges=list(self._written),
            failed_cells=dict(queue.failed_cells),
            planned_tasks=tasks,
        )
