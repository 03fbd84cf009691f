"""Dynamic task queue: batched dispatch with rescans of the sheet between batches."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from .models import ColumnGroup, QueueSummary, SheetSnapshot, Task, TaskResult
from .task_factory import SheetPlan, TaskFactory
from .waiting import CancelToken

LOGGER = logging.getLogger(__name__)

BatchHandler = Callable[[List[Task]], Awaitable[List[TaskResult]]]
SnapshotReader = Callable[[], Awaitable[SheetSnapshot]]


class DynamicTaskQueue:
    """Owns the pending queue and the per-run bookkeeping of dispatched cells.

    A cell key enters ``processed`` the moment its task is dispatched, so no cell
    is handed out twice within one run whatever the rescans find. Groups can be
    re-enabled by a rescan at most ``attempt_cap`` times.
    """

    def __init__(
        self,
        factory: TaskFactory,
        read_snapshot: SnapshotReader,
        on_batch: BatchHandler,
        *,
        batch_size: int = 3,
        max_iterations: int = 10,
        attempt_cap: int = 2,
        work_row_start_index: int = 8,
        token: Optional[CancelToken] = None,
    ) -> None:
        self._factory = factory
        self._read_snapshot = read_snapshot
        self._on_batch = on_batch
        self.batch_size = batch_size
        self.max_iterations = max_iterations
        self.attempt_cap = attempt_cap
        self.work_row_start_index = work_row_start_index
        self._token = token or CancelToken()

        self._pending: Deque[Task] = deque()
        self._pending_keys: Set[str] = set()
        self.processed: Set[str] = set()
        self.completed_cells: Dict[str, str] = {}
        self.failed_cells: Dict[str, str] = {}
        self.group_attempts: Dict[int, int] = {}
        self.iteration = 0
        self.snapshot: Optional[SheetSnapshot] = None
        self.plan: Optional[SheetPlan] = None

    def load(self, snapshot: SheetSnapshot, plan: SheetPlan) -> None:
        self.snapshot = snapshot
        self.plan = plan

    # -- queue primitives -------------------------------------------------

    def enqueue(self, tasks: List[Task]) -> int:
        """Append tasks whose cell is neither dispatched nor already pending."""

        added = 0
        for task in tasks:
            key = task.cell_key
            if key in self.processed or key in self._pending_keys:
                continue
            self._pending.append(task)
            self._pending_keys.add(key)
            added += 1
        return added

    def dequeue(self) -> Optional[Task]:
        if not self._pending:
            return None
        task = self._pending.popleft()
        self._pending_keys.discard(task.cell_key)
        return task

    def dequeue_batch(self, size: Optional[int] = None) -> List[Task]:
        batch: List[Task] = []
        limit = size or self.batch_size
        while len(batch) < limit:
            task = self.dequeue()
            if task is None:
                break
            batch.append(task)
        return batch

    def __len__(self) -> int:
        return len(self._pending)

    # -- processing -------------------------------------------------------

    def record_completion(self, result: TaskResult) -> None:
        key = result.task.cell_key
        self.processed.add(key)
        if result.success:
            self.completed_cells[key] = result.response or ""
            self.failed_cells.pop(key, None)
        else:
            self.failed_cells[key] = result.error or "unknown error"
            LOGGER.warning("Task %s failed: %s", key, result.error)

    async def process_batch(self, batch: List[Task]) -> List[TaskResult]:
        for task in batch:
            self.processed.add(task.cell_key)

        try:
            results = await self._on_batch(batch)
        except Exception as exc:
            LOGGER.exception("Batch handler failed for %s", ", ".join(t.cell_key for t in batch))
            results = [TaskResult(task=task, success=False, error=str(exc)) for task in batch]

        for result in results:
            self.record_completion(result)
        return results

    def can_process_group(self, group: ColumnGroup, group_index: int, snapshot: SheetSnapshot) -> bool:
        attempts = self.group_attempts.get(group_index, 0)
        if attempts >= self.attempt_cap:
            LOGGER.debug(
                "Group %s (%s) reached the attempt cap of %s; skipping",
                group_index,
                group.prompt_column,
                self.attempt_cap,
            )
            return False

        rows = [row for row in snapshot.work_rows if row.index >= self.work_row_start_index]
        targets = [answer.column for answer in group.answer_columns]
        has_prompt_data = False
        for prompt_column in group.prompt_columns:
            for row in rows:
                if not snapshot.cell(prompt_column, row.number).strip():
                    continue
                has_prompt_data = True
                if self._row_has_open_target(group, targets, snapshot, row.number):
                    self.group_attempts[group_index] = attempts + 1
                    LOGGER.debug(
                        "Group %s (%s) has pending work at row %s (attempt %s/%s)",
                        group_index,
                        group.prompt_column,
                        row.number,
                        attempts + 1,
                        self.attempt_cap,
                    )
                    return True

        if not has_prompt_data:
            LOGGER.debug("Group %s (%s): no prompt data", group_index, group.prompt_column)
        else:
            LOGGER.debug("Group %s (%s): all rows answered", group_index, group.prompt_column)
        return False

    @staticmethod
    def _row_has_open_target(
        group: ColumnGroup, targets: List[str], snapshot: SheetSnapshot, row_number: int
    ) -> bool:
        if any(not snapshot.cell(column, row_number).strip() for column in targets):
            return True
        if group.report_column is None:
            return False
        return not snapshot.cell(group.report_column, row_number).strip()

    async def check_for_new_tasks(self) -> int:
        """Re-read the sheet and enqueue tasks that appeared since the last scan."""

        try:
            snapshot = await self._read_snapshot()
        except Exception as exc:
            LOGGER.error("Could not re-read the sheet; keeping the previous snapshot: %s", exc)
            return 0

        plan = self._factory.analyze(snapshot)
        self.load(snapshot, plan)

        added = 0
        for group_index, group in enumerate(plan.groups):
            if not self.can_process_group(group, group_index, snapshot):
                continue
            added += self.enqueue(self._factory.tasks_for_group(snapshot, plan, group_index))

        if added:
            LOGGER.info("Rescan found %s new tasks", added)
        else:
            LOGGER.debug("Rescan found no new tasks")
        return added

    async def process_all(self) -> QueueSummary:
        cancelled = False
        while self._pending and self.iteration < self.max_iterations:
            if self._token.cancelled:
                LOGGER.info("Stop requested; %s tasks left undispatched", len(self._pending))
                cancelled = True
                break

            self.iteration += 1
            batch = self.dequeue_batch()
            LOGGER.info(
                "Iteration %s/%s: dispatching %s",
                self.iteration,
                self.max_iterations,
                ", ".join(task.cell_key for task in batch),
            )
            await self.process_batch(batch)

            if self._token.cancelled:
                cancelled = True
                break
            await self.check_for_new_tasks()

        hit_cap = bool(self._pending) and not cancelled and self.iteration >= self.max_iterations
        if hit_cap:
            LOGGER.warning(
                "Iteration cap of %s reached with %s tasks still queued",
                self.max_iterations,
                len(self._pending),
            )

        return QueueSummary(
            processed=len(self.processed),
            completed=len(self.completed_cells),
            failed=len(self.failed_cells),
            remaining=len(self._pending),
            iterations=self.iteration,
            cancelled=cancelled,
            hit_iteration_cap=hit_cap,
        )

    def status(self) -> Dict[str, Any]:
        return {
            "pending": len(self._pending),
            "processed": len(self.processed),
            "completed": len(self.completed_cells),
            "failed": len(self.failed_cells),
            "iteration": self.iteration,
            "max_iterations": self.max_iterations,
            "group_attempts": dict(self.group_attempts),
        }

    def clear(self) -> None:
        self._pending.clear()
        self._pending_keys.clear()
        self.processed.clear()
        self.completed_cells.clear()
        self.failed_cells.clear()
        self.group_attempts.clear()
        self.iteration = 0
