from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .catalog import NORMAL_FUNCTION, SPECIAL_MODELS, resolve_special_model
from .columns import cell_key, column_to_index
from .controls import collect_controls, should_process_column, should_process_row
from .models import (
    AI_REPORT,
    GROUP_GENSPARK,
    GROUP_THREE_WAY,
    TASK_KIND_REPORT,
    CellInfo,
    ColumnGroup,
    ControlSet,
    SheetSnapshot,
    Task,
    WorkRow,
)
from .task_groups import apply_column_controls_to_groups, discover_column_groups

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SheetPlan:
    """Column groups selected for a run together with the directives that shaped them."""

    groups: List[ColumnGroup]
    controls: ControlSet


def make_task_id(column: str, row: int, ai_type: str) -> str:
    return f"{cell_key(column, row)}-{ai_type}"


def _display_model(name: str) -> str:
    identifier = resolve_special_model(name)
    if identifier is None:
        return name
    return SPECIAL_MODELS[identifier]["display_name"]


class TaskFactory:
    """Turns a sheet snapshot into column groups and pending tasks."""

    def __init__(self, default_ai_type: str) -> None:
        self._default_ai_type = default_ai_type

    def analyze(self, snapshot: SheetSnapshot) -> SheetPlan:
        controls = collect_controls(snapshot)
        groups = discover_column_groups(snapshot, self._default_ai_type)
        selected = apply_column_controls_to_groups(groups, controls.column_controls)
        LOGGER.info(
            "Sheet plan: %s of %s column groups, %s column controls, %s row controls",
            len(selected),
            len(groups),
            len(controls.column_controls),
            len(controls.row_controls),
        )
        return SheetPlan(groups=selected, controls=controls)

    def model_and_function(
        self, snapshot: SheetSnapshot, group: ColumnGroup, answer_column: str
    ) -> tuple[str, str]:
        """Read the model / feature rows; three-way groups configure each answer column."""

        source = answer_column if group.kind == GROUP_THREE_WAY else group.prompt_column
        index = column_to_index(source)
        model = _display_model(snapshot.row_value(snapshot.model_row, index))
        function = snapshot.row_value(snapshot.task_row, index) or NORMAL_FUNCTION
        if group.kind == GROUP_GENSPARK and group.function:
            function = group.function
        return model, function

    def build_prompt(self, snapshot: SheetSnapshot, group: ColumnGroup, row: WorkRow) -> str:
        parts = [snapshot.cell(column, row.number).strip() for column in group.prompt_columns]
        return "\n".join(part for part in parts if part)

    def tasks_for_group(
        self, snapshot: SheetSnapshot, plan: SheetPlan, group_index: int
    ) -> List[Task]:
        group = plan.groups[group_index]
        tasks: List[Task] = []
        for row in snapshot.work_rows:
            if not should_process_row(row.number, plan.controls.row_controls):
                continue
            if group.kind == GROUP_GENSPARK:
                task = self._genspark_task(snapshot, group, group_index, row)
                if task is not None:
                    tasks.append(task)
                continue

            if not snapshot.cell(group.prompt_column, row.number).strip():
                continue
            prompt = self.build_prompt(snapshot, group, row)
            for answer in group.answer_columns:
                if not should_process_column(answer.column, group, plan.controls.column_controls):
                    continue
                if snapshot.cell(answer.column, row.number).strip():
                    continue
                model, function = self.model_and_function(snapshot, group, answer.column)
                tasks.append(
                    Task(
                        task_id=make_task_id(answer.column, row.number, answer.ai_type),
                        ai_type=answer.ai_type,
                        model=model,
                        function=function,
                        prompt=prompt,
                        cell_info=CellInfo(column=answer.column, row=row.number),
                        group_index=group_index,
                        prompt_column=group.prompt_column,
                        log_column=group.log_column,
                    )
                )

            report = self._report_task(snapshot, group, group_index, row, prompt)
            if report is not None:
                tasks.append(report)
        return tasks

    def _report_task(
        self,
        snapshot: SheetSnapshot,
        group: ColumnGroup,
        group_index: int,
        row: WorkRow,
        prompt: str,
    ) -> Optional[Task]:
        if group.report_column is None:
            return None
        source = group.answer_columns[0].column
        if not snapshot.cell(source, row.number).strip():
            return None
        if snapshot.cell(group.report_column, row.number).strip():
            return None
        return Task(
            task_id=make_task_id(group.report_column, row.number, AI_REPORT),
            ai_type=AI_REPORT,
            model="",
            function=NORMAL_FUNCTION,
            prompt=prompt,
            cell_info=CellInfo(column=group.report_column, row=row.number),
            group_index=group_index,
            kind=TASK_KIND_REPORT,
            prompt_column=group.prompt_column,
            source_column=source,
        )

    def _genspark_task(
        self, snapshot: SheetSnapshot, group: ColumnGroup, group_index: int, row: WorkRow
    ) -> Optional[Task]:
        answer = group.answer_columns[0]
        source_text = snapshot.cell(group.prompt_column, row.number).strip()
        if not source_text or snapshot.cell(answer.column, row.number).strip():
            return None
        return Task(
            task_id=make_task_id(answer.column, row.number, answer.ai_type),
            ai_type=answer.ai_type,
            model="",
            function=group.function or NORMAL_FUNCTION,
            prompt=source_text,
            cell_info=CellInfo(column=answer.column, row=row.number),
            group_index=group_index,
            prompt_column=group.prompt_column,
            source_column=group.prompt_column,
        )

    def initial_tasks(self, snapshot: SheetSnapshot, plan: SheetPlan) -> List[Task]:
        tasks: List[Task] = []
        for group_index in range(len(plan.groups)):
            tasks.extend(self.tasks_for_group(snapshot, plan, group_index))
        LOGGER.info("Generated %s initial tasks", len(tasks))
        return tasks
