"""Parsing of the Japanese "process only / from / until" control phrases."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

from .columns import index_to_column
from .models import ColumnGroup, ControlDirective, ControlSet, SheetSnapshot

LOGGER = logging.getLogger(__name__)

CONTROL_ROW_LIMIT = 10
CONTROL_COLUMN_LIMIT = 26
ROW_CONTROL_COLUMNS = 2

_COLUMN_PHRASES = (
    ("この列のみ処理", "only"),
    ("この列から処理", "from"),
    ("この列の処理後に停止", "until"),
)
_ROW_PHRASES = (
    ("この行のみ処理", "only"),
    ("この行から処理", "from"),
    ("この行の処理後に停止", "until"),
)

_COLUMN_PATTERNS = (
    (re.compile(r"([A-Z]+)列のみ処理"), "only"),
    (re.compile(r"([A-Z]+)列だけ処理"), "only"),
    (re.compile(r"([A-Z]+)だけ処理"), "only"),
    (re.compile(r"([A-Z]+)列から処理"), "from"),
    (re.compile(r"([A-Z]+)から開始"), "from"),
    (re.compile(r"([A-Z]+)列の処理後に停止"), "until"),
    (re.compile(r"([A-Z]+)で停止"), "until"),
)
_ROW_PATTERNS = (
    (re.compile(r"(\d+)行のみ処理"), "only"),
    (re.compile(r"(\d+)行だけ処理"), "only"),
    (re.compile(r"(\d+)だけ処理"), "only"),
    (re.compile(r"(\d+)行から処理"), "from"),
    (re.compile(r"(\d+)から開始"), "from"),
    (re.compile(r"(\d+)行の処理後に停止"), "until"),
    (re.compile(r"(\d+)で停止"), "until"),
)

_COLUMN_RANGE = re.compile(r"([A-Z]+)\s*[-〜～]\s*([A-Z]+)")
_ROW_RANGE = re.compile(r"(\d+)\s*[-〜～]\s*(\d+)")


def parse_column_control(cell_text: object, current_column: str) -> Optional[ControlDirective]:
    if not cell_text or not isinstance(cell_text, str):
        return None

    for phrase, control_type in _COLUMN_PHRASES:
        if phrase in cell_text:
            return ControlDirective(type=control_type, column=current_column)

    for pattern, control_type in _COLUMN_PATTERNS:
        match = pattern.search(cell_text)
        if match:
            return ControlDirective(type=control_type, column=match.group(1))

    match = _COLUMN_RANGE.search(cell_text)
    if match:
        return ControlDirective(
            type="range", start_column=match.group(1), end_column=match.group(2)
        )
    return None


def parse_row_control(cell_text: object, current_row: int) -> Optional[ControlDirective]:
    if not cell_text or not isinstance(cell_text, str):
        return None

    for phrase, control_type in _ROW_PHRASES:
        if phrase in cell_text:
            return ControlDirective(type=control_type, row=current_row)

    for pattern, control_type in _ROW_PATTERNS:
        match = pattern.search(cell_text)
        if match:
            return ControlDirective(type=control_type, row=int(match.group(1)))

    match = _ROW_RANGE.search(cell_text)
    if match:
        return ControlDirective(
            type="range", start_row=int(match.group(1)), end_row=int(match.group(2))
        )
    return None


def collect_controls(snapshot: SheetSnapshot) -> ControlSet:
    """Gather column directives from the control rows and row directives from A/B cells."""

    controls = ControlSet()
    values = snapshot.values
    control_rows = values[:CONTROL_ROW_LIMIT]

    for row_index, row in enumerate(control_rows):
        for col_index, cell in enumerate(row[:CONTROL_COLUMN_LIMIT]):
            if not cell:
                continue
            column = index_to_column(col_index)
            control = parse_column_control(cell, column)
            if control:
                controls.column_controls.append(control)
                LOGGER.info("Column control %s found at %s%s", control, column, row_index + 1)

    for work_row in snapshot.work_rows:
        for col_index, cell in enumerate(work_row.cells[:ROW_CONTROL_COLUMNS]):
            if not cell:
                continue
            control = parse_row_control(cell, work_row.number)
            if control:
                controls.row_controls.append(control)
                LOGGER.info(
                    "Row control %s found at %s%s",
                    control,
                    index_to_column(col_index),
                    work_row.number,
                )

    for row_index, row in enumerate(control_rows):
        for col_index, cell in enumerate(row[:ROW_CONTROL_COLUMNS]):
            if not cell:
                continue
            control = parse_row_control(cell, row_index + 1)
            if control and control.type == "range":
                controls.row_controls.append(control)
                LOGGER.info(
                    "Row range control %s found at %s%s",
                    control,
                    index_to_column(col_index),
                    row_index + 1,
                )

    return controls


def should_process_row(row_number: int, row_controls: Sequence[ControlDirective]) -> bool:
    """``only`` rows win outright; otherwise every from/until/range bound must hold."""

    only_rows = {control.row for control in row_controls if control.type == "only"}
    if only_rows:
        return row_number in only_rows

    for control in row_controls:
        if control.type == "from" and control.row is not None and row_number < control.row:
            return False
        if control.type == "until" and control.row is not None and row_number > control.row:
            return False
        if control.type == "range" and not (
            (control.start_row or 0) <= row_number <= (control.end_row or row_number)
        ):
            return False
    return True


def should_process_column(
    column: str,
    group: ColumnGroup,
    column_controls: Iterable[ControlDirective],
) -> bool:
    """Decide whether one answer column of an already selected group is processed.

    ``from`` only selects groups and has no effect here. Directives that point at
    columns outside the group's answer columns do not restrict it.
    """

    group_columns = group.columns
    answer_columns = [answer.column for answer in group.answer_columns]
    if column not in answer_columns:
        return False
    position = group_columns.index(column)

    controls = list(column_controls)
    only_columns = {c.column for c in controls if c.type == "only"}
    if only_columns & set(answer_columns) and column not in only_columns:
        return False

    for control in controls:
        if control.type == "until" and control.column in answer_columns:
            if position > group_columns.index(control.column):
                return False
        elif control.type == "range":
            if control.start_column in group_columns and control.end_column in group_columns:
                start = group_columns.index(control.start_column)
                end = group_columns.index(control.end_column)
                if not start <= position <= end:
                    return False
    return True

