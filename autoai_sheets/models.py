from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .columns import cell_key, column_to_index

GROUP_SINGLE = "single"
GROUP_THREE_WAY = "threeWay"
GROUP_GENSPARK = "genspark"

TASK_KIND_AI = "ai"
TASK_KIND_REPORT = "report"

AI_CHATGPT = "chatgpt"
AI_CLAUDE = "claude"
AI_GEMINI = "gemini"
AI_GENSPARK = "genspark"
AI_REPORT = "report"

THREE_WAY_ORDER: Tuple[str, str, str] = (AI_CHATGPT, AI_CLAUDE, AI_GEMINI)


@dataclass(slots=True, frozen=True)
class RowRef:
    """A header-block row located by its column A keyword."""

    index: int  # zero-based index inside the sheet values
    data: List[str]


@dataclass(slots=True, frozen=True)
class WorkRow:
    """A task row below the header block whose column A holds an integer."""

    index: int  # zero-based index inside the sheet values
    number: int  # spreadsheet 1-based row number
    cells: List[str]

    @property
    def control(self) -> Optional[str]:
        if len(self.cells) > 1 and self.cells[1]:
            return self.cells[1]
        return None


@dataclass(slots=True, frozen=True)
class SheetSnapshot:
    """Immutable view of the whole sheet taken by a single read."""

    values: List[List[str]]
    menu_row: Optional[RowRef]
    control_row: Optional[RowRef]
    ai_row: Optional[RowRef]
    model_row: Optional[RowRef]
    task_row: Optional[RowRef]
    work_rows: List[WorkRow]

    def cell(self, column: str, row_number: int) -> str:
        row_index = row_number - 1
        if row_index < 0 or row_index >= len(self.values):
            return ""
        return _cell_text(self.values[row_index], column_to_index(column))

    def cell_at(self, row_index: int, column_index: int) -> str:
        if row_index < 0 or row_index >= len(self.values):
            return ""
        return _cell_text(self.values[row_index], column_index)

    def header(self, column_index: int) -> str:
        if self.menu_row is None:
            return ""
        return _cell_text(self.menu_row.data, column_index).strip()

    def row_value(self, row: Optional[RowRef], column_index: int) -> str:
        if row is None:
            return ""
        return _cell_text(row.data, column_index).strip()


def _cell_text(row: List[Any], column_index: int) -> str:
    if column_index < 0 or column_index >= len(row):
        return ""
    value = row[column_index]
    if value is None:
        return ""
    return str(value)


@dataclass(slots=True, frozen=True)
class AnswerColumn:
    column: str
    ai_type: str


@dataclass(slots=True, frozen=True)
class ColumnGroup:
    """Contiguous log / prompt(s) / answer(s) / report columns handled as one unit."""

    kind: str
    prompt_column: str
    answer_columns: Tuple[AnswerColumn, ...]
    additional_prompt_columns: Tuple[str, ...] = ()
    log_column: Optional[str] = None
    report_column: Optional[str] = None
    function: Optional[str] = None

    @property
    def prompt_columns(self) -> List[str]:
        return [self.prompt_column, *self.additional_prompt_columns]

    @property
    def columns(self) -> List[str]:
        ordered: List[str] = []
        if self.log_column:
            ordered.append(self.log_column)
        ordered.extend(self.prompt_columns)
        ordered.extend(answer.column for answer in self.answer_columns)
        if self.report_column:
            ordered.append(self.report_column)
        return ordered

    @property
    def ai_mapping(self) -> Dict[str, str]:
        return {answer.column: answer.ai_type for answer in self.answer_columns}

    @property
    def start_index(self) -> int:
        return column_to_index(self.prompt_column)

    @property
    def end_index(self) -> int:
        return column_to_index(self.answer_columns[-1].column)


@dataclass(slots=True, frozen=True)
class ControlDirective:
    """Parsed "process only / from / until / range" instruction from a sheet cell."""

    type: str
    column: Optional[str] = None
    row: Optional[int] = None
    start_column: Optional[str] = None
    end_column: Optional[str] = None
    start_row: Optional[int] = None
    end_row: Optional[int] = None


@dataclass(slots=True)
class ControlSet:
    column_controls: List[ControlDirective] = field(default_factory=list)
    row_controls: List[ControlDirective] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class CellInfo:
    column: str
    row: int

    @property
    def key(self) -> str:
        return cell_key(self.column, self.row)


@dataclass(slots=True, frozen=True)
class Task:
    """One unit of work targeting exactly one output cell."""

    task_id: str
    ai_type: str
    model: str
    function: str
    prompt: str
    cell_info: CellInfo
    group_index: int
    kind: str = TASK_KIND_AI
    prompt_column: Optional[str] = None
    log_column: Optional[str] = None
    source_column: Optional[str] = None

    @property
    def cell_key(self) -> str:
        return self.cell_info.key

    def to_record(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "aiType": self.ai_type,
            "model": self.model,
            "function": self.function,
            "prompt": self.prompt,
            "cellInfo": {"column": self.cell_info.column, "row": self.cell_info.row},
        }


@dataclass(slots=True)
class TaskResult:
    task: Task
    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    url: Optional[str] = None
    sent_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    fatal: bool = False
    cancelled: bool = False


@dataclass(slots=True)
class QueueSummary:
    processed: int
    completed: int
    failed: int
    remaining: int
    iterations: int
    cancelled: bool = False
    hit_iteration_cap: bool = False
