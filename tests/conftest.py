"""Shared fakes and sheet builders for the autoai_sheets test suite."""

import asyncio
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pytest

from autoai_sheets.automation import AutomationOutcome
from autoai_sheets.columns import column_to_index
from autoai_sheets.config import WaitConfig
from autoai_sheets.sheet_reader import build_snapshot

# Sheet rows 1-8 are the header block; work rows start at sheet row 9 (index 8).
HEADER_BLOCK_ROWS = 8

_RANGE_PATTERN = re.compile(r"^([A-Z]+)(\d+)$")


def make_values(
    headers: Sequence[str],
    *,
    rows: Sequence[Sequence[str]] = (),
    ai: Sequence[str] = (),
    models: Sequence[str] = (),
    functions: Sequence[str] = (),
    control: Sequence[str] = (),
) -> List[List[str]]:
    """Build a raw grid; every sequence starts at column B (column A holds the labels)."""

    def labelled(label: str, cells: Sequence[str]) -> List[str]:
        return [label, *cells]

    values = [
        labelled("制御", control),
        labelled("AI", ai),
        labelled("モデル", models),
        labelled("機能", functions),
        labelled("プロンプト", headers),
    ]
    while len(values) < HEADER_BLOCK_ROWS:
        values.append([""])
    for number, cells in enumerate(rows, start=1):
        values.append(labelled(str(number), cells))
    return values


def make_snapshot(headers: Sequence[str], **kwargs):
    return build_snapshot(make_values(headers, **kwargs))


class FakeSheetStore:
    """In-memory stand-in for GoogleSheetsClient."""

    def __init__(self, values: List[List[str]]) -> None:
        self.values = [list(row) for row in values]
        self.writes: List[tuple] = []
        self.reads = 0
        self.fail_reads = False
        self.documents: List[tuple] = []
        self.spreadsheet_id = "sheet-123"
        self.sheet_gid = 0

    def read_sheet(self):
        self.reads += 1
        if self.fail_reads:
            raise RuntimeError("sheet unavailable")
        return build_snapshot(self.values)

    def set_cell(self, column: str, row: int, value: str) -> None:
        row_index = row - 1
        col_index = column_to_index(column)
        while len(self.values) <= row_index:
            self.values.append([])
        cells = self.values[row_index]
        while len(cells) <= col_index:
            cells.append("")
        cells[col_index] = value

    def write_cell(self, cell_range: str, value: str) -> dict:
        match = _RANGE_PATTERN.match(cell_range)
        assert match, cell_range
        self.set_cell(match.group(1), int(match.group(2)), value)
        self.writes.append((cell_range, value))
        return {"updatedRange": cell_range}

    def write_value(self, column: str, row: int, value: str) -> List[str]:
        self.write_cell(f"{column}{row}", value)
        return [f"{column}{row}"]

    def build_cell_url(self, column: str, row: int) -> str:
        return f"https://sheets.test/{column}{row}"

    def create_document(self, title: str, text: str) -> str:
        self.documents.append((title, text))
        return f"https://docs.test/{len(self.documents)}"


class FakeWindow:
    def __init__(self, ai_type: str, slot: int) -> None:
        self.ai_type = ai_type
        self.slot = slot
        self.url = f"https://{ai_type}.test/"
        self.closed = False
        self.resets = 0
        self.visited: List[str] = []

    async def navigate(self, url: str) -> None:
        self.url = url
        self.visited.append(url)

    async def reset(self) -> None:
        self.resets += 1

    async def close(self) -> None:
        self.closed = True


class FakeWindowFactory:
    def __init__(self, fail_for: Sequence[str] = ()) -> None:
        self.opened: List[FakeWindow] = []
        self._fail_for = set(fail_for)

    async def open(self, ai_type: str, slot: int) -> FakeWindow:
        if ai_type in self._fail_for:
            raise RuntimeError(f"cannot open {ai_type}")
        window = FakeWindow(ai_type, slot)
        self.opened.append(window)
        return window


class FakeAutomation:
    """Automation double whose ``run`` answers from a script keyed by cell."""

    def __init__(
        self,
        answers: Optional[Dict[str, str]] = None,
        errors: Optional[Dict[str, BaseException]] = None,
        delay: float = 0.0,
    ) -> None:
        self.answers = answers or {}
        self.errors = errors or {}
        self.delay = delay
        self.calls: List[tuple] = []

    async def run(self, task, resume=None, on_progress=None):
        self.calls.append((task.cell_key, resume))
        if self.delay:
            await asyncio.sleep(self.delay)
        if task.cell_key in self.errors:
            raise self.errors[task.cell_key]
        answer = self.answers.get(task.cell_key, f"answer for {task.cell_key}")
        return AutomationOutcome(response=answer, url=f"https://{task.ai_type}.test/c/1", sent_at=datetime.now())


@pytest.fixture
def fast_waits() -> WaitConfig:
    return WaitConfig(
        poll_interval_s=0.01,
        indicator_appear_timeout_s=0.05,
        normal_max_wait_s=0.5,
        special_max_wait_s=1.0,
        debounce_s=0.03,
        early_stop_window_s=0.2,
        submit_attempts=3,
        submit_ack_timeout_s=0.03,
        element_timeout_s=0.05,
    )
