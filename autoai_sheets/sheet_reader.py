from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Sequence, Tuple

from .models import RowRef, SheetSnapshot, WorkRow

LOGGER = logging.getLogger(__name__)

MENU_ROW_KEYWORD = "プロンプト"
CONTROL_ROW_KEYWORD = "制御"
AI_ROW_KEYWORD = "AI"
MODEL_ROW_KEYWORD = "モデル"
TASK_ROW_KEYWORD = "機能"

_WORK_ROW_PATTERN = re.compile(r"^\d+$")
_SPREADSHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_GID_PATTERN = re.compile(r"[#&?]gid=(\d+)")


class SheetStructureError(ValueError):
    """Raised when the sheet lacks rows or columns the runner requires."""


def _normalize_values(values: Sequence[Sequence[Any]]) -> List[List[str]]:
    return [["" if cell is None else str(cell) for cell in row] for row in values]


def build_snapshot(values: Sequence[Sequence[Any]]) -> SheetSnapshot:
    """Locate the header block rows and the work rows of a raw value grid."""

    if not values:
        raise SheetStructureError("The sheet contains no data")

    grid = _normalize_values(values)
    found: dict[str, Optional[RowRef]] = {
        MENU_ROW_KEYWORD: None,
        CONTROL_ROW_KEYWORD: None,
        AI_ROW_KEYWORD: None,
        MODEL_ROW_KEYWORD: None,
        TASK_ROW_KEYWORD: None,
    }
    for index, row in enumerate(grid):
        first_cell = row[0].strip() if row else ""
        if first_cell in found and found[first_cell] is None:
            found[first_cell] = RowRef(index=index, data=row)

    last_header_index = max(
        (ref.index for ref in found.values() if ref is not None),
        default=-1,
    )
    work_rows: List[WorkRow] = [
        WorkRow(index=index, number=index + 1, cells=row)
        for index, row in enumerate(grid)
        if index > last_header_index and row and _WORK_ROW_PATTERN.match(row[0].strip())
    ]

    if found[MENU_ROW_KEYWORD] is None:
        msg = f"Menu row not found: no row starts with '{MENU_ROW_KEYWORD}' in column A"
        raise SheetStructureError(msg)

    LOGGER.debug(
        "Sheet structure: menu=%s control=%s ai=%s model=%s task=%s work_rows=%s",
        *(
            ref.index + 1 if ref is not None else None
            for ref in found.values()
        ),
        len(work_rows),
    )

    return SheetSnapshot(
        values=grid,
        menu_row=found[MENU_ROW_KEYWORD],
        control_row=found[CONTROL_ROW_KEYWORD],
        ai_row=found[AI_ROW_KEYWORD],
        model_row=found[MODEL_ROW_KEYWORD],
        task_row=found[TASK_ROW_KEYWORD],
        work_rows=work_rows,
    )


def parse_spreadsheet_url(url: str) -> Tuple[str, Optional[int]]:
    """Extract the spreadsheet id and optional sheet gid from a Google Sheets URL."""

    match = _SPREADSHEET_ID_PATTERN.search(url or "")
    if not match:
        raise ValueError(f"Not a Google Sheets URL: {url!r}")

    gid_match = _GID_PATTERN.search(url)
    gid = int(gid_match.group(1)) if gid_match else None
    return match.group(1), gid
