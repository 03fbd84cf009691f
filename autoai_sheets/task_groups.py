from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .columns import column_to_index, index_to_column
from .models import (
    AI_CHATGPT,
    AI_CLAUDE,
    AI_GEMINI,
    AI_GENSPARK,
    GROUP_GENSPARK,
    GROUP_SINGLE,
    GROUP_THREE_WAY,
    THREE_WAY_ORDER,
    AnswerColumn,
    ColumnGroup,
    ControlDirective,
    SheetSnapshot,
)
from .sheet_reader import MENU_ROW_KEYWORD, SheetStructureError

LOGGER = logging.getLogger(__name__)

MAX_ADDITIONAL_PROMPTS = 4
THREE_WAY_MARKER = "3種類"
REPORT_HEADER = "レポート化"
ANSWER_HEADER = "回答"
INSTRUCTION_HEADER = "AI指示"
GENSPARK_FUNCTIONS = {
    "Genspark（スライド）": "スライド",
    "Genspark(スライド)": "スライド",
    "Genspark（ファクトチェック）": "ファクトチェック",
    "Genspark(ファクトチェック)": "ファクトチェック",
}

_THREE_WAY_HEADER_HINTS = {
    AI_CHATGPT: ("chatgpt",),
    AI_CLAUDE: ("claude",),
    AI_GEMINI: ("gemini",),
}
_AI_TYPE_HINTS = (
    ("chatgpt", AI_CHATGPT),
    ("gpt", AI_CHATGPT),
    ("claude", AI_CLAUDE),
    ("gemini", AI_GEMINI),
    ("genspark", AI_GENSPARK),
)


def normalize_ai_type(value: Optional[str]) -> Optional[str]:
    """Map free text such as "ChatGPT回答" or "Claude" onto an AI type tag."""

    text = (value or "").strip().lower()
    if not text:
        return None
    for keyword, ai_type in _AI_TYPE_HINTS:
        if keyword in text:
            return ai_type
    return None


def _additional_prompt_columns(snapshot: SheetSnapshot, prompt_index: int) -> List[str]:
    columns: List[str] = []
    for offset in range(1, MAX_ADDITIONAL_PROMPTS + 1):
        expected = f"{MENU_ROW_KEYWORD}{offset + 1}"
        if snapshot.header(prompt_index + offset) != expected:
            break
        columns.append(index_to_column(prompt_index + offset))
    return columns


def _looks_three_way(snapshot: SheetSnapshot, answer_start: int) -> bool:
    headers = [snapshot.header(answer_start + offset) for offset in range(3)]
    if all(header == ANSWER_HEADER for header in headers):
        return True
    for header, ai_type in zip(headers, THREE_WAY_ORDER):
        lowered = header.lower()
        if not any(hint in lowered for hint in _THREE_WAY_HEADER_HINTS[ai_type]):
            return False
    return True


def build_column_group(
    prompt_column: str,
    ai_type_hint: Optional[str],
    has_instruction_column: bool,
    snapshot: SheetSnapshot,
    default_ai_type: str = AI_CHATGPT,
) -> ColumnGroup:
    """Resolve the log / prompt / answer / report layout around a prompt column."""

    prompt_index = column_to_index(prompt_column)
    additional = _additional_prompt_columns(snapshot, prompt_index)
    answer_start = prompt_index + 1 + len(additional)
    if has_instruction_column:
        answer_start += 1

    header_width = len(snapshot.menu_row.data) if snapshot.menu_row else 0
    hint = (ai_type_hint or "").strip()
    three_way = THREE_WAY_MARKER in hint or _looks_three_way(snapshot, answer_start)

    if three_way:
        if answer_start + 2 >= header_width:
            msg = (
                f"Prompt column {prompt_column} needs three answer columns starting at "
                f"{index_to_column(answer_start)}, but the header row ends earlier"
            )
            raise SheetStructureError(msg)
        answers = tuple(
            AnswerColumn(column=index_to_column(answer_start + offset), ai_type=ai_type)
            for offset, ai_type in enumerate(THREE_WAY_ORDER)
        )
        kind = GROUP_THREE_WAY
    else:
        if answer_start >= header_width:
            msg = (
                f"No answer column resolvable for prompt column {prompt_column}: "
                f"the header row ends before {index_to_column(answer_start)}"
            )
            raise SheetStructureError(msg)
        ai_type = normalize_ai_type(hint) or normalize_ai_type(snapshot.header(answer_start))
        if ai_type is None:
            LOGGER.warning(
                "Could not resolve the AI for prompt column %s (AI row %r, header %r); using %s",
                prompt_column,
                hint,
                snapshot.header(answer_start),
                default_ai_type,
            )
            ai_type = default_ai_type
        answers = (AnswerColumn(column=index_to_column(answer_start), ai_type=ai_type),)
        kind = GROUP_SINGLE

    report_index = column_to_index(answers[-1].column) + 1
    report_column = (
        index_to_column(report_index) if snapshot.header(report_index) == REPORT_HEADER else None
    )
    log_column = index_to_column(prompt_index - 1) if prompt_index >= 1 else None

    return ColumnGroup(
        kind=kind,
        prompt_column=prompt_column,
        additional_prompt_columns=tuple(additional),
        answer_columns=answers,
        log_column=log_column,
        report_column=report_column,
    )


def _genspark_function(header: str) -> Optional[str]:
    for marker, function in GENSPARK_FUNCTIONS.items():
        if marker in header:
            return function
    return None


def discover_column_groups(
    snapshot: SheetSnapshot, default_ai_type: str = AI_CHATGPT
) -> List[ColumnGroup]:
    """Build every column group announced by the menu (header) row, left to right."""

    if snapshot.menu_row is None:
        raise SheetStructureError("Menu row is required to build column groups")

    groups: List[ColumnGroup] = []
    # Column A holds the row keywords, not headers.
    for index in range(1, len(snapshot.menu_row.data)):
        header = snapshot.header(index)
        if header == MENU_ROW_KEYWORD:
            prompt_column = index_to_column(index)
            hint = snapshot.row_value(snapshot.ai_row, index)
            additional = _additional_prompt_columns(snapshot, index)
            instruction = snapshot.header(index + 1 + len(additional)) == INSTRUCTION_HEADER
            groups.append(
                build_column_group(prompt_column, hint, instruction, snapshot, default_ai_type)
            )
            continue

        function = _genspark_function(header)
        if function and index >= 2:
            groups.append(
                ColumnGroup(
                    kind=GROUP_GENSPARK,
                    prompt_column=index_to_column(index - 1),
                    answer_columns=(AnswerColumn(column=index_to_column(index), ai_type=AI_GENSPARK),),
                    function=function,
                )
            )

    LOGGER.debug(
        "Discovered %s column groups: %s",
        len(groups),
        ", ".join(f"{g.kind}:{'/'.join(g.columns)}" for g in groups),
    )
    return groups


def apply_column_controls_to_groups(
    groups: Sequence[ColumnGroup],
    column_controls: Sequence[ControlDirective],
) -> List[ColumnGroup]:
    """Filter groups by column directives; ``only`` overrides every other directive."""

    if not column_controls:
        return list(groups)

    only_columns = {c.column for c in column_controls if c.type == "only"}
    if only_columns:
        selected = [g for g in groups if only_columns & set(g.columns)]
        LOGGER.info(
            "Column control 'only %s' keeps %s of %s groups",
            ",".join(sorted(only_columns)),
            len(selected),
            len(groups),
        )
        return selected

    selected = list(groups)
    for control in column_controls:
        if control.type == "from" and control.column:
            bound = column_to_index(control.column)
            selected = [g for g in selected if g.start_index >= bound]
        elif control.type == "until" and control.column:
            bound = column_to_index(control.column)
            selected = [g for g in selected if g.end_index <= bound]
        elif control.type == "range" and control.start_column and control.end_column:
            start = column_to_index(control.start_column)
            end = column_to_index(control.end_column)
            selected = [g for g in selected if g.start_index <= end and g.end_index >= start]

    if len(selected) != len(groups):
        LOGGER.info("Column controls keep %s of %s groups", len(selected), len(groups))
    return selected
