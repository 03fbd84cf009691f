"""Run log entries appended to a group's log column."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Protocol

from .columns import cell_key
from .models import Task

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"

_AI_DISPLAY_NAMES = {
    "chatgpt": "ChatGPT",
    "gpt": "ChatGPT",
    "openai": "ChatGPT",
    "claude": "Claude",
    "gemini": "Gemini",
    "genspark": "Genspark",
    "report": "レポート",
}


class CellWriter(Protocol):
    def write_cell(self, cell_range: str, value: str) -> dict:
        ...


def ai_display_name(ai_type: Optional[str]) -> str:
    if not ai_type:
        return "Unknown"
    return _AI_DISPLAY_NAMES.get(ai_type.lower(), ai_type)


def format_log_entry(
    task: Task,
    url: Optional[str],
    sent_at: datetime,
    written_at: datetime,
) -> str:
    elapsed = round((written_at - sent_at).total_seconds())
    return "\n".join(
        [
            f"========== {ai_display_name(task.ai_type)} ==========",
            f"モデル: {task.model or '不明'}",
            f"URL: {url or '不明'}",
            f"送信時刻: {sent_at.strftime(TIMESTAMP_FORMAT)}",
            f"記載時刻: {written_at.strftime(TIMESTAMP_FORMAT)} ({elapsed}秒後)",
        ]
    )


def merge_with_existing_log(existing: Optional[str], entry: str) -> str:
    if not existing or not existing.strip():
        return entry
    return f"{existing}\n\n{entry}"


class SheetLogger:
    """Appends entries to log cells; writes to the same cell never interleave."""

    def __init__(self, writer: CellWriter) -> None:
        self._writer = writer
        self._contents: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def append(self, column: str, row: int, entry: str, existing: str = "") -> str:
        key = cell_key(column, row)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            merged = merge_with_existing_log(self._contents.get(key, existing), entry)
            await asyncio.to_thread(self._writer.write_cell, key, merged)
            self._contents[key] = merged
        LOGGER.debug("Log entry written to %s", key)
        return merged
