from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from textwrap import dedent
from typing import Dict, List, Optional, Protocol

from .config import ReportConfig
from .llm_client import LLMClient
from .models import Task, TaskResult

LOGGER = logging.getLogger(__name__)

_RULE = "-" * 40


class DocumentStore(Protocol):
    spreadsheet_id: str
    sheet_gid: Optional[int]

    def create_document(self, title: str, text: str) -> str:
        ...


def build_summary_messages(
    prompt: str,
    answer: str,
    instructions: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Compose chat messages asking for a short summary of one AI answer."""

    system_prompt = dedent(
        """
        あなたは調査結果を整理するアシスタントです。ユーザーが示す「質問」と、それに対する
        AIの「回答」を読み、第三者がそのまま読める要約にまとめてください。

        - 回答に含まれる事実だけを使い、新しい情報を付け加えないこと。
        - 冒頭に3行以内の要約、続いて要点の箇条書きを置くこと。
        - 出力は日本語のプレーンテキストとし、前置きや締めの挨拶は書かないこと。
        """
    ).strip()
    if instructions:
        system_prompt = f"{system_prompt}\n\n追加の指示:\n{instructions.strip()}"

    user_prompt = f"質問:\n{prompt.strip()}\n\n回答:\n{answer.strip()}"
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def build_report_text(
    conf: ReportConfig,
    *,
    row: int,
    prompt: str,
    answer: str,
    spreadsheet_id: str,
    sheet_gid: Optional[int],
    created_at: datetime,
    summary: Optional[str] = None,
) -> str:
    """Plain-text body of a report document; sections follow the include_* switches."""

    sections = [f"レポート - {row}行目"]
    if conf.include_metadata:
        sections.append(
            "\n".join(
                [
                    "メタデータ",
                    f"スプレッドシートID: {spreadsheet_id}",
                    f"シートGID: {sheet_gid if sheet_gid is not None else '-'}",
                    f"行番号: {row}",
                    f"生成日時: {created_at:%Y/%m/%d %H:%M:%S}",
                ]
            )
        )
    if summary:
        sections.append(f"要約\n{summary.strip()}")
    if conf.include_prompt and prompt.strip():
        sections.append(f"プロンプト\n{prompt.strip()}")
    if conf.include_answer and answer.strip():
        sections.append(f"回答\n{answer.strip()}")
    sections.append(f"{_RULE}\nこのレポートは自動生成されました")
    return "\n\n".join(sections) + "\n"


class ReportGenerator:
    """Turns a row's prompt and first answer into a Google Docs report.

    The document URL is the task's response, so it lands in the レポート化 cell. With
    an LLM client the document also opens with a summary; a failed summary is logged
    and the document is created without it.
    """

    def __init__(
        self,
        documents: Optional[DocumentStore],
        conf: Optional[ReportConfig] = None,
        summarizer: Optional[LLMClient] = None,
    ) -> None:
        self._documents = documents
        self._conf = conf or ReportConfig()
        self._summarizer = summarizer

    @property
    def model_name(self) -> Optional[str]:
        return self._summarizer.model_name if self._summarizer is not None else None

    async def _summarize(self, task: Task, answer: str) -> Optional[str]:
        if self._summarizer is None:
            return None
        messages = build_summary_messages(task.prompt, answer, self._conf.instructions)
        try:
            return await asyncio.to_thread(self._summarizer.generate_text, messages)
        except RuntimeError as exc:
            LOGGER.warning("Summary for %s skipped: %s", task.cell_key, exc)
            return None

    async def execute_report_task(self, task: Task, answer: str) -> TaskResult:
        sent_at = datetime.now()
        if self._documents is None:
            return TaskResult(task=task, success=False, error="no document store available for reports")
        if not answer.strip():
            return TaskResult(
                task=task,
                success=False,
                error=f"Source answer {task.source_column}{task.cell_info.row} is empty",
            )

        row = task.cell_info.row
        text = build_report_text(
            self._conf,
            row=row,
            prompt=task.prompt,
            answer=answer,
            spreadsheet_id=self._documents.spreadsheet_id,
            sheet_gid=self._documents.sheet_gid,
            created_at=sent_at,
            summary=await self._summarize(task, answer),
        )
        title = self._conf.title_template.replace("{row}", str(row))
        try:
            url = await asyncio.to_thread(self._documents.create_document, title, text)
        except Exception as exc:
            LOGGER.warning("Report document for %s failed: %s", task.cell_key, exc)
            return TaskResult(
                task=task, success=False, error=f"report document failed: {exc}", sent_at=sent_at
            )

        LOGGER.info("Report for %s created at %s", task.cell_key, url)
        return TaskResult(
            task=task,
            success=True,
            response=url,
            sent_at=sent_at,
            finished_at=datetime.now(),
        )
