import pytest

from autoai_sheets.automation import ResponseTimeoutError
from autoai_sheets.config import AppConfig
from autoai_sheets.executor import AITaskExecutor
from autoai_sheets.orchestrator import SheetRun
from autoai_sheets.report_builder import ReportGenerator
from autoai_sheets.waiting import CancelToken
from autoai_sheets.window_manager import StreamingWindowManager

from conftest import FakeAutomation, FakeSheetStore, FakeWindowFactory, make_values

THREE_WAY = ["ログ", "プロンプト", "ChatGPT回答", "Claude回答", "Gemini回答", "レポート化"]


class StubLLM:
    model_name = "stub-model"

    def __init__(self):
        self.prompts = []

    def generate_text(self, messages):
        self.prompts.append(messages[-1]["content"])
        return "レポート本文"


def _config(**overrides):
    data = {"sheets": {"credentials_file": "creds.json", "spreadsheet_id": "sheet-123"}}
    data.update(overrides)
    return AppConfig.model_validate(data)


def _run(store, automation=None, *, llm=None, token=None, config=None, windows=True):
    token = token or CancelToken()
    automation = automation or FakeAutomation()
    manager = None
    if windows:
        manager = StreamingWindowManager(
            FakeWindowFactory(),
            AITaskExecutor(lambda window, ai_type: automation),
            max_windows=3,
            token=token,
        )
    reports = ReportGenerator(store, summarizer=llm)
    return SheetRun(config or _config(), store, manager, reports, token)


@pytest.mark.asyncio
async def test_three_way_row_is_answered_then_reported():
    store = FakeSheetStore(make_values(THREE_WAY, rows=[["", "市場規模は？", "", "", "", ""]]))
    llm = StubLLM()

    summary = await _run(store, llm=llm).run()

    assert store.read_sheet().cell("D", 9) == "answer for D9"
    assert store.read_sheet().cell("F", 9) == "answer for F9"
    assert store.read_sheet().cell("G", 9) == "https://docs.test/1"
    title, text = store.documents[0]
    assert title == "レポート - 9行目"
    assert "レポート本文" in text
    assert "answer for D9" in text
    assert "answer for D9" in llm.prompts[0]
    assert summary.queue.completed == 4
    assert summary.failed_cells == {}
    assert set(summary.written_ranges) == {"D9", "E9", "F9", "G9"}

    log = store.read_sheet().cell("B", 9)
    assert log.count("送信時刻") == 3
    for name in ("ChatGPT", "Claude", "Gemini"):
        assert f"========== {name} ==========" in log


@pytest.mark.asyncio
async def test_failed_answer_is_left_empty_and_reported():
    store = FakeSheetStore(make_values(THREE_WAY[:5], rows=[["", "質問", "", "", ""]]))
    automation = FakeAutomation(errors={"E9": ResponseTimeoutError("no answer within 300s")})

    summary = await _run(store, automation).run()

    assert store.read_sheet().cell("E", 9) == ""
    assert summary.failed_cells == {"E9": "no answer within 300s"}
    assert summary.queue.completed == 2
    assert [call[0] for call in automation.calls].count("E9") == 1


@pytest.mark.asyncio
async def test_dry_run_plans_without_writing():
    store = FakeSheetStore(make_values(["ログ", "プロンプト", "回答"], rows=[["", "q1", ""], ["", "q2", "済"]]))

    summary = await _run(store).run(dry_run=True)

    assert summary.dry_run
    assert summary.queue is None
    assert [task.task_id for task in summary.planned_tasks] == ["D9-chatgpt"]
    assert store.writes == []


@pytest.mark.asyncio
async def test_cancelled_run_dispatches_nothing():
    store = FakeSheetStore(make_values(["ログ", "プロンプト", "回答"], rows=[["", "q1", ""]]))
    token = CancelToken()
    token.cancel()
    automation = FakeAutomation()

    summary = await _run(store, automation, token=token).run()

    assert summary.queue.cancelled
    assert automation.calls == []
    assert store.writes == []


@pytest.mark.asyncio
async def test_log_column_is_skipped_when_logging_disabled():
    store = FakeSheetStore(make_values(["ログ", "プロンプト", "回答"], rows=[["", "q1", ""]]))

    await _run(store, config=_config(writes={"write_log": False})).run()

    assert [cell_range for cell_range, _ in store.writes] == ["D9"]


@pytest.mark.asyncio
async def test_report_document_is_created_without_llm_configuration():
    store = FakeSheetStore(make_values(THREE_WAY, rows=[["", "質問", "a", "b", "c", ""]]))

    summary = await _run(store).run()

    assert summary.failed_cells == {}
    assert store.read_sheet().cell("G", 9) == "https://docs.test/1"
    assert "回答\na" in store.documents[0][1]


class NoDocsStore(FakeSheetStore):
    def create_document(self, title, text):
        raise RuntimeError("Docs API disabled")


@pytest.mark.asyncio
async def test_document_failure_fails_only_the_report():
    store = NoDocsStore(make_values(THREE_WAY, rows=[["", "質問", "a", "b", "c", ""]]))

    summary = await _run(store).run()

    assert list(summary.failed_cells) == ["G9"]
    assert "Docs API disabled" in summary.failed_cells["G9"]
    assert store.read_sheet().cell("G", 9) == ""


@pytest.mark.asyncio
async def test_missing_window_pool_fails_ai_tasks():
    store = FakeSheetStore(make_values(["ログ", "プロンプト", "回答"], rows=[["", "q1", ""]]))

    summary = await _run(store, windows=False).run()

    assert summary.failed_cells == {"D9": "no browser windows available"}


class FailingWriteStore(FakeSheetStore):
    def write_value(self, column, row, value):
        raise RuntimeError("quota exceeded")


@pytest.mark.asyncio
async def test_write_failure_marks_cell_failed():
    store = FailingWriteStore(make_values(["ログ", "プロンプト", "回答"], rows=[["", "q1", ""]]))

    summary = await _run(store).run()

    assert "quota exceeded" in summary.failed_cells["D9"]
    assert store.writes == []
