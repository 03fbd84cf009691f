import pytest

from autoai_sheets.automation import SubmissionError
from autoai_sheets.executor import AITaskExecutor
from autoai_sheets.models import CellInfo, Task
from autoai_sheets.progress_store import ProgressStore
from autoai_sheets.waiting import OperationCancelled, WaitProgress, WaitState

from conftest import FakeAutomation, FakeWindow


def _task(column="D", row=9, ai_type="claude"):
    return Task(
        task_id=f"{column}{row}-{ai_type}",
        ai_type=ai_type,
        model="",
        function="通常",
        prompt="質問",
        cell_info=CellInfo(column, row),
        group_index=0,
    )


@pytest.fixture
def store(tmp_path):
    progress = ProgressStore(tmp_path / "progress.sqlite", "sheet-id:0")
    yield progress
    progress.close()


@pytest.mark.asyncio
async def test_successful_task_is_recorded(store):
    automation = FakeAutomation(answers={"D9": "東京"})
    executor = AITaskExecutor(lambda window, ai_type: automation, store)

    result = await executor.execute_ai_task(FakeWindow("claude", 0), _task())

    assert result.success
    assert result.response == "東京"
    assert result.url == "https://claude.test/c/1"
    record = store.get_task_record("D9-claude")
    assert record["status"] == "completed"
    assert record["url"] == "https://claude.test/c/1"
    assert record["cellInfo"] == {"column": "D", "row": 9}


@pytest.mark.asyncio
async def test_automation_error_becomes_failed_result(store):
    automation = FakeAutomation(errors={"D9": SubmissionError("send button missing")})
    executor = AITaskExecutor(lambda window, ai_type: automation, store)

    result = await executor.execute_ai_task(FakeWindow("claude", 0), _task())

    assert not result.success
    assert result.error == "send button missing"
    assert store.get_task_record("D9-claude")["status"] == "failed"


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained():
    automation = FakeAutomation(errors={"D9": KeyError("selector")})
    executor = AITaskExecutor(lambda window, ai_type: automation)

    result = await executor.execute_ai_task(FakeWindow("claude", 0), _task())

    assert not result.success
    assert "selector" in result.error
    assert not result.cancelled


@pytest.mark.asyncio
async def test_cancellation_is_reported_as_cancelled():
    automation = FakeAutomation(errors={"D9": OperationCancelled()})
    executor = AITaskExecutor(lambda window, ai_type: automation)

    result = await executor.execute_ai_task(FakeWindow("claude", 0), _task())

    assert result.cancelled
    assert not result.success


@pytest.mark.asyncio
async def test_saved_wait_resumes_in_the_saved_conversation(store):
    saved = WaitProgress(state=WaitState.AWAITING_COMPLETION_DEBOUNCE, elapsed_ticks=12)
    store.save_wait("D9-claude", saved, "https://claude.test/chat/42")
    automation = FakeAutomation()
    window = FakeWindow("claude", 0)
    executor = AITaskExecutor(lambda w, ai_type: automation, store)

    result = await executor.execute_ai_task(window, _task())

    assert result.success
    assert window.visited == ["https://claude.test/chat/42"]
    assert automation.calls == [("D9", saved)]
    assert store.load_wait("D9-claude") is None


@pytest.mark.asyncio
async def test_finished_wait_marker_is_not_resumed(store):
    store.save_wait("D9-claude", WaitProgress(state=WaitState.COMPLETE), "https://claude.test/chat/1")
    automation = FakeAutomation()
    window = FakeWindow("claude", 0)
    executor = AITaskExecutor(lambda w, ai_type: automation, store)

    await executor.execute_ai_task(window, _task())

    assert window.visited == []
    assert automation.calls == [("D9", None)]
