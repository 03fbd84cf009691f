import asyncio

import pytest

from autoai_sheets.executor import AITaskExecutor
from autoai_sheets.models import CellInfo, Task
from autoai_sheets.waiting import CancelToken
from autoai_sheets.window_manager import StreamingWindowManager

from conftest import FakeAutomation, FakeWindowFactory


def _task(row, ai_type="chatgpt", column="D"):
    return Task(
        task_id=f"{column}{row}-{ai_type}",
        ai_type=ai_type,
        model="",
        function="通常",
        prompt=f"質問{row}",
        cell_info=CellInfo(column, row),
        group_index=0,
    )


class CountingAutomation(FakeAutomation):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.running = 0
        self.peak = 0

    async def run(self, task, resume=None, on_progress=None):
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            return await super().run(task, resume, on_progress)
        finally:
            self.running -= 1


def _manager(automation, factory=None, **kwargs):
    factory = factory or FakeWindowFactory()
    executor = AITaskExecutor(lambda window, ai_type: automation)
    return StreamingWindowManager(factory, executor, **kwargs), factory


@pytest.mark.asyncio
async def test_running_tasks_never_exceed_window_count():
    automation = CountingAutomation(delay=0.02)
    manager, _ = _manager(automation, max_windows=2)

    results = await asyncio.gather(*(manager.assign(_task(row)) for row in range(9, 15)))

    assert all(result.success for result in results)
    assert automation.peak == 2
    assert manager.busy_slots() == 0


@pytest.mark.asyncio
async def test_windows_close_after_each_task_by_default():
    manager, factory = _manager(FakeAutomation(), max_windows=1)

    await manager.assign(_task(9))
    await manager.assign(_task(10))

    assert len(factory.opened) == 2
    assert all(window.closed for window in factory.opened)


@pytest.mark.asyncio
async def test_same_ai_window_is_reset_and_reused_when_kept_open():
    manager, factory = _manager(FakeAutomation(), max_windows=2, close_after_task=False)

    await manager.assign(_task(9, "gemini"))
    await manager.assign(_task(10, "gemini"))

    assert len(factory.opened) == 1
    assert factory.opened[0].resets == 1
    assert not factory.opened[0].closed

    await manager.close_all()
    assert factory.opened[0].closed


@pytest.mark.asyncio
async def test_failed_task_recycles_its_window():
    automation = FakeAutomation(errors={"D9": RuntimeError("page crashed")})
    manager, factory = _manager(automation, max_windows=1, close_after_task=False)

    failed = await manager.assign(_task(9))
    ok = await manager.assign(_task(10))

    assert not failed.success
    assert ok.success
    assert len(factory.opened) == 2
    assert factory.opened[0].closed


@pytest.mark.asyncio
async def test_window_open_failure_is_fatal_for_the_task_only():
    manager, factory = _manager(FakeAutomation(), FakeWindowFactory(fail_for=["claude"]), max_windows=1)

    failed = await manager.assign(_task(9, "claude"))
    ok = await manager.assign(_task(10, "chatgpt"))

    assert failed.fatal
    assert not failed.success
    assert "window could not be opened" in failed.error
    assert ok.success
    assert manager.busy_slots() == 0


@pytest.mark.asyncio
async def test_cancelled_run_does_not_open_windows():
    token = CancelToken()
    token.cancel()
    manager, factory = _manager(FakeAutomation(), token=token)

    result = await manager.assign(_task(9))

    assert result.cancelled
    assert factory.opened == []


def test_window_count_must_be_positive():
    with pytest.raises(ValueError):
        StreamingWindowManager(FakeWindowFactory(), AITaskExecutor(lambda w, a: None), max_windows=0)
