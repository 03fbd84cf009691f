from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .browser import BrowserWindow, PlaywrightWindowFactory
from .config import AppConfig, SheetsConfig, load_config
from .executor import AITaskExecutor
from .google_sheets import GoogleSheetsClient
from .llm_client import LLMClient
from .orchestrator import SheetRun
from .playwright_automation import PlaywrightAutomation
from .progress_store import ProgressStore
from .report_builder import ReportGenerator
from .waiting import CancelToken
from .window_manager import StreamingWindowManager


def _load_env_files(config_path: Path) -> None:
    """Pick up API keys from ``.env`` in the working directory and beside the config."""

    for candidate in (Path.cwd() / ".env", config_path.parent / ".env"):
        if candidate.is_file():
            # Variables already exported in the shell take precedence.
            load_dotenv(dotenv_path=candidate, override=False)


LOGGER = logging.getLogger("autoai_sheets")

EXIT_CANCELLED = 130


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send spreadsheet prompts to ChatGPT, Claude, Gemini and Genspark and write the answers back"
    )
    parser.add_argument("--config", required=True, help="Path to the YAML configuration file")
    parser.add_argument(
        "--url",
        default=None,
        help="Spreadsheet URL to process instead of the one in the configuration",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the tasks that would run as JSON without opening browsers or writing",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Override scheduler.max_iterations for this run",
    )
    return parser.parse_args(argv)


def _with_url(config: AppConfig, url: str) -> AppConfig:
    # The sheet identity comes from the new URL; every other sheets field is kept.
    retargeted = config.sheets.model_copy(
        update={"spreadsheet_url": url, "spreadsheet_id": None, "sheet_gid": None, "sheet_name": None}
    )
    sheets = SheetsConfig.model_validate(retargeted.model_dump())
    return config.model_copy(update={"sheets": sheets})


def _install_signal_handlers(token: CancelToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops.
            LOGGER.debug("Signal handler for %s not installed", sig)


async def _run(config: AppConfig, config_path: Path, args: argparse.Namespace) -> int:
    token = CancelToken()
    _install_signal_handlers(token)

    sheets_client = GoogleSheetsClient(config.sheets, config.writes.max_cell_chars)
    summarizer = LLMClient(config.report.llm) if config.report.llm else None
    reports = ReportGenerator(sheets_client, config.report, summarizer)

    progress_store: ProgressStore | None = None
    window_factory: PlaywrightWindowFactory | None = None
    windows: StreamingWindowManager | None = None
    if not args.dry_run:
        scope = f"{config.sheets.spreadsheet_id}:{config.sheets.sheet_gid or ''}"
        progress_path = config.progress_path or (config_path.parent / "autoai_sheets_progress.sqlite")
        progress_store = ProgressStore(progress_path, scope)

        def _automation_for(window: BrowserWindow, ai_type: str) -> PlaywrightAutomation:
            target = config.browser.targets[ai_type]
            return PlaywrightAutomation(window.page, target, ai_type, config.waits, token)

        window_factory = PlaywrightWindowFactory(config.browser)
        windows = StreamingWindowManager(
            window_factory,
            AITaskExecutor(_automation_for, progress_store),
            config.browser.max_windows,
            close_after_task=config.browser.close_after_task,
            token=token,
        )

    sheet_run = SheetRun(
        config,
        sheets_client,
        windows,
        reports,
        token,
        max_iterations=args.max_iterations,
    )
    try:
        LOGGER.info("Reading spreadsheet %s", config.sheets.spreadsheet_id)
        summary = await sheet_run.run(dry_run=args.dry_run)
    finally:
        if windows is not None:
            await windows.close_all()
        if window_factory is not None:
            await window_factory.close()
        if progress_store is not None:
            progress_store.close()

    if summary.dry_run:
        LOGGER.info("Dry run enabled; %s tasks would be dispatched", len(summary.planned_tasks))
        print(json.dumps([task.to_record() for task in summary.planned_tasks], ensure_ascii=False, indent=2))
        return 0

    if summary.queue is not None and summary.queue.cancelled:
        return EXIT_CANCELLED
    if summary.failed_cells:
        LOGGER.warning("%s cells could not be filled", len(summary.failed_cells))
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_path = Path(args.config).expanduser().resolve()
    _load_env_files(config_path)
    config = load_config(config_path)
    if args.url:
        config = _with_url(config, args.url)

    return asyncio.run(_run(config, config_path, args))


def run() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    run()
