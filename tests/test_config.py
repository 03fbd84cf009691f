import textwrap

import pytest
from pydantic import ValidationError

from autoai_sheets.config import (
    AppConfig,
    BrowserConfig,
    LLMConfig,
    ReportConfig,
    SchedulerConfig,
    SheetsConfig,
    WriteConfig,
    load_config,
)


def _write(tmp_path, body):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_load_config_with_defaults(tmp_path):
    path = _write(
        tmp_path,
        """
        sheets:
          credentials_file: creds.json
          spreadsheet_url: https://docs.google.com/spreadsheets/d/abc123/edit#gid=99
        """,
    )

    config = load_config(path)

    assert config.sheets.spreadsheet_id == "abc123"
    assert config.sheets.sheet_gid == 99
    assert config.scheduler.batch_size == 3
    assert config.scheduler.max_iterations == 10
    assert config.scheduler.attempt_cap == 2
    assert config.scheduler.work_row_start_index == 8
    assert config.waits.debounce_s == 10
    assert config.waits.special_max_wait_s == 2400
    assert config.browser.max_windows == 4
    assert config.writes.max_cell_chars == 50000
    assert config.report.llm is None
    assert config.report.title_template == "レポート - {row}行目"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_empty_file_raises(tmp_path):
    with pytest.raises(ValueError, match="empty"):
        load_config(_write(tmp_path, ""))


def test_invalid_content_is_reported_as_value_error(tmp_path):
    path = _write(
        tmp_path,
        """
        sheets:
          credentials_file: creds.json
        """,
    )
    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(path)


def test_explicit_gid_wins_over_url():
    sheets = SheetsConfig(
        credentials_file="creds.json",
        spreadsheet_url="https://docs.google.com/spreadsheets/d/abc/edit#gid=1",
        sheet_gid=2,
    )
    assert sheets.sheet_gid == 2


def test_default_ai_type_is_validated():
    assert SchedulerConfig(default_ai_type=" Claude ").default_ai_type == "claude"
    with pytest.raises(ValidationError):
        SchedulerConfig(default_ai_type="copilot")


def test_cell_limit_is_bounded():
    with pytest.raises(ValidationError):
        WriteConfig(max_cell_chars=60000)


def test_targets_are_merged_with_defaults():
    browser = BrowserConfig(
        targets={
            "Claude": {
                "base_url": "https://claude.ai/new",
                "selectors": {"input_box": "div.editor"},
                "models": ["Opus", {"name": "Sonnet"}],
            }
        }
    )

    assert set(browser.targets) == {"chatgpt", "claude", "gemini", "genspark"}
    assert browser.targets["claude"].selectors == {"input_box": "div.editor"}
    assert [entry.name for entry in browser.targets["claude"].models] == ["Opus", "Sonnet"]


def test_unknown_target_is_rejected():
    with pytest.raises(ValidationError):
        BrowserConfig(targets={"copilot": {"base_url": "https://example.com"}})


def test_llm_priorities_must_be_consecutive():
    provider = {"model": "gpt-4o-mini", "api_key_env": "OPENAI_API_KEY"}
    with pytest.raises(ValidationError):
        LLMConfig(providers={1: provider, 3: provider})

    config = LLMConfig(providers={2: provider, 1: {**provider, "name": "primary"}})
    assert [priority for priority, _ in config.provider_sequence] == [1, 2]
    assert config.provider_sequence[0][1].name == "primary"


def test_llm_provider_requires_model_and_key():
    with pytest.raises(ValidationError):
        LLMConfig(providers={1: {"model": "gpt-4o-mini"}})


def test_report_summary_llm_is_optional():
    config = AppConfig.model_validate(
        {
            "sheets": {"credentials_file": "creds.json", "spreadsheet_id": "abc"},
            "report": {
                "llm": {"providers": {1: {"model": "gpt-4o-mini", "api_key": "sk-test"}}},
                "instructions": "箇条書きで",
            },
        }
    )
    assert config.report.instructions == "箇条書きで"
    assert config.report.llm.provider_sequence[0][1].model == "gpt-4o-mini"


def test_report_title_needs_row_placeholder():
    with pytest.raises(ValidationError):
        ReportConfig(title_template="レポート")
