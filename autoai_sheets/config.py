from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .catalog import CatalogEntry, normalize_catalog
from .models import AI_CHATGPT, AI_CLAUDE, AI_GEMINI, AI_GENSPARK
from .sheet_reader import parse_spreadsheet_url

SUPPORTED_AI_TYPES = (AI_CHATGPT, AI_CLAUDE, AI_GEMINI, AI_GENSPARK)


class SheetsConfig(BaseModel):
    credentials_file: Path = Field(
        ..., description="Path to the Google service account JSON credentials"
    )
    spreadsheet_url: Optional[str] = Field(
        None, description="Full spreadsheet URL; id and gid are extracted from it"
    )
    spreadsheet_id: Optional[str] = Field(None, description="ID of the spreadsheet")
    sheet_gid: Optional[int] = Field(None, description="gid of the tab to process")
    sheet_name: Optional[str] = Field(
        None,
        description="Tab name; resolved from sheet_gid when omitted",
    )

    @field_validator("credentials_file")
    @classmethod
    def _expand_credentials_path(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @model_validator(mode="after")
    def _resolve_spreadsheet(self) -> "SheetsConfig":
        if self.spreadsheet_url:
            spreadsheet_id, gid = parse_spreadsheet_url(self.spreadsheet_url)
            self.spreadsheet_id = self.spreadsheet_id or spreadsheet_id
            if self.sheet_gid is None:
                self.sheet_gid = gid
        if not self.spreadsheet_id:
            raise ValueError("Either 'spreadsheet_url' or 'spreadsheet_id' must be provided")
        return self


class SchedulerConfig(BaseModel):
    batch_size: int = Field(3, ge=1, description="Tasks handed to the executor per iteration")
    max_iterations: int = Field(10, ge=1, description="Upper bound of queue iterations per run")
    attempt_cap: int = Field(
        2, ge=1, description="How many times a group may be re-enabled by a rescan"
    )
    work_row_start_index: int = Field(
        8, ge=0, description="Zero-based first row scanned for pending prompts during rescans"
    )
    default_ai_type: str = Field(
        AI_CHATGPT,
        description="AI used when a group's layout does not name one",
    )

    @field_validator("default_ai_type")
    @classmethod
    def _validate_ai_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SUPPORTED_AI_TYPES:
            raise ValueError(f"default_ai_type must be one of {', '.join(SUPPORTED_AI_TYPES)}")
        return normalized


class WaitConfig(BaseModel):
    poll_interval_s: float = Field(2.0, gt=0, description="Delay between UI state checks")
    indicator_appear_timeout_s: float = Field(
        30.0, gt=0, description="How long to wait for the in-flight indicator to show up"
    )
    normal_max_wait_s: float = Field(300.0, gt=0, description="Ceiling for normal responses")
    special_max_wait_s: float = Field(
        2400.0, gt=0, description="Ceiling for deep research / agent responses"
    )
    debounce_s: float = Field(
        10.0, ge=0, description="Continuous absence of the indicator required in special mode"
    )
    early_stop_window_s: float = Field(
        120.0, ge=0, description="A special-mode stop inside this window triggers a re-prompt"
    )
    reprompt_on_early_stop: bool = Field(True, description="Send one follow-up after an early stop")
    auto_reply_message: str = Field(
        "良いからさきほどの質問を確認して作業して",
        description="Follow-up text sent when a special-mode run stops early",
    )
    submit_attempts: int = Field(5, ge=1, description="Send attempts before giving up")
    submit_ack_timeout_s: float = Field(
        5.0, gt=0, description="Wait for the in-flight signal after each send attempt"
    )
    element_timeout_s: float = Field(5.0, gt=0, description="Wait for menus and inputs")


class AutomationTarget(BaseModel):
    """Browser-side settings for one AI web application."""

    base_url: str = Field(..., description="URL opened in a fresh window for this AI")
    selectors: Dict[str, str] = Field(
        default_factory=dict,
        description="CSS selectors keyed by role (input_box, send_button, stop_button, ...)",
    )
    models: List[CatalogEntry] = Field(default_factory=list)
    functions: List[CatalogEntry] = Field(default_factory=list)

    @field_validator("models", mode="before")
    @classmethod
    def _normalize_models(cls, value: Any) -> List[CatalogEntry]:
        return normalize_catalog(value, "model")

    @field_validator("functions", mode="before")
    @classmethod
    def _normalize_functions(cls, value: Any) -> List[CatalogEntry]:
        return normalize_catalog(value, "function")


def _default_targets() -> Dict[str, AutomationTarget]:
    return {
        AI_CHATGPT: AutomationTarget(base_url="https://chatgpt.com/"),
        AI_CLAUDE: AutomationTarget(base_url="https://claude.ai/new"),
        AI_GEMINI: AutomationTarget(base_url="https://gemini.google.com/app"),
        AI_GENSPARK: AutomationTarget(base_url="https://www.genspark.ai/agents?type=slides_agent"),
    }


class BrowserConfig(BaseModel):
    max_windows: int = Field(4, ge=1, le=16, description="Browser windows driven at the same time")
    cdp_url: Optional[str] = Field(
        None, description="Connect to an already running Chrome over CDP instead of launching"
    )
    user_data_dir: Optional[Path] = Field(
        None, description="Persistent Chromium profile holding the AI site logins"
    )
    headless: bool = Field(False, description="Launch Chromium headless")
    close_after_task: bool = Field(True, description="Close each window when its task ends")
    targets: Dict[str, AutomationTarget] = Field(default_factory=_default_targets)

    @field_validator("user_data_dir")
    @classmethod
    def _expand_profile_path(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser().resolve()

    @field_validator("targets")
    @classmethod
    def _merge_default_targets(
        cls, value: Dict[str, AutomationTarget]
    ) -> Dict[str, AutomationTarget]:
        merged = _default_targets()
        for ai_type, target in value.items():
            key = ai_type.strip().lower()
            if key not in SUPPORTED_AI_TYPES:
                raise ValueError(f"Unknown AI target '{ai_type}'")
            merged[key] = target
        return merged


class WriteConfig(BaseModel):
    max_cell_chars: int = Field(
        50000,
        ge=1000,
        le=50000,
        description="Longest value written into one cell; longer answers spill downwards",
    )
    write_log: bool = Field(True, description="Append a run entry to the group's log column")


class LLMProviderConfig(BaseModel):
    """One OpenAI-compatible endpoint used for report generation."""

    name: str | None = Field(None, description="Label shown in log messages")
    model: str | None = None
    model_env: str | None = Field(None, description="Env var read when 'model' is not set")
    api_key: str | None = None
    api_key_env: str | None = Field(None, description="Env var read when 'api_key' is not set")
    base_url: str | None = None
    base_url_env: str | None = Field(None, description="Env var read when 'base_url' is not set")
    organization: str | None = None
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(4096, gt=0, description="Completion token ceiling per report")
    request_timeout: int = Field(120, gt=0, description="Seconds before a report request is abandoned")

    @model_validator(mode="after")
    def _require_credentials(self) -> "LLMProviderConfig":
        label = self.name or "report provider"
        for field, env_field in (("model", "model_env"), ("api_key", "api_key_env")):
            if not getattr(self, field) and not getattr(self, env_field):
                raise ValueError(f"{label}: set '{field}' or '{env_field}'")
        return self


class LLMConfig(BaseModel):
    max_retries: int = Field(3, ge=1, description="Attempts per provider before falling back")
    providers: dict[int, LLMProviderConfig] = Field(
        ..., description="Providers keyed by priority, 1 being tried first"
    )

    @field_validator("providers")
    @classmethod
    def _order_by_priority(
        cls, value: dict[int, LLMProviderConfig]
    ) -> dict[int, LLMProviderConfig]:
        if not value:
            raise ValueError("report.llm.providers is empty")
        priorities = sorted(value)
        if priorities != list(range(1, len(priorities) + 1)):
            raise ValueError(f"provider priorities {priorities} must run 1, 2, 3, ... without gaps")
        return {priority: value[priority] for priority in priorities}

    @property
    def provider_sequence(self) -> List[tuple[int, LLMProviderConfig]]:
        return list(self.providers.items())


class ReportConfig(BaseModel):
    """How レポート化 cells are turned into Google Docs documents."""

    title_template: str = Field(
        "レポート - {row}行目", description="Document title; {row} is replaced by the sheet row"
    )
    include_metadata: bool = True
    include_prompt: bool = True
    include_answer: bool = True
    llm: LLMConfig | None = Field(
        None, description="When set, an LLM summary of the answer is added to each document"
    )
    instructions: str | None = Field(
        None, description="Extra guidance appended to the summary system prompt"
    )

    @field_validator("title_template")
    @classmethod
    def _require_row_placeholder(cls, value: str) -> str:
        if "{row}" not in value:
            raise ValueError("title_template must contain '{row}'")
        return value


class AppConfig(BaseModel):
    sheets: SheetsConfig
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    waits: WaitConfig = Field(default_factory=WaitConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    writes: WriteConfig = Field(default_factory=WriteConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    progress_path: Path | None = Field(
        None,
        description="SQLite file keeping task records and wait progress between runs",
    )

    @field_validator("progress_path")
    @classmethod
    def _expand_progress_path(cls, value: Path | None) -> Path | None:
        return value.expanduser().resolve() if value is not None else None


def load_config(path: str | Path) -> AppConfig:
    """Read the YAML file at ``path`` into an :class:`AppConfig`."""

    config_path = Path(path).expanduser().resolve()
    if not config_path.is_file():
        raise FileNotFoundError(f"No configuration at {config_path}")

    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not data:
        raise ValueError(f"{config_path} is empty")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}:\n{exc}") from exc
