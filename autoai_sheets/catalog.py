"""Model / feature names: alias tables and normalisation of catalog records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

NORMAL_FUNCTION = "通常"

SPECIAL_MODELS: Dict[str, Dict[str, Any]] = {
    "o3": {
        "display_name": "o3（推論）",
        "aliases": ["o3（推論）", "o3(推論)", "o3", "推論"],
    },
    "o3-pro": {
        "display_name": "o3-pro（鬼推論）",
        "aliases": ["o3-pro（鬼推論）", "o3-pro(鬼推論)", "o3-pro", "鬼推論"],
    },
}

SPECIAL_OPERATIONS: Dict[str, Dict[str, Any]] = {
    "DeepResearch": {
        "display_name": "DeepResearch",
        "aliases": ["DeepResearch", "deepresearch", "deep research", "Deep Research", "深掘り", "Deep Research（深い調査）"],
        "long_running": True,
    },
    "ChatGPTAgent": {
        "display_name": "エージェントモード",
        "aliases": ["エージェントモード", "エージェント", "Agent", "agent"],
        "long_running": True,
    },
    "ChatGPTCanvas": {
        "display_name": "Canvas",
        "aliases": ["Canvas", "canvas", "キャンバス"],
        "long_running": False,
    },
    "ChatGPTWebSearch": {
        "display_name": "ウェブ検索",
        "aliases": ["ウェブ検索", "Web検索", "検索", "search"],
        "long_running": False,
    },
    "ChatGPTImage": {
        "display_name": "画像生成",
        "aliases": ["画像生成", "画像を作成", "画像", "image"],
        "long_running": False,
    },
}

# Claude's model picker appends marketing copy to the model name.
_CLAUDE_DESCRIPTION_MARKERS = (
    "情報を", "高性能", "スマート", "最適な", "高速な", "軽量な", "大規模", "小規模",
    "複雑な", "日常利用", "課題に対応", "効率的", "に対応できる", "なモデル",
)


def _build_alias_map(config: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for identifier, entry in config.items():
        for alias in entry["aliases"]:
            mapping[alias] = identifier
    return mapping


SPECIAL_MODEL_MAP = _build_alias_map(SPECIAL_MODELS)
SPECIAL_OPERATION_MAP = _build_alias_map(SPECIAL_OPERATIONS)


def resolve_special_model(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return SPECIAL_MODEL_MAP.get(name.strip())


def resolve_special_operation(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return SPECIAL_OPERATION_MAP.get(name.strip())


def is_special_function(name: Optional[str]) -> bool:
    """True for deep-research / agent style features with long, debounced completion."""

    identifier = resolve_special_operation(name)
    if identifier is not None:
        return bool(SPECIAL_OPERATIONS[identifier]["long_running"])
    lowered = (name or "").lower()
    return "deep research" in lowered or "deepresearch" in lowered or "リサーチ" in lowered


def is_normal_function(name: Optional[str]) -> bool:
    return not name or name.strip() in ("", NORMAL_FUNCTION)


@dataclass(slots=True, frozen=True)
class CatalogEntry:
    name: str
    kind: str  # "model" or "function"


def clean_model_name(name: str) -> str:
    for marker in _CLAUDE_DESCRIPTION_MARKERS:
        position = name.find(marker)
        if position > 0:
            name = name[:position].strip()
            break
    if len(name) > 20 and " " in name:
        words = name.split(" ")
        if len(words) > 3:
            name = " ".join(words[:3])
    return name


def _record_name(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in ("name", "text", "label", "value"):
            value = item.get(key)
            if value:
                return str(value)
        return "Unknown"
    return str(item)


def normalize_catalog(items: Optional[Iterable[Any]], kind: str) -> List[CatalogEntry]:
    """Turn current (plain string) or legacy (``{name|text|label|value}``) records into entries."""

    entries: List[CatalogEntry] = []
    for item in items or []:
        if isinstance(item, CatalogEntry):
            entries.append(item)
            continue
        name = _record_name(item).strip()
        if kind == "model":
            name = clean_model_name(name)
        if name:
            entries.append(CatalogEntry(name=name, kind=kind))
    return entries
