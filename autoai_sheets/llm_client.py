from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from openai import APIError, OpenAI

from .config import LLMConfig, LLMProviderConfig

LOGGER = logging.getLogger(__name__)

Messages = List[Dict[str, str]]

_HINT_TRUNCATED = (
    "前回の出力は長さの上限で途中で切れました。構成は保ったまま、表現を短くしてまとめ直してください。"
)
_HINT_EMPTY = "前回の出力は空でした。指示に従ってレポート本文を必ず出力してください。"
_HINT_MINIMAL = "要点だけを箇条書きで、できるだけ短く出力してください。"


def _from_env(value: Optional[str], env_name: Optional[str]) -> Optional[str]:
    if value:
        return value
    return os.environ.get(env_name) if env_name else None


def _with_hints(messages: Messages, *hints: str) -> Messages:
    return [dict(message) for message in messages] + [
        {"role": "system", "content": hint} for hint in hints
    ]


@dataclass
class _Provider:
    name: str
    model_name: str
    settings: LLMProviderConfig
    client: OpenAI


class LLMClient:
    """Plain-text chat completions over OpenAI-compatible providers, tried by priority.

    Each provider gets ``max_retries`` attempts. A truncated answer is retried with a
    request to shorten it, an empty one with a request to answer at all; the next
    provider is used once a provider runs out of attempts or raises an API error.
    """

    def __init__(self, conf: LLMConfig) -> None:
        self._max_attempts = conf.max_retries
        self._providers: List[_Provider] = [
            provider
            for provider in (self._connect(priority, settings) for priority, settings in conf.provider_sequence)
            if provider is not None
        ]
        self._used_model: Optional[str] = None

        if not self._providers:
            raise RuntimeError(
                "No valid LLM providers configured: every provider is missing an API key or a model"
            )

    @property
    def model_name(self) -> str:
        return self._used_model or self._providers[0].model_name

    @staticmethod
    def _connect(priority: int, settings: LLMProviderConfig) -> Optional[_Provider]:
        name = settings.name or f"provider-{priority}"
        api_key = _from_env(settings.api_key, settings.api_key_env)
        model_name = _from_env(settings.model, settings.model_env)
        if not api_key or not model_name:
            missing = "API key" if not api_key else "model identifier"
            LOGGER.warning("Skipping LLM provider '%s': %s is not configured", name, missing)
            return None

        client = OpenAI(
            api_key=api_key,
            base_url=_from_env(settings.base_url, settings.base_url_env),
            organization=settings.organization,
        )
        return _Provider(name=name, model_name=model_name, settings=settings, client=client)

    def generate_text(self, messages: Messages) -> str:
        failures: List[Tuple[str, str]] = []
        for provider in self._providers:
            try:
                text = self._ask(provider, messages)
            except RuntimeError as exc:
                LOGGER.warning("LLM provider '%s' gave up: %s", provider.name, exc)
                failures.append((provider.name, str(exc)))
                continue
            self._used_model = provider.model_name
            return text

        details = "; ".join(f"{name}: {reason}" for name, reason in failures)
        raise RuntimeError(f"All LLM providers failed: {details or 'no response'}")

    def _complete(self, provider: _Provider, messages: Messages) -> Tuple[str, Optional[str]]:
        settings = provider.settings
        try:
            response = provider.client.chat.completions.create(
                model=provider.model_name,
                messages=messages,
                temperature=settings.temperature,
                max_tokens=settings.max_output_tokens,
                timeout=settings.request_timeout,
            )
        except APIError as exc:
            raise RuntimeError(f"LLM request failed: {exc}") from exc

        if not response.choices:
            raise RuntimeError("LLM response does not contain choices")
        choice = response.choices[0]
        return (choice.message.content or "").strip(), getattr(choice, "finish_reason", None)

    def _ask(self, provider: _Provider, messages: Messages) -> str:
        request = _with_hints(messages)
        for attempt in range(1, self._max_attempts + 1):
            text, finish_reason = self._complete(provider, request)
            last_attempt = attempt == self._max_attempts

            if finish_reason == "length" and not last_attempt:
                LOGGER.warning(
                    "Report output from '%s' was truncated; asking for a shorter one (%s/%s)",
                    provider.name,
                    attempt,
                    self._max_attempts,
                )
                hints = [_HINT_TRUNCATED]
                if attempt + 1 == self._max_attempts:
                    hints.append(_HINT_MINIMAL)
                request = _with_hints(messages, *hints)
                continue

            if text:
                return text
            if last_attempt:
                break
            LOGGER.warning(
                "Report output from '%s' was empty; retrying (%s/%s)", provider.name, attempt, self._max_attempts
            )
            request = _with_hints(messages, _HINT_EMPTY)

        raise RuntimeError(f"no usable answer after {self._max_attempts} attempts")
