from types import SimpleNamespace

import pytest

from autoai_sheets.config import LLMConfig
from autoai_sheets.llm_client import LLMClient


def _response(content, finish_reason="stop"):
    choice = SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice])


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(*provider_outcomes, max_retries=3):
    providers = {
        priority: {"name": f"p{priority}", "model": f"model-{priority}", "api_key": "sk-test"}
        for priority in range(1, len(provider_outcomes) + 1)
    }
    client = LLMClient(LLMConfig(max_retries=max_retries, providers=providers))
    fakes = []
    for provider, outcomes in zip(client._providers, provider_outcomes):
        fake = FakeCompletions(outcomes)
        provider.client = SimpleNamespace(chat=SimpleNamespace(completions=fake))
        fakes.append(fake)
    return client, fakes


MESSAGES = [{"role": "user", "content": "まとめて"}]


def test_first_provider_answer_is_returned():
    client, (fake,) = _client([_response("  レポート  ")])

    assert client.generate_text(MESSAGES) == "レポート"
    assert fake.calls[0]["model"] == "model-1"
    assert client.model_name == "model-1"


def test_truncated_output_is_retried_with_hint():
    client, (fake,) = _client([_response("途中", "length"), _response("短いレポート")])

    assert client.generate_text(MESSAGES) == "短いレポート"
    retry_messages = fake.calls[1]["messages"]
    assert retry_messages[0] == MESSAGES[0]
    assert retry_messages[-1]["role"] == "system"


def test_empty_output_falls_back_to_next_provider():
    client, (first, second) = _client(
        [_response(""), _response("")],
        [_response("予備のレポート")],
        max_retries=2,
    )

    assert client.generate_text(MESSAGES) == "予備のレポート"
    assert len(first.calls) == 2
    assert client.model_name == "model-2"


def test_all_providers_failing_raises():
    client, _ = _client([_response("")], max_retries=1)

    with pytest.raises(RuntimeError, match="All LLM providers failed"):
        client.generate_text(MESSAGES)


def test_providers_without_key_are_skipped(monkeypatch):
    monkeypatch.delenv("AUTOAI_TEST_KEY", raising=False)
    config = LLMConfig(providers={1: {"model": "m", "api_key_env": "AUTOAI_TEST_KEY"}})

    with pytest.raises(RuntimeError, match="No valid LLM providers"):
        LLMClient(config)
