from __future__ import annotations

import asyncio

import pytest

from starboard.config.settings import Settings
from starboard.services.llm_client import (
    PROVIDER_ANTHROPIC,
    PROVIDER_OPENAI,
    LLMCallError,
    LLMClient,
    PassConfig,
    build_llm_call,
    resolve_pass_configs,
)


def test_anthropic_is_preferred_when_both_keys_present() -> None:
    configs = resolve_pass_configs(
        Settings(ANTHROPIC_API_KEY="a-key", OPENAI_API_KEY="o-key", ENABLE_AIML_CLASSIFICATION=False)
    )

    assert configs["summary"].provider == PROVIDER_ANTHROPIC
    assert configs["insights"].enabled is True
    assert configs["aiml"].enabled is False


def test_openai_used_when_only_openai_key() -> None:
    configs = resolve_pass_configs(
        Settings(ANTHROPIC_API_KEY=None, OPENAI_API_KEY="o-key", ENABLE_AIML_CLASSIFICATION=True)
    )

    assert {config.provider for config in configs.values()} == {PROVIDER_OPENAI}
    assert configs["aiml"].enabled is True


def test_no_keys_disables_every_pass() -> None:
    configs = resolve_pass_configs(Settings(ANTHROPIC_API_KEY=None, OPENAI_API_KEY=None))

    assert set(configs) == {"summary", "aiml", "build_plan", "insights"}
    assert not any(config.enabled for config in configs.values())
    assert all(build_llm_call(config) is None for config in configs.values())


def test_disabled_config_cannot_build_client() -> None:
    with pytest.raises(ValueError):
        LLMClient(PassConfig(name="summary", enabled=False))


def test_provider_errors_are_wrapped(monkeypatch) -> None:
    client = LLMClient(PassConfig(name="summary", enabled=True, provider=PROVIDER_ANTHROPIC, model="m", api_key="k"))

    async def boom(prompt, max_tokens):
        raise ConnectionError("reset by peer")

    monkeypatch.setattr(client, "_complete_anthropic", boom)

    with pytest.raises(LLMCallError, match="reset by peer"):
        asyncio.run(client.complete("prompt"))


def test_empty_completion_is_an_error(monkeypatch) -> None:
    client = LLMClient(PassConfig(name="summary", enabled=True, provider=PROVIDER_OPENAI, model="m", api_key="k"))

    async def blank(prompt, max_tokens):
        return "   "

    monkeypatch.setattr(client, "_complete_openai", blank)

    with pytest.raises(LLMCallError):
        asyncio.run(client.complete("prompt"))
