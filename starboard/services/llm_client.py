"""Provider-agnostic LLM completion client and startup pass configuration."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from starboard.config.settings import Settings, settings
from starboard.crawlers.client import sanitize_log_extra
from starboard.models.issue import EnrichmentPass

logger = logging.getLogger(__name__)

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OPENAI = "openai"

INSIGHTS_PASS = "insights"

LLMCall = Callable[[str, int], Awaitable[str]]


class LLMCallError(Exception):
    """Raised when a provider call fails or returns no text."""


@dataclass(frozen=True, slots=True)
class PassConfig:
    """Resolved provider settings for one LLM-backed pass."""

    name: str
    enabled: bool
    provider: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    reason: Optional[str] = None


def _resolve_provider(config: Settings) -> tuple[Optional[str], Optional[str], Optional[str]]:
    if config.ANTHROPIC_API_KEY:
        return PROVIDER_ANTHROPIC, config.ANTHROPIC_MODEL, config.ANTHROPIC_API_KEY
    if config.OPENAI_API_KEY:
        return PROVIDER_OPENAI, config.OPENAI_MODEL, config.OPENAI_API_KEY
    return None, None, None


def resolve_pass_configs(config: Settings = settings) -> dict[str, PassConfig]:
    """Decide once which LLM passes are active and which provider each uses.

    Anthropic wins when both keys are present. A pass without a key (or with its
    feature flag off) is disabled and becomes a silent no-op.
    """

    provider, model, api_key = _resolve_provider(config)
    pass_names = (
        EnrichmentPass.SUMMARY.value,
        EnrichmentPass.AIML.value,
        EnrichmentPass.BUILD_PLAN.value,
        INSIGHTS_PASS,
    )

    resolved: dict[str, PassConfig] = {}
    for name in pass_names:
        if provider is None:
            resolved[name] = PassConfig(name=name, enabled=False, reason="no LLM API key configured")
            continue
        if name == EnrichmentPass.AIML.value and not config.ENABLE_AIML_CLASSIFICATION:
            resolved[name] = PassConfig(name=name, enabled=False, reason="ENABLE_AIML_CLASSIFICATION is off")
            continue
        resolved[name] = PassConfig(name=name, enabled=True, provider=provider, model=model, api_key=api_key)

    logger.info(
        "Resolved LLM pass configuration",
        extra=sanitize_log_extra(
            passes={name: {"enabled": cfg.enabled, "provider": cfg.provider} for name, cfg in resolved.items()}
        ),
    )
    return resolved


class LLMClient:
    """Thin async wrapper returning the text of a single-turn completion."""

    def __init__(self, config: PassConfig, *, timeout_seconds: Optional[float] = None) -> None:
        if not config.enabled or not config.provider:
            raise ValueError(f"LLM pass '{config.name}' is disabled")

        self._config = config
        self._timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self._anthropic_client: Optional[AsyncAnthropic] = None
        self._openai_client: Optional[AsyncOpenAI] = None

    @property
    def config(self) -> PassConfig:
        return self._config

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        try:
            if self._config.provider == PROVIDER_ANTHROPIC:
                text = await self._complete_anthropic(prompt, max_tokens)
            elif self._config.provider == PROVIDER_OPENAI:
                text = await self._complete_openai(prompt, max_tokens)
            else:
                raise LLMCallError(f"Unsupported LLM provider: {self._config.provider}")
        except LLMCallError:
            raise
        except Exception as exc:
            raise LLMCallError(f"{self._config.provider} call failed: {exc}") from exc

        if not text.strip():
            raise LLMCallError(f"{self._config.provider} returned an empty completion")
        return text

    async def _complete_anthropic(self, prompt: str, max_tokens: int) -> str:
        if self._anthropic_client is None:
            self._anthropic_client = AsyncAnthropic(api_key=self._config.api_key, timeout=self._timeout_seconds)

        response = await self._anthropic_client.messages.create(
            model=self._config.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")

    async def _complete_openai(self, prompt: str, max_tokens: int) -> str:
        if self._openai_client is None:
            self._openai_client = AsyncOpenAI(api_key=self._config.api_key, timeout=self._timeout_seconds)

        response = await self._openai_client.chat.completions.create(
            model=self._config.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
        )
        return (response.choices[0].message.content or "").strip()


def build_llm_call(config: PassConfig) -> Optional[LLMCall]:
    """Return an `llm_call(prompt, max_tokens)` coroutine for an enabled pass, else None."""

    if not config.enabled:
        return None
    client = LLMClient(config)
    return client.complete
