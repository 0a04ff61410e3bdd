"""
Reporting - Language Model Client.

============================================================
RESPONSIBILITY
============================================================
One completion call per report, behind an abstraction so the
generator can be tested with a fake model.

- AnthropicLanguageModel wraps anthropic.AsyncAnthropic
- model tiers: haiku / sonnet / opus
- cost estimate per 1M tokens (input / output)
- provider errors mapped to GenerationFailure(retryable=...)
============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import anthropic

from core.exceptions import ConfigurationError, GenerationFailure


logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    HAIKU = "haiku"
    SONNET = "sonnet"
    OPUS = "opus"


MODEL_IDS: Dict[ModelTier, str] = {
    ModelTier.HAIKU: "claude-3-5-haiku-latest",
    ModelTier.SONNET: "claude-sonnet-4-20250514",
    ModelTier.OPUS: "claude-opus-4-5-20251101",
}

# USD per 1M tokens: (input, output)
MODEL_COSTS: Dict[ModelTier, Tuple[float, float]] = {
    ModelTier.HAIKU: (0.80, 4.0),
    ModelTier.SONNET: (3.0, 15.0),
    ModelTier.OPUS: (15.0, 75.0),
}


def tier_of(model: str) -> ModelTier:
    """Tier from a tier name or a full model id."""
    value = model.lower()
    for tier in ModelTier:
        if tier.value in value:
            return tier
    raise ConfigurationError(f"Unknown model tier: {model}", config_key="MARKET_REPORT_MODEL")


def estimate_cost(tier: ModelTier, input_tokens: int, output_tokens: int) -> float:
    input_cost, output_cost = MODEL_COSTS[tier]
    return round((input_tokens * input_cost + output_tokens * output_cost) / 1_000_000, 6)


@dataclass(frozen=True)
class Completion:
    text: str
    model: str
    input_tokens: int
    output_tokens: int
    estimated_cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LanguageModelClient(ABC):
    """Provider-agnostic completion interface."""

    @property
    @abstractmethod
    def model(self) -> str:
        pass

    @abstractmethod
    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> Completion:
        """
        Single-turn completion.

        Raises:
            GenerationFailure: provider error; ``retryable`` tells the
                caller whether trying again later may help
        """
        pass

    async def aclose(self) -> None:
        return None


class AnthropicLanguageModel(LanguageModelClient):
    """Claude models through the official async SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        tier: ModelTier = ModelTier.SONNET,
        timeout: float = 120.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        if client is None and not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set", config_key="ANTHROPIC_API_KEY")
        self._tier = tier
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=1)

    @property
    def model(self) -> str:
        return MODEL_IDS[self._tier]

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> Completion:
        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            logger.warning(f"[anthropic] Transient provider error: {type(e).__name__}")
            raise GenerationFailure(f"Language model unavailable: {type(e).__name__}", retryable=True, cause=e)
        except anthropic.APIStatusError as e:
            retryable = e.status_code >= 500 or e.status_code == 429
            logger.error(f"[anthropic] Provider rejected request ({e.status_code})")
            raise GenerationFailure(
                f"Language model error ({e.status_code})", retryable=retryable, cause=e
            )

        text = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        if not text:
            raise GenerationFailure("Language model returned no text", retryable=True)

        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens
        return Completion(
            text=text,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=estimate_cost(self._tier, input_tokens, output_tokens),
        )

    async def aclose(self) -> None:
        await self._client.close()


class DisabledLanguageModel(LanguageModelClient):
    """Stand-in when no API key is configured; every call fails permanently."""

    @property
    def model(self) -> str:
        return "disabled"

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> Completion:
        raise GenerationFailure("AI reports are not configured", retryable=False)
