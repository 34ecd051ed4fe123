"""
discordassist.services.response_service — Answer Generation Port
==================================================================

The ``/support`` command asks a :class:`ResponseGenerator` for an answer.
No model provider is wired in; :class:`PlaceholderResponseGenerator`
returns a fixed acknowledgement so the rest of the pipeline (deferral,
follow-up, logging, usage accounting) can run end to end.

Swap in a real generator by passing it to
:class:`~discordassist.bot.manager.BotManager`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from discordassist.storage.records import BotConfigRecord


@dataclass(frozen=True, slots=True)
class ModelConfig:
    """What a generator needs to know about the configured model."""

    model: str
    system_prompt: str | None = None

    @property
    def provider(self) -> str:
        # Model ids look like "openai/gpt-4o".
        provider, _, _ = self.model.partition("/")
        return provider if "/" in self.model else "unknown"

    @classmethod
    def from_bot_config(cls, config: BotConfigRecord) -> ModelConfig:
        return cls(model=config.ai_model, system_prompt=config.system_prompt)


@dataclass(frozen=True, slots=True)
class GeneratedResponse:
    text: str
    provider: str
    model: str
    tokens_used: int = 0
    cost: float | None = None


class ResponseGenerator(Protocol):
    async def generate_response(
        self, question: str, policy_context: str | None, model_config: ModelConfig
    ) -> GeneratedResponse: ...


class PlaceholderResponseGenerator:
    """Acknowledges the question without calling any model."""

    async def generate_response(
        self, question: str, policy_context: str | None, model_config: ModelConfig
    ) -> GeneratedResponse:
        text = (
            "🤖 **AI Support Response**\n\n"
            f"**Your Question:** {question}\n\n"
            "**Response:** This is a placeholder response. A configured generator "
            f"would answer with the {model_config.model} model, using the system "
            "prompt and policy document.\n\n"
            "**Note:** AI integration is not enabled on this deployment."
        )
        return GeneratedResponse(
            text=text,
            provider=model_config.provider,
            model=model_config.model,
        )
