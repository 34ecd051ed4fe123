"""
tests/test_commands.py — Slash command handlers
=================================================
"""

from __future__ import annotations

import pytest
from conftest import make_interaction, replies, run_async

from discordassist.bot.commands import (
    COMMAND_DEFINITIONS,
    MAX_MESSAGE_LENGTH,
    CommandContext,
    handle_feedback,
    handle_help,
    handle_support,
    option_value,
    reply,
)
from discordassist.services.response_service import (
    GeneratedResponse,
    ModelConfig,
    PlaceholderResponseGenerator,
)


class MeteredGenerator:
    """Answers with a fixed text and reports token usage."""

    def __init__(self):
        self.calls = []

    async def generate_response(self, question, policy_context, model_config):
        self.calls.append((question, policy_context, model_config))
        return GeneratedResponse(
            text="Try turning it off and on again.",
            provider=model_config.provider,
            model=model_config.model,
            tokens_used=37,
            cost=0.002,
        )


@pytest.fixture
def config(memory_storage):
    user = memory_storage.upsert_user(discord_id="999", username="Ada")
    return memory_storage.create_bot_config(
        user_id=user.id,
        guild_id="100200300",
        guild_name="Ada's Server",
        bot_name="Helper",
        ai_model="openai/gpt-4o",
        system_prompt="Be brief.",
        policy_content="No refunds after 30 days.",
    )


def _ctx(storage, config, generator=None, is_running=True):
    return CommandContext(
        storage=storage,
        generator=generator or PlaceholderResponseGenerator(),
        config=config,
        is_running=is_running,
    )


class TestDefinitions:
    def test_three_guild_commands(self):
        assert [c["name"] for c in COMMAND_DEFINITIONS] == ["help", "support", "feedback"]

    def test_support_requires_question(self):
        support = next(c for c in COMMAND_DEFINITIONS if c["name"] == "support")
        assert support["options"][0]["name"] == "question"
        assert support["options"][0]["required"] is True


class TestHelpers:
    def test_option_value(self):
        interaction = make_interaction(
            "feedback",
            options=[{"name": "rating", "value": 4}, {"name": "comment", "value": "ok"}],
        )
        assert option_value(interaction, "rating") == 4
        assert option_value(interaction, "missing") is None

    def test_reply_truncates_long_content(self):
        interaction = make_interaction()
        run_async(reply(interaction, "x" * (MAX_MESSAGE_LENGTH + 50)))
        assert len(replies(interaction)[0]) == MAX_MESSAGE_LENGTH


class TestHelp:
    def test_shows_config_details(self, memory_storage, config):
        interaction = make_interaction("help")

        run_async(handle_help(interaction, _ctx(memory_storage, config, is_running=True)))

        text = replies(interaction)[0]
        assert "Helper Help" in text
        assert "Ada's Server" in text
        assert "openai/gpt-4o" in text
        assert "🟢 Active" in text


class TestSupport:
    def test_empty_question_is_rejected(self, memory_storage, config):
        interaction = make_interaction("support", options=[{"name": "question", "value": "  "}])

        run_async(handle_support(interaction, _ctx(memory_storage, config)))

        assert replies(interaction) == ["❌ Please provide a question for support."]
        assert interaction.response.deferred is False

    def test_placeholder_answer_defers_then_follows_up(self, memory_storage, config):
        interaction = make_interaction(
            "support", options=[{"name": "question", "value": "How do refunds work?"}]
        )

        run_async(handle_support(interaction, _ctx(memory_storage, config)))

        assert interaction.response.deferred is True
        sent = replies(interaction)
        assert len(sent) == 1
        assert sent[0].startswith("🤖 **AI Support Response**")
        assert "How do refunds work?" in sent[0]
        # The placeholder reports no tokens, so nothing is metered.
        assert memory_storage.list_api_usage(config.id) == []

    def test_generator_receives_policy_and_usage_is_recorded(self, memory_storage, config):
        generator = MeteredGenerator()
        interaction = make_interaction(
            "support", options=[{"name": "question", "value": "Refund?"}]
        )

        run_async(handle_support(interaction, _ctx(memory_storage, config, generator)))

        question, policy, model_config = generator.calls[0]
        assert question == "Refund?"
        assert policy == "No refunds after 30 days."
        assert model_config == ModelConfig(model="openai/gpt-4o", system_prompt="Be brief.")
        assert replies(interaction) == ["Try turning it off and on again."]

        (usage,) = memory_storage.list_api_usage(config.id)
        assert usage.provider == "openai"
        assert usage.tokens_used == 37


class TestFeedback:
    def test_records_review(self, memory_storage, config):
        interaction = make_interaction(
            "feedback",
            options=[{"name": "rating", "value": 5}, {"name": "comment", "value": "Great"}],
            username="bob",
        )

        run_async(handle_feedback(interaction, _ctx(memory_storage, config)))

        assert replies(interaction) == ["🙏 Thanks for your feedback!"]
        (review,) = memory_storage.list_user_reviews(config.id)
        assert review.username == "bob"
        assert review.rating == 5
        assert review.feedback == "Great"

    @pytest.mark.parametrize("rating", [0, 6, None, "five"])
    def test_out_of_range_rating_is_rejected(self, memory_storage, config, rating):
        interaction = make_interaction("feedback", options=[{"name": "rating", "value": rating}])

        run_async(handle_feedback(interaction, _ctx(memory_storage, config)))

        assert replies(interaction) == ["❌ Rating must be between 1 and 5."]
        assert memory_storage.list_user_reviews(config.id) == []


class TestModelConfig:
    @pytest.mark.parametrize(
        ("model", "provider"),
        [("openai/gpt-4o", "openai"), ("anthropic/claude", "anthropic"), ("local", "unknown")],
    )
    def test_provider_prefix(self, model, provider):
        assert ModelConfig(model=model).provider == provider
