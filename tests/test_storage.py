"""
tests/test_storage.py — Configuration Store (both backends)
=============================================================
Every test in this module runs against MemoryStorage and SQLStorage via the
parametrized ``storage`` fixture, so the two backends cannot drift apart.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from discordassist.storage import memory as memory_module
from discordassist.storage import sql as sql_module
from discordassist.storage.base import compute_bot_config_stats, compute_dashboard_stats
from discordassist.storage.records import CommandLogRecord, UserReviewRecord


def _user(storage, discord_id="999", username="Ada"):
    return storage.upsert_user(discord_id=discord_id, username=username)


def _config(storage, user, guild_id="100200300", **overrides):
    fields = {
        "user_id": user.id,
        "guild_id": guild_id,
        "guild_name": "Ada's Server",
        "bot_name": "Support Bot",
        "ai_model": "openai/gpt-4o",
    }
    fields.update(overrides)
    return storage.create_bot_config(**fields)


def _log(storage, config, success=True, response_time=100, command="help"):
    return storage.create_command_log(
        bot_config_id=config.id,
        command_name=command,
        username="alice",
        channel_name="general",
        success=success,
        response_time=response_time,
    )


# ===========================================================================
# Users
# ===========================================================================
class TestUpsertUser:
    def test_creates_user_on_first_login(self, storage):
        user = storage.upsert_user(
            discord_id="999", username="Ada", avatar_url="https://cdn/a.png", email="ada@x.io"
        )
        assert user.discord_id == "999"
        assert user.username == "Ada"
        assert user.email == "ada@x.io"
        assert user.created_at.tzinfo is not None
        assert storage.get_user(user.id) == user

    def test_upsert_is_idempotent_per_discord_id(self, storage):
        first = storage.upsert_user(discord_id="999", username="Ada", email="ada@x.io")
        second = storage.upsert_user(discord_id="999", username="Ada Lovelace")

        assert second.id == first.id
        assert second.username == "Ada Lovelace"
        # Absent fields keep their previous value.
        assert second.email == "ada@x.io"
        assert second.last_login >= first.last_login
        assert storage.get_user_by_discord_id("999").id == first.id

    def test_unknown_lookups_return_none(self, storage):
        assert storage.get_user("nope") is None
        assert storage.get_user_by_discord_id("1") is None


# ===========================================================================
# Bot configurations
# ===========================================================================
class TestBotConfigs:
    def test_create_defaults(self, storage):
        user = _user(storage)
        config = _config(storage, user, allowed_channels=["111"], allowed_roles=["5", "6"])

        assert config.user_id == user.id
        assert config.is_active is False
        assert config.allowed_channels == ("111",)
        assert config.allowed_roles == ("5", "6")
        assert config.admin_only is False
        assert config.policy_updated_at is None
        assert storage.get_bot_config(config.id) == config

    def test_policy_content_sets_policy_timestamp(self, storage):
        user = _user(storage)
        config = _config(storage, user, policy_content="Be nice.")
        assert config.policy_updated_at is not None

    def test_create_for_unknown_user_raises_key_error(self, storage):
        with pytest.raises(KeyError):
            storage.create_bot_config(
                user_id="ghost",
                guild_id="1",
                guild_name="g",
                bot_name="b",
                ai_model="m",
            )

    def test_lookup_by_guild_is_scoped_to_owner(self, storage):
        ada = _user(storage)
        bob = _user(storage, "1000", "Bob")
        config = _config(storage, ada, guild_id="555")

        assert storage.get_bot_config_by_guild_id("555", ada.id).id == config.id
        assert storage.get_bot_config_by_guild_id("555", bob.id) is None

    def test_list_returns_only_owned_configs(self, storage):
        ada = _user(storage)
        bob = _user(storage, "1000", "Bob")
        _config(storage, ada, guild_id="1")
        _config(storage, ada, guild_id="2")
        _config(storage, bob, guild_id="3")

        assert sorted(c.guild_id for c in storage.list_bot_configs(ada.id)) == ["1", "2"]
        assert [c.guild_id for c in storage.list_bot_configs(bob.id)] == ["3"]

    def test_update_touches_updated_at(self, storage):
        user = _user(storage)
        config = _config(storage, user)

        updated = storage.update_bot_config(
            config.id, bot_name="Helper", allowed_channels=["9"], policy_content="Rules"
        )

        assert updated.bot_name == "Helper"
        assert updated.allowed_channels == ("9",)
        assert updated.updated_at >= config.updated_at
        assert updated.policy_updated_at is not None
        assert storage.get_bot_config(config.id).bot_name == "Helper"

    def test_update_missing_config_returns_none(self, storage):
        assert storage.update_bot_config("missing", bot_name="x") is None

    def test_set_active_and_reconcile(self, storage):
        user = _user(storage)
        a = _config(storage, user, guild_id="1")
        b = _config(storage, user, guild_id="2")
        storage.set_bot_config_active(a.id, True)
        storage.set_bot_config_active(b.id, True)

        assert storage.deactivate_all_bot_configs() == 2
        assert storage.get_bot_config(a.id).is_active is False
        assert storage.deactivate_all_bot_configs() == 0

    def test_owner_scoped_reconcile_keeps_other_owners_flags(self, storage):
        user = _user(storage)
        api_held = _config(storage, user, guild_id="1")
        runner_held = _config(storage, user, guild_id="2")
        unowned = _config(storage, user, guild_id="3")
        storage.set_bot_config_active(api_held.id, True, owner="api")
        storage.set_bot_config_active(runner_held.id, True, owner="runner")
        storage.set_bot_config_active(unowned.id, True)

        assert storage.deactivate_all_bot_configs(owner="runner") == 2

        assert storage.get_bot_config(api_held.id).is_active is True
        assert storage.get_bot_config(runner_held.id).is_active is False
        assert storage.get_bot_config(unowned.id).is_active is False

    def test_inactive_flag_clears_owner(self, storage):
        user = _user(storage)
        config = _config(storage, user)
        storage.set_bot_config_active(config.id, True, owner="api")
        storage.set_bot_config_active(config.id, False)
        storage.set_bot_config_active(config.id, True)

        # No owner recorded any more, so any process may reset it.
        assert storage.deactivate_all_bot_configs(owner="runner") == 1

    def test_delete_cascades_to_history(self, storage):
        user = _user(storage)
        config = _config(storage, user)
        _log(storage, config)
        storage.create_user_review(bot_config_id=config.id, username="alice", rating=5)
        storage.create_api_usage(
            bot_config_id=config.id, provider="openai", model="gpt-4o", tokens_used=12
        )

        assert storage.delete_bot_config(config.id) is True

        assert storage.get_bot_config(config.id) is None
        assert storage.list_command_logs(config.id) == []
        assert storage.list_user_reviews(config.id) == []
        assert storage.list_api_usage(config.id) == []
        assert storage.delete_bot_config(config.id) is False


# ===========================================================================
# Logs, reviews, usage
# ===========================================================================
class TestHistory:
    def test_children_require_existing_config(self, storage):
        with pytest.raises(KeyError):
            storage.create_command_log(
                bot_config_id="missing",
                command_name="help",
                username="alice",
                channel_name=None,
                success=True,
            )
        with pytest.raises(KeyError):
            storage.create_user_review(bot_config_id="missing", username="a", rating=3)
        with pytest.raises(KeyError):
            storage.create_api_usage(
                bot_config_id="missing", provider="p", model="m", tokens_used=1
            )

    def test_list_limit(self, storage):
        user = _user(storage)
        config = _config(storage, user)
        for _ in range(5):
            _log(storage, config)

        assert len(storage.list_command_logs(config.id, limit=3)) == 3
        assert len(storage.list_command_logs(config.id)) == 5

    def test_recent_activity_spans_owned_configs_only(self, storage):
        ada = _user(storage)
        bob = _user(storage, "1000", "Bob")
        a1 = _config(storage, ada, guild_id="1")
        a2 = _config(storage, ada, guild_id="2")
        b1 = _config(storage, bob, guild_id="3")
        _log(storage, a1)
        _log(storage, a2)
        _log(storage, b1)

        recent = storage.list_recent_command_logs(ada.id)
        assert {log.bot_config_id for log in recent} == {a1.id, a2.id}

    def test_review_and_usage_round_trip(self, storage):
        user = _user(storage)
        config = _config(storage, user)
        review = storage.create_user_review(
            bot_config_id=config.id, username="alice", rating=4, feedback="Quick"
        )
        usage = storage.create_api_usage(
            bot_config_id=config.id, provider="openai", model="gpt-4o", tokens_used=42, cost=0.01
        )

        assert storage.list_user_reviews(config.id) == [review]
        assert storage.list_api_usage(config.id) == [usage]
        assert usage.to_dict()["tokens_used"] == 42


class TestNewestFirstOrdering:
    @pytest.fixture
    def frozen_clock(self, monkeypatch):
        """Every row written during the test gets the same timestamp."""
        instant = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        monkeypatch.setattr(memory_module, "utcnow", lambda: instant)
        monkeypatch.setattr(sql_module, "utcnow", lambda: instant)
        return instant

    def test_equal_timestamps_list_later_inserts_first(self, storage, frozen_clock):
        user = _user(storage)
        config = _config(storage, user)
        for name in ("first", "second", "third"):
            _log(storage, config, command=name)
            storage.create_user_review(bot_config_id=config.id, username=name, rating=3)
            storage.create_api_usage(
                bot_config_id=config.id, provider="openai", model=name, tokens_used=1
            )

        expected = ["third", "second", "first"]
        assert [log.command_name for log in storage.list_command_logs(config.id)] == expected
        assert [
            log.command_name for log in storage.list_recent_command_logs(user.id)
        ] == expected
        assert [r.username for r in storage.list_user_reviews(config.id)] == expected
        assert [u.model for u in storage.list_api_usage(config.id)] == expected
        assert [
            log.command_name for log in storage.list_command_logs(config.id, limit=1)
        ] == ["third"]


# ===========================================================================
# Aggregates
# ===========================================================================
class TestStats:
    def test_bot_config_stats(self, storage):
        user = _user(storage)
        config = _config(storage, user)
        _log(storage, config, success=True, response_time=100)
        _log(storage, config, success=True, response_time=200)
        _log(storage, config, success=False, response_time=None)
        storage.create_user_review(bot_config_id=config.id, username="a", rating=4)
        storage.create_user_review(bot_config_id=config.id, username="b", rating=5)

        stats = storage.get_bot_config_stats(config.id)

        assert stats.total_commands == 3
        assert stats.successful_commands == 2
        assert stats.avg_response_time == 150
        assert stats.avg_rating == 4.5

    def test_empty_stats_are_zero(self, storage):
        user = _user(storage)
        config = _config(storage, user)

        stats = storage.get_bot_config_stats(config.id)
        assert stats.to_dict() == {
            "total_commands": 0,
            "successful_commands": 0,
            "avg_rating": 0,
            "avg_response_time": 0,
        }

    def test_dashboard_stats(self, storage):
        user = _user(storage)
        a = _config(storage, user, guild_id="1")
        b = _config(storage, user, guild_id="2")
        storage.set_bot_config_active(a.id, True)
        _log(storage, a, success=True)
        _log(storage, a, success=False)
        _log(storage, b, success=True)

        stats = storage.get_dashboard_stats(user.id)

        assert stats.total_bots == 2
        assert stats.active_bots == 1
        assert stats.total_commands == 3
        assert stats.success_rate == 67


class TestAggregationHelpers:
    NOW = datetime(2026, 1, 1, tzinfo=UTC)

    def _log(self, success, response_time):
        return CommandLogRecord(
            id="x",
            bot_config_id="c",
            command_name="help",
            username="u",
            channel_name=None,
            success=success,
            error_message=None,
            response_time=response_time,
            executed_at=self.NOW,
        )

    def test_zero_response_time_counts_toward_average(self):
        stats = compute_bot_config_stats([self._log(True, 0), self._log(True, 100)], [])
        assert stats.avg_response_time == 50

    def test_success_rate_rounds_half_up(self):
        # 1 of 8 → 12.5 → 13
        logs = [self._log(True, None)] + [self._log(False, None)] * 7
        assert compute_dashboard_stats([], logs).success_rate == 13

    def test_average_rating(self):
        reviews = [
            UserReviewRecord(
                id=str(i), bot_config_id="c", username="u", rating=r, feedback=None,
                created_at=self.NOW,
            )
            for i, r in enumerate((1, 2, 4))
        ]
        stats = compute_bot_config_stats([], reviews)
        assert stats.avg_rating == pytest.approx(7 / 3)


# ===========================================================================
# Sessions
# ===========================================================================
class TestSessions:
    def test_create_get_delete(self, storage):
        user = _user(storage)
        expires = datetime.now(UTC) + timedelta(hours=1)
        created = storage.create_session(session_id="sid-1", user_id=user.id, expires_at=expires)

        fetched = storage.get_session("sid-1")
        assert fetched.user_id == user.id
        assert fetched.expires_at == created.expires_at

        assert storage.delete_session("sid-1") is True
        assert storage.get_session("sid-1") is None
        assert storage.delete_session("sid-1") is False

    def test_session_for_unknown_user_raises_key_error(self, storage):
        with pytest.raises(KeyError):
            storage.create_session(
                session_id="sid", user_id="ghost", expires_at=datetime.now(UTC)
            )

    def test_purge_expired(self, storage):
        user = _user(storage)
        now = datetime.now(UTC)
        storage.create_session(
            session_id="old", user_id=user.id, expires_at=now + timedelta(minutes=1)
        )
        storage.create_session(
            session_id="new", user_id=user.id, expires_at=now + timedelta(hours=2)
        )

        assert storage.purge_expired_sessions(now + timedelta(minutes=5)) == 1
        assert storage.get_session("old") is None
        assert storage.get_session("new") is not None


# ===========================================================================
# OAuth states
# ===========================================================================
class TestOAuthStates:
    def test_state_is_consumed_once(self, storage):
        storage.create_oauth_state("popup.abc")

        assert storage.consume_oauth_state("popup.abc") is True
        assert storage.consume_oauth_state("popup.abc") is False

    def test_unknown_state_is_rejected(self, storage):
        assert storage.consume_oauth_state("redirect.never-issued") is False

    def test_stale_state_is_rejected(self, storage):
        storage.create_oauth_state("popup.old")

        assert storage.consume_oauth_state("popup.old", max_age_seconds=-1) is False
        assert storage.consume_oauth_state("popup.old") is False
