"""Tests for environment-driven settings."""

import os
from datetime import timedelta
from unittest.mock import patch

from prism_keys.config import DEFAULT_LIFETIME_KEY_DAYS, Settings
from prism_keys.models.key_models import KeyTier


class TestSettingsFromEnv:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        assert settings.discord_token == ""
        assert settings.key_store == "postgres"
        assert settings.whitelist_users == frozenset()
        assert settings.lifetime_key_days == DEFAULT_LIFETIME_KEY_DAYS
        assert settings.bot_configured is False
        assert settings.oauth_configured is False
        assert len(settings.session_secret) == 64

    def test_id_lists_are_split_and_trimmed(self):
        env = {
            "DISCORD_WHITELIST_USERS": "1, 2,,3 ",
            "DISCORD_MONTH_KEY_USERS": "4",
            "VIP_USER_IDS": "5,6",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.whitelist_users == {"1", "2", "3"}
        assert settings.elevated_issuers == {"4"}
        assert settings.vip_user_ids == {"5", "6"}

    def test_bot_token_alias(self):
        env = {"DISCORD_BOT_TOKEN": "token", "DISCORD_CLIENT_ID": "app"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.discord_token == "token"
        assert settings.bot_configured is True

    def test_blank_token_means_not_configured(self):
        env = {"DISCORD_TOKEN": "   ", "DISCORD_CLIENT_ID": "app"}
        with patch.dict(os.environ, env, clear=True):
            assert Settings.from_env().bot_configured is False

    def test_optional_restrictions(self):
        env = {"DISCORD_GUILD_ID": "g", "DISCORD_CHANNEL_ID": "", "KEY_STORE": "MEMORY"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.guild_id == "g"
        assert settings.command_channel_id is None
        assert settings.key_store == "memory"

    def test_session_secret_from_env(self):
        with patch.dict(os.environ, {"SESSION_SECRET": "s3cret"}, clear=True):
            assert Settings.from_env().session_secret == "s3cret"


class TestTierDurations:
    def test_durations(self):
        durations = Settings(lifetime_key_days=100).tier_durations()

        assert durations[KeyTier.SHORT_LIVED] == timedelta(hours=24)
        assert durations[KeyTier.MONTH] == timedelta(days=30)
        assert durations[KeyTier.YEAR] == timedelta(days=365)
        assert durations[KeyTier.LIFETIME] == timedelta(days=100)
