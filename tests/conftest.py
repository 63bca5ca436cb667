"""
Pytest configuration and fixtures for the bot tests.
"""

import os
from unittest.mock import AsyncMock, MagicMock, Mock

import discord
import pytest

# Set environment variables before the configuration is first read
env_vars = {
    "DISCORD_TOKEN": "MTE0ODk5Mjc4NjU1MTI0Njg0OA.G2dKr2.fake_discord_token_for_testing_with_length",
    "DB_USER": "test_user",
    "DB_PASSWORD": "test_password",
    "DB_HOST": "localhost",
    "DB_PORT": "3306",
    "DB_NAME": "test_database",
    "ENVIRONMENT": "test",
    "DEBUG": "False",
    "PRODUCTION": "False",
}

for key, value in env_vars.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def fresh_config():
    """Reload configuration from the environment for every test."""
    from guildbot import config

    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def mock_bot():
    """Bot double with a channel cache and slash command registration."""
    bot = MagicMock()
    bot.get_channel = Mock(return_value=None)
    bot.fetch_channel = AsyncMock()
    bot.wait_until_ready = AsyncMock()
    bot.slash_command = Mock(return_value=lambda func: func)
    return bot


@pytest.fixture
def mock_text_channel():
    channel = AsyncMock(spec=discord.TextChannel)
    channel.id = 987654321
    channel.mention = "<#987654321>"
    channel.send = AsyncMock()
    return channel


@pytest.fixture
def mock_ctx(mock_text_channel):
    """Application context double for slash command handlers."""
    ctx = MagicMock()
    ctx.author.id = 123456789
    ctx.author.mention = "<@123456789>"
    ctx.channel = mock_text_channel
    ctx.respond = AsyncMock()
    ctx.defer = AsyncMock()
    ctx.followup.send = AsyncMock()
    return ctx


@pytest.fixture
def player_store():
    store = Mock()
    store.get_player = AsyncMock(return_value=None)
    store.add_user = AsyncMock(return_value=True)
    store.remove_ally_code = AsyncMock(return_value=True)
    store.remove_player = AsyncMock(return_value=True)
    return store


@pytest.fixture
def guild_registry():
    registry = Mock()
    registry.get_all_guilds = AsyncMock(return_value=[])
    registry.register_channel = AsyncMock(return_value=True)
    registry.get_guild_channel = AsyncMock(return_value=None)
    registry.unregister_channel = AsyncMock(return_value=True)
    return registry


@pytest.fixture
def violation_store():
    store = Mock()
    store.record_violations = AsyncMock(return_value=True)
    store.get_weekly_violations = AsyncMock(return_value=[])
    store.get_monthly_violations = AsyncMock(return_value=[])
    store.get_custom_period_violations = AsyncMock(return_value=[])
    return store


@pytest.fixture
def game_data():
    source = Mock()
    source.get_guild = AsyncMock(return_value={})
    source.get_player = AsyncMock(return_value={})
    return source


def make_member(player_id: str, name: str, tickets=None) -> dict:
    """Comlink guild member with an optional daily ticket contribution."""
    contributions = [{"type": 1, "currentValue": 42}]
    if tickets is not None:
        contributions.append({"type": 2, "currentValue": tickets})
    return {"playerId": player_id, "playerName": name, "memberContribution": contributions}


def make_guild_response(members, name: str = "Test Guild", next_refresh: str = "1700000000") -> dict:
    return {
        "guild": {
            "profile": {"id": "guild123", "name": name},
            "nextChallengesRefresh": next_refresh,
            "member": members,
        }
    }


@pytest.fixture
def member_factory():
    return make_member


@pytest.fixture
def guild_response_factory():
    return make_guild_response
