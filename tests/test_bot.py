"""
Bot lifecycle tests - Token validation, service wiring, extension loading and cleanup.
"""

import os
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from guildbot import bot as bot_module
from guildbot.clients import CachedComlinkClient, CachedMhanndalorianClient
from guildbot.services import BotServices, build_services


@pytest.fixture
def lifecycle_bot():
    bot = MagicMock()
    bot._extensions_loaded = False
    bot._db_pool_initialized = False
    bot._background_tasks = []
    bot.http_session = None
    bot.services = None
    return bot


class TestTokenValidation:
    def test_valid_token(self):
        assert bot_module.validate_token().startswith("MTE0ODk5")

    @pytest.mark.parametrize("token", [
        " MTE0ODk5Mjc4NjU1MTI0Njg0OA.G2dKr2.fake_discord_token_for_testing ",
        "MTE0ODk5Mjc4NjU1MTI0Njg0OAG2dKr2fake_discord_token_for_testing_with_length",
    ])
    def test_malformed_token(self, token):
        with patch.dict(os.environ, {"DISCORD_TOKEN": token}):
            with pytest.raises(SystemExit):
                bot_module.validate_token()


class TestServiceWiring:
    """Test the service container built at startup."""

    def test_without_mhanndalorian_credentials(self, mock_bot):
        services = build_services(mock_bot, MagicMock())

        assert isinstance(services, BotServices)
        assert isinstance(services.comlink, CachedComlinkClient)
        assert services.mhanndalorian is None
        assert services.summary.violation_store is services.violation_store
        assert services.monitor.summary_service is services.summary
        assert services.monitor.run_once is False
        assert services.cache.default_ttl == 120

    def test_with_mhanndalorian_credentials(self, mock_bot):
        credentials = {
            "MHANNDALORIAN_API_KEY": "key",
            "MHANNDALORIAN_DISCORD_ID": "42",
            "MHANNDALORIAN_ALLY_CODE": "123456789",
        }
        with patch.dict(os.environ, credentials):
            services = build_services(mock_bot, MagicMock())

        assert isinstance(services.mhanndalorian, CachedMhanndalorianClient)

    def test_development_enables_run_once(self, mock_bot):
        with patch.dict(os.environ, {"ENVIRONMENT": "development"}):
            services = build_services(mock_bot, MagicMock())

        assert services.monitor.run_once is True


class TestExtensions:
    def test_all_loaded(self, lifecycle_bot):
        bot_module.load_extensions(lifecycle_bot)

        loaded = [call.args[0] for call in lifecycle_bot.load_extension.call_args_list]
        assert loaded == list(bot_module.EXTENSIONS)
        assert lifecycle_bot._extensions_loaded is True

    def test_loaded_once(self, lifecycle_bot):
        bot_module.load_extensions(lifecycle_bot)
        bot_module.load_extensions(lifecycle_bot)

        assert lifecycle_bot.load_extension.call_count == len(bot_module.EXTENSIONS)

    def test_single_failure_tolerated(self, lifecycle_bot):
        lifecycle_bot.load_extension.side_effect = [None, RuntimeError("broken"), None]

        bot_module.load_extensions(lifecycle_bot)

        assert lifecycle_bot._extensions_loaded is True

    def test_too_many_failures(self, lifecycle_bot):
        lifecycle_bot.load_extension.side_effect = RuntimeError("broken")

        with pytest.raises(SystemExit):
            bot_module.load_extensions(lifecycle_bot)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_services_stopped_and_resources_closed(self, lifecycle_bot):
        services = Mock()
        services.monitor.stop = Mock()
        services.cache.stop = AsyncMock()
        session = Mock(closed=False)
        session.close = AsyncMock()
        lifecycle_bot.services = services
        lifecycle_bot.http_session = session
        lifecycle_bot._db_pool_initialized = True

        with patch.object(bot_module, "close_db_pool", AsyncMock()) as close_pool:
            await bot_module.cleanup_background_tasks(lifecycle_bot)

        services.monitor.stop.assert_called_once()
        services.cache.stop.assert_awaited_once()
        session.close.assert_awaited_once()
        close_pool.assert_awaited_once()
        assert lifecycle_bot.http_session is None
        assert lifecycle_bot._db_pool_initialized is False
