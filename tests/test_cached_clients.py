"""
Cached facade tests - Cache keys, TTLs and retry composition.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from guildbot.cache import CacheService
from guildbot.clients.base import UpstreamAPIError
from guildbot.clients.cached import (
    TB_CACHE_TTL,
    CachedComlinkClient,
    CachedMhanndalorianClient,
    build_cache_key,
)
from guildbot.core.reliability import RetryManager


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheService(default_ttl=120, clock=clock)


@pytest.fixture
def retry():
    return RetryManager(sleep=AsyncMock())


class TestCacheKeys:
    """Test deterministic cache key construction."""

    def test_booleans_lowercased(self):
        assert build_cache_key("comlink", "guild", "g1", True) == "comlink:guild:g1:true"
        assert build_cache_key("comlink", "guild", "g1", False) == "comlink:guild:g1:false"

    def test_missing_arguments_become_default(self):
        assert build_cache_key("mhanndalorian", "tb", None, False) == "mhanndalorian:tb:default:false"
        assert build_cache_key("mhanndalorian", "tb", "", False) == "mhanndalorian:tb:default:false"


class TestCachedComlinkClient:
    """Test the cached comlink facade."""

    @pytest.fixture
    def raw_client(self):
        client = Mock()
        client.get_guild = AsyncMock(return_value={"guild": {"member": []}})
        client.get_player = AsyncMock(return_value={"guildId": "g1"})
        return client

    @pytest.mark.asyncio
    async def test_guild_read_cached_under_key(self, raw_client, cache, retry):
        facade = CachedComlinkClient(raw_client, cache, retry)

        await facade.get_guild("g1", True)
        await facade.get_guild("g1", True)

        raw_client.get_guild.assert_awaited_once_with("g1", True)
        assert cache.get("comlink:guild:g1:true") == {"guild": {"member": []}}

    @pytest.mark.asyncio
    async def test_include_activity_is_part_of_key(self, raw_client, cache, retry):
        facade = CachedComlinkClient(raw_client, cache, retry)

        await facade.get_guild("g1", True)
        await facade.get_guild("g1", False)

        assert raw_client.get_guild.await_count == 2

    @pytest.mark.asyncio
    async def test_player_expires_with_default_ttl(self, raw_client, cache, retry, clock):
        facade = CachedComlinkClient(raw_client, cache, retry)

        await facade.get_player("123456789")
        clock.now = 120
        await facade.get_player("123456789")

        assert raw_client.get_player.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_failure_retried_inside_miss(self, raw_client, cache, retry):
        raw_client.get_guild.side_effect = [
            UpstreamAPIError("unavailable", status=503),
            {"guild": {"member": [1]}},
        ]
        facade = CachedComlinkClient(raw_client, cache, retry)

        assert await facade.get_guild("g1") == {"guild": {"member": [1]}}
        assert raw_client.get_guild.await_count == 2
        assert cache.get("comlink:guild:g1:true") == {"guild": {"member": [1]}}

    @pytest.mark.asyncio
    async def test_exhausted_failure_not_cached(self, raw_client, cache, retry):
        raw_client.get_guild.side_effect = UpstreamAPIError("unavailable", status=503)
        facade = CachedComlinkClient(raw_client, cache, retry)

        with pytest.raises(UpstreamAPIError):
            await facade.get_guild("g1")

        assert raw_client.get_guild.await_count == 4
        assert cache.get("comlink:guild:g1:true") is None


class TestCachedMhanndalorianClient:
    """Test the cached Mhanndalorian facade."""

    @pytest.fixture
    def raw_client(self):
        client = Mock()
        client.get_tb = AsyncMock(return_value={"is_active": False})
        client.get_player = AsyncMock(return_value={"name": "Player"})
        return client

    @pytest.mark.asyncio
    async def test_tb_uses_long_ttl(self, raw_client, cache, retry, clock):
        facade = CachedMhanndalorianClient(raw_client, cache, retry)

        await facade.get_tb()
        clock.now = TB_CACHE_TTL - 1
        await facade.get_tb()
        assert raw_client.get_tb.await_count == 1

        clock.now = TB_CACHE_TTL
        await facade.get_tb()
        assert raw_client.get_tb.await_count == 2

    @pytest.mark.asyncio
    async def test_default_ally_code_key(self, raw_client, cache, retry):
        facade = CachedMhanndalorianClient(raw_client, cache, retry)

        await facade.get_tb()

        raw_client.get_tb.assert_awaited_once_with(None, False)
        assert cache.get("mhanndalorian:tb:default:false") == {"is_active": False}

    @pytest.mark.asyncio
    async def test_player_key(self, raw_client, cache, retry):
        facade = CachedMhanndalorianClient(raw_client, cache, retry)

        await facade.get_player("123456789", True)

        assert cache.get("mhanndalorian:player:123456789:true") == {"name": "Player"}
