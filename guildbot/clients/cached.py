"""
Cached API Facades - Cache and retry composed around the upstream clients.

Every read builds a deterministic key from the method name and its effective
arguments, then goes through CacheService.get_or_set. The network call inside
the miss closure is wrapped by the retry policy, so retries only happen on
genuine fetches. Errors propagate uncached; callers treat them as "data
unavailable now".
"""

from typing import Any, Dict, Optional, Protocol

from ..cache import CacheService
from ..core.reliability import RetryManager
from .comlink import ComlinkClient
from .mhanndalorian import MhanndalorianClient, TerritoryBattle

TB_CACHE_TTL = 15 * 60


class GameDataSource(Protocol):
    """Read capabilities the ticket monitor and summaries depend on."""

    async def get_guild(self, guild_id: str, include_activity: bool = True) -> Dict[str, Any]:
        ...

    async def get_player(self, ally_code: str) -> Dict[str, Any]:
        ...


def build_cache_key(namespace: str, method: str, *args: Any) -> str:
    """
    Build a cache key from a namespace, method name and arguments.

    None becomes "default" and booleans are lowercased, so calls with the
    same effective arguments share an entry.
    """
    parts = [namespace, method]
    for arg in args:
        if arg is None or arg == "":
            parts.append("default")
        elif isinstance(arg, bool):
            parts.append("true" if arg else "false")
        else:
            parts.append(str(arg))
    return ":".join(parts)


class CachedComlinkClient:
    """Cached, retrying view over ComlinkClient."""

    namespace = "comlink"

    def __init__(
        self,
        client: ComlinkClient,
        cache: CacheService,
        retry: Optional[RetryManager] = None,
    ):
        self._client = client
        self._cache = cache
        self._retry = retry or RetryManager()

    async def get_guild(self, guild_id: str, include_activity: bool = True) -> Dict[str, Any]:
        key = build_cache_key(self.namespace, "guild", guild_id, include_activity)
        return await self._cache.get_or_set(
            key,
            lambda: self._retry.retry_with_backoff(
                lambda: self._client.get_guild(guild_id, include_activity),
                "comlink.get_guild",
            ),
        )

    async def get_player(self, ally_code: str) -> Dict[str, Any]:
        key = build_cache_key(self.namespace, "player", ally_code)
        return await self._cache.get_or_set(
            key,
            lambda: self._retry.retry_with_backoff(
                lambda: self._client.get_player(ally_code),
                "comlink.get_player",
            ),
        )


class CachedMhanndalorianClient:
    """Cached, retrying view over MhanndalorianClient."""

    namespace = "mhanndalorian"

    def __init__(
        self,
        client: MhanndalorianClient,
        cache: CacheService,
        retry: Optional[RetryManager] = None,
        tb_ttl: float = TB_CACHE_TTL,
    ):
        self._client = client
        self._cache = cache
        self._retry = retry or RetryManager()
        self.tb_ttl = tb_ttl

    async def get_player(self, ally_code: Optional[str] = None, enums: bool = False) -> Dict[str, Any]:
        key = build_cache_key(self.namespace, "player", ally_code, enums)
        return await self._cache.get_or_set(
            key,
            lambda: self._retry.retry_with_backoff(
                lambda: self._client.get_player(ally_code, enums),
                "mhanndalorian.get_player",
            ),
        )

    async def get_tb(self, ally_code: Optional[str] = None, enums: bool = False) -> TerritoryBattle:
        """Territory battle status, cached longer since it changes slowly."""
        key = build_cache_key(self.namespace, "tb", ally_code, enums)
        return await self._cache.get_or_set(
            key,
            lambda: self._retry.retry_with_backoff(
                lambda: self._client.get_tb(ally_code, enums),
                "mhanndalorian.get_tb",
            ),
            ttl=self.tb_ttl,
        )
