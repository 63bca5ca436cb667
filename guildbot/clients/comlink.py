"""
Comlink Client - Raw access to a swgoh-comlink instance.

Comlink proxies the game servers; guild reads carry the member list with the
per-member contribution counters the ticket monitor consumes.
"""

import hashlib
import hmac
import time
from typing import Any, Dict, Optional

import aiohttp

from .base import BaseAPIClient


class ComlinkClient(BaseAPIClient):
    """Client for the comlink /guild and /player endpoints."""

    service_name = "Comlink"

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        access_key: str = "",
        secret_key: str = "",
        timeout: float = 30,
    ):
        super().__init__(base_url, session=session, timeout=timeout)
        self._access_key = access_key
        self._secret_key = secret_key

    def _auth_headers(self, endpoint: str, body: str, payload: Any) -> Dict[str, str]:
        if not (self._access_key and self._secret_key):
            return {}
        request_time = str(int(time.time() * 1000))
        digest = hmac.new(self._secret_key.encode(), digestmod=hashlib.sha256)
        digest.update(request_time.encode())
        digest.update(b"POST")
        digest.update(endpoint.encode())
        digest.update(hashlib.md5(body.encode()).hexdigest().encode())
        return {
            "X-Date": request_time,
            "Authorization": (
                f"HMAC-SHA256 Credential={self._access_key},"
                f"Signature={digest.hexdigest()}"
            ),
        }

    async def get_guild(self, guild_id: str, include_activity: bool = True) -> Dict[str, Any]:
        """
        Fetch a guild with its member list.

        Returns:
            Response of the form {"guild": {"member": [...], "profile": {...},
            "nextChallengesRefresh": "..."}}
        """
        payload = {
            "guildId": guild_id,
            "includeRecentGuildActivityInfo": include_activity,
        }
        return await self._post("/guild", {"payload": payload, "enums": False}, payload)

    async def get_player(self, ally_code: str) -> Dict[str, Any]:
        """Fetch a player profile (name, guildId, guildName, ...) by ally code."""
        payload = {"allyCode": str(ally_code)}
        return await self._post("/player", {"payload": payload, "enums": False}, payload)
