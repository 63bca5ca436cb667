"""
Mhanndalorian Client - Authenticated access to the Mhanndalorian bot API.

Provides player profiles and live territory battle status. Requests are
authenticated either with the plain api-key header or with an HMAC signature
over timestamp, method, endpoint and payload digest.
"""

import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional, TypedDict

import aiohttp

from .base import BaseAPIClient, compact_json
from ..core.logger import ComponentLogger

DEFAULT_BASE_URL = "https://mhanndalorianbot.work/api"

_logger = ComponentLogger("mhanndalorian")


# #################################################################################### #
#                            Territory Battle Model
# #################################################################################### #
class ZoneStatus(TypedDict):
    zone_id: str
    zone_state: int
    score: int
    channel_id: str
    command_message: str
    command_state: int


class ConflictZone(TypedDict):
    status: ZoneStatus


class StrikeZone(TypedDict):
    players_participated: int
    status: ZoneStatus


class PlatoonUnit(TypedDict):
    unit_identifier: str
    level: int
    member_id: str
    tier: int
    relic_tier: int


class Squad(TypedDict):
    id: str
    units: List[PlatoonUnit]


class Platoon(TypedDict):
    id: str
    squads: List[Squad]


class ReconZone(TypedDict):
    platoons: List[Platoon]
    status: ZoneStatus


class TerritoryBattle(TypedDict):
    is_active: bool
    conflict_zones: List[ConflictZone]
    strike_zones: List[StrikeZone]
    recon_zones: List[ReconZone]


def _zone_status(raw: Dict[str, Any]) -> ZoneStatus:
    try:
        score = int(raw.get("score") or 0)
    except (TypeError, ValueError):
        score = 0
    return {
        "zone_id": raw.get("zoneId", ""),
        "zone_state": raw.get("zoneState", 0),
        "score": score,
        "channel_id": raw.get("channelId", ""),
        "command_message": raw.get("commandMessage") or "",
        "command_state": raw.get("commandState", 0),
    }


def _platoons(raw_platoons: List[Dict[str, Any]]) -> List[Platoon]:
    return [
        {
            "id": platoon.get("id", ""),
            "squads": [
                {
                    "id": squad.get("id", ""),
                    "units": [
                        {
                            "unit_identifier": unit.get("unitIdentifier", ""),
                            "level": unit.get("level", 0),
                            "member_id": unit.get("memberId", ""),
                            "tier": unit.get("tier", 0),
                            "relic_tier": unit.get("unitRelicTier", 0),
                        }
                        for unit in squad.get("unit") or []
                    ],
                }
                for squad in platoon.get("squad") or []
            ],
        }
        for platoon in raw_platoons or []
    ]


def transform_tb_response(response: Dict[str, Any]) -> TerritoryBattle:
    """
    Convert a raw /tb response into a TerritoryBattle.

    Args:
        response: Decoded JSON returned by the API

    Returns:
        Structured territory battle, inactive and empty when no battle runs
    """
    status = response.get("territoryBattleStatus")
    if not status:
        return {
            "is_active": False,
            "conflict_zones": [],
            "strike_zones": [],
            "recon_zones": [],
        }

    return {
        "is_active": True,
        "conflict_zones": [
            {"status": _zone_status(zone.get("zoneStatus") or {})}
            for zone in status.get("conflictZoneStatus") or []
        ],
        "strike_zones": [
            {
                "players_participated": zone.get("playersParticipated", 0),
                "status": _zone_status(zone.get("zoneStatus") or {}),
            }
            for zone in status.get("strikeZoneStatus") or []
        ],
        "recon_zones": [
            {
                "platoons": _platoons(zone.get("platoon")),
                "status": _zone_status(zone.get("zoneStatus") or {}),
            }
            for zone in status.get("reconZoneStatus") or []
        ],
    }


# #################################################################################### #
#                            API Client
# #################################################################################### #
class MhanndalorianClient(BaseAPIClient):
    """Client for the Mhanndalorian /player and /tb endpoints."""

    service_name = "Mhanndalorian"

    def __init__(
        self,
        api_key: str,
        discord_id: str,
        ally_code: str,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[aiohttp.ClientSession] = None,
        use_hmac: bool = False,
        timeout: float = 30,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key, also the HMAC secret
            discord_id: Discord id the key was issued to
            ally_code: Ally code used when a call does not name one
            base_url: API root
            session: Shared aiohttp session
            use_hmac: Sign requests instead of sending the key in a header
            timeout: Total request timeout in seconds for a private session
        """
        super().__init__(base_url, session=session, timeout=timeout)
        self.api_key = api_key
        self.discord_id = discord_id
        self.ally_code = ally_code
        self.use_hmac = use_hmac

    def generate_signature(self, method: str, endpoint: str, payload: Any, timestamp: int) -> str:
        """
        Compute the request signature.

        HMAC-SHA256 keyed with the API key over the millisecond timestamp,
        the uppercased method, the lowercased endpoint and the MD5 hex digest
        of the compact payload JSON.
        """
        digest = hmac.new(self.api_key.encode(), digestmod=hashlib.sha256)
        digest.update(str(timestamp).encode())
        digest.update(method.upper().encode())
        digest.update(endpoint.lower().encode())
        digest.update(hashlib.md5(compact_json(payload).encode()).hexdigest().encode())
        return digest.hexdigest()

    def _auth_headers(self, endpoint: str, body: str, payload: Any) -> Dict[str, str]:
        if self.use_hmac:
            timestamp = int(time.time() * 1000)
            return {
                "x-signature": self.generate_signature("POST", endpoint, payload, timestamp),
                "x-timestamp": str(timestamp),
                "x-discord-id": self.discord_id,
            }
        return {"api-key": self.api_key, "x-discord-id": self.discord_id}

    def _payload(self, ally_code: Optional[str], enums: bool) -> Dict[str, Any]:
        return {
            "allyCode": ally_code or self.ally_code,
            "userDiscordId": self.discord_id,
            "enums": enums,
        }

    async def get_player(self, ally_code: Optional[str] = None, enums: bool = False) -> Dict[str, Any]:
        """Fetch player data, defaulting to the configured ally code."""
        payload = self._payload(ally_code, enums)
        return await self._post("/player", {"payload": payload}, payload)

    async def get_tb(self, ally_code: Optional[str] = None, enums: bool = False) -> TerritoryBattle:
        """Fetch the current territory battle of the player's guild."""
        payload = self._payload(ally_code, enums)
        response = await self._post("/tb", {"payload": payload}, payload)
        return transform_tb_response(response)


def create_mhanndalorian_client(
    api_key: str,
    discord_id: str,
    ally_code: str,
    **kwargs,
) -> Optional[MhanndalorianClient]:
    """
    Build a client when every credential is present.

    Returns:
        The client, or None (with a warning) when a credential is missing
    """
    missing = [
        name
        for name, value in (
            ("MHANNDALORIAN_API_KEY", api_key),
            ("MHANNDALORIAN_DISCORD_ID", discord_id),
            ("MHANNDALORIAN_ALLY_CODE", ally_code),
        )
        if not value
    ]
    if missing:
        _logger.warning("client_setup_skipped", missing_variables=missing)
        return None
    _logger.info("client_configured", use_hmac=kwargs.get("use_hmac", False))
    return MhanndalorianClient(api_key, discord_id, ally_code, **kwargs)
