"""
Persistence Stores - Player, guild registry and violation history tables.

Every public method catches persistence failures at the call site, logs them
and reports failure through its return value (False, None or an empty list)
instead of raising.
"""

import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypedDict

from .core.logger import ComponentLogger
from .db import run_db_query

QueryRunner = Callable[..., Awaitable[Any]]

RECENT_VIOLATIONS_LIMIT = 7
WEEKLY_DAYS = 7
MONTHLY_DAYS = 30
MIN_PERIOD_DAYS = 1
MAX_PERIOD_DAYS = 90

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS players (
        discord_id VARCHAR(32) NOT NULL PRIMARY KEY,
        ally_code CHAR(9) NOT NULL,
        alt_ally_codes JSON
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_collection_channels (
        guild_id VARCHAR(64) NOT NULL PRIMARY KEY,
        channel_id VARCHAR(32) NOT NULL,
        next_refresh_time VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ticket_violations (
        id BIGINT AUTO_INCREMENT PRIMARY KEY,
        guild_id VARCHAR(64) NOT NULL,
        date DATETIME NOT NULL,
        ticket_counts JSON NOT NULL,
        INDEX idx_ticket_violations_guild_date (guild_id, date)
    )
    """,
)


class PlayerRecord(TypedDict):
    discord_id: str
    ally_code: str
    alt_ally_codes: List[str]


class GuildRefreshRecord(TypedDict):
    guild_id: str
    channel_id: str
    next_refresh_time: str


class ViolationRecord(TypedDict):
    guild_id: str
    date: datetime
    ticket_counts: Dict[str, int]


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode()
    if isinstance(value, str):
        return json.loads(value) if value else default
    return value


async def ensure_schema(query_runner: QueryRunner = run_db_query) -> bool:
    """Create the bot's tables if they do not exist yet."""
    logger = ComponentLogger("stores")
    try:
        for statement in SCHEMA:
            await query_runner(statement, commit=True)
        logger.info("schema_ready", table_count=len(SCHEMA))
        return True
    except Exception as e:
        logger.error("schema_setup_failed", error=str(e), exc_info=True)
        return False


# #################################################################################### #
#                            Players
# #################################################################################### #
class PlayerStore:
    """Discord user to ally code mapping."""

    def __init__(self, query_runner: QueryRunner = run_db_query):
        self._query = query_runner
        self._logger = ComponentLogger("player_store")

    async def add_user(
        self, discord_id: str, ally_code: str, alt_ally_codes: Optional[List[str]] = None
    ) -> bool:
        """
        Insert or replace a player's ally codes.

        Returns:
            True on success, False on invalid input or persistence failure
        """
        if not discord_id or not ally_code:
            self._logger.warning("invalid_player_data")
            return False
        try:
            await self._query(
                "INSERT INTO players (discord_id, ally_code, alt_ally_codes) "
                "VALUES (%s, %s, %s) "
                "ON DUPLICATE KEY UPDATE ally_code = VALUES(ally_code), "
                "alt_ally_codes = VALUES(alt_ally_codes)",
                (str(discord_id), ally_code, json.dumps(alt_ally_codes or [])),
                commit=True,
            )
            self._logger.info("player_saved", discord_id=discord_id, ally_code=ally_code)
            return True
        except Exception as e:
            self._logger.error("player_save_failed", discord_id=discord_id, error=str(e))
            return False

    async def get_player(self, discord_id: str) -> Optional[PlayerRecord]:
        if not discord_id:
            return None
        try:
            row = await self._query(
                "SELECT discord_id, ally_code, alt_ally_codes FROM players WHERE discord_id = %s",
                (str(discord_id),),
                fetch_one=True,
            )
        except Exception as e:
            self._logger.error("player_lookup_failed", discord_id=discord_id, error=str(e))
            return None
        if not row:
            return None
        return {
            "discord_id": str(row[0]),
            "ally_code": (row[1] or "").strip(),
            "alt_ally_codes": list(_load_json(row[2], [])),
        }

    async def remove_ally_code(self, discord_id: str, ally_code: str) -> bool:
        """
        Remove one ally code from a player, primary or alternate.

        Returns:
            False when the player is unknown or on persistence failure
        """
        if not discord_id or not ally_code:
            self._logger.warning("invalid_player_data")
            return False
        player = await self.get_player(discord_id)
        if player is None:
            return False

        primary = "" if player["ally_code"] == ally_code else player["ally_code"]
        alternates = [code for code in player["alt_ally_codes"] if code != ally_code]
        try:
            await self._query(
                "UPDATE players SET ally_code = %s, alt_ally_codes = %s WHERE discord_id = %s",
                (primary, json.dumps(alternates), str(discord_id)),
                commit=True,
            )
            return True
        except Exception as e:
            self._logger.error("ally_code_remove_failed", discord_id=discord_id, error=str(e))
            return False

    async def remove_player(self, discord_id: str) -> bool:
        if not discord_id:
            self._logger.warning("invalid_player_data")
            return False
        try:
            await self._query(
                "DELETE FROM players WHERE discord_id = %s", (str(discord_id),), commit=True
            )
            return True
        except Exception as e:
            self._logger.error("player_remove_failed", discord_id=discord_id, error=str(e))
            return False


# #################################################################################### #
#                            Guild Registry
# #################################################################################### #
class GuildRegistryStore:
    """Guilds monitored for tickets, their report channel and next reset."""

    def __init__(self, query_runner: QueryRunner = run_db_query):
        self._query = query_runner
        self._logger = ComponentLogger("guild_registry")

    @staticmethod
    def _to_record(row) -> GuildRefreshRecord:
        return {
            "guild_id": str(row[0]),
            "channel_id": str(row[1]),
            "next_refresh_time": str(row[2]),
        }

    async def register_channel(
        self, guild_id: str, channel_id: str, next_refresh_time: str
    ) -> bool:
        """
        Register or update a guild's report channel and next reset time.

        Returns:
            True on success, False on missing arguments or persistence failure
        """
        if not guild_id or not channel_id or not next_refresh_time:
            self._logger.warning("register_channel_invalid_arguments",
                has_guild=bool(guild_id),
                has_channel=bool(channel_id),
                has_refresh_time=bool(next_refresh_time),
            )
            return False
        try:
            await self._query(
                "INSERT INTO ticket_collection_channels (guild_id, channel_id, next_refresh_time) "
                "VALUES (%s, %s, %s) "
                "ON DUPLICATE KEY UPDATE channel_id = VALUES(channel_id), "
                "next_refresh_time = VALUES(next_refresh_time)",
                (str(guild_id), str(channel_id), str(next_refresh_time)),
                commit=True,
            )
            self._logger.info("channel_registered",
                guild_id=guild_id,
                channel_id=channel_id,
                next_refresh_time=next_refresh_time,
            )
            return True
        except Exception as e:
            self._logger.error("channel_register_failed", guild_id=guild_id, error=str(e))
            return False

    async def get_guild_data(self, guild_id: str) -> Optional[GuildRefreshRecord]:
        try:
            row = await self._query(
                "SELECT guild_id, channel_id, next_refresh_time "
                "FROM ticket_collection_channels WHERE guild_id = %s",
                (str(guild_id),),
                fetch_one=True,
            )
        except Exception as e:
            self._logger.error("guild_lookup_failed", guild_id=guild_id, error=str(e))
            return None
        return self._to_record(row) if row else None

    async def get_guild_channel(self, guild_id: str) -> Optional[str]:
        """Report channel id of a registered guild, None if not registered."""
        record = await self.get_guild_data(guild_id)
        return record["channel_id"] if record else None

    async def get_all_guilds(self) -> List[GuildRefreshRecord]:
        try:
            rows = await self._query(
                "SELECT guild_id, channel_id, next_refresh_time FROM ticket_collection_channels",
                fetch_all=True,
            )
        except Exception as e:
            self._logger.error("guild_list_failed", error=str(e))
            return []
        return [self._to_record(row) for row in rows or []]

    async def unregister_channel(self, guild_id: str) -> bool:
        if not guild_id:
            return False
        try:
            await self._query(
                "DELETE FROM ticket_collection_channels WHERE guild_id = %s",
                (str(guild_id),),
                commit=True,
            )
            self._logger.info("channel_unregistered", guild_id=guild_id)
            return True
        except Exception as e:
            self._logger.error("channel_unregister_failed", guild_id=guild_id, error=str(e))
            return False


# #################################################################################### #
#                            Violation History
# #################################################################################### #
class ViolationStore:
    """Daily ticket violation snapshots per guild."""

    def __init__(self, query_runner: QueryRunner = run_db_query):
        self._query = query_runner
        self._logger = ComponentLogger("violation_store")

    @staticmethod
    def _process_rows(rows) -> List[ViolationRecord]:
        records = []
        for row in rows or []:
            counts = _load_json(row[2], {})
            records.append({
                "guild_id": str(row[0]),
                "date": row[1],
                "ticket_counts": {
                    str(player_id): int(count or 0) for player_id, count in counts.items()
                },
            })
        return records

    async def record_violations(self, guild_id: str, ticket_counts: Dict[str, int]) -> bool:
        """
        Store today's violators for a guild.

        Args:
            guild_id: Game guild id
            ticket_counts: Ticket count per violating player id

        Returns:
            True on success, False on empty input or persistence failure
        """
        if not guild_id or not ticket_counts:
            self._logger.warning("record_violations_invalid_arguments",
                has_guild=bool(guild_id),
                violator_count=len(ticket_counts or {}),
            )
            return False
        try:
            await self._query(
                "INSERT INTO ticket_violations (guild_id, date, ticket_counts) VALUES (%s, %s, %s)",
                (
                    str(guild_id),
                    datetime.now(timezone.utc).replace(tzinfo=None),
                    json.dumps(ticket_counts),
                ),
                commit=True,
            )
            self._logger.info("violations_recorded",
                guild_id=guild_id,
                violator_count=len(ticket_counts),
            )
            return True
        except Exception as e:
            self._logger.error("violations_record_failed", guild_id=guild_id, error=str(e))
            return False

    async def get_recent_violations(
        self, guild_id: str, limit: int = RECENT_VIOLATIONS_LIMIT
    ) -> List[ViolationRecord]:
        try:
            rows = await self._query(
                "SELECT guild_id, date, ticket_counts FROM ticket_violations "
                "WHERE guild_id = %s ORDER BY date DESC LIMIT %s",
                (str(guild_id), int(limit)),
                fetch_all=True,
            )
            return self._process_rows(rows)
        except Exception as e:
            self._logger.error("recent_violations_failed", guild_id=guild_id, error=str(e))
            return []

    async def get_custom_period_violations(self, guild_id: str, days: int) -> List[ViolationRecord]:
        """
        Violations recorded in the last ``days`` days, newest first.

        Returns:
            Matching rows, empty when days is outside 1..90 or on failure
        """
        if not isinstance(days, int) or not MIN_PERIOD_DAYS <= days <= MAX_PERIOD_DAYS:
            self._logger.warning("invalid_period_days", days=days)
            return []
        try:
            rows = await self._query(
                "SELECT guild_id, date, ticket_counts FROM ticket_violations "
                "WHERE guild_id = %s AND date >= UTC_TIMESTAMP() - INTERVAL %s DAY "
                "ORDER BY date DESC",
                (str(guild_id), days),
                fetch_all=True,
            )
            return self._process_rows(rows)
        except Exception as e:
            self._logger.error("period_violations_failed",
                guild_id=guild_id,
                days=days,
                error=str(e),
            )
            return []

    async def get_weekly_violations(self, guild_id: str) -> List[ViolationRecord]:
        return await self.get_custom_period_violations(guild_id, WEEKLY_DAYS)

    async def get_monthly_violations(self, guild_id: str) -> List[ViolationRecord]:
        return await self.get_custom_period_violations(guild_id, MONTHLY_DAYS)
