"""
Violation Summary Service - Periodic and on-demand ticket violation reports.

The statistics are a pure reduction over stored violation rows: rows are
collected into per-player counters, converted into missing-ticket totals and
average daily tickets, filtered through the guild's member names, ranked and
paginated. Only the final delivery touches Discord.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

import discord

from ..clients.cached import GameDataSource
from ..core.functions import resolve_text_channel, send_embeds
from ..core.logger import ComponentLogger
from ..stores import (
    MAX_PERIOD_DAYS,
    MIN_PERIOD_DAYS,
    MONTHLY_DAYS,
    WEEKLY_DAYS,
    ViolationRecord,
    ViolationStore,
)

_logger = ComponentLogger("violation_summary")

TICKET_THRESHOLD = 600
PLAYERS_PER_PAGE = 10
SUMMARY_COLOR = 0x0099FF


@dataclass
class PlayerCounter:
    violations: int = 0
    ticket_sum: int = 0


@dataclass
class ViolationSummary:
    player_name: str
    violation_count: int
    average_tickets: float
    total_missing_tickets: int


# #################################################################################### #
#                            Pure Aggregation
# #################################################################################### #
def collect_player_counters(rows: Iterable[ViolationRecord]) -> Dict[str, PlayerCounter]:
    """Accumulate violation count and ticket total per player id."""
    counters: Dict[str, PlayerCounter] = {}
    for row in rows:
        for player_id, tickets in (row.get("ticket_counts") or {}).items():
            counter = counters.setdefault(player_id, PlayerCounter())
            counter.violations += 1
            counter.ticket_sum += int(tickets or 0)
    return counters


def calculate_missing_tickets(counter: PlayerCounter) -> int:
    """Tickets short of the threshold over the violating days."""
    return counter.violations * TICKET_THRESHOLD - counter.ticket_sum


def calculate_average_tickets(
    counter: PlayerCounter, days: int, violation_days_only: bool = False
) -> float:
    """
    Average daily tickets over a reporting period.

    The default spreads the missing tickets over the whole period, counting
    every non-violating day as exactly at threshold. With
    ``violation_days_only`` the average covers the violating days alone.
    """
    if violation_days_only:
        return counter.ticket_sum / counter.violations if counter.violations else 0.0
    missing = calculate_missing_tickets(counter)
    return (days * TICKET_THRESHOLD - missing) / days


def calculate_player_stats(
    rows: Iterable[ViolationRecord],
    days: int,
    player_names: Mapping[str, str],
    violation_days_only: bool = False,
) -> List[ViolationSummary]:
    """
    Build per-player statistics, worst average first.

    Players without violations or missing from ``player_names`` (no longer in
    the guild) are left out.
    """
    stats = []
    for player_id, counter in collect_player_counters(rows).items():
        if counter.violations == 0 or player_id not in player_names:
            continue
        stats.append(ViolationSummary(
            player_name=player_names[player_id],
            violation_count=counter.violations,
            average_tickets=calculate_average_tickets(counter, days, violation_days_only),
            total_missing_tickets=calculate_missing_tickets(counter),
        ))
    stats.sort(key=lambda summary: summary.average_tickets)
    return stats


def paginate(stats: List[ViolationSummary], page_size: int = PLAYERS_PER_PAGE) -> List[List[ViolationSummary]]:
    return [stats[i:i + page_size] for i in range(0, len(stats), page_size)]


def build_summary_embeds(
    report_type: str,
    guild_name: str,
    days: int,
    violation_rows: int,
    stats: List[ViolationSummary],
) -> List[discord.Embed]:
    """
    Build the overview embed followed by one embed per page of players.

    Args:
        report_type: "Weekly", "Monthly" or "{n}-Day"
        guild_name: Game guild name shown in titles
        days: Reporting period length
        violation_rows: Number of stored snapshots in the period
        stats: Ranked player statistics
    """
    total_missing = sum(summary.total_missing_tickets for summary in stats)
    overview = discord.Embed(
        title=f"{report_type} Ticket Violation Summary for {guild_name}",
        description=(
            f"Period: Last {days} days\n"
            f"Total Violations Recorded: {violation_rows}"
        ),
        color=SUMMARY_COLOR,
        timestamp=discord.utils.utcnow(),
    )
    overview.add_field(
        name="Guild Summary",
        value=f"Total Guild Missing Tickets: {total_missing}",
        inline=False,
    )

    embeds = [overview]
    pages = paginate(stats)
    for page_number, page in enumerate(pages, start=1):
        embed = discord.Embed(
            title=f"{report_type} Player Ticket Statistics - {guild_name}",
            description=f"Page {page_number} of {len(pages)}",
            color=SUMMARY_COLOR,
        )
        offset = (page_number - 1) * PLAYERS_PER_PAGE
        for position, summary in enumerate(page, start=offset + 1):
            embed.add_field(
                name=f"{position}. {summary.player_name}",
                value=(
                    f"**Violations:** {summary.violation_count}\n"
                    f"**Avg. Daily Tickets:** {summary.average_tickets:.1f}\n"
                    f"**Total Missing Tickets:** {summary.total_missing_tickets}"
                ),
                inline=False,
            )
        embeds.append(embed)
    return embeds


def member_names(guild_response: Optional[dict]) -> Dict[str, str]:
    """Map player id to player name from a comlink guild response."""
    guild = (guild_response or {}).get("guild") or {}
    return {
        member["playerId"]: member.get("playerName", member["playerId"])
        for member in guild.get("member") or []
        if member.get("playerId")
    }


# #################################################################################### #
#                            Report Service
# #################################################################################### #
class ViolationSummaryService:
    """Generates and posts violation summaries for a guild."""

    def __init__(
        self,
        bot: discord.Client,
        violation_store: ViolationStore,
        game_data: GameDataSource,
        violation_days_only: bool = False,
    ):
        """
        Initialize the service.

        Args:
            bot: Discord client used to resolve report channels
            violation_store: Source of stored violation rows
            game_data: Cached comlink facade, used for member names
            violation_days_only: Average over violating days instead of the period
        """
        self.bot = bot
        self.violation_store = violation_store
        self.game_data = game_data
        self.violation_days_only = violation_days_only

    async def generate_weekly_summary(self, guild_id: str, channel_id: str, guild_name: str) -> bool:
        try:
            rows = await self.violation_store.get_weekly_violations(guild_id)
            return await self._report(rows, channel_id, guild_name, WEEKLY_DAYS, "Weekly")
        except Exception as e:
            _logger.error("weekly_summary_failed", guild_id=guild_id, error=str(e), exc_info=True)
            return False

    async def generate_monthly_summary(self, guild_id: str, channel_id: str, guild_name: str) -> bool:
        try:
            rows = await self.violation_store.get_monthly_violations(guild_id)
            return await self._report(rows, channel_id, guild_name, MONTHLY_DAYS, "Monthly")
        except Exception as e:
            _logger.error("monthly_summary_failed", guild_id=guild_id, error=str(e), exc_info=True)
            return False

    async def generate_custom_period_summary(
        self, guild_id: str, channel_id: str, guild_name: str, days: int
    ) -> bool:
        """
        Post a summary covering the last ``days`` days (1-90).

        Returns:
            True if a report was delivered
        """
        if not MIN_PERIOD_DAYS <= days <= MAX_PERIOD_DAYS:
            _logger.warning("invalid_summary_period", guild_id=guild_id, days=days)
            return False
        try:
            rows = await self.violation_store.get_custom_period_violations(guild_id, days)
            return await self._report(rows, channel_id, guild_name, days, f"{days}-Day")
        except Exception as e:
            _logger.error("custom_summary_failed",
                guild_id=guild_id,
                days=days,
                error=str(e),
                exc_info=True,
            )
            return False

    async def _report(
        self,
        rows: List[ViolationRecord],
        channel_id: str,
        guild_name: str,
        days: int,
        report_type: str,
    ) -> bool:
        if not rows:
            _logger.info("summary_skipped_no_violations", report_type=report_type, days=days)
            return False
        return await self.send_summary_report(rows, channel_id, guild_name, days, report_type)

    async def send_summary_report(
        self,
        rows: List[ViolationRecord],
        channel_id: str,
        guild_name: str,
        days: int,
        report_type: str,
    ) -> bool:
        """
        Compute statistics for ``rows`` and post them to a channel.

        Returns:
            True if the report was delivered, False when the channel is unusable
        """
        channel = await resolve_text_channel(self.bot, channel_id)
        if channel is None:
            _logger.warning("summary_channel_unavailable", channel_id=channel_id)
            return False

        guild_response = await self.game_data.get_guild(rows[0]["guild_id"], True)
        stats = calculate_player_stats(
            rows, days, member_names(guild_response), self.violation_days_only
        )
        embeds = build_summary_embeds(report_type, guild_name, days, len(rows), stats)
        await send_embeds(channel, embeds)
        _logger.info("summary_sent",
            report_type=report_type,
            days=days,
            player_count=len(stats),
            page_count=len(embeds) - 1,
        )
        return True
