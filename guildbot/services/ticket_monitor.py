"""
Ticket Monitor Service - Daily raid ticket tracking driven by guild reset times.

Every tick walks the registered guilds and compares the clock with each
guild's next reset time:

- Within 2 minutes before the reset, members' ticket counters are
  snapshotted once per (guild, reset) pair; violators are recorded and
  reported.
- 5 minutes or more after the reset, once upstream reports a later reset
  time, it is stored, the processed marker is released, and weekly/monthly
  summaries are posted on Sundays and on the last day of the month.

Failures are isolated per guild; a guild whose upstream read fails is simply
retried on the next tick.
"""

import asyncio
import calendar
import time
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, TypedDict
from zoneinfo import ZoneInfo

import discord
from discord.ext import tasks

from ..clients.cached import GameDataSource
from ..core.functions import resolve_text_channel, send_embeds
from ..core.logger import ComponentLogger
from ..stores import GuildRefreshRecord, GuildRegistryStore, ViolationStore
from .violation_summary import TICKET_THRESHOLD, ViolationSummaryService

TICKET_CONTRIBUTION_TYPE = 2
CHECK_INTERVAL = 60
CHECK_BEFORE_RESET = 2 * 60
REFRESH_UPDATE_DELAY = 5 * 60
VIOLATION_COLOR = 0xED4245
MAX_FIELDS_PER_EMBED = 24


class TicketViolator(TypedDict):
    id: str
    name: str
    tickets: int


# #################################################################################### #
#                            Pure Helpers
# #################################################################################### #
def member_ticket_count(member: dict) -> int:
    """Daily ticket counter of a guild member, 0 when absent."""
    for contribution in member.get("memberContribution") or []:
        if int(contribution.get("type", -1)) == TICKET_CONTRIBUTION_TYPE:
            return int(contribution.get("currentValue") or 0)
    return 0


def find_ticket_violators(members: Iterable[dict], threshold: int = TICKET_THRESHOLD) -> List[TicketViolator]:
    """Members whose ticket count is strictly below threshold."""
    violators = []
    for member in members:
        tickets = member_ticket_count(member)
        if tickets < threshold:
            violators.append({
                "id": member.get("playerId", ""),
                "name": member.get("playerName", "Unknown"),
                "tickets": tickets,
            })
    return violators


def build_violation_embeds(
    guild_name: str, violators: List[TicketViolator]
) -> List[discord.Embed]:
    """
    Build the violation report, lowest ticket count first.

    Violators are spread over as many embeds as the field limit requires; the
    total missing tickets field closes the last one.
    """
    ordered = sorted(violators, key=lambda violator: violator["tickets"])
    total_missing = sum(TICKET_THRESHOLD - violator["tickets"] for violator in ordered)

    embeds = []
    for start in range(0, max(len(ordered), 1), MAX_FIELDS_PER_EMBED):
        embed = discord.Embed(color=VIOLATION_COLOR)
        if start == 0:
            embed.title = f"Ticket Violation Report for {guild_name}"
            embed.description = (
                f"The following {len(ordered)} players did not reach "
                f"{TICKET_THRESHOLD} daily raid tickets"
            )
            embed.timestamp = discord.utils.utcnow()
        for index, violator in enumerate(ordered[start:start + MAX_FIELDS_PER_EMBED], start=start):
            embed.add_field(
                name=f"{index + 1}. {violator['name']}",
                value=f"{violator['tickets']}/{TICKET_THRESHOLD} tickets",
                inline=True,
            )
        embeds.append(embed)

    embeds[-1].add_field(name="Total Missing Tickets", value=str(total_missing), inline=False)
    return embeds


def is_last_day_of_month(day: date) -> bool:
    return day.day == calendar.monthrange(day.year, day.month)[1]


# #################################################################################### #
#                            Monitor Service
# #################################################################################### #
class TicketMonitorService:
    """Timer-driven reconciliation loop over the registered guilds."""

    def __init__(
        self,
        bot: discord.Client,
        guild_registry: GuildRegistryStore,
        violation_store: ViolationStore,
        game_data: GameDataSource,
        summary_service: ViolationSummaryService,
        run_once: bool = False,
        check_interval: float = CHECK_INTERVAL,
        timezone_name: str = "UTC",
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the monitor.

        Args:
            bot: Discord client used for delivery and readiness
            guild_registry: Registered guilds and their reset times
            violation_store: Destination of violation snapshots
            game_data: Cached comlink facade
            summary_service: Generates the periodic summaries
            run_once: Force one snapshot and finalize pass per guild, then stop
            check_interval: Seconds between ticks
            timezone_name: Zone used for the Sunday / month-end decisions
            clock: Epoch seconds provider
        """
        self.bot = bot
        self.guild_registry = guild_registry
        self.violation_store = violation_store
        self.game_data = game_data
        self.summary_service = summary_service
        self.run_once = run_once
        self.check_interval = check_interval
        self.timezone = ZoneInfo(timezone_name)
        self._clock = clock
        self.processed_refresh_times: Set[str] = set()
        self._tick_lock = asyncio.Lock()
        self._loop: Optional[tasks.Loop] = None
        self._run_once_task: Optional[asyncio.Task] = None
        self._logger = ComponentLogger("ticket_monitor")

    # #################################################################################### #
    #                            Lifecycle
    # #################################################################################### #
    def start(self) -> None:
        """Schedule ticks, or a single forced pass in run-once mode."""
        if self.run_once:
            if self._run_once_task is None:
                self._logger.info("monitor_run_once_started")
                self._run_once_task = asyncio.create_task(
                    self.check_guild_reset_times(), name="ticket_monitor_run_once"
                )
            return

        if self._loop is not None and self._loop.is_running():
            self._logger.warning("monitor_already_running")
            return

        self._loop = tasks.loop(seconds=self.check_interval)(self.check_guild_reset_times)
        self._loop.before_loop(self._before_loop)
        self._loop.start()
        self._logger.info("monitor_started", interval_seconds=self.check_interval)

    async def _before_loop(self) -> None:
        await self.bot.wait_until_ready()

    def stop(self) -> None:
        """Stop scheduling ticks and drop the dedup state. In-flight work is not cancelled."""
        if self._loop is not None:
            self._loop.cancel()
            self._loop = None
        self.processed_refresh_times.clear()
        self._logger.info("monitor_stopped")

    def is_running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    # #################################################################################### #
    #                            Tick Processing
    # #################################################################################### #
    async def check_guild_reset_times(self) -> None:
        """Run one tick over every registered guild, skipping if one is already running."""
        if self._tick_lock.locked():
            self._logger.warning("tick_skipped_previous_running")
            return

        async with self._tick_lock:
            guilds = await self.guild_registry.get_all_guilds()
            now = self._clock()
            for guild in guilds:
                try:
                    await self.process_guild(guild, now)
                except Exception as e:
                    self._logger.error("guild_processing_failed",
                        guild_id=guild.get("guild_id"),
                        error=str(e),
                        exc_info=True,
                    )

    async def process_guild(self, guild: GuildRefreshRecord, now: float) -> None:
        """
        Advance one guild's state for the current tick.

        Args:
            guild: Registry record with the guild's next reset time
            now: Current epoch seconds
        """
        guild_id = guild["guild_id"]
        channel_id = guild["channel_id"]
        next_refresh_time = guild["next_refresh_time"]

        if self.run_once:
            await self.collect_ticket_data(guild_id, channel_id)
            await self.handle_post_refresh_operations(guild_id, channel_id, force=True)
            return

        refresh_time = int(next_refresh_time)
        refresh_key = f"{guild_id}:{next_refresh_time}"
        time_until_refresh = refresh_time - now

        if 0 < time_until_refresh <= CHECK_BEFORE_RESET and refresh_key not in self.processed_refresh_times:
            self._logger.info("reset_approaching",
                guild_id=guild_id,
                seconds_until_reset=round(time_until_refresh),
            )
            if await self.collect_ticket_data(guild_id, channel_id):
                self.processed_refresh_times.add(refresh_key)

        if now - refresh_time >= REFRESH_UPDATE_DELAY:
            if await self.handle_post_refresh_operations(guild_id, channel_id, refresh_time):
                self.processed_refresh_times.discard(refresh_key)

    async def fetch_guild_data(self, guild_id: str) -> Optional[dict]:
        """
        Read the guild with its members through the cached facade.

        Returns:
            The guild object, or None when the read failed or has no members
        """
        try:
            response = await self.game_data.get_guild(guild_id, True)
        except Exception as e:
            self._logger.warning("guild_fetch_failed", guild_id=guild_id, error=str(e))
            return None
        guild = (response or {}).get("guild")
        if not guild or not guild.get("member"):
            self._logger.warning("guild_data_missing_members", guild_id=guild_id)
            return None
        return guild

    async def collect_ticket_data(self, guild_id: str, channel_id: str) -> bool:
        """
        Snapshot ticket counters, record and report violators.

        Returns:
            True when a snapshot was taken, False when the guild could not be read
        """
        guild = await self.fetch_guild_data(guild_id)
        if guild is None:
            return False

        violators = find_ticket_violators(guild["member"])
        guild_name = (guild.get("profile") or {}).get("name", "Unknown Guild")
        await self.handle_violations(guild_id, channel_id, guild_name, violators)
        return True

    async def handle_violations(
        self, guild_id: str, channel_id: str, guild_name: str, violators: List[TicketViolator]
    ) -> None:
        if not violators:
            self._logger.info("no_ticket_violations", guild_id=guild_id, guild_name=guild_name)
            return

        ticket_counts: Dict[str, int] = {violator["id"]: violator["tickets"] for violator in violators}
        if not await self.violation_store.record_violations(guild_id, ticket_counts):
            self._logger.warning("violations_not_recorded", guild_id=guild_id)
        await self.send_violation_notification(channel_id, guild_name, violators)

    async def send_violation_notification(
        self, channel_id: str, guild_name: str, violators: List[TicketViolator]
    ) -> bool:
        channel = await resolve_text_channel(self.bot, channel_id)
        if channel is None:
            self._logger.warning("notification_channel_unavailable", channel_id=channel_id)
            return False
        try:
            await send_embeds(channel, build_violation_embeds(guild_name, violators))
        except discord.HTTPException as e:
            self._logger.error("notification_send_failed", channel_id=channel_id, error=str(e))
            return False
        self._logger.info("violation_notification_sent",
            channel_id=channel_id,
            violator_count=len(violators),
        )
        return True

    async def handle_post_refresh_operations(
        self,
        guild_id: str,
        channel_id: str,
        previous_refresh: Optional[int] = None,
        force: bool = False,
    ) -> bool:
        """
        Store the guild's next reset time and post due summaries.

        Args:
            guild_id: Game guild id
            channel_id: Report channel
            previous_refresh: Reset time that just passed; the upstream one must be later
            force: Post both summaries regardless of the date

        Returns:
            True once a later reset time is stored
        """
        guild = await self.fetch_guild_data(guild_id)
        if guild is None:
            return False

        next_refresh = guild.get("nextChallengesRefresh")
        if not next_refresh:
            self._logger.warning("next_refresh_missing", guild_id=guild_id)
            return False

        if not force and previous_refresh is not None and int(next_refresh) <= previous_refresh:
            self._logger.debug("next_refresh_not_advanced",
                guild_id=guild_id,
                next_refresh=str(next_refresh),
            )
            return False

        if not await self.guild_registry.register_channel(guild_id, channel_id, str(next_refresh)):
            self._logger.warning("next_refresh_not_stored", guild_id=guild_id)
            return False

        guild_name = (guild.get("profile") or {}).get("name", "Unknown Guild")
        await self.check_and_generate_summaries(guild_id, channel_id, guild_name, force)
        return True

    async def check_and_generate_summaries(
        self, guild_id: str, channel_id: str, guild_name: str, force: bool = False
    ) -> None:
        today = datetime.fromtimestamp(self._clock(), tz=self.timezone).date()

        if force or today.weekday() == calendar.SUNDAY:
            self._logger.info("weekly_summary_due", guild_id=guild_id, forced=force)
            await self.summary_service.generate_weekly_summary(guild_id, channel_id, guild_name)

        if force or is_last_day_of_month(today):
            self._logger.info("monthly_summary_due", guild_id=guild_id, forced=force)
            await self.summary_service.generate_monthly_summary(guild_id, channel_id, guild_name)
