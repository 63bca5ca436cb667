"""
Ticket Collection Cog - Registers guild report channels and serves on-demand summaries.
"""

from typing import Optional, Tuple

import discord
from discord.ext import commands

from ..clients.cached import GameDataSource
from ..core.functions import normalize_ally_code
from ..core.logger import ComponentLogger
from ..services.violation_summary import ViolationSummaryService
from ..stores import MAX_PERIOD_DAYS, MIN_PERIOD_DAYS, GuildRegistryStore, PlayerStore

_logger = ComponentLogger("tickets")

SUMMARY_CHANNEL_TYPES = (discord.TextChannel, discord.Thread, discord.DMChannel)

MSG_INVALID_CHANNEL = "Please provide a valid channel."
MSG_INVALID_ALLY_CODE = "Please provide a valid ally code (123-456-789)."
MSG_NO_ALLY_CODE = (
    "You don't have a registered ally code. "
    "Please provide an ally code or register with `/register-player`."
)
MSG_REGISTER_FAILED = "Failed to register ticket collection channel. Please try again later."
MSG_REQUEST_ERROR = "An error occurred while processing your request. Please try again later."
MSG_INVALID_DAYS = "Please provide a valid number of days (1-90)."
MSG_UNSUPPORTED_CHANNEL = "This command can only be used in a text channel or DM."
MSG_SUMMARY_NO_ALLY_CODE = (
    "You don't have a registered ally code. Please register with `/register-player` first."
)
MSG_NO_GUILD_DATA = "Could not find your Star Wars guild data."
MSG_GUILD_NOT_REGISTERED = (
    "Your Star Wars guild is not registered for ticket collection. "
    "Use `/register-ticket-collection` first."
)
MSG_SUMMARY_ERROR = "An error occurred while generating the ticket summary. Please try again later."


class TicketCollection(commands.Cog):
    """Cog for the ticket collection registration and summary commands."""

    def __init__(
        self,
        bot: discord.Bot,
        player_store: PlayerStore,
        guild_registry: GuildRegistryStore,
        game_data: GameDataSource,
        summary_service: ViolationSummaryService,
    ) -> None:
        """
        Initialize the TicketCollection cog.

        Args:
            bot: Discord bot instance
            player_store: Registered players, used when no ally code is given
            guild_registry: Guild report channels and reset times
            game_data: Cached comlink facade
            summary_service: Builds and posts violation summaries
        """
        self.bot = bot
        self.player_store = player_store
        self.guild_registry = guild_registry
        self.game_data = game_data
        self.summary_service = summary_service
        self._register_commands()

    def _register_commands(self) -> None:
        """Register the ticket collection commands on the bot."""
        self.register_ticket_collection = discord.option(
            name="channel",
            description="Discord channel to post ticket reports",
            parameter_name="channel",
            input_type=discord.TextChannel,
        )(self.register_ticket_collection)
        self.register_ticket_collection = discord.option(
            name="ally-code",
            description="Ally code of a guild member (optional)",
            parameter_name="ally_code",
            input_type=str,
            required=False,
        )(self.register_ticket_collection)
        self.bot.slash_command(
            name="register-ticket-collection",
            description="Register a guild for ticket collection monitoring",
            default_member_permissions=discord.Permissions(manage_guild=True),
        )(self.register_ticket_collection)

        self.unregister_ticket_collection = discord.option(
            name="ally-code",
            description="Ally code of a guild member (optional)",
            parameter_name="ally_code",
            input_type=str,
            required=False,
        )(self.unregister_ticket_collection)
        self.bot.slash_command(
            name="unregister-ticket-collection",
            description="Stop ticket collection monitoring for a guild",
            default_member_permissions=discord.Permissions(manage_guild=True),
        )(self.unregister_ticket_collection)

        self.ticket_summary = discord.option(
            name="days",
            description="Number of days to include in the summary (1-90)",
            parameter_name="days",
            input_type=int,
            min_value=MIN_PERIOD_DAYS,
            max_value=MAX_PERIOD_DAYS,
        )(self.ticket_summary)
        self.bot.slash_command(
            name="ticket-summary",
            description="Post a ticket violation summary for a custom period",
        )(self.ticket_summary)

    # #################################################################################### #
    #                            Helpers
    # #################################################################################### #
    async def _resolve_ally_code(
        self, ctx: discord.ApplicationContext, ally_code: Optional[str]
    ) -> Optional[str]:
        """
        Normalize the given ally code, or fall back to the caller's registered one.

        Replies to the user and returns None when neither is usable.
        """
        if ally_code:
            normalized = normalize_ally_code(ally_code)
            if not normalized:
                await ctx.respond(MSG_INVALID_ALLY_CODE, ephemeral=True)
            return normalized

        player = await self.player_store.get_player(str(ctx.author.id))
        if not player or not player["ally_code"]:
            await ctx.respond(MSG_NO_ALLY_CODE, ephemeral=True)
            return None
        return player["ally_code"]

    async def _player_guild(self, ally_code: str) -> Tuple[Optional[str], str]:
        """Game guild id and name from a player's profile."""
        profile = await self.game_data.get_player(ally_code)
        if not profile or not profile.get("guildId"):
            return None, ""
        return profile["guildId"], profile.get("guildName") or "Unknown Guild"

    # #################################################################################### #
    #                            Commands
    # #################################################################################### #
    async def register_ticket_collection(
        self,
        ctx: discord.ApplicationContext,
        channel: discord.TextChannel,
        ally_code: str = None,
    ):
        """
        Register a channel for the ticket reports of the caller's game guild.

        Args:
            ctx: Discord application context
            channel: Report channel
            ally_code: Optional ally code of any guild member
        """
        if channel is None:
            await ctx.respond(MSG_INVALID_CHANNEL, ephemeral=True)
            return

        resolved = await self._resolve_ally_code(ctx, ally_code)
        if not resolved:
            return

        await ctx.defer()
        try:
            guild_id, guild_name = await self._player_guild(resolved)
            if not guild_id:
                await ctx.followup.send(
                    f"Could not find a guild for ally code {resolved}. "
                    "Please make sure the ally code belongs to a guild member."
                )
                return

            guild_response = await self.game_data.get_guild(guild_id, True)
            next_refresh = ((guild_response or {}).get("guild") or {}).get("nextChallengesRefresh")
            if not next_refresh:
                _logger.warning("next_refresh_missing", guild_id=guild_id)
                await ctx.followup.send(MSG_REGISTER_FAILED)
                return

            if not await self.guild_registry.register_channel(
                guild_id, str(channel.id), str(next_refresh)
            ):
                await ctx.followup.send(MSG_REGISTER_FAILED)
                return

            _logger.info("ticket_collection_registered", guild_id=guild_id, channel_id=channel.id)
            await ctx.followup.send(
                f"Successfully registered {channel.mention} for ticket collection "
                f"monitoring for guild: {guild_name}"
            )
        except Exception as e:
            _logger.error("register_ticket_collection_failed", error=str(e), exc_info=True)
            await ctx.followup.send(MSG_REQUEST_ERROR)

    async def unregister_ticket_collection(
        self, ctx: discord.ApplicationContext, ally_code: str = None
    ):
        """Stop monitoring the caller's game guild."""
        resolved = await self._resolve_ally_code(ctx, ally_code)
        if not resolved:
            return

        await ctx.defer()
        try:
            guild_id, guild_name = await self._player_guild(resolved)
            if not guild_id:
                await ctx.followup.send(
                    f"Could not find a guild for ally code {resolved}. "
                    "Please make sure the ally code belongs to a guild member."
                )
                return

            if not await self.guild_registry.unregister_channel(guild_id):
                await ctx.followup.send(
                    "Failed to unregister ticket collection channel. Please try again later."
                )
                return

            _logger.info("ticket_collection_unregistered", guild_id=guild_id)
            await ctx.followup.send(
                f"Ticket collection monitoring stopped for guild: {guild_name}"
            )
        except Exception as e:
            _logger.error("unregister_ticket_collection_failed", error=str(e), exc_info=True)
            await ctx.followup.send(MSG_REQUEST_ERROR)

    async def ticket_summary(self, ctx: discord.ApplicationContext, days: int):
        """
        Post a violation summary for the last ``days`` days in the invoking channel.

        Args:
            ctx: Discord application context
            days: Period length, 1 to 90
        """
        if days is None or not MIN_PERIOD_DAYS <= days <= MAX_PERIOD_DAYS:
            await ctx.respond(MSG_INVALID_DAYS, ephemeral=True)
            return

        channel = ctx.channel
        if channel is None or not isinstance(channel, SUMMARY_CHANNEL_TYPES):
            await ctx.respond(MSG_UNSUPPORTED_CHANNEL, ephemeral=True)
            return

        await ctx.defer()
        try:
            player = await self.player_store.get_player(str(ctx.author.id))
            if not player or not player["ally_code"]:
                await ctx.followup.send(MSG_SUMMARY_NO_ALLY_CODE)
                return

            guild_id, guild_name = await self._player_guild(player["ally_code"])
            if not guild_id:
                await ctx.followup.send(MSG_NO_GUILD_DATA)
                return

            if not await self.guild_registry.get_guild_channel(guild_id):
                await ctx.followup.send(MSG_GUILD_NOT_REGISTERED)
                return

            await self.summary_service.generate_custom_period_summary(
                guild_id, str(channel.id), guild_name, days
            )
            await ctx.followup.send(f"Ticket summary for the last {days} days has been posted.")
        except Exception as e:
            _logger.error("ticket_summary_failed", days=days, error=str(e), exc_info=True)
            await ctx.followup.send(MSG_SUMMARY_ERROR)


def setup(bot: discord.Bot):
    """
    Setup function to add the TicketCollection cog to the bot.

    Args:
        bot: Discord bot instance with its services attached
    """
    services = bot.services
    bot.add_cog(
        TicketCollection(
            bot,
            services.player_store,
            services.guild_registry,
            services.comlink,
            services.summary,
        )
    )
