"""
Territory Battle Cog - Live territory battle overview from the Mhanndalorian API.
"""

import discord
from discord.ext import commands

from ..clients.cached import CachedMhanndalorianClient
from ..clients.mhanndalorian import TerritoryBattle
from ..core.functions import normalize_ally_code
from ..core.logger import ComponentLogger

_logger = ComponentLogger("territory_battle")

TB_COLOR = 0x5865F2


def filled_platoon_slots(zone: dict) -> tuple:
    """Count (filled, total) platoon unit slots of a recon zone."""
    filled = total = 0
    for platoon in zone.get("platoons") or []:
        for squad in platoon.get("squads") or []:
            for unit in squad.get("units") or []:
                total += 1
                if unit.get("member_id"):
                    filled += 1
    return filled, total


def build_tb_embed(tb: TerritoryBattle) -> discord.Embed:
    """Summarize zone scores, strike participation and platoon fill."""
    embed = discord.Embed(
        title="Territory Battle Status",
        color=TB_COLOR,
        timestamp=discord.utils.utcnow(),
    )

    for zone in tb["conflict_zones"]:
        status = zone["status"]
        embed.add_field(
            name=status["zone_id"] or "Conflict zone",
            value=f"Score: {status['score']:,}",
            inline=True,
        )

    for zone in tb["strike_zones"]:
        status = zone["status"]
        embed.add_field(
            name=status["zone_id"] or "Strike zone",
            value=f"Players participated: {zone['players_participated']}",
            inline=True,
        )

    for zone in tb["recon_zones"]:
        filled, total = filled_platoon_slots(zone)
        embed.add_field(
            name=zone["status"]["zone_id"] or "Recon zone",
            value=f"Platoon units: {filled}/{total}",
            inline=True,
        )

    if not embed.fields:
        embed.description = "No zone is open yet."
    return embed


class TerritoryBattleStatus(commands.Cog):
    """Cog for /tb-status."""

    def __init__(self, bot: discord.Bot, mhanndalorian: CachedMhanndalorianClient) -> None:
        self.bot = bot
        self.mhanndalorian = mhanndalorian
        self._register_commands()

    def _register_commands(self) -> None:
        self.tb_status = discord.option(
            name="ally-code",
            description="Ally code of a guild member (optional)",
            parameter_name="ally_code",
            input_type=str,
            required=False,
        )(self.tb_status)
        self.bot.slash_command(
            name="tb-status",
            description="Show the current territory battle status",
        )(self.tb_status)

    async def tb_status(self, ctx: discord.ApplicationContext, ally_code: str = None):
        """
        Reply with the current territory battle overview.

        Args:
            ctx: Discord application context
            ally_code: Optional ally code, defaults to the configured account
        """
        normalized = None
        if ally_code:
            normalized = normalize_ally_code(ally_code)
            if not normalized:
                await ctx.respond("Please provide a valid ally code (123-456-789).", ephemeral=True)
                return

        await ctx.defer()
        try:
            tb = await self.mhanndalorian.get_tb(normalized)
        except Exception as e:
            _logger.error("tb_status_failed", error=str(e), exc_info=True)
            await ctx.followup.send("Could not load territory battle data. Please try again later.")
            return

        if not tb["is_active"]:
            await ctx.followup.send("No territory battle is currently active.")
            return
        await ctx.followup.send(embed=build_tb_embed(tb))


def setup(bot: discord.Bot):
    """
    Setup function to add the TerritoryBattleStatus cog to the bot.

    The cog is only added when the Mhanndalorian client is configured.
    """
    mhanndalorian = bot.services.mhanndalorian
    if mhanndalorian is None:
        _logger.info("tb_status_disabled_no_client")
        return
    bot.add_cog(TerritoryBattleStatus(bot, mhanndalorian))
