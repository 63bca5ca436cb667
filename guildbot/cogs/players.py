"""
Player Registry Cog - Links Discord users to their in-game ally codes.
"""

import discord
from discord.ext import commands

from ..core.functions import normalize_ally_code, sanitize_ally_code_list
from ..core.logger import ComponentLogger
from ..stores import PlayerStore

_logger = ComponentLogger("players")


class PlayerRegistry(commands.Cog):
    """Cog for /register-player, /unregister-player and /identify."""

    def __init__(self, bot: discord.Bot, player_store: PlayerStore) -> None:
        """
        Initialize the PlayerRegistry cog.

        Args:
            bot: Discord bot instance
            player_store: Persistence for player ally codes
        """
        self.bot = bot
        self.player_store = player_store
        self._register_commands()

    def _register_commands(self) -> None:
        """Register the player commands on the bot."""
        self.register_player = discord.option(
            name="ally-code",
            description="Ally code to register",
            parameter_name="ally_code",
            input_type=str,
        )(self.register_player)
        self.register_player = discord.option(
            name="is-alt",
            description="Mark the ally code as an alternate",
            parameter_name="is_alt",
            input_type=bool,
            required=False,
        )(self.register_player)
        self.bot.slash_command(
            name="register-player",
            description="Register a player with an ally code",
        )(self.register_player)

        self.unregister_player = discord.option(
            name="ally-code",
            description="Ally code to unregister",
            parameter_name="ally_code",
            input_type=str,
            required=False,
        )(self.unregister_player)
        self.bot.slash_command(
            name="unregister-player",
            description="Unregister a player or an ally code",
        )(self.unregister_player)

        self.bot.slash_command(
            name="identify",
            description="Identify the player and its ally code",
        )(self.identify)

    async def register_player(
        self,
        ctx: discord.ApplicationContext,
        ally_code: str,
        is_alt: bool = False,
    ):
        """
        Register an ally code as primary, replace the primary, or add an alternate.

        Args:
            ctx: Discord application context
            ally_code: Raw ally code input
            is_alt: Whether the code is an alternate account
        """
        normalized = normalize_ally_code(ally_code)
        if not normalized:
            await ctx.respond("Please provide a valid ally code (123-456-789).", ephemeral=True)
            return

        user_id = str(ctx.author.id)
        mention = ctx.author.mention
        _logger.debug("register_player_requested", user_id=user_id, is_alt=bool(is_alt))

        existing = await self.player_store.get_player(user_id)
        if existing is None:
            if not await self.player_store.add_user(user_id, normalized, []):
                await ctx.respond("Failed to save player")
                return
            await ctx.respond(f"Registered player with ally code: {normalized} for {mention}.")
            return

        primary = normalize_ally_code(existing["ally_code"])
        alternates = sanitize_ally_code_list(existing["alt_ally_codes"])

        if is_alt and primary:
            if primary == normalized:
                await ctx.respond("This ally code is already the primary one.")
                return
            if normalized in alternates:
                await ctx.respond("This ally code is already registered as an alternate.")
                return
            if not await self.player_store.add_user(user_id, primary, alternates + [normalized]):
                await ctx.respond("Failed to save player")
                return
            await ctx.respond(f"Added alternate ally code {normalized} for {mention}.")
            return

        if primary == normalized:
            await ctx.respond("This ally code is already registered as primary.")
            return
        alternates = [code for code in alternates if code != normalized]
        if not await self.player_store.add_user(user_id, normalized, alternates):
            await ctx.respond("Failed to save player")
            return
        await ctx.respond(f"Updated primary ally code to {normalized} for {mention}.")

    async def unregister_player(self, ctx: discord.ApplicationContext, ally_code: str = None):
        """Remove one ally code, or the whole player when none is given."""
        user_id = str(ctx.author.id)
        mention = ctx.author.mention

        if ally_code:
            normalized = normalize_ally_code(ally_code)
            if not normalized or not await self.player_store.remove_ally_code(user_id, normalized):
                await ctx.respond("Failed to unregister ally code")
                return
            await ctx.respond(f"Unregistered player with ally code: {normalized} for {mention}")
            return

        if not await self.player_store.remove_player(user_id):
            await ctx.respond("Failed to unregister player")
            return
        await ctx.respond(f"Unregistered player {mention} and all associated ally codes")

    async def identify(self, ctx: discord.ApplicationContext):
        player = await self.player_store.get_player(str(ctx.author.id))
        if not player or not player["ally_code"]:
            await ctx.respond("Failed to identify player")
            return
        await ctx.respond(
            f"Identified player with ally code: {player['ally_code']} for {ctx.author.mention}"
        )


def setup(bot: discord.Bot):
    """
    Setup function to add the PlayerRegistry cog to the bot.

    Args:
        bot: Discord bot instance with its services attached
    """
    bot.add_cog(PlayerRegistry(bot, bot.services.player_store))
