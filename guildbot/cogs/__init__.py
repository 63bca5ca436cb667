"""
Cogs Package - Discord slash command extensions for the ticket tracking bot.

Each module exposes a ``setup(bot)`` function that reads its collaborators
from ``bot.services``.
"""

from typing import List

AVAILABLE_COGS: List[str] = [
    "players",           # Ally code registration
    "tickets",           # Ticket collection channels and summaries
    "territory_battle",  # Live territory battle status
]


def get_cog_path(cog_name: str) -> str:
    """
    Get the full import path for a specified cog.

    Args:
        cog_name: Name of the cog to get path for

    Returns:
        Full import path for the cog module

    Raises:
        ValueError: If cog_name is not in AVAILABLE_COGS
    """
    if cog_name not in AVAILABLE_COGS:
        raise ValueError(f"Unknown cog '{cog_name}'. Available: {AVAILABLE_COGS}")
    return f"{__name__}.{cog_name}"


__all__ = ["AVAILABLE_COGS", "get_cog_path"]
