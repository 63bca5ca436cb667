"""
SWGOH Guild Bot - Discord bot tracking daily raid tickets of Star Wars:
Galaxy of Heroes guilds.

Provides a TTL cache with single-flight loading, cached upstream game data
clients, MySQL persistence and the timer-driven ticket monitor.
"""

__version__ = "1.0.0"

from .cache import CacheService
from .db import run_db_query

__all__ = ["CacheService", "run_db_query"]
