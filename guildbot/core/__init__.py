"""
Core Utilities Module - Shared functionality for the bot.

Provides structured logging, retry with exponential backoff and Discord
message delivery helpers.
"""

from .functions import normalize_ally_code, send_embeds, send_long_message, split_message
from .logger import ComponentLogger, configure_logging
from .reliability import RetryManager, is_transient_error

__all__ = [
    "ComponentLogger",
    "configure_logging",
    "RetryManager",
    "is_transient_error",
    "normalize_ally_code",
    "send_embeds",
    "send_long_message",
    "split_message",
]
