"""
Service container - explicit construction of every long-lived collaborator.

The bot builds one BotServices at startup and hands its members to the cogs
and the ticket monitor; nothing reaches for a global instance.
"""

from dataclasses import dataclass
from typing import Optional

import aiohttp
import discord

from .. import config
from ..cache import CacheService
from ..clients import (
    CachedComlinkClient,
    CachedMhanndalorianClient,
    ComlinkClient,
    create_mhanndalorian_client,
)
from ..core.reliability import RetryManager
from ..stores import GuildRegistryStore, PlayerStore, ViolationStore
from .ticket_monitor import TicketMonitorService
from .violation_summary import ViolationSummaryService


@dataclass
class BotServices:
    cache: CacheService
    comlink: CachedComlinkClient
    mhanndalorian: Optional[CachedMhanndalorianClient]
    player_store: PlayerStore
    guild_registry: GuildRegistryStore
    violation_store: ViolationStore
    summary: ViolationSummaryService
    monitor: TicketMonitorService


def build_services(bot: discord.Client, session: aiohttp.ClientSession) -> BotServices:
    """
    Wire the cache, upstream facades, stores and services from configuration.

    Args:
        bot: Discord client the services deliver through
        session: Shared HTTP session for the upstream clients

    Returns:
        The assembled services
    """
    cache = CacheService(default_ttl=config.get_cache_default_ttl_seconds())
    retry = RetryManager()
    timeout = config.get_http_timeout_seconds()

    comlink = CachedComlinkClient(
        ComlinkClient(
            config.get_comlink_url(),
            session=session,
            access_key=config.get_comlink_access_key(),
            secret_key=config.get_comlink_secret_key(),
            timeout=timeout,
        ),
        cache,
        retry,
    )

    mhanndalorian_client = create_mhanndalorian_client(
        config.get_mhanndalorian_api_key(),
        config.get_mhanndalorian_discord_id(),
        config.get_mhanndalorian_ally_code(),
        base_url=config.get_mhanndalorian_url(),
        session=session,
        use_hmac=config.get_mhanndalorian_use_hmac(),
        timeout=timeout,
    )
    mhanndalorian = (
        CachedMhanndalorianClient(mhanndalorian_client, cache, retry)
        if mhanndalorian_client is not None
        else None
    )

    guild_registry = GuildRegistryStore()
    violation_store = ViolationStore()
    summary = ViolationSummaryService(
        bot,
        violation_store,
        comlink,
        violation_days_only=config.get_summary_average_violation_days_only(),
    )
    monitor = TicketMonitorService(
        bot,
        guild_registry,
        violation_store,
        comlink,
        summary,
        run_once=config.get_run_once(),
        check_interval=config.get_ticket_check_interval_seconds(),
        timezone_name=config.get_summary_timezone(),
    )
    return BotServices(
        cache=cache,
        comlink=comlink,
        mhanndalorian=mhanndalorian,
        player_store=PlayerStore(),
        guild_registry=guild_registry,
        violation_store=violation_store,
        summary=summary,
        monitor=monitor,
    )


__all__ = [
    "BotServices",
    "build_services",
    "TicketMonitorService",
    "ViolationSummaryService",
]
