"""
Discord Bot Main Module - Daily raid ticket tracking bot for SWGOH guilds.

Startup wires the configuration, structured logging, the shared HTTP session
and the service container, then loads the slash command cogs. Once the
gateway is ready the database pool is opened, the schema is ensured and the
background work starts:

- Ticket monitor loop (one tick per configured interval)
- Cache maintenance (prunes expired entries)
- Resource monitoring (memory and CPU thresholds via psutil)

Shutdown, whether from a signal or a failed start, stops the monitor, cancels
background tasks with a bounded wait and closes the HTTP session and the
database pool.
"""

import asyncio
import os
import random
import signal
import sys
import time
from typing import Final, Optional

import aiohttp
import discord
import psutil

from . import config
from .cogs import AVAILABLE_COGS, get_cog_path
from .config import ConfigError
from .core.logger import ComponentLogger, configure_logging
from .db import close_db_pool, initialize_db_pool
from .services import build_services
from .stores import ensure_schema

_bot_logger = ComponentLogger("bot")

EXTENSIONS: Final[tuple] = tuple(get_cog_path(name) for name in AVAILABLE_COGS)

RESOURCE_CHECK_INTERVAL = 300
SHUTDOWN_TIMEOUT_SECONDS = 10


# #################################################################################### #
#                               Exception Hooks
# #################################################################################### #
def _global_exception_hook(exc_type, exc_value, exc_tb):
    """
    Global exception handler for uncaught exceptions.

    Args:
        exc_type: Exception type
        exc_value: Exception value
        exc_tb: Exception traceback
    """
    _bot_logger.critical("uncaught_exception",
        error_type=exc_type.__name__,
        error_msg=str(exc_value),
        exc_info=(exc_type, exc_value, exc_tb),
    )


def handle_async_exception(loop, context):
    """
    Handle uncaught exceptions in async tasks.

    Args:
        loop: Event loop where exception occurred
        context: Exception context with details
    """
    exception = context.get("exception")
    if exception:
        _bot_logger.error("uncaught_async_exception", exception=str(exception), exc_info=exception)
    else:
        _bot_logger.error("uncaught_async_exception", message=context["message"])


def validate_token() -> str:
    """
    Validate the Discord bot token format.

    Returns:
        Validated Discord token

    Raises:
        SystemExit: If token is invalid or missing
    """
    token = config.get_token()
    if token.strip() != token:
        _bot_logger.critical("invalid_token_format", reason="contains_whitespace")
        raise SystemExit(1)

    if token.count(".") < 2:
        _bot_logger.critical("invalid_token_format", reason="missing_structure", dots_count=token.count("."))
        raise SystemExit(1)

    if token.lower() in ["your_token_here", "bot_token", "discord_token"]:
        _bot_logger.critical("placeholder_token_detected")
        raise SystemExit(1)

    if config.get_debug() and not config.get_production():
        _bot_logger.debug("token_validated", masked_token=f"{token[:10]}...{token[-4:]}")
    return token


# #################################################################################### #
#                            Discord Bot Initialization
# #################################################################################### #
def create_bot() -> discord.Bot:
    """
    Build the Discord bot and attach its event handlers.

    Returns:
        Bot instance without services; run_bot attaches them
    """
    intents = discord.Intents.default()
    bot = discord.Bot(intents=intents)
    bot._background_tasks = []
    bot._start_time_monotonic = time.monotonic()
    bot.services = None
    bot.http_session = None

    @bot.event
    async def on_ready() -> None:
        await handle_ready(bot)

    @bot.event
    async def on_disconnect() -> None:
        _bot_logger.warning("gateway_disconnected")

    @bot.event
    async def on_resumed() -> None:
        _bot_logger.info("gateway_resumed")

    @bot.event
    async def on_application_command_error(
        ctx: discord.ApplicationContext, error: discord.DiscordException
    ):
        command_name = ctx.command.name if ctx.command else "unknown"
        _bot_logger.error("application_command_error",
            command=command_name,
            error_type=type(error).__name__,
            error=str(error),
            exc_info=error,
        )
        try:
            await ctx.respond(
                "An error occurred while processing your request. Please try again later.",
                ephemeral=True,
            )
        except discord.HTTPException as e:
            _bot_logger.warning("error_response_failed", command=command_name, error=str(e))

    return bot


def register_background_task(bot: discord.Bot, task: asyncio.Task, task_name: str = "unknown") -> None:
    """
    Central API to register background tasks for proper cleanup.

    Args:
        bot: Bot owning the task
        task: AsyncIO task to register
        task_name: Human-readable task name for logging
    """
    bot._background_tasks.append(task)
    _bot_logger.debug("background_task_registered", task_name=task_name)


def load_extensions(bot: discord.Bot) -> None:
    """
    Load all Discord bot extensions (cogs) with error handling.

    Raises:
        SystemExit: If too many extensions fail to load
    """
    if getattr(bot, "_extensions_loaded", False):
        _bot_logger.debug("extensions_already_loaded")
        return

    failed_extensions = []
    for ext in EXTENSIONS:
        try:
            bot.load_extension(ext)
            _bot_logger.debug("extension_loaded", extension=ext)
        except Exception:
            failed_extensions.append(ext)
            _bot_logger.error("extension_load_failed", extension=ext, exc_info=True)

    if failed_extensions:
        _bot_logger.warning("some_extensions_failed",
            failed_count=len(failed_extensions),
            failed_extensions=failed_extensions,
        )

    if len(failed_extensions) > len(EXTENSIONS) // 2:
        _bot_logger.critical("too_many_extensions_failed",
            failed_count=len(failed_extensions),
            total_count=len(EXTENSIONS),
        )
        raise SystemExit(1)

    bot._extensions_loaded = True


# #################################################################################### #
#                            Ready Handling
# #################################################################################### #
async def handle_ready(bot: discord.Bot) -> None:
    """
    Open the database, ensure the schema and start the background work once.

    Args:
        bot: Connected bot with services attached
    """
    _bot_logger.info("bot_connected", username=str(bot.user), user_id=bot.user.id)

    if not getattr(bot, "_db_pool_initialized", False):
        bot._db_pool_initialized = True
        if not await initialize_db_pool():
            _bot_logger.critical("database_pool_init_failed", message="Shutting down")
            await bot.close()
            return
        if not await ensure_schema():
            _bot_logger.critical("database_schema_failed", message="Shutting down")
            await bot.close()
            return
        _bot_logger.info("database_ready")

    if getattr(bot, "_background_started", False):
        return
    bot._background_started = True

    services = bot.services
    services.monitor.start()
    register_background_task(bot, services.cache.start_maintenance(), "cache_maintenance")

    monitor_task = asyncio.create_task(monitor_resources(), name="resource_monitoring")
    register_background_task(bot, monitor_task, "resource_monitoring")

    _bot_logger.info("background_tasks_started", task_count=len(bot._background_tasks))


# #################################################################################### #
#                            Resource Monitoring
# #################################################################################### #
async def monitor_resources():
    """
    Monitor system resources (CPU, memory) and log warnings for high usage.
    """
    try:
        process = psutil.Process()
        process.cpu_percent()
        await asyncio.sleep(1)
        last_log_hour = None

        while True:
            try:
                memory_mb = process.memory_info().rss / 1024 / 1024
                cpu_percent = process.cpu_percent()

                if memory_mb > config.get_max_memory_mb():
                    _bot_logger.warning("high_memory_usage",
                        memory_mb=round(memory_mb, 1),
                        limit_mb=config.get_max_memory_mb(),
                    )
                if cpu_percent > config.get_max_cpu_percent():
                    _bot_logger.warning("high_cpu_usage",
                        cpu_percent=round(cpu_percent, 1),
                        limit_percent=config.get_max_cpu_percent(),
                    )

                current_hour = int(time.time()) // 3600
                if current_hour != last_log_hour:
                    last_log_hour = current_hour
                    _bot_logger.info("resource_usage",
                        memory_mb=round(memory_mb, 1),
                        cpu_percent=round(cpu_percent, 1),
                    )
            except psutil.Error as e:
                _bot_logger.error("resource_monitoring_error", error=str(e))
            await asyncio.sleep(RESOURCE_CHECK_INTERVAL)
    except asyncio.CancelledError:
        _bot_logger.debug("resource_monitoring_cancelled")
        raise


# #################################################################################### #
#                            Resilient runner
# #################################################################################### #
async def run_bot(bot: discord.Bot) -> None:
    """
    Main bot runner with retry logic for resilient startup.

    Args:
        bot: Bot created by create_bot
    """
    try:
        log_file = config.get_log_file()
        debug = config.get_debug()
    except ConfigError as e:
        configure_logging()
        _bot_logger.critical("configuration_invalid", error=str(e))
        raise SystemExit(1)

    configure_logging(log_file=log_file or None, debug=debug)
    token = validate_token()

    bot.http_session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.get_http_timeout_seconds())
    )
    bot.services = build_services(bot, bot.http_session)
    load_extensions(bot)

    max_retries = config.get_max_reconnect_attempts()
    retry_count = 0

    try:
        while retry_count < max_retries:
            try:
                await bot.start(token)
            except asyncio.CancelledError:
                _bot_logger.info("bot_startup_cancelled")
                break
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError):
                retry_count += 1
                base_wait_time = min(300, 15 * (2 ** (retry_count - 1)))
                wait_time = base_wait_time + random.uniform(0.1, 0.5) * base_wait_time
                _bot_logger.error("network_error_retry",
                    attempt=retry_count,
                    max_retries=max_retries,
                    wait_time_seconds=round(wait_time, 1),
                    exc_info=True,
                )
                if retry_count >= max_retries:
                    _bot_logger.critical("max_retries_reached")
                    break
                await bot.close()
                bot.clear()
                await asyncio.sleep(wait_time)
            except discord.LoginFailure as e:
                _bot_logger.critical("login_failed", error=str(e))
                break
            else:
                break
    finally:
        _bot_logger.info("shutdown_cleanup_started")
        await cleanup_background_tasks(bot)


async def cleanup_background_tasks(bot: discord.Bot) -> None:
    """
    Stop the services and cancel all background tasks with timeout bounds.
    """
    services = getattr(bot, "services", None)
    if services is not None:
        services.monitor.stop()
        await services.cache.stop()

    tasks = [task for task in bot._background_tasks if not task.done()]
    if tasks:
        _bot_logger.debug("background_tasks_cancelling", task_count=len(tasks))
        for task in tasks:
            task.cancel()
        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=SHUTDOWN_TIMEOUT_SECONDS,
            )
            _bot_logger.debug("background_tasks_cleanup_completed")
        except asyncio.TimeoutError:
            _bot_logger.warning("background_tasks_cleanup_timeout",
                timeout_seconds=SHUTDOWN_TIMEOUT_SECONDS,
                message="Forcing shutdown",
            )
    bot._background_tasks.clear()

    session: Optional[aiohttp.ClientSession] = getattr(bot, "http_session", None)
    if session is not None:
        try:
            if not session.closed:
                await asyncio.wait_for(session.close(), timeout=5)
            _bot_logger.debug("http_session_closed")
        except asyncio.TimeoutError:
            _bot_logger.warning("http_session_close_timeout", message="Continuing shutdown")
        finally:
            bot.http_session = None

    if getattr(bot, "_db_pool_initialized", False):
        await close_db_pool()
        bot._db_pool_initialized = False
        _bot_logger.debug("database_pool_closed")


def _graceful_exit(bot: discord.Bot, sig_name: str) -> None:
    """
    Handle graceful shutdown on system signals.

    Args:
        bot: Running bot
        sig_name: Signal name that triggered shutdown
    """
    _bot_logger.warning("signal_received", signal=sig_name, action="initiating_graceful_shutdown")

    async def shutdown():
        try:
            await cleanup_background_tasks(bot)
            if not bot.is_closed():
                await bot.close()
            _bot_logger.info("graceful_shutdown_completed")
        except Exception as e:
            _bot_logger.error("shutdown_error", error=str(e), exc_info=True)

    try:
        loop = asyncio.get_running_loop()
        loop.create_task(shutdown())
    except RuntimeError:
        try:
            asyncio.run(shutdown())
        except Exception as e:
            _bot_logger.critical("graceful_shutdown_failed", error=str(e))
            os._exit(1)


def main() -> None:
    """Create the event loop and the bot, install signal handlers and run."""
    sys.excepthook = _global_exception_hook

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    loop.set_exception_handler(handle_async_exception)

    bot = create_bot()

    for sig in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGINT", None)):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _graceful_exit, bot, sig.name)
            _bot_logger.debug("signal_handler_registered", signal=sig.name, method="loop")
        except (NotImplementedError, AttributeError):
            signal.signal(
                sig, lambda signum, frame: _graceful_exit(bot, signal.Signals(signum).name)
            )
            _bot_logger.debug("signal_handler_registered", signal=sig.name, method="signal_module")

    try:
        loop.run_until_complete(run_bot(bot))
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
