"""
Configuration Module - Environment variable loading and validation.

Provides centralized configuration loading with:
- .env support through python-dotenv
- Integer validation with optional auto-clamping
- Secrets kept out of the public mapping (exposed through getters only)
- Lazy loading so tests can import the module without a full environment
"""

import os
import re
from types import MappingProxyType
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from .core.logger import ComponentLogger

_logger = ComponentLogger("config")


class ConfigError(Exception):
    """Custom exception for configuration-related errors."""
    pass


env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(env_path)

# #################################################################################### #
#                            Validation Ranges and Parsing
# #################################################################################### #
DEFAULT_COMLINK_URL = "http://localhost:3000"
DEFAULT_MHANNDALORIAN_URL = "https://mhanndalorianbot.work/api"

VALIDATION_RANGES = {
    "MAX_MEMORY_MB": (50, 2048),
    "MAX_CPU_PERCENT": (10, 95),
    "MAX_RECONNECT_ATTEMPTS": (1, 10),
    "DB_POOL_SIZE": (1, 50),
    "DB_TIMEOUT": (5, 30),
    "DB_PORT": (1, 65535),
    "CACHE_DEFAULT_TTL_SECONDS": (1, 3600),
    "TICKET_CHECK_INTERVAL_SECONDS": (10, 600),
    "HTTP_TIMEOUT_SECONDS": (5, 120),
}


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse boolean value from string with consistent normalization.

    Args:
        value: String value to parse
        default: Default value if empty or None

    Returns:
        Parsed boolean value
    """
    if not value:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on", "y")


def validate_env_var(var_name: str, value: Optional[str], required: bool = True) -> str:
    """
    Validate and return environment variable value.

    Args:
        var_name: Name of the environment variable
        value: Raw value from environment (can be None)
        required: Whether the variable is required

    Returns:
        Validated environment variable value

    Raises:
        ConfigError: If required variable is missing
    """
    if not value:
        if required:
            raise ConfigError(f"Missing required environment variable: {var_name}")
        return ""
    return value.strip()


def validate_int_env_var(
    var_name: str,
    value: Optional[str],
    default: Optional[int] = None,
    auto_clamp: bool = False,
) -> int:
    """
    Validate and return integer environment variable value.

    Args:
        var_name: Name of the environment variable
        value: Raw value from environment (can be None)
        default: Default value if not provided
        auto_clamp: Whether to automatically clamp values to valid ranges

    Returns:
        Validated integer value

    Raises:
        ConfigError: If value is invalid or missing without default
    """
    if not value:
        if default is None:
            raise ConfigError(
                f"Missing required integer environment variable: {var_name}"
            )
        return default
    try:
        parsed_value = int(value)
    except ValueError:
        raise ConfigError(f"Invalid integer value for {var_name}: {value}")

    if var_name in VALIDATION_RANGES:
        min_val, max_val = VALIDATION_RANGES[var_name]
        if not (min_val <= parsed_value <= max_val):
            if auto_clamp:
                clamped = min(max(parsed_value, min_val), max_val)
                _logger.warning("config_value_clamped",
                    variable=var_name,
                    original=parsed_value,
                    clamped=clamped,
                )
                return clamped
            _logger.warning("config_value_out_of_range",
                variable=var_name,
                value=parsed_value,
                min_recommended=min_val,
                max_recommended=max_val,
            )
    return parsed_value


# #################################################################################### #
#                            Configuration Loading Function
# #################################################################################### #
def load_config() -> Mapping[str, Any]:
    """
    Load and validate all configuration from environment variables.

    Returns:
        Read-only mapping containing all validated configuration values

    Raises:
        ConfigError: If critical configuration is invalid or missing
    """
    config = {}
    auto_clamp = parse_bool(os.getenv("CONFIG_AUTO_CLAMP", "False"))

    try:
        # #################################################################################### #
        #                            Runtime Mode and Logging
        # #################################################################################### #
        config["DEBUG"] = parse_bool(os.getenv("DEBUG", "False"))
        config["PRODUCTION"] = parse_bool(os.getenv("PRODUCTION", "False"))
        config["ENVIRONMENT"] = os.getenv("ENVIRONMENT", "production").strip().lower()
        config["RUN_ONCE"] = config["ENVIRONMENT"] == "development"
        config["LOG_FILE"] = os.getenv("LOG_FILE", "")

        # #################################################################################### #
        #                            Discord Bot Configuration
        # #################################################################################### #
        token = os.getenv("BOT_TOKEN") or os.getenv("DISCORD_TOKEN")
        if not token:
            raise ConfigError(
                "Missing required environment variable: BOT_TOKEN or DISCORD_TOKEN"
            )
        if len(token) < 50:
            raise ConfigError("Invalid Discord token format - token too short")

        # #################################################################################### #
        #                            Database Configuration
        # #################################################################################### #
        config["DB_USER"] = validate_env_var("DB_USER", os.getenv("DB_USER"))
        db_password = validate_env_var(
            "DB_PASSWORD", os.getenv("DB_PASSWORD") or os.getenv("DB_PASS")
        )
        config["DB_HOST"] = os.getenv("DB_HOST", "localhost")
        config["DB_PORT"] = validate_int_env_var(
            "DB_PORT", os.getenv("DB_PORT"), default=3306, auto_clamp=auto_clamp
        )
        config["DB_NAME"] = validate_env_var("DB_NAME", os.getenv("DB_NAME"))
        if not re.match(r"^[A-Za-z0-9_]{1,64}$", config["DB_NAME"]):
            raise ConfigError(
                f"DB_NAME must be 1-64 alphanumeric or underscore characters: {config['DB_NAME']}"
            )
        config["DB_POOL_SIZE"] = validate_int_env_var(
            "DB_POOL_SIZE", os.getenv("DB_POOL_SIZE"), default=10, auto_clamp=auto_clamp
        )
        config["DB_TIMEOUT"] = validate_int_env_var(
            "DB_TIMEOUT", os.getenv("DB_TIMEOUT"), default=15, auto_clamp=auto_clamp
        )

        # #################################################################################### #
        #                            Upstream Game-Data APIs
        # #################################################################################### #
        config["COMLINK_URL"] = (
            os.getenv("COMLINK_URL") or DEFAULT_COMLINK_URL
        ).rstrip("/")
        config["COMLINK_ACCESS_KEY"] = validate_env_var(
            "COMLINK_ACCESS_KEY", os.getenv("COMLINK_ACCESS_KEY"), required=False
        )
        comlink_secret = validate_env_var(
            "COMLINK_SECRET_KEY", os.getenv("COMLINK_SECRET_KEY"), required=False
        )
        config["MHANNDALORIAN_URL"] = (
            os.getenv("MHANNDALORIAN_URL") or DEFAULT_MHANNDALORIAN_URL
        ).rstrip("/")
        mhanndalorian_api_key = validate_env_var(
            "MHANNDALORIAN_API_KEY", os.getenv("MHANNDALORIAN_API_KEY"), required=False
        )
        config["MHANNDALORIAN_DISCORD_ID"] = validate_env_var(
            "MHANNDALORIAN_DISCORD_ID",
            os.getenv("MHANNDALORIAN_DISCORD_ID"),
            required=False,
        )
        config["MHANNDALORIAN_ALLY_CODE"] = validate_env_var(
            "MHANNDALORIAN_ALLY_CODE",
            os.getenv("MHANNDALORIAN_ALLY_CODE"),
            required=False,
        )
        config["MHANNDALORIAN_USE_HMAC"] = parse_bool(
            os.getenv("MHANNDALORIAN_USE_HMAC", "False")
        )
        config["HTTP_TIMEOUT_SECONDS"] = validate_int_env_var(
            "HTTP_TIMEOUT_SECONDS",
            os.getenv("HTTP_TIMEOUT_SECONDS"),
            default=30,
            auto_clamp=auto_clamp,
        )

        # #################################################################################### #
        #                            Cache and Ticket Monitoring
        # #################################################################################### #
        config["CACHE_DEFAULT_TTL_SECONDS"] = validate_int_env_var(
            "CACHE_DEFAULT_TTL_SECONDS",
            os.getenv("CACHE_DEFAULT_TTL_SECONDS"),
            default=120,
            auto_clamp=auto_clamp,
        )
        config["TICKET_CHECK_INTERVAL_SECONDS"] = validate_int_env_var(
            "TICKET_CHECK_INTERVAL_SECONDS",
            os.getenv("TICKET_CHECK_INTERVAL_SECONDS"),
            default=60,
            auto_clamp=auto_clamp,
        )
        config["SUMMARY_TIMEZONE"] = os.getenv("SUMMARY_TIMEZONE", "UTC")
        config["SUMMARY_AVERAGE_VIOLATION_DAYS_ONLY"] = parse_bool(
            os.getenv("SUMMARY_AVERAGE_VIOLATION_DAYS_ONLY", "False")
        )

        # #################################################################################### #
        #                            Performance and Resource Limits
        # #################################################################################### #
        config["MAX_MEMORY_MB"] = validate_int_env_var(
            "MAX_MEMORY_MB", os.getenv("MAX_MEMORY_MB"), default=1024, auto_clamp=auto_clamp
        )
        config["MAX_CPU_PERCENT"] = validate_int_env_var(
            "MAX_CPU_PERCENT", os.getenv("MAX_CPU_PERCENT"), default=90, auto_clamp=auto_clamp
        )
        config["MAX_RECONNECT_ATTEMPTS"] = validate_int_env_var(
            "MAX_RECONNECT_ATTEMPTS",
            os.getenv("MAX_RECONNECT_ATTEMPTS"),
            default=5,
            auto_clamp=auto_clamp,
        )

        _logger.info("config_loaded_successfully",
            total_vars=len(config),
            auto_clamp_enabled=auto_clamp,
            environment=config["ENVIRONMENT"],
        )

        config["get_token"] = lambda: token
        config["get_db_password"] = lambda: db_password
        config["get_comlink_secret"] = lambda: comlink_secret
        config["get_mhanndalorian_api_key"] = lambda: mhanndalorian_api_key

        return MappingProxyType(config)

    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Unexpected error during configuration loading: {e}")


# #################################################################################### #
#                            Lazy Global Configuration
# #################################################################################### #
_config_cache: Optional[Mapping[str, Any]] = None


def _get_config() -> Mapping[str, Any]:
    """Get cached configuration, loading it if necessary."""
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def reset_config() -> None:
    """Drop the cached configuration so the next getter reloads it."""
    global _config_cache
    _config_cache = None


def get_token() -> str:
    """Get Discord bot token."""
    return _get_config()["get_token"]()


def get_debug() -> bool:
    return _get_config()["DEBUG"]


def get_production() -> bool:
    return _get_config()["PRODUCTION"]


def get_run_once() -> bool:
    """Whether the ticket monitor runs a single forced pass (development)."""
    return _get_config()["RUN_ONCE"]


def get_log_file() -> str:
    return _get_config()["LOG_FILE"]


def get_db_user() -> str:
    return _get_config()["DB_USER"]


def get_db_password() -> str:
    """Securely get database password without storing it globally."""
    return _get_config()["get_db_password"]()


def get_db_host() -> str:
    return _get_config()["DB_HOST"]


def get_db_port() -> int:
    return _get_config()["DB_PORT"]


def get_db_name() -> str:
    return _get_config()["DB_NAME"]


def get_db_pool_size() -> int:
    return _get_config()["DB_POOL_SIZE"]


def get_db_timeout() -> int:
    return _get_config()["DB_TIMEOUT"]


def get_comlink_url() -> str:
    return _get_config()["COMLINK_URL"]


def get_comlink_access_key() -> str:
    return _get_config()["COMLINK_ACCESS_KEY"]


def get_comlink_secret_key() -> str:
    return _get_config()["get_comlink_secret"]()


def get_mhanndalorian_url() -> str:
    return _get_config()["MHANNDALORIAN_URL"]


def get_mhanndalorian_api_key() -> str:
    return _get_config()["get_mhanndalorian_api_key"]()


def get_mhanndalorian_discord_id() -> str:
    return _get_config()["MHANNDALORIAN_DISCORD_ID"]


def get_mhanndalorian_ally_code() -> str:
    return _get_config()["MHANNDALORIAN_ALLY_CODE"]


def get_mhanndalorian_use_hmac() -> bool:
    return _get_config()["MHANNDALORIAN_USE_HMAC"]


def get_http_timeout_seconds() -> int:
    return _get_config()["HTTP_TIMEOUT_SECONDS"]


def get_cache_default_ttl_seconds() -> int:
    """Get the default TTL applied to cached upstream reads."""
    return _get_config()["CACHE_DEFAULT_TTL_SECONDS"]


def get_ticket_check_interval_seconds() -> int:
    return _get_config()["TICKET_CHECK_INTERVAL_SECONDS"]


def get_summary_timezone() -> str:
    return _get_config()["SUMMARY_TIMEZONE"]


def get_summary_average_violation_days_only() -> bool:
    return _get_config()["SUMMARY_AVERAGE_VIOLATION_DAYS_ONLY"]


def get_max_memory_mb() -> int:
    return _get_config()["MAX_MEMORY_MB"]


def get_max_cpu_percent() -> int:
    return _get_config()["MAX_CPU_PERCENT"]


def get_max_reconnect_attempts() -> int:
    return _get_config()["MAX_RECONNECT_ATTEMPTS"]


# #################################################################################### #
#                            Public API Export
# #################################################################################### #
__all__ = [
    "load_config",
    "reset_config",
    "ConfigError",
    "parse_bool",
    "validate_env_var",
    "validate_int_env_var",
    "get_token",
    "get_debug",
    "get_production",
    "get_run_once",
    "get_log_file",
    "get_db_user",
    "get_db_password",
    "get_db_host",
    "get_db_port",
    "get_db_name",
    "get_db_pool_size",
    "get_db_timeout",
    "get_comlink_url",
    "get_comlink_access_key",
    "get_comlink_secret_key",
    "get_mhanndalorian_url",
    "get_mhanndalorian_api_key",
    "get_mhanndalorian_discord_id",
    "get_mhanndalorian_ally_code",
    "get_mhanndalorian_use_hmac",
    "get_http_timeout_seconds",
    "get_cache_default_ttl_seconds",
    "get_ticket_check_interval_seconds",
    "get_summary_timezone",
    "get_summary_average_violation_days_only",
    "get_max_memory_mb",
    "get_max_cpu_percent",
    "get_max_reconnect_attempts",
]
