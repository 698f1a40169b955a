# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Callable
from logging import getLogger
from os import environ
from typing import Final, TypeVar

T = TypeVar("T")

log = getLogger(__name__)


# Settings
SUBSCRIPTION_ID_SETTING = "SUBSCRIPTION_ID"
RESOURCE_GROUP_SETTING = "RESOURCE_GROUP"
VM_NAME_SETTING = "VM_NAME"
LOG_LEVEL_SETTING = "LOG_LEVEL"
STRICT_STORAGE_LOOKUP_SETTING = "STRICT_STORAGE_LOOKUP"
DD_SITE_SETTING = "DD_SITE"
DD_API_KEY_SETTING = "DD_API_KEY"
DD_TELEMETRY_SETTING = "DD_TELEMETRY"

DEFAULT_LOG_LEVEL: Final = "INFO"
LOG_LEVELS: Final = frozenset({"ERROR", "WARN", "WARNING", "INFO", "DEBUG"})


class MissingConfigOptionError(Exception):
    def __init__(self, option: str) -> None:
        super().__init__(f"Missing required configuration option: {option}")


def get_config_option(name: str) -> str:
    """Get a configuration option from the environment or raise a helpful error"""
    if option := environ.get(name):
        return option
    raise MissingConfigOptionError(name)


def parse_config_option(name: str, parse: Callable[[str], T | None], default: T) -> T:
    """Get a configuration option from the environment, parse it, or return a default"""
    try:
        value = environ.get(name)
        if value is None:
            return default
        result = parse(value)
        if result is None:
            log.error(f"Invalid value for configuration option {name}: {value}")
            return default
        return result
    except ValueError:
        log.error(f"Invalid value for configuration option {name}: {environ.get(name)}")
        return default


def is_truthy(setting_name: str) -> bool:
    return environ.get(setting_name, "").lower().strip() in {"t", "true", "1", "y", "yes"}


def parse_log_level(value: str) -> str | None:
    level = value.strip().upper()
    return level if level in LOG_LEVELS else None


def get_log_level() -> str:
    """The configured log level, `INFO` when unset or invalid"""
    return parse_config_option(LOG_LEVEL_SETTING, parse_log_level, DEFAULT_LOG_LEVEL)
