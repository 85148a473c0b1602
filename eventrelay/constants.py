# -*- coding: utf-8 -*-
import configparser
import os
from pathlib import Path
from typing import Optional

DIR_NAME = ".eventrelay"


def get_user_dir() -> Path:
    """
    Get the user directory for the eventrelay configuration.

    Returns:
        Path: The user directory path.
    """
    raw_dir = os.getenv("EVENTRELAY_CONFIG_PATH")

    if raw_dir:
        return Path(raw_dir)

    return Path("~", DIR_NAME).expanduser()


USER_CONFIG_DIR = get_user_dir()

CONFIG_FILE_NAME = "config.ini"
CONFIG_FILE_USER = USER_CONFIG_DIR / CONFIG_FILE_NAME
CONFIG_SECTION = "queue"

ENV_PREFIX = "EVENTRELAY_"

DEFAULT_API_HOST = "https://events.eventrelay.dev/v0/raw_events"

# Retries after the first attempt
DEFAULT_RETRY = 3
MAX_RETRY = 5
MIN_RETRY = 1

DEFAULT_FLUSH_AT = 20
MAX_FLUSH_AT = 20
MIN_FLUSH_AT = 1

DEFAULT_QUEUE_SIZE = 1_024 * 500  # 500kB
MAX_QUEUE_SIZE = 1_024 * 500  # 500kB
MIN_QUEUE_SIZE = 200  # 200 bytes

# Seconds
DEFAULT_FLUSH_INTERVAL = 30.0
MAX_FLUSH_INTERVAL = 300.0
MIN_FLUSH_INTERVAL = 10.0

DEFAULT_DEDUP_WINDOW = 60.0
DEFAULT_DEDUP_QUANTUM = 60

# Transports that keep a request alive while the host is leaving cap the
# cumulative in-flight body size. Bodies above this are cancelled silently.
KEEPALIVE_PAYLOAD_LIMIT = 64 * 1_024  # 64kB

REQUEST_TIMEOUT = float(os.getenv("EVENTRELAY_REQUEST_TIMEOUT", 10))
KEEPALIVE_REQUEST_TIMEOUT = 5.0

# Exit codes
EXIT_CODE_OK = 0
EXIT_CODE_FAILURE = 1
EXIT_CODE_INVALID_INPUT = 2


def get_config_setting(
    name: str, default: Optional[str] = None, path: Optional[Path] = None
) -> Optional[str]:
    """
    Get a queue setting from the environment or the config file.

    Environment variables (``EVENTRELAY_<NAME>``) take precedence over the
    ``[queue]`` section of the user config file.

    Args:
        name (str): The name of the setting to retrieve.
        default (Optional[str]): Returned when the setting is not defined.
        path (Optional[Path]): Alternative config file location.

    Returns:
        Optional[str]: The value of the setting if found, otherwise the default.
    """
    env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
    if env_value:
        return env_value

    config = configparser.ConfigParser()
    config.read(path or CONFIG_FILE_USER)

    if CONFIG_SECTION in config.sections() and name in config[CONFIG_SECTION]:
        value = config[CONFIG_SECTION][name]
        if value:
            return value

    return default
