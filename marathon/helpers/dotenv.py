import os
from collections.abc import Mapping

from dotenv import find_dotenv
from dotenv import load_dotenv as _load_dotenv

KEY_CALLBACK = "CALLBACK"
KEY_CLIENT_TIMEOUT = "CLIENT_TIMEOUT"
KEY_SERVER_ADDRESS = "SERVER_ADDRESS"
KEY_READ_TIMEOUT = "READ_TIMEOUT"
KEY_WRITE_TIMEOUT = "WRITE_TIMEOUT"
KEY_IDLE_TIMEOUT = "IDLE_TIMEOUT"
KEY_DB_HOST = "DB_HOST"
KEY_DB_PORT = "DB_PORT"
KEY_DB_USER = "DB_USER"
KEY_DB_PASSWORD = "DB_PASSWORD"
KEY_DB_NAME = "DB_NAME"
KEY_DB_SSLMODE = "DB_SSLMODE"
KEY_DB_POOL_SIZE = "DB_POOL_SIZE"


def load_dotenv() -> bool:
    """Load the nearest .env file without overriding variables already set."""
    return _load_dotenv(find_dotenv(usecwd=True), override=False)


def get_dotenv_value(
    key: str,
    default: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Read ``key`` from ``environ``, or from the process environment."""
    if environ is None:
        environ = os.environ
    return environ.get(key, default)
