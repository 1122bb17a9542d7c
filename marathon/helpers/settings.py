"""Service configuration read from environment variables (and a .env file).

Required variables raise :class:`ConfigError` naming the missing key, so a
misconfigured deployment fails at startup rather than on first use.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from marathon.helpers import dotenv


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class ServerConfig:
    address: str
    read_timeout: int  # seconds
    write_timeout: int
    idle_timeout: int


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    user: str
    password: str
    database_name: str
    sslmode: str = "disable"
    pool_size: int = 5


@dataclass(frozen=True)
class PlatformConfig:
    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class MarathonConfig:
    server: ServerConfig
    database: DatabaseConfig
    fitbit: PlatformConfig
    callback: str  # shared OAuth callback for every platform
    client_timeout: int  # seconds, for outbound platform requests


def _require(environ: Mapping[str, str], key: str) -> str:
    value = dotenv.get_dotenv_value(key, environ=environ)
    if value is None:
        raise ConfigError(f"environment variable [{key}] does not exist")
    return value


def _require_int(environ: Mapping[str, str], key: str) -> int:
    value = _require(environ, key)
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(
            f"environment variable [{key}] must be an integer, got {value!r}"
        ) from exc


def _optional_int(environ: Mapping[str, str], key: str, default: int) -> int:
    if dotenv.get_dotenv_value(key, environ=environ) is None:
        return default
    return _require_int(environ, key)


def load_platform_config(environ: Mapping[str, str], platform: str) -> PlatformConfig:
    """Read ``CLIENT_ID_<PLATFORM>`` and ``CLIENT_SECRET_<PLATFORM>``."""
    suffix = platform.upper()
    return PlatformConfig(
        client_id=_require(environ, f"CLIENT_ID_{suffix}"),
        client_secret=_require(environ, f"CLIENT_SECRET_{suffix}"),
    )


def load_database_config(environ: Mapping[str, str]) -> DatabaseConfig:
    return DatabaseConfig(
        host=dotenv.get_dotenv_value(dotenv.KEY_DB_HOST, "localhost", environ),
        port=_require_int(environ, dotenv.KEY_DB_PORT),
        user=dotenv.get_dotenv_value(dotenv.KEY_DB_USER, "", environ),
        password=dotenv.get_dotenv_value(dotenv.KEY_DB_PASSWORD, "", environ),
        database_name=dotenv.get_dotenv_value(dotenv.KEY_DB_NAME, "", environ),
        sslmode=dotenv.get_dotenv_value(dotenv.KEY_DB_SSLMODE, "disable", environ),
        pool_size=_optional_int(environ, dotenv.KEY_DB_POOL_SIZE, 5),
    )


def load_config(environ: Mapping[str, str] | None = None) -> MarathonConfig:
    """Build the service configuration.

    With no mapping given, the .env file is loaded into the process
    environment first and ``os.environ`` is read.
    """
    if environ is None:
        dotenv.load_dotenv()
        environ = os.environ

    server = ServerConfig(
        address=dotenv.get_dotenv_value(dotenv.KEY_SERVER_ADDRESS, "", environ),
        read_timeout=_optional_int(environ, dotenv.KEY_READ_TIMEOUT, 15),
        write_timeout=_optional_int(environ, dotenv.KEY_WRITE_TIMEOUT, 15),
        idle_timeout=_optional_int(environ, dotenv.KEY_IDLE_TIMEOUT, 60),
    )

    return MarathonConfig(
        server=server,
        database=load_database_config(environ),
        fitbit=load_platform_config(environ, "fitbit"),
        callback=dotenv.get_dotenv_value(dotenv.KEY_CALLBACK, "", environ),
        client_timeout=_require_int(environ, dotenv.KEY_CLIENT_TIMEOUT),
    )
