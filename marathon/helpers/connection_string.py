"""Assembly and parsing of stored connection strings.

A connection string is an ordered, ``;``-joined list of opaque credential
parameters.  For OAuth2 platforms the layout is positional::

    oauth2;<access token>;<refresh token>
"""

from collections.abc import Sequence
from typing import NamedTuple

from marathon.helpers.store_errors import ConnectionStringError, MalformedDataError

DELIMITER = ";"
OAUTH2 = "oauth2"

# auth type, access token, refresh token
OAUTH2_FIELD_COUNT = 3


class OAuth2Tokens(NamedTuple):
    auth_type: str
    access_token: str
    refresh_token: str


def build_connection_string(params: Sequence[str]) -> str:
    """Join ``params`` with the delimiter, keeping their order."""
    if isinstance(params, str):
        raise ConnectionStringError(
            "parameters must be a sequence of strings, not a single string"
        )
    if len(params) == 0:
        raise ConnectionStringError(
            "a connection string needs at least one parameter"
        )
    for position, param in enumerate(params):
        if DELIMITER in param:
            raise ConnectionStringError(
                f"parameter at position {position} contains the "
                f"'{DELIMITER}' delimiter"
            )
    return DELIMITER.join(params)


def build_oauth2_connection_string(access_token: str, refresh_token: str) -> str:
    return build_connection_string([OAUTH2, access_token, refresh_token])


def split_connection_string(value: str) -> list[str]:
    return value.split(DELIMITER)


def parse_oauth2_tokens(value: str) -> OAuth2Tokens:
    """Recover the positional OAuth2 fields from a stored connection string.

    Extra trailing fields are ignored, which also tolerates strings written
    with a trailing delimiter.
    """
    fields = split_connection_string(value)
    if len(fields) < OAUTH2_FIELD_COUNT:
        raise MalformedDataError(
            f"connection string has {len(fields)} field(s), "
            f"expected at least {OAUTH2_FIELD_COUNT}"
        )
    return OAuth2Tokens(*fields[:OAUTH2_FIELD_COUNT])
