"""Exception hierarchy for the credential and client-secret stores.

Lookup-style reads signal absence with ``None``; get-style reads raise a
:class:`NotFoundError` subclass.  Driver errors are always chained with
``raise ... from exc`` so the original cause stays visible.
"""


class CredentialStoreError(Exception):
    """Base class for every error raised by the store helpers."""


class NotFoundError(CredentialStoreError):
    """A row required by a get-style operation does not exist."""


class LinkedAccountNotFoundError(NotFoundError):
    def __init__(self, user_id: int, platform_name: str) -> None:
        super().__init__(
            f"no linked account for user {user_id} on platform '{platform_name}'"
        )
        self.user_id = user_id
        self.platform_name = platform_name


class ClientNotFoundError(NotFoundError):
    def __init__(self, client_id: int) -> None:
        super().__init__(f"no secret stored for client {client_id}")
        self.client_id = client_id


class LinkedAccountConflictError(CredentialStoreError):
    """The (platform, platform user id) pair is already linked to a user."""

    def __init__(self, platform_name: str, platform_user_id: str) -> None:
        super().__init__(
            f"platform account '{platform_user_id}' on '{platform_name}' "
            "is already linked"
        )
        self.platform_name = platform_name
        self.platform_user_id = platform_user_id


class StoreIntegrityError(CredentialStoreError):
    """A constraint other than platform-account uniqueness was violated."""


class MalformedDataError(CredentialStoreError):
    """A stored connection string lacks the expected positional fields."""


class StoreConnectivityError(CredentialStoreError):
    """The database could not be reached."""


class ConnectionStringError(CredentialStoreError, ValueError):
    """Invalid parameters for building a connection string."""
