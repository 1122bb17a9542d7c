"""SQLAlchemy ORM models and operations for linked platform credentials.

Defines the four records the service persists: users, client applications,
linked accounts (per-platform credentials) and the user/client memberships.
All models inherit from the shared ``Base`` declared in
:mod:`marathon.helpers.store_db`.

Every operation takes the session explicitly.  Only
:func:`create_linked_account` spans several statements; it is the single
write path that brings a user and their first linked account into
existence.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, relationship

from marathon.helpers.connection_string import parse_oauth2_tokens
from marathon.helpers.store_db import Base
from marathon.helpers.store_errors import (
    ConnectionStringError,
    LinkedAccountConflictError,
    LinkedAccountNotFoundError,
    StoreIntegrityError,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    linked_accounts = relationship("LinkedAccount", back_populates="user")
    client_memberships = relationship("ClientMembership", back_populates="user")


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True)  # provisioned outside this service
    secret = Column(LargeBinary)

    members = relationship("ClientMembership", back_populates="client")


class LinkedAccount(Base):
    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    platform_name = Column(String, nullable=False)  # e.g. "fitbit"
    platform_user_id = Column(String, nullable=False)  # issued by the platform
    connection_string = Column(Text, nullable=False)  # "oauth2;<access>;<refresh>"
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime)

    __table_args__ = (UniqueConstraint("platform_name", "platform_user_id"),)

    user = relationship("User", back_populates="linked_accounts")


class ClientMembership(Base):
    __tablename__ = "client_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    joined_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="client_memberships")
    client = relationship("Client", back_populates="members")


# ---------------------------------------------------------------------------
# Linked account creation
# ---------------------------------------------------------------------------


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code == UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig)


def create_linked_account(
    db: Session,
    client_id: int,
    platform_name: str,
    platform_user_id: str,
    connection_string: str,
) -> int:
    """Create a user together with its linked account and client membership.

    The three inserts run in one transaction.  If any of them fails the
    transaction is rolled back and the error raised, so no user ever exists
    without its linked account and membership.  Returns the new user id.

    The session must not carry unrelated pending work: it is committed or
    rolled back here.
    """
    if not connection_string:
        raise ConnectionStringError("connection string must not be empty")

    try:
        user = User()
        db.add(user)
        db.flush()

        db.add(
            LinkedAccount(
                user_id=user.id,
                platform_name=platform_name,
                platform_user_id=platform_user_id,
                connection_string=connection_string,
            )
        )
        db.flush()

        db.add(ClientMembership(user_id=user.id, client_id=client_id))
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if _is_unique_violation(exc):
            logger.warning(
                "Rejected duplicate link of %s account %s",
                platform_name,
                platform_user_id,
            )
            raise LinkedAccountConflictError(platform_name, platform_user_id) from exc
        logger.warning(
            "Linking %s account failed for client %s: %s",
            platform_name,
            client_id,
            exc.orig,
        )
        raise StoreIntegrityError(str(exc.orig)) from exc
    except Exception:
        db.rollback()
        logger.warning("Linking %s account rolled back", platform_name)
        raise

    user_id = user.id
    db.commit()
    logger.debug(
        "Created user %s linked to %s through client %s",
        user_id,
        platform_name,
        client_id,
    )
    return user_id


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def lookup_user_by_platform_account(
    db: Session, platform_name: str, platform_user_id: str
) -> int | None:
    """Return the user owning a platform account, or None if it is not linked yet."""
    row = (
        db.query(LinkedAccount.user_id)
        .filter(
            LinkedAccount.platform_name == platform_name,
            LinkedAccount.platform_user_id == platform_user_id,
        )
        .first()
    )
    if row is None:
        return None
    return row.user_id


def get_linked_account(
    db: Session, user_id: int, platform_name: str
) -> LinkedAccount | None:
    """Look up a user's linked account on one platform."""
    return (
        db.query(LinkedAccount)
        .filter(
            LinkedAccount.user_id == user_id,
            LinkedAccount.platform_name == platform_name,
        )
        .first()
    )


def get_tokens(db: Session, user_id: int, platform_name: str) -> tuple[str, str]:
    """Return ``(access_token, refresh_token)`` stored for a user on a platform."""
    row = (
        db.query(LinkedAccount.connection_string)
        .filter(
            LinkedAccount.user_id == user_id,
            LinkedAccount.platform_name == platform_name,
        )
        .first()
    )
    if row is None:
        raise LinkedAccountNotFoundError(user_id, platform_name)

    tokens = parse_oauth2_tokens(row.connection_string)
    return tokens.access_token, tokens.refresh_token


def list_platform_names(db: Session, user_id: int) -> list[str]:
    """Names of every platform linked to a user, in no particular order."""
    rows = (
        db.query(LinkedAccount.platform_name)
        .filter(LinkedAccount.user_id == user_id)
        .all()
    )
    return [row.platform_name for row in rows]


def list_linked_accounts(db: Session, user_id: int) -> list[LinkedAccount]:
    return db.query(LinkedAccount).filter(LinkedAccount.user_id == user_id).all()


# ---------------------------------------------------------------------------
# Token updates
# ---------------------------------------------------------------------------


def replace_connection_string(
    db: Session, user_id: int, platform_name: str, connection_string: str
) -> int:
    """Overwrite the stored connection string, e.g. after an external token refresh.

    Commits immediately.  Returns the number of rows updated; zero means the
    user has no account on that platform.
    """
    if not connection_string:
        raise ConnectionStringError("connection string must not be empty")

    try:
        rows = (
            db.query(LinkedAccount)
            .filter(
                LinkedAccount.user_id == user_id,
                LinkedAccount.platform_name == platform_name,
            )
            .update(
                {
                    LinkedAccount.connection_string: connection_string,
                    LinkedAccount.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return rows
