"""Shared secrets of the client applications that call the service API.

Client rows are provisioned elsewhere; this module only overwrites and
reads their ``secret`` column.
"""

import hmac
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marathon.helpers.credential_store import Client
from marathon.helpers.store_errors import ClientNotFoundError

logger = logging.getLogger(__name__)


def set_client_secret(db: Session, client_id: int, secret: bytes) -> int:
    """Overwrite a client's secret and commit.

    Returns the number of rows updated.  Zero is not an error: it means the
    client does not exist, and callers must check the count.
    """
    try:
        rows = (
            db.query(Client)
            .filter(Client.id == client_id)
            .update({Client.secret: secret}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    if rows == 0:
        logger.info("Secret not stored: client %s does not exist", client_id)
    return rows


def get_client_secret(db: Session, client_id: int) -> bytes:
    row = db.query(Client.secret).filter(Client.id == client_id).first()
    if row is None or row.secret is None:
        raise ClientNotFoundError(client_id)
    return bytes(row.secret)


def verify_client_secret(db: Session, client_id: int, presented: bytes) -> bool:
    """Check a secret presented by an inbound caller in constant time."""
    try:
        stored = get_client_secret(db, client_id)
    except ClientNotFoundError:
        return False
    return hmac.compare_digest(stored, presented)
