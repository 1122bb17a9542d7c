"""Startup check: load configuration and verify the database is reachable."""

import logging
import sys

from marathon.helpers import store_db
from marathon.helpers.settings import ConfigError, load_config
from marathon.helpers.store_errors import StoreConnectivityError

logger = logging.getLogger("marathon.prepare")


def prepare() -> int:
    try:
        config = load_config()
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    db = config.database
    try:
        engine = store_db.connect(
            db.host,
            db.port,
            db.user,
            db.password,
            db.database_name,
            sslmode=db.sslmode,
            pool_size=db.pool_size,
        )
    except StoreConnectivityError as e:
        logger.error("%s: %s", e, e.__cause__)
        return 1

    store_db.dispose(engine)
    logger.info("Environment ready")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    sys.exit(prepare())
