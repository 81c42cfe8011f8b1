"""MongoDB connection lifecycle (mongoengine default alias)"""

from typing import Any, Optional

from mongoengine import connect, disconnect

from userforge.models.user import User
from userforge.utils.config import DatabaseSettings
from userforge.utils.logger import get_logger

logger = get_logger(__name__)

DB_ALIAS = "default"


def connect_to_db(settings: DatabaseSettings, mongo_client_class: Optional[Any] = None) -> None:
    """Register the default connection and make sure the user indexes exist.

    ``mongo_client_class`` swaps the driver client (tests pass
    ``mongomock.MongoClient``).
    """
    kwargs = {}
    if mongo_client_class is not None:
        kwargs["mongo_client_class"] = mongo_client_class

    connect(db=settings.name, host=settings.uri, alias=DB_ALIAS, **kwargs)
    User.ensure_indexes()
    logger.info("Connected to MongoDB", database=settings.name)


def disconnect_from_db() -> None:
    disconnect(alias=DB_ALIAS)
    logger.info("Disconnected from MongoDB")
