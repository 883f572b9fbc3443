"""Process-wide MongoDB client.

One ``MongoClient`` is shared by every collection user in the process; it is
thread-safe and pools its own connections. The client connects lazily, so
building it never blocks on an unreachable server; the first operation pays
the server selection timeout instead.
"""

from __future__ import annotations

import logging

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from subtrack.core.config import MongoSettings, settings

logger = logging.getLogger(__name__)


_client: MongoClient | None = None


def _mask_uri(uri: str) -> str:
    """Drop credentials from a connection string for logging."""
    if "@" not in uri:
        return uri
    scheme, _, rest = uri.partition("://")
    return f"{scheme}://***@{rest.rsplit('@', 1)[-1]}"


def create_mongo_client(mongo_settings: MongoSettings | None = None) -> MongoClient:
    """Build a client with the configured pool and timeouts.

    Args:
        mongo_settings: Optional settings; defaults to global settings if omitted.

    Returns:
        MongoClient: Unconnected client (pymongo connects on first use).
    """

    cfg = mongo_settings or settings.mongo
    logger.info(
        "mongo.client_created",
        extra={"host": _mask_uri(cfg.uri), "db_name": cfg.db_name},
    )
    return MongoClient(
        cfg.uri,
        maxPoolSize=cfg.max_pool_size,
        serverSelectionTimeoutMS=cfg.server_selection_timeout_ms,
        connectTimeoutMS=cfg.connect_timeout_ms,
        socketTimeoutMS=cfg.socket_timeout_ms,
        retryWrites=True,
        retryReads=True,
    )


def get_mongo_client() -> MongoClient:
    """Return the process-wide client, creating it on first use."""

    global _client

    if _client is None:
        _client = create_mongo_client()
    return _client


def get_mongo_database() -> Database:
    """Return the configured database on the shared client."""

    return get_mongo_client()[settings.mongo.db_name]


def ping_mongo() -> bool:
    """Check that the server answers a ping within the configured timeouts."""

    try:
        get_mongo_client().admin.command("ping")
    except PyMongoError as exc:
        logger.warning("mongo.ping_failed", extra={"error_type": type(exc).__name__})
        return False
    return True


def close_mongo_client() -> None:
    """Close the shared client; the next call to get_mongo_client reconnects."""

    global _client

    if _client is not None:
        _client.close()
        _client = None
        logger.info("mongo.client_closed")
