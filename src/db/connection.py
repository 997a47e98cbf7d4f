"""ArangoDB client & database handle.

Single shared database handle, created lazily on first use.  The handle is
the only piece of state shared across requests and is never mutated.
"""
from __future__ import annotations

from arango import ArangoClient
from arango.database import StandardDatabase

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_client: ArangoClient | None = None
_db: StandardDatabase | None = None


def get_client() -> ArangoClient:
    """Return the shared ArangoClient (lazy-created, cached)."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = ArangoClient(hosts=settings.arangodb_url)
        logger.info("ArangoDB client created  hosts=%s", settings.arangodb_url)
    return _client


def get_database() -> StandardDatabase:
    """Return the shared database handle for the configured MedGraph database."""
    global _db
    if _db is None:
        settings = get_settings()
        _db = get_client().db(
            settings.arangodb_database,
            username=settings.arangodb_username,
            password=settings.arangodb_password,
        )
        logger.info("ArangoDB database handle ready  db=%s", settings.arangodb_database)
    return _db


def ping() -> bool:
    """True when the server answers with the configured credentials."""
    try:
        get_database().version()
    except Exception as exc:
        logger.warning("ArangoDB ping failed: %s", exc)
        return False
    return True
