# src/async_odm/db_implementations/mongodb_connection.py

import inspect
import logging
from types import SimpleNamespace
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

# --- Motor Driver Import ---
from motor.motor_asyncio import (AsyncIOMotorClient, AsyncIOMotorCollection,
                                 AsyncIOMotorDatabase)

# --- Framework Imports ---
from async_odm.base.exceptions import ModelConfigurationException
from async_odm.base.interfaces import BaseConnection
from async_odm.base.model import bind_model

base_logger = logging.getLogger("async_odm.db_implementations.mongodb_connection")


def database_name_from_url(url: str) -> str:
    """
    Extracts the database name from a connection string path.

    ``mongodb://host:27017/app?retryWrites=true`` -> ``'app'``
    """
    path = urlparse(url).path
    if path.startswith("/"):
        path = path[1:]
    if not path:
        raise ModelConfigurationException(
            f"Connection URL must name a database in its path, got '{url}'"
        )
    return path


class Connection(BaseConnection):
    """
    A MongoDB connection that models execute against.

    Holds the motor client and database, and caches collection handles by
    name so every model using the same collection shares one handle.
    """

    def __init__(
        self,
        client: Optional[AsyncIOMotorClient] = None,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
    ):
        """
        Args:
            client: An already constructed client. When given, ``connect``
                only selects the database.
            client_factory: Called as ``client_factory(url, **options)`` to
                build a client when none was given. May return an awaitable.
        """
        self.client = client
        self.db: Optional[AsyncIOMotorDatabase] = None
        self.collections: Dict[str, AsyncIOMotorCollection] = {}
        self.models = SimpleNamespace()
        self._client_factory = client_factory
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def __repr__(self) -> str:
        db_name = getattr(self.db, "name", None)
        return f"Connection(db={db_name!r})"

    async def connect(self, url: str, **options: Any) -> None:
        """
        Create the client (if needed) and select the database named by ``url``.

        Args:
            url: A MongoDB connection string, e.g. ``mongodb://localhost:27017/app``.
            **options: Client options such as ``serverSelectionTimeoutMS``.
        """
        database_name = database_name_from_url(url)
        if self.client is None:
            client = self._client_factory(url, **options)
            if inspect.isawaitable(client):
                client = await client
            self.client = client
            self._logger.info(f"Created client for database '{database_name}'")
        self.db = self.client.get_database(database_name)
        self._logger.info(f"Connected to database '{database_name}'")

    def collection(self, name: str) -> AsyncIOMotorCollection:
        """Returns the cached collection handle for ``name``, creating it on first use."""
        if self.db is None:
            self._logger.warning(f"Collection '{name}' requested before connect()")
            raise ModelConfigurationException(
                "Connection is not connected. Await connection.connect(url) first."
            )
        handle = self.collections.get(name)
        if handle is None:
            handle = self.db.get_collection(name)
            self.collections[name] = handle
            self._logger.debug(f"Cached collection handle for '{name}'")
        return handle

    def define(self, models: Optional[Mapping[str, type]] = None, **named_models: type) -> None:
        """
        Attach model classes to this connection.

        Each model is bound with ``bind_model`` and exposed as
        ``connection.models.<Name>``; the original classes are not modified.

            connection.define(User=User, Post=Post)
            await connection.models.User.find()
        """
        to_define: Dict[str, type] = dict(models or {})
        to_define.update(named_models)
        for name, base in to_define.items():
            setattr(self.models, name, bind_model(base, name, self))
            self._logger.info(f"Defined model '{name}' on {self!r}")

    def close(self) -> None:
        """Closes the underlying client, if one was created or given."""
        if self.client is not None:
            self.client.close()
            self._logger.info("Client closed")
