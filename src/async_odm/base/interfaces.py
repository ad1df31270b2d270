# src/async_odm/base/interfaces.py

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence


# --- Driver contract ---
# Structural descriptions of the motor objects the package talks to. Motor's
# AsyncIOMotorCollection / AsyncIOMotorCursor satisfy these, and so do the
# in-memory doubles used by the test suite.


class CursorHandle(Protocol):
    """A server-side cursor yielding documents one at a time or in bulk."""

    async def next(self) -> Dict[str, Any]:
        """Return the next document; raise StopAsyncIteration when none remain."""
        ...

    async def to_list(self, length: Optional[int]) -> List[Dict[str, Any]]:
        """Drain the remaining documents."""
        ...


class CollectionHandle(Protocol):
    """The subset of a motor collection used by builders and models."""

    def find(self, filter: Mapping[str, Any], **kwargs: Any) -> CursorHandle:
        ...

    def aggregate(self, pipeline: Sequence[Mapping[str, Any]], **kwargs: Any) -> CursorHandle:
        ...

    async def count_documents(self, filter: Mapping[str, Any], **kwargs: Any) -> int:
        ...

    async def insert_one(self, document: Mapping[str, Any]) -> Any:
        ...

    async def update_one(self, filter: Mapping[str, Any], update: Mapping[str, Any]) -> Any:
        ...


class BaseConnection(ABC):
    """
    Base interface for connections that models can be attached to.

    A connection owns a database handle and hands out (cached) collection
    handles by name. Assigning anything that is not a BaseConnection to
    ``Model.connection`` is rejected.
    """

    @abstractmethod
    async def connect(self, url: str, **options: Any) -> None:
        """
        Open the connection and select the database named by ``url``.

        Args:
            url: A MongoDB connection string whose path names the database.
            **options: Passed through to the client factory.
        """
        pass

    @abstractmethod
    def collection(self, name: str) -> CollectionHandle:
        """
        Get the physical collection handle for ``name``.

        Raises:
            ModelConfigurationException: If the connection is not connected.
        """
        pass

    @abstractmethod
    def define(self, models: Optional[Mapping[str, type]] = None, **named_models: type) -> None:
        """Attach model classes to this connection, see ``bind_model``."""
        pass
