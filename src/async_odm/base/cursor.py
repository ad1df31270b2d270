# src/async_odm/base/cursor.py
"""
Adapters over native driver cursors.

A cursor adapter wraps exactly one server-side cursor and offers two ways to
consume it:

- streaming: ``await cursor.next()``, ``async for item in cursor`` or
  ``cursor.stream()`` pull one document at a time;
- bulk resolution: ``await cursor`` or ``await cursor.collect_all()`` drain
  everything that remains.

A cursor is single pass. Once exhausted it keeps reporting exhaustion and
never replays documents. Mixing the two protocols on one adapter (streaming a
few documents, then bulk resolving) is not supported and raises
``CursorStateException`` instead of returning a partial list.
"""
import asyncio
import inspect
import logging
from enum import Enum
from typing import (Any, AsyncIterator, Callable, Dict, Generic, List,
                    Optional, TypeVar)

from .exceptions import CursorStateException

log = logging.getLogger(__name__)

T = TypeVar("T")


class CursorState(Enum):
    """Lifecycle of a cursor adapter."""

    IDLE = "idle"
    STREAMING = "streaming"
    EXHAUSTED = "exhausted"


class BaseCursor(Generic[T]):
    """Shared single-pass behaviour for query and aggregate cursors."""

    def __init__(self, cursor: Any):
        # PyMongo's async API returns the aggregate cursor from a coroutine;
        # motor returns it directly. Awaitables are resolved on first pull.
        self._cursor = cursor
        self._state = CursorState.IDLE
        # Created on first pull so the lock belongs to the consuming event loop.
        self._lock: Optional[asyncio.Lock] = None

    @property
    def state(self) -> CursorState:
        return self._state

    def unwrap(self) -> Any:
        """Returns the underlying driver cursor for operations not covered here."""
        return self._cursor

    def _hydrate(self, document: Dict[str, Any]) -> T:
        return document  # type: ignore[return-value]

    def _pull_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _handle(self) -> Any:
        if inspect.isawaitable(self._cursor):
            self._cursor = await self._cursor
        return self._cursor

    async def next(self) -> Optional[T]:
        """
        Pull the next item.

        Returns:
            The next (hydrated) item, or None once the cursor is exhausted.
            Pulling an exhausted cursor keeps returning None.
        """
        async with self._pull_lock():
            if self._state is CursorState.EXHAUSTED:
                return None
            handle = await self._handle()
            try:
                document = await handle.next()
            except StopAsyncIteration:
                document = None
            if document is None:
                self._state = CursorState.EXHAUSTED
                log.debug(f"{type(self).__name__} exhausted")
                return None
            self._state = CursorState.STREAMING
            return self._hydrate(document)

    def __aiter__(self) -> "BaseCursor[T]":
        return self

    async def __anext__(self) -> T:
        item = await self.next()
        if item is None:
            raise StopAsyncIteration
        return item

    async def stream(self) -> AsyncIterator[T]:
        """Lazily yields the remaining items."""
        while True:
            item = await self.next()
            if item is None:
                return
            yield item

    async def collect_all(self) -> List[T]:
        """
        Drain the whole cursor into a list.

        Returns:
            Every remaining item, in cursor order. An exhausted cursor
            resolves to an empty list.

        Raises:
            CursorStateException: If items were already pulled one by one.
        """
        async with self._pull_lock():
            if self._state is CursorState.EXHAUSTED:
                return []
            if self._state is CursorState.STREAMING:
                raise CursorStateException(
                    f"{type(self).__name__} was already partially streamed; "
                    "a cursor must be either streamed or resolved in bulk, not both."
                )
            handle = await self._handle()
            documents = await handle.to_list(None)
            self._state = CursorState.EXHAUSTED
        log.debug(f"{type(self).__name__} drained {len(documents)} document(s)")
        return [self._hydrate(document) for document in documents]

    def __await__(self):
        return self.collect_all().__await__()


class QueryCursor(BaseCursor[T]):
    """Cursor over ``find`` results, hydrating each document into a model instance."""

    def __init__(self, model: Any, cursor: Any):
        super().__init__(cursor)
        self._model = model
        self._hydrate_fn: Callable[[Dict[str, Any]], T] = model.hydrate

    @property
    def model(self) -> Any:
        return self._model

    def _hydrate(self, document: Dict[str, Any]) -> T:
        return self._hydrate_fn(document)


class AggregateCursor(BaseCursor[Dict[str, Any]]):
    """Cursor over aggregation results. Documents are returned as plain dicts."""
