# src/async_odm/__init__.py

"""
Async ODM Library Initialization.

This package provides fluent query and aggregation builders over MongoDB
(via motor), with lazy execution through cursors that can be either
streamed with ``async for`` or awaited for a list of results.

It initializes a logger with a NullHandler and makes the Model, Connection,
builders, cursors and exceptions available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "async_odm".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Exceptions
# --------------------------------------------------------------------------
from .base.exceptions import (CursorStateException,
                              ModelConfigurationException,
                              ObjectNotFoundException)
from .base.validation_exceptions import (InvalidStageError, ValidationError,
                                         ValueRangeError)

# --------------------------------------------------------------------------
# Builders and Cursors
# --------------------------------------------------------------------------
from .base.query import ModelQuery, QueryBuilder, QueryOperator, QueryOptions
from .base.aggregate import AggregateBuilder
from .base.cursor import AggregateCursor, CursorState, QueryCursor

# --------------------------------------------------------------------------
# Models and Connections
# --------------------------------------------------------------------------
from .base.model import Model, bind_model
from .db_implementations.mongodb_connection import Connection

__all__ = [
    # Models
    "Model",
    "bind_model",
    "Connection",
    # Query
    "QueryBuilder",
    "ModelQuery",
    "QueryOptions",
    "QueryOperator",
    # Aggregation
    "AggregateBuilder",
    # Cursors
    "QueryCursor",
    "AggregateCursor",
    "CursorState",
    # Exceptions
    "ObjectNotFoundException",
    "ModelConfigurationException",
    "CursorStateException",
    "ValidationError",
    "ValueRangeError",
    "InvalidStageError",
    # Logging
    "logger",
]
