# src/async_odm/base/registry.py
"""
Per-class model configuration.

Every model class may carry a ``ModelConfig`` holding the connection it
executes against and the collection it is stored in. The two settings follow
different inheritance rules:

- ``connection`` is inherited. Reading it walks the class MRO and returns the
  first configured value, so configuring a shared base class is enough.
- ``collection`` is never inherited. Each class reads only its own value, so
  a subclass never silently writes into its parent's collection.
"""
import logging
import weakref
from dataclasses import dataclass
from typing import Optional

from .exceptions import ModelConfigurationException
from .interfaces import BaseConnection

log = logging.getLogger(__name__)


@dataclass
class ModelConfig:
    """Configuration stored for exactly one class."""

    connection: Optional[BaseConnection] = None
    collection: Optional[str] = None


# Keyed by class identity; classes minted by bind_model are dropped with them.
_CONFIGS: "weakref.WeakKeyDictionary[type, ModelConfig]" = weakref.WeakKeyDictionary()


def _class_name(cls: type) -> str:
    return getattr(cls, "__name__", None) or "Model"


def get_config(cls: type) -> ModelConfig:
    """Returns the class's own config record, creating an empty one if needed."""
    config = _CONFIGS.get(cls)
    if config is None:
        config = ModelConfig()
        _CONFIGS[cls] = config
    return config


def clear_config(cls: type) -> None:
    """Forgets everything configured directly on ``cls``."""
    _CONFIGS.pop(cls, None)


def set_connection(cls: type, connection: BaseConnection) -> None:
    if not isinstance(connection, BaseConnection):
        raise ModelConfigurationException(
            f"{_class_name(cls)}.connection must be an instance of Connection, "
            f"got {type(connection).__name__}."
        )
    get_config(cls).connection = connection
    log.debug(f"Connection {connection!r} configured on {_class_name(cls)}")


def get_connection(cls: type) -> BaseConnection:
    for klass in cls.__mro__:
        config = _CONFIGS.get(klass)
        if config is not None and config.connection is not None:
            return config.connection
    name = _class_name(cls)
    log.warning(f"Connection lookup failed for {name}: none configured on it or its bases")
    raise ModelConfigurationException(
        f"No connection was configured for {name}. "
        f"Do `{name}.connection = connection` before using any models."
    )


def set_collection_name(cls: type, name: str, root: Optional[type] = None) -> None:
    """
    Stores ``name`` as the collection of ``cls`` only.

    Args:
        cls: The model class being configured.
        name: The collection name.
        root: The abstract root model class; configuring it always fails.
    """
    if root is not None and cls is root:
        raise ModelConfigurationException(
            "Cannot configure a collection on the base Model class. Instead "
            "extend this class, and configure a collection on the subclass."
        )
    if not isinstance(name, str):
        raise ModelConfigurationException(
            f"{_class_name(cls)}.collection must be a string, got {type(name).__name__}."
        )
    if not name:
        raise ModelConfigurationException(
            f"{_class_name(cls)}.collection must not be an empty string."
        )
    get_config(cls).collection = name
    log.debug(f"Collection '{name}' configured on {_class_name(cls)}")


def get_collection_name(cls: type) -> str:
    config = _CONFIGS.get(cls)
    if config is None or not config.collection:
        name = _class_name(cls)
        raise ModelConfigurationException(
            f"No collection was configured for {name}. "
            f"Do `{name}.collection = 'name'` before using this model."
        )
    return config.collection
