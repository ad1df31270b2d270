import logging
from collections.abc import Mapping
from dataclasses import is_dataclass, asdict
from typing import Any, Iterable, List

from .validation_exceptions import ValidationError, ValueRangeError

logger = logging.getLogger(__name__)


def prepare_for_storage(data: Any) -> Any:
    """
    Recursively convert Pydantic models, dataclasses, and special types to
    plain structures the driver can encode as BSON.

    It handles:
    - Pydantic BaseModel instances (dumped by alias)
    - Python dataclasses
    - Mappings (processing values recursively)
    - Lists, tuples and sets (processing each item)
    - Objects exposing ``to_json()`` (models and builders)

    Args:
        data: The data to convert

    Returns:
        The converted data, ready for storage
    """
    if data is None:
        return None

    # Dataclass instances (not the classes themselves)
    if is_dataclass(data) and not isinstance(data, type):
        return prepare_for_storage(asdict(data))

    # Pydantic models
    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        try:
            return prepare_for_storage(data.model_dump(by_alias=True))
        except TypeError as e:
            logger.debug(f"model_dump(by_alias=True) failed, retrying without alias: {e}")
            return prepare_for_storage(data.model_dump())

    # Models and builders
    if hasattr(data, "to_json") and callable(getattr(data, "to_json")):
        return prepare_for_storage(data.to_json())

    if isinstance(data, Mapping):
        return {k: prepare_for_storage(v) for k, v in data.items()}

    if isinstance(data, list):
        return [prepare_for_storage(item) for item in data]

    if isinstance(data, tuple):
        return tuple(prepare_for_storage(item) for item in data)

    if isinstance(data, set):
        return [prepare_for_storage(item) for item in data]

    # ObjectId, datetime, Decimal128 and primitives are passed through
    return data


def flatten(items: Iterable[Any]) -> List[Any]:
    """Flattens one level of list/tuple nesting: ``('a', ['b', 'c'])`` -> ``['a', 'b', 'c']``."""
    flat: List[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def check_non_negative_int(value: Any, what: str) -> int:
    """Raises ValueRangeError unless ``value`` is a non-negative integer (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueRangeError(
            f"{what} must be a non-negative integer, got {value!r} ({type(value).__name__})"
        )
    if value < 0:
        raise ValueRangeError(f"{what} must be a non-negative integer, got {value!r}")
    return value


def check_mapping(value: Any, what: str) -> Mapping:
    """Raises ValidationError unless ``value`` is a mapping."""
    if not isinstance(value, Mapping):
        raise ValidationError(
            f"{what} must be a mapping, got {type(value).__name__}"
        )
    return value
