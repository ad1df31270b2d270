# src/async_odm/base/query.py
import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import (TYPE_CHECKING, Any, AsyncIterator, Dict, Generic, List,
                    Optional, Type, TypeVar, Union)

from .cursor import QueryCursor
from .exceptions import ModelConfigurationException
from .utils import check_mapping, check_non_negative_int, flatten
from .validation_exceptions import ValidationError

if TYPE_CHECKING:
    from .model import Model

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Generic Type Variables ---
M = TypeVar("M", bound="Model")


# --- Query Operator Enum ---
class QueryOperator(Enum):
    """Field comparison operators and the MongoDB keys they serialize to."""

    # Comparison
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    # Membership
    IN = "$in"
    NIN = "$nin"
    # Existence
    EXISTS = "$exists"


def _is_operator_document(value: Any) -> bool:
    """True for sub-documents like ``{'$gt': 1}`` whose keys are all operators."""
    return (
        isinstance(value, Mapping)
        and len(value) > 0
        and all(isinstance(k, str) and k.startswith("$") for k in value)
    )


# --- Query Options ---
@dataclass
class QueryOptions:
    """Options accumulated by a QueryBuilder and applied when the query runs."""

    sort: Dict[str, Any] = field(default_factory=dict)
    skip: Optional[int] = None
    limit: Optional[int] = None
    projection: Optional[List[str]] = None

    def __repr__(self) -> str:
        parts = []
        if self.sort:
            parts.append(f"sort={self.sort!r}")
        if self.skip is not None:
            parts.append(f"skip={self.skip!r}")
        if self.limit is not None:
            parts.append(f"limit={self.limit!r}")
        if self.projection is not None:
            parts.append(f"projection={self.projection!r}")
        return f"QueryOptions({', '.join(parts)})"

    def copy(self) -> "QueryOptions":
        """Creates a copy that does not share the sort mapping or projection list."""
        return copy.deepcopy(self)

    def to_find_kwargs(self) -> Dict[str, Any]:
        """Translates the options to keyword arguments for ``collection.find``."""
        kwargs: Dict[str, Any] = {}
        if self.sort:
            kwargs["sort"] = list(self.sort.items())
        if self.skip is not None:
            kwargs["skip"] = self.skip
        if self.limit is not None:
            kwargs["limit"] = self.limit
        if self.projection is not None:
            kwargs["projection"] = list(self.projection)
        return kwargs

    def to_count_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``count_documents``; sort and projection do not apply."""
        kwargs: Dict[str, Any] = {}
        if self.skip is not None:
            kwargs["skip"] = self.skip
        if self.limit:
            # count_documents treats limit=0 as an error rather than "no limit"
            kwargs["limit"] = self.limit
        return kwargs


# --- Query Builder ---
class QueryBuilder:
    """
    Builds MongoDB filter criteria and find options using a fluent API.

    The builder is a pure accumulator: nothing touches the database until a
    bound variant (``ModelQuery``) is executed. Every method validates its
    arguments before changing any state, so a rejected call leaves the
    builder exactly as it was.

    Example:
        QueryBuilder().eq("status", "active").gt("age", 18).sort({"age": -1})
    """

    _criteria: Dict[str, Any]
    _options: QueryOptions
    _logger: logging.Logger

    def __init__(self, criteria: Optional[Mapping[str, Any]] = None):
        self._logger = log
        if criteria is None:
            criteria = {}
        check_mapping(criteria, "Query criteria")
        self._criteria = copy.deepcopy(dict(criteria))
        self._options = QueryOptions()

    def where(self, criteria: Mapping[str, Any]) -> "QueryBuilder":
        """Shallow-merges a copy of ``criteria`` into the current filter; later keys overwrite."""
        check_mapping(criteria, "where() criteria")
        self._criteria.update(copy.deepcopy(dict(criteria)))
        self._logger.debug(f"Criteria is now: {self._criteria!r}")
        return self

    def _compare(self, field_path: str, operator: QueryOperator, value: Any) -> "QueryBuilder":
        """
        Adds ``{field_path: {operator: value}}``. Operators on the same field
        are merged into one sub-document, so ``gt`` followed by ``lt`` keeps
        both bounds. A plain value already stored on the field is kept as
        ``$eq``.
        """
        if not isinstance(field_path, str) or not field_path:
            raise ValidationError(
                f"Field name must be a non-empty string, got {field_path!r}"
            )
        existing = self._criteria.get(field_path)
        if field_path not in self._criteria:
            merged: Dict[str, Any] = {}
        elif _is_operator_document(existing):
            merged = dict(existing)
        else:
            merged = {QueryOperator.EQ.value: existing}
        merged[operator.value] = value
        self._criteria[field_path] = merged
        self._logger.debug(f"Added filter: {field_path} {operator.value} {value!r}")
        return self

    def eq(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.EQ, value)

    def neq(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.NE, value)

    def gt(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.GT, value)

    def gte(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.GTE, value)

    def lt(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.LT, value)

    def lte(self, field_path: str, value: Any) -> "QueryBuilder":
        return self._compare(field_path, QueryOperator.LTE, value)

    def in_(self, field_path: str, values: Union[List, set, tuple]) -> "QueryBuilder":
        if not isinstance(values, (list, set, tuple)):
            raise ValidationError(f"Operator 'in' requires a list/set/tuple, got {type(values).__name__}")
        return self._compare(field_path, QueryOperator.IN, list(values))

    def nin(self, field_path: str, values: Union[List, set, tuple]) -> "QueryBuilder":
        if not isinstance(values, (list, set, tuple)):
            raise ValidationError(f"Operator 'nin' requires a list/set/tuple, got {type(values).__name__}")
        return self._compare(field_path, QueryOperator.NIN, list(values))

    def exists(self, field_path: str, exists_value: bool = True) -> "QueryBuilder":
        if not isinstance(exists_value, bool):
            raise ValidationError(f"Operator 'exists' requires a boolean value, got {type(exists_value).__name__}")
        return self._compare(field_path, QueryOperator.EXISTS, exists_value)

    def _branches(self, branches: Any, operator: str) -> List[Dict[str, Any]]:
        if not isinstance(branches, (list, tuple)):
            raise ValidationError(
                f"{operator}() requires a list of criteria, got {type(branches).__name__}"
            )
        serialized = []
        for i, branch in enumerate(branches):
            if isinstance(branch, QueryBuilder):
                serialized.append(branch.to_json())
            elif isinstance(branch, Mapping):
                serialized.append(dict(branch))
            else:
                raise ValidationError(
                    f"{operator}() branch {i} must be a mapping or QueryBuilder, "
                    f"got {type(branch).__name__}"
                )
        return serialized

    def and_(self, branches: List[Union["QueryBuilder", Mapping[str, Any]]]) -> "QueryBuilder":
        """Adds ``{'$and': [...]}``; branches may be mappings or builders."""
        return self.where({"$and": self._branches(branches, "and_")})

    def or_(self, branches: List[Union["QueryBuilder", Mapping[str, Any]]]) -> "QueryBuilder":
        """Adds ``{'$or': [...]}``; branches may be mappings or builders."""
        return self.where({"$or": self._branches(branches, "or_")})

    def select(self, *field_names: Union[str, List[str]]) -> "QueryBuilder":
        """Sets the projection, replacing any previous one. Accepts names or lists of names."""
        names = flatten(field_names)
        for name in names:
            if not isinstance(name, str) or not name:
                raise ValidationError(f"select() field names must be non-empty strings, got {name!r}")
        # dict.fromkeys keeps first-seen order while dropping duplicates
        self._options.projection = list(dict.fromkeys(names))
        self._logger.debug(f"Projection set to: {self._options.projection}")
        return self

    def sort(self, fields: Mapping[str, Any]) -> "QueryBuilder":
        """Merges ``fields`` into the sort spec key by key; later calls win per key."""
        check_mapping(fields, "sort() fields")
        self._options.sort.update(fields)
        self._logger.debug(f"Sort set to: {self._options.sort}")
        return self

    def skip(self, num: int) -> "QueryBuilder":
        """Sets the number of documents to skip."""
        self._options.skip = check_non_negative_int(num, "Skip")
        self._logger.debug(f"Query skip set to: {num}")
        return self

    def limit(self, num: int) -> "QueryBuilder":
        """Sets the query limit."""
        self._options.limit = check_non_negative_int(num, "Limit")
        self._logger.debug(f"Query limit set to: {num}")
        return self

    def to_json(self) -> Dict[str, Any]:
        """Returns a deep copy of the filter criteria."""
        return copy.deepcopy(self._criteria)

    def get_options(self) -> QueryOptions:
        """Returns a copy of the accumulated query options."""
        return self._options.copy()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._criteria!r}, {self._options!r})"


# --- Bound Query ---
class ModelQuery(QueryBuilder, Generic[M]):
    """
    A QueryBuilder bound to a model class.

    Consume it with ``await query`` (a list of hydrated models) or
    ``async for model in query``; both run ``execute()``.
    """

    model_cls: Optional[Type[M]]

    def __init__(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        model_cls: Optional[Type[M]] = None,
    ):
        super().__init__(criteria)
        self.model_cls = model_cls

    def bind(self, model_cls: Type[M]) -> "ModelQuery[M]":
        """Binds the query to ``model_cls``; results are hydrated into it."""
        self.model_cls = model_cls
        return self

    def _require_model(self) -> Type[M]:
        if self.model_cls is None:
            raise ModelConfigurationException(
                "Query is not bound to a model. Use Model.find() or .bind(Model)."
            )
        return self.model_cls

    def execute(self, **options: Any) -> QueryCursor[M]:
        """
        Start the find and wrap its cursor.

        Args:
            **options: Extra ``find`` keyword arguments; these override the
                accumulated sort/skip/limit/projection.

        Returns:
            A QueryCursor that hydrates documents into the bound model.
        """
        model_cls = self._require_model()
        find_kwargs = self._options.to_find_kwargs()
        find_kwargs.update(options)
        criteria = self.to_json()
        collection = model_cls.get_collection()
        self._logger.info(
            f"Executing find on {model_cls.__name__}: {criteria!r} {find_kwargs!r}"
        )
        cursor = collection.find(criteria, **find_kwargs)
        return QueryCursor(model_cls, cursor)

    async def count(self, **options: Any) -> int:
        """Counts matching documents with the current criteria, skip and limit."""
        model_cls = self._require_model()
        count_kwargs = self._options.to_count_kwargs()
        count_kwargs.update(options)
        criteria = self.to_json()
        collection = model_cls.get_collection()
        result = await collection.count_documents(criteria, **count_kwargs)
        self._logger.info(f"Counted {result} {model_cls.__name__}(s) matching {criteria!r}")
        return int(result)

    async def first(self) -> Optional[M]:
        """Returns the first matching model instance, or None."""
        return await self.execute(limit=1).next()

    def __aiter__(self) -> AsyncIterator[M]:
        return self.execute().__aiter__()

    def __await__(self):
        return self.execute().collect_all().__await__()
