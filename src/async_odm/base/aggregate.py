# src/async_odm/base/aggregate.py
import copy
import logging
from collections.abc import Mapping
from typing import (TYPE_CHECKING, Any, AsyncIterator, Callable, Dict,
                    Generic, List, Optional, Type, TypeVar, Union)

from .cursor import AggregateCursor
from .exceptions import ModelConfigurationException
from .query import QueryBuilder
from .utils import check_mapping, check_non_negative_int
from .validation_exceptions import InvalidStageError, ValidationError

if TYPE_CHECKING:
    from .model import Model

log = logging.getLogger(__name__)

M = TypeVar("M", bound="Model")

Stage = Dict[str, Any]
# A nested pipeline may be given as stages, as a builder, or as a closure that
# receives a fresh builder and returns it with stages appended.
PipelineSource = Union[List[Mapping[str, Any]], "AggregateBuilder", Callable[["AggregateBuilder"], "AggregateBuilder"]]
# Where a $lookup / $unionWith reads from: a collection name or a model class.
CollectionSource = Union[str, type]


def _is_model_class(value: Any) -> bool:
    # Any class exposing get_collection() is treated as a model, which also
    # covers classes minted by bind_model.
    return isinstance(value, type) and callable(getattr(value, "get_collection", None))


def resolve_collection_name(source: CollectionSource, context: str) -> str:
    """Resolves a collection source (name or model class) to a collection name."""
    if isinstance(source, str):
        if not source:
            raise InvalidStageError(f"{context}: collection name must not be empty")
        return source
    if _is_model_class(source):
        return source.collection
    raise InvalidStageError(
        f"{context}: expected a collection name or a model class, got {type(source).__name__}"
    )


class AggregateBuilder(Generic[M]):
    """
    Builds an aggregation pipeline stage by stage.

    Each stage method validates its argument and appends exactly one stage;
    a rejected call leaves the pipeline unchanged. When the builder is bound
    to a model (``Model.aggregate()``) it can be executed directly:

        results = await Playlist.aggregate().match({"_id": pid}).limit(1)
        async for doc in Playlist.aggregate().unwind("items"):
            ...

    Model classes given to ``lookup``/``union_with``/``facet`` are resolved
    to their collection names when the stage is built.
    """

    model_cls: Optional[Type[M]]
    _stages: List[Stage]

    def __init__(
        self,
        stages: Optional[List[Mapping[str, Any]]] = None,
        model_cls: Optional[Type[M]] = None,
    ):
        self._logger = log
        self._stages = []
        self.model_cls = model_cls
        for i, stage in enumerate(stages or []):
            check_mapping(stage, f"Pipeline stage {i}")
            self._stages.append(copy.deepcopy(dict(stage)))

    def bind(self, model_cls: Type[M]) -> "AggregateBuilder[M]":
        self.model_cls = model_cls
        return self

    def _spawn(self, model_cls: Optional[type] = None) -> "AggregateBuilder":
        """A fresh, empty builder of the same type, bound to ``model_cls``."""
        return type(self)(model_cls=model_cls)

    # --- Raw stages ---

    def push(self, stage: Mapping[str, Any]) -> "AggregateBuilder[M]":
        """Appends a copy of a raw stage document."""
        check_mapping(stage, "push() stage")
        self._stages.append(copy.deepcopy(dict(stage)))
        self._logger.debug(f"Appended stage: {stage!r}")
        return self

    # --- Simple stages ---

    def add_fields(self, fields: Mapping[str, Any]) -> "AggregateBuilder[M]":
        check_mapping(fields, "add_fields() fields")
        return self.push({"$addFields": dict(fields)})

    def count(self, field_name: str) -> "AggregateBuilder[M]":
        if not isinstance(field_name, str) or not field_name:
            raise ValidationError(f"count() requires a non-empty field name, got {field_name!r}")
        return self.push({"$count": field_name})

    def group(self, fields: Mapping[str, Any]) -> "AggregateBuilder[M]":
        check_mapping(fields, "group() fields")
        # _id: None is a legitimate "group everything" key, so test presence
        if "_id" not in fields:
            raise InvalidStageError("group() must have an _id key")
        return self.push({"$group": dict(fields)})

    def limit(self, num: int) -> "AggregateBuilder[M]":
        return self.push({"$limit": check_non_negative_int(num, "Limit")})

    def skip(self, num: int) -> "AggregateBuilder[M]":
        return self.push({"$skip": check_non_negative_int(num, "Skip")})

    def match(
        self,
        query: Union[Mapping[str, Any], QueryBuilder, Callable[[QueryBuilder], QueryBuilder]],
    ) -> "AggregateBuilder[M]":
        """
        Appends a ``$match`` stage.

        Args:
            query: Criteria as a mapping, a QueryBuilder, or a function that
                receives a fresh QueryBuilder and returns it.
        """
        if isinstance(query, QueryBuilder):
            criteria = query.to_json()
        elif isinstance(query, Mapping):
            criteria = dict(query)
        elif callable(query):
            built = query(QueryBuilder())
            if not isinstance(built, QueryBuilder):
                raise InvalidStageError(
                    f"match() function must return a QueryBuilder, got {type(built).__name__}"
                )
            criteria = built.to_json()
        else:
            raise ValidationError(
                f"match() requires a mapping, QueryBuilder or function, got {type(query).__name__}"
            )
        return self.push({"$match": criteria})

    def project(self, projection: Mapping[str, Any]) -> "AggregateBuilder[M]":
        check_mapping(projection, "project() projection")
        return self.push({"$project": dict(projection)})

    def sort(self, fields: Mapping[str, Any]) -> "AggregateBuilder[M]":
        check_mapping(fields, "sort() fields")
        return self.push({"$sort": dict(fields)})

    def unwind(
        self,
        spec: Union[str, Mapping[str, Any]],
        include_array_index: Optional[str] = None,
        preserve_null_and_empty_arrays: Optional[bool] = None,
    ) -> "AggregateBuilder[M]":
        """
        Appends an ``$unwind`` stage. A bare path is passed through unchanged
        unless options are given, in which case the long form is built.
        """
        if isinstance(spec, str):
            if include_array_index is None and preserve_null_and_empty_arrays is None:
                return self.push({"$unwind": spec})
            long_form: Dict[str, Any] = {"path": spec}
            if include_array_index is not None:
                long_form["includeArrayIndex"] = include_array_index
            if preserve_null_and_empty_arrays is not None:
                long_form["preserveNullAndEmptyArrays"] = preserve_null_and_empty_arrays
            return self.push({"$unwind": long_form})
        if isinstance(spec, Mapping):
            if "path" not in spec:
                raise InvalidStageError("unwind() spec must have a 'path' key")
            return self.push({"$unwind": dict(spec)})
        raise ValidationError(f"unwind() requires a string or a mapping, got {type(spec).__name__}")

    def replace_root(self, new_root: Union[str, Mapping[str, Any]]) -> "AggregateBuilder[M]":
        """Appends ``$replaceRoot``; a field name ``'items'`` becomes ``{'newRoot': '$items'}``."""
        if isinstance(new_root, str):
            if not new_root:
                raise ValidationError("replace_root() field name must not be empty")
            path = new_root if new_root.startswith("$") else f"${new_root}"
            return self.push({"$replaceRoot": {"newRoot": path}})
        if isinstance(new_root, Mapping):
            return self.push({"$replaceRoot": {"newRoot": dict(new_root)}})
        raise ValidationError(
            f"replace_root() requires a field name or an expression, got {type(new_root).__name__}"
        )

    # --- Composition stages ---

    def _resolve_pipeline(
        self, source: PipelineSource, context: str, model_cls: Optional[type]
    ) -> List[Stage]:
        """Serializes a nested pipeline given as stages, a builder or a closure."""
        if isinstance(source, AggregateBuilder):
            return source.to_json()
        if isinstance(source, (list, tuple)):
            for i, stage in enumerate(source):
                if not isinstance(stage, Mapping):
                    raise InvalidStageError(
                        f"{context}: stage {i} must be a mapping, got {type(stage).__name__}"
                    )
            return copy.deepcopy(list(source))
        if callable(source):
            built = source(self._spawn(model_cls))
            if not isinstance(built, AggregateBuilder):
                raise InvalidStageError(
                    f"{context}: function must return an AggregateBuilder, got {type(built).__name__}"
                )
            return built.to_json()
        raise InvalidStageError(
            f"{context}: expected a list of stages, an AggregateBuilder or a function, "
            f"got {type(source).__name__}"
        )

    def lookup(self, spec: Mapping[str, Any]) -> "AggregateBuilder[M]":
        """
        Appends a ``$lookup`` stage.

        ``spec['from']`` may be a collection name or a model class. With
        ``localField`` present the simple join form is built
        (``localField``/``foreignField``/``as``); otherwise the pipeline form
        (``let``/``pipeline``/``as``), where ``pipeline`` may be a list of
        stages, a builder, or a function receiving a builder bound to the
        ``from`` model.
        """
        check_mapping(spec, "lookup() spec")
        if "from" not in spec:
            raise InvalidStageError("lookup() spec must have a 'from' key")
        if not isinstance(spec.get("as"), str) or not spec["as"]:
            raise InvalidStageError("lookup() spec must have a non-empty 'as' key")
        source = spec["from"]
        from_name = resolve_collection_name(source, "lookup()")

        if "localField" in spec:
            if "foreignField" not in spec:
                raise InvalidStageError("lookup() with 'localField' must also have 'foreignField'")
            stage: Dict[str, Any] = {
                "from": from_name,
                "localField": spec["localField"],
                "foreignField": spec["foreignField"],
                "as": spec["as"],
            }
        else:
            if "pipeline" not in spec:
                raise InvalidStageError("lookup() needs either 'localField' or 'pipeline'")
            from_model = source if _is_model_class(source) else None
            stage = {"from": from_name}
            if "let" in spec:
                check_mapping(spec["let"], "lookup() 'let'")
                stage["let"] = dict(spec["let"])
            stage["pipeline"] = self._resolve_pipeline(spec["pipeline"], "lookup() pipeline", from_model)
            stage["as"] = spec["as"]
        return self.push({"$lookup": stage})

    def facet(self, spec: Mapping[str, PipelineSource]) -> "AggregateBuilder[M]":
        """
        Appends one ``$facet`` stage with a sub-pipeline per named branch.

        Branch functions receive a new builder bound to this builder's model.
        Every branch produces an array of documents in the output, even when
        it yields a single document (``result['count'][0]``).
        """
        check_mapping(spec, "facet() spec")
        if not spec:
            raise InvalidStageError("facet() needs at least one branch")
        branches: Dict[str, List[Stage]] = {}
        for name, source in spec.items():
            if not isinstance(name, str) or not name:
                raise InvalidStageError(f"facet() branch names must be non-empty strings, got {name!r}")
            branches[name] = self._resolve_pipeline(
                source, f"facet() branch '{name}'", self.model_cls
            )
        return self.push({"$facet": branches})

    def union_with(
        self, spec: Union[CollectionSource, Mapping[str, Any], "AggregateBuilder"]
    ) -> "AggregateBuilder[M]":
        """
        Appends ``$unionWith``. Accepts a collection name, a model class, a
        ``{'coll': ..., 'pipeline': ...}`` mapping, or an AggregateBuilder
        bound to a model (its model gives the collection, its stages the
        pipeline).
        """
        if isinstance(spec, AggregateBuilder):
            if spec.model_cls is None:
                raise InvalidStageError(
                    "union_with() builder must be bound to a model, use Model.aggregate()"
                )
            stage: Any = {
                "coll": resolve_collection_name(spec.model_cls, "union_with()"),
                "pipeline": spec.to_json(),
            }
        elif isinstance(spec, Mapping):
            if "coll" not in spec:
                raise InvalidStageError("union_with() spec must have a 'coll' key")
            coll = spec["coll"]
            stage = {"coll": resolve_collection_name(coll, "union_with()")}
            if "pipeline" in spec:
                coll_model = coll if _is_model_class(coll) else None
                stage["pipeline"] = self._resolve_pipeline(
                    spec["pipeline"], "union_with() pipeline", coll_model
                )
        else:
            stage = resolve_collection_name(spec, "union_with()")
        return self.push({"$unionWith": stage})

    # --- Serialization & execution ---

    def to_json(self) -> List[Stage]:
        """Returns a deep copy of the stage list."""
        return copy.deepcopy(self._stages)

    def execute(self, **options: Any) -> AggregateCursor:
        """
        Run the pipeline against the bound model's collection.

        Args:
            **options: Passed to ``collection.aggregate`` (allowDiskUse, ...).

        Returns:
            An AggregateCursor yielding raw result documents.
        """
        if self.model_cls is None:
            raise ModelConfigurationException(
                "Aggregate is not bound to a model. Use Model.aggregate() or .bind(Model)."
            )
        pipeline = self.to_json()
        collection = self.model_cls.get_collection()
        self._logger.info(
            f"Executing aggregate on {self.model_cls.__name__} with {len(pipeline)} stage(s)"
        )
        self._logger.debug(f"Pipeline: {pipeline!r}")
        return AggregateCursor(collection.aggregate(pipeline, **options))

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self.execute().__aiter__()

    def __await__(self):
        return self.execute().collect_all().__await__()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._stages!r})"
