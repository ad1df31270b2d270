# src/async_odm/base/model.py
import logging
from typing import (Any, Dict, Iterable, List, Mapping, Optional, Type,
                    TypeVar, Union)

from bson import ObjectId

from . import registry
from .aggregate import AggregateBuilder
from .exceptions import ObjectNotFoundException
from .interfaces import BaseConnection, CollectionHandle
from .query import ModelQuery
from .utils import prepare_for_storage

log = logging.getLogger(__name__)

TModel = TypeVar("TModel", bound="Model")


class ModelMeta(type):
    """
    Metaclass exposing ``connection`` and ``collection`` as class-level
    properties backed by the per-class registry, so that

        User.connection = connection
        User.collection = "users"

    go through validation instead of plain attribute assignment.
    """

    @property
    def connection(cls) -> BaseConnection:
        return registry.get_connection(cls)

    @connection.setter
    def connection(cls, connection: BaseConnection) -> None:
        registry.set_connection(cls, connection)

    @property
    def collection(cls) -> str:
        return registry.get_collection_name(cls)

    @collection.setter
    def collection(cls, name: str) -> None:
        registry.set_collection_name(cls, name, root=Model)


class Model(metaclass=ModelMeta):
    """
    Base class for documents stored in a collection.

    Subclass it, then configure where the subclass lives:

        class User(Model):
            pass

        User.connection = connection
        User.collection = "users"

    ``connection`` is inherited by subclasses; ``collection`` is not, every
    concrete model names its own. The base class itself is abstract by
    convention and refuses a collection.
    """

    # Builder types used by find() / aggregate(); subclasses may swap them.
    QueryBuilder = ModelQuery
    AggregateBuilder = AggregateBuilder

    def __init__(self, fields: Optional[Mapping[str, Any]] = None):
        self.fields: Dict[str, Any] = dict(fields or {})
        self.is_new = True

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.fields!r})"

    @property
    def connection(self) -> BaseConnection:
        """The connection used by this model's class."""
        return type(self).connection

    @property
    def collection(self) -> CollectionHandle:
        """The physical collection handle used by this model's class."""
        return type(self).get_collection()

    async def validate(self) -> None:
        """Validate the document before saving. Override in subclasses; raise to reject."""
        pass

    async def save(self) -> None:
        """
        Validate and persist the document.

        New documents are inserted and then marked as persisted (picking up
        the generated ``_id``); persisted documents are updated by ``_id``.
        """
        await self.validate()
        document = self.to_json()
        collection = self.collection
        if self.is_new:
            result = await collection.insert_one(document)
            inserted_id = getattr(result, "inserted_id", None)
            if "_id" not in self.fields and inserted_id is not None:
                self.fields["_id"] = inserted_id
            self.is_new = False
            log.info(f"Inserted {type(self).__name__} with _id {self.fields.get('_id')!r}")
        else:
            changes = {k: v for k, v in document.items() if k != "_id"}
            await collection.update_one({"_id": self.fields["_id"]}, {"$set": changes})
            log.info(f"Updated {type(self).__name__} with _id {self.fields['_id']!r}")

    def to_json(self) -> Dict[str, Any]:
        """The document as plain data, ready for the driver."""
        return prepare_for_storage(self.fields)

    # --- Class-level API ---

    @classmethod
    def get_collection(cls) -> CollectionHandle:
        """Resolve the physical collection handle through the class's connection."""
        return cls.connection.collection(cls.collection)

    @classmethod
    def find(cls: Type[TModel], criteria: Optional[Mapping[str, Any]] = None) -> ModelQuery[TModel]:
        """Start a query on this model. Await or iterate the result to run it."""
        return cls.QueryBuilder(criteria, model_cls=cls)

    @classmethod
    def aggregate(
        cls: Type[TModel], stages: Optional[List[Mapping[str, Any]]] = None
    ) -> AggregateBuilder[TModel]:
        """Start an aggregation pipeline on this model's collection."""
        return cls.AggregateBuilder(stages, model_cls=cls)

    @classmethod
    async def find_by_id(cls: Type[TModel], id: Union[ObjectId, str, Any]) -> TModel:
        """
        Find one instance by ``_id``.

        Strings that are valid ObjectIds are converted first; other values
        are matched as-is.

        Raises:
            ObjectNotFoundException: If no document has that ``_id``.
        """
        if isinstance(id, str) and ObjectId.is_valid(id):
            id = ObjectId(id)
        instance = await cls.find({"_id": id}).first()
        if instance is None:
            log.warning(f"{cls.__name__} with _id {id!r} not found.")
            raise ObjectNotFoundException(f"{cls.__name__} with ID '{id}' not found.")
        return instance

    @classmethod
    def hydrate(cls: Type[TModel], document: Mapping[str, Any]) -> TModel:
        """Wrap a stored document in an instance marked as already persisted."""
        instance = cls(document)
        instance.is_new = False
        return instance

    @classmethod
    def hydrate_all(cls: Type[TModel], documents: Iterable[Mapping[str, Any]]) -> List[TModel]:
        return [cls.hydrate(document) for document in documents]


def bind_model(base: Type[TModel], name: str, connection: BaseConnection) -> Type[TModel]:
    """
    Create a subclass of ``base`` attached to ``connection``.

    The subclass is named ``name``, uses ``connection`` and reuses the
    collection name configured on ``base``. ``base`` itself is left
    untouched, so one model definition can be attached to several
    connections at once.

    Raises:
        ModelConfigurationException: If ``base`` has no collection configured.
    """
    collection_name = base.collection
    bound = type(base)(
        name,
        (base,),
        {
            "__module__": base.__module__,
            "__qualname__": name,
            "__bound_base__": base,
        },
    )
    bound.connection = connection
    bound.collection = collection_name
    log.debug(f"Bound {base.__name__} as {name} (collection '{collection_name}') to {connection!r}")
    return bound
