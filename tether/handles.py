"""
Tether Handles - Resource Handle Contract and Reference Kinds
=============================================================

A resource handle is one acquisition attempt of an external resource for one
subscription slot. The lifecycle controller creates a fresh handle for every
parameter change and talks to it only through the `ResourceHandle` contract:

- ``init(first)``: begin initialization. Synchronous kinds return ``None``;
  asynchronous kinds return an awaitable.
- ``cancel()``: signal-only; the handle stops caring about its own result.
- ``get_data()``: current data (``None`` until initialized).
- ``ref_model()`` / ``unref_model()``: reference the slot's store path.
- ``destroy()``: final cleanup.

Kinds are a tagged variant: `HANDLE_TYPES` maps each `ResourceKind` to its
constructor, and `get_handle_constructor` is the only dispatch point.

Every handle keeps call counters (``ref_calls``, ``unref_calls``,
``destroy_calls``) and ``refs_held`` so leaks are observable.
"""

import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Sequence, Type

from .connection import MemoryConnection
from .model import Model, join_path, split_path
from .params import ResourceKind

VALUES_COLLECTION = "$values"
QUERIES_COLLECTION = "$queries"
API_COLLECTION = "$api"


# ============================================================================
# EXCEPTIONS
# ============================================================================


class UnsupportedResourceKindError(TypeError):
    """Raised when no handle type is registered for a resource kind."""

    pass


# ============================================================================
# CONTRACT
# ============================================================================


class HandleState(Enum):
    """Lifecycle of one acquisition attempt."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    DESTROYED = "destroyed"


class ResourceHandle(ABC):
    """Base for resource handles. Subclasses implement `init` and may override `_cleanup`."""

    kind: ClassVar[ResourceKind]

    def __init__(
        self,
        connection: MemoryConnection,
        key: str,
        params: Sequence[Any],
        model: Model,
    ):
        self.connection = connection
        self.key = key
        self.params = tuple(params)
        self.id = model.id()
        self.state = HandleState.UNINITIALIZED
        self.cancelled = False

        self.ref_calls = 0
        self.unref_calls = 0
        self.destroy_calls = 0
        self.refs_held = 0

        self._model = model
        self._target: Optional[str] = None
        self._activated = False

    @property
    def alias(self) -> str:
        """Slot path this handle projects into."""
        return join_path(self._model.hooks_collection, self.key)

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def is_sync(self) -> bool:
        return self.kind.is_sync

    @property
    def abandoned(self) -> bool:
        return self.cancelled or self.state is HandleState.DESTROYED

    @abstractmethod
    def init(self, first: bool = False) -> Optional[Awaitable[None]]:
        """Begin initialization."""

    def cancel(self) -> None:
        if self.state is HandleState.DESTROYED:
            return
        self.cancelled = True
        self.state = HandleState.CANCELLED

    def get_data(self) -> Any:
        if self._target is None:
            return None
        return self._model.get(self._target)

    def ref_model(self) -> None:
        self.ref_calls += 1
        if self._target is None or self.state is HandleState.DESTROYED:
            return
        self._model.ref(self.alias, self._target)
        self.refs_held += 1
        if not self._activated and self.state is HandleState.INITIALIZING:
            self._activated = True
            self.state = HandleState.ACTIVE

    def unref_model(self) -> None:
        self.unref_calls += 1
        if not self.refs_held:
            return
        self._model.remove_ref(self.alias)
        self.refs_held -= 1

    def destroy(self) -> None:
        self.destroy_calls += 1
        if self.state is HandleState.DESTROYED:
            return
        self.state = HandleState.DESTROYED
        self._cleanup()

    def _begin(self) -> None:
        # a handle cancelled before its task started keeps its terminal state
        if self.state is HandleState.UNINITIALIZED:
            self.state = HandleState.INITIALIZING

    def _cleanup(self) -> None:
        pass

    def _expect_args(self, count: int) -> Sequence[Any]:
        if len(self.params) < count:
            raise ValueError(
                f"{type(self).__name__} expects {count} arguments, got {len(self.params)}"
            )
        return self.params[:count]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.params!r}, state={self.state.value})"


# ============================================================================
# SYNCHRONOUS KINDS
# ============================================================================


class Local(ResourceHandle):
    """Projects an existing local model path into the slot."""

    kind = ResourceKind.LOCAL

    def init(self, first: bool = False) -> None:
        self._begin()
        (path,) = self._expect_args(1)
        split_path(path)
        self._target = path


class Value(ResourceHandle):
    """Publishes a constant value into private storage and projects it."""

    kind = ResourceKind.VALUE

    def init(self, first: bool = False) -> None:
        self._begin()
        (value,) = self._expect_args(1)
        self._target = join_path(VALUES_COLLECTION, self.id)
        self._model.set(self._target, value)

    def _cleanup(self) -> None:
        if self._target is not None:
            self._model.del_(self._target)


# ============================================================================
# ASYNCHRONOUS KINDS
# ============================================================================


class Doc(ResourceHandle):
    """A single document fetched through the connection."""

    kind = ResourceKind.DOC

    async def init(self, first: bool = False) -> None:
        self._begin()
        collection, doc_id = self._expect_args(2)
        doc_path = join_path(collection, str(doc_id))
        split_path(doc_path)

        doc = await self.connection.fetch_doc(collection, str(doc_id))
        if self.abandoned:
            return
        if doc is not None:
            self._model.set(doc_path, doc)
        self._target = doc_path


class Query(ResourceHandle):
    """Documents matching a query; data is the list of matched documents."""

    kind = ResourceKind.QUERY

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._ids: Optional[list] = None

    async def init(self, first: bool = False) -> None:
        self._begin()
        collection, query = self._expect_args(2)
        split_path(collection)

        docs = await self.connection.fetch_query(collection, query or {})
        if self.abandoned:
            return
        ids = []
        for doc in docs:
            doc_id = str(doc["id"])
            self._model.set(join_path(collection, doc_id), doc)
            ids.append(doc_id)

        self._ids = ids
        self._target = join_path(QUERIES_COLLECTION, self.id)
        self._model.set(self._target, list(ids))

    @property
    def collection(self) -> str:
        return self.params[0]

    def get_data(self) -> Any:
        if self._ids is None:
            return None
        return [self._model.get(join_path(self.collection, doc_id)) for doc_id in self._ids]

    def _cleanup(self) -> None:
        if self._target is not None:
            self._model.del_(self._target)


class QueryExtra(ResourceHandle):
    """Extra query metadata (``$count`` / ``$aggregate``) instead of records."""

    kind = ResourceKind.QUERY_EXTRA

    async def init(self, first: bool = False) -> None:
        self._begin()
        collection, query = self._expect_args(2)
        split_path(collection)

        extra = await self.connection.fetch_extra(collection, query or {})
        if self.abandoned:
            return
        self._target = join_path(QUERIES_COLLECTION, self.id)
        self._model.set(self._target, extra)

    def _cleanup(self) -> None:
        if self._target is not None:
            self._model.del_(self._target)


class Api(ResourceHandle):
    """Result of calling ``fn(*inputs)``; coroutine functions are awaited."""

    kind = ResourceKind.API

    async def init(self, first: bool = False) -> None:
        self._begin()
        if not self.params or not callable(self.params[0]):
            raise TypeError("Api subscription needs a callable as its first argument")
        fn: Callable = self.params[0]

        result = fn(*self.params[1:])
        if inspect.isawaitable(result):
            result = await result
        if self.abandoned:
            return
        self._target = join_path(API_COLLECTION, self.id)
        self._model.set(self._target, result)

    def _cleanup(self) -> None:
        if self._target is not None:
            self._model.del_(self._target)


# ============================================================================
# REGISTRY
# ============================================================================

HandleConstructor = Callable[..., ResourceHandle]

HANDLE_TYPES: Dict[ResourceKind, Type[ResourceHandle]] = {
    ResourceKind.LOCAL: Local,
    ResourceKind.DOC: Doc,
    ResourceKind.QUERY: Query,
    ResourceKind.QUERY_EXTRA: QueryExtra,
    ResourceKind.VALUE: Value,
    ResourceKind.API: Api,
}


def get_handle_constructor(
    kind: Any, handle_types: Optional[Dict[Any, HandleConstructor]] = None
) -> HandleConstructor:
    """Look up the constructor for ``kind``; unknown kinds fail fast."""
    registry = HANDLE_TYPES if handle_types is None else handle_types
    if not isinstance(kind, ResourceKind):
        raise UnsupportedResourceKindError(f"Unsupported subscription type: {kind}")
    constructor = registry.get(kind)
    if constructor is None:
        raise UnsupportedResourceKindError(f"Unsupported subscription type: {kind.value}")
    return constructor


__all__ = [
    "ResourceHandle",
    "HandleState",
    "UnsupportedResourceKindError",
    "Local",
    "Value",
    "Doc",
    "Query",
    "QueryExtra",
    "Api",
    "HANDLE_TYPES",
    "get_handle_constructor",
]
