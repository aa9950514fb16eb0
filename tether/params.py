"""
Tether Params - Subscription Parameter Normalization
====================================================

This module turns the raw arguments a caller passes to a subscription hook into a
canonical, immutable `ParameterDescriptor`: a resource kind tag plus the ordered
constructor arguments for the resource handle.

Descriptors compare by *structure*, not identity. Two calls with equal arguments
produce descriptors with the same `signature`, which is what subscription sites use
to decide whether a new resource handle is needed at all.

Normalizer functions
--------------------

There is one normalizer per resource kind family:

- `sub_doc(collection, doc_id)` -> Doc
- `sub_query(collection, query)` -> Query (or QueryExtra for `$count` / `$aggregate`)
- `sub_query_extra(collection, query)` -> QueryExtra
- `sub_local(path)` -> Local
- `sub_value(value)` -> Value
- `sub_api(fn, *inputs)` -> Api

No validation happens here. For the query kinds the first argument is later used as a
store collection path; checking it is the resource handle's job.
"""

import hashlib
import inspect
import pickle
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import numpy as np
from cachetools import LRUCache

DESCRIPTOR_CACHE_SIZE = 1024

QUERY_EXTRA_KEYS = ("$count", "$aggregate")


# ============================================================================
# RESOURCE KINDS
# ============================================================================


class ResourceKind(Enum):
    """Tag for the six subscribable resource kinds."""

    LOCAL = "Local"
    DOC = "Doc"
    QUERY = "Query"
    QUERY_EXTRA = "QueryExtra"
    VALUE = "Value"
    API = "Api"

    @property
    def is_sync(self) -> bool:
        """Local and Value initialize inline; everything else awaits."""
        return self in (ResourceKind.LOCAL, ResourceKind.VALUE)

    @property
    def is_query(self) -> bool:
        return self in (ResourceKind.QUERY, ResourceKind.QUERY_EXTRA)

    @property
    def exposes_data(self) -> bool:
        """Kinds whose data is read from the handle instead of the shared model."""
        return self in (ResourceKind.DOC, ResourceKind.QUERY, ResourceKind.QUERY_EXTRA)


# ============================================================================
# DESCRIPTOR
# ============================================================================


def hash_args(args: Tuple[Any, ...]) -> str:
    """
    Compute a content-based signature for an argument tuple.

    Arguments are reduced to a canonical, type-tagged tree before hashing, so
    ``{1: "a"}`` and ``{"1": "a"}`` differ while dicts built in a different order
    still match. Arrays are keyed on their dtype, shape and raw bytes. Functions and
    bound methods keep identity semantics. Anything else is pickled, and only
    objects that cannot be pickled fall back to their type and ``id``.
    """
    payload = repr(_canonical(args)).encode()
    return hashlib.md5(payload).hexdigest()


def _canonical(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str, bytes)):
        return (type(value).__name__, value)
    if isinstance(value, dict):
        items = [(_canonical(k), _canonical(v)) for k, v in value.items()]
        return ("dict", tuple(sorted(items, key=repr)))
    if isinstance(value, (list, tuple)):
        return (type(value).__name__, tuple(_canonical(item) for item in value))
    if isinstance(value, (set, frozenset)):
        return (type(value).__name__, tuple(sorted((_canonical(item) for item in value), key=repr)))
    if isinstance(value, np.ndarray):
        if value.dtype == object:
            return ("ndarray", "object", value.shape, _canonical(value.tolist()))
        digest = hashlib.md5(np.ascontiguousarray(value).tobytes()).hexdigest()
        return ("ndarray", value.dtype.str, value.shape, digest)
    if isinstance(value, np.generic):
        return ("numpy", value.dtype.str, value.tobytes())
    if inspect.ismethod(value):
        return ("method", id(value.__self__), id(value.__func__))
    if inspect.isroutine(value):
        return ("routine", getattr(value, "__qualname__", ""), id(value))
    try:
        pickled = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        return ("pickle", type(value).__qualname__, hashlib.md5(pickled).hexdigest())
    except (TypeError, ValueError, pickle.PicklingError, AttributeError):
        # Last resort: identity, so this value never deduplicates with another
        return ("object", type(value).__qualname__, id(value))


@dataclass(frozen=True)
class ParameterDescriptor:
    """Immutable resource kind tag plus the handle's constructor arguments."""

    kind: ResourceKind
    args: Tuple[Any, ...] = ()
    signature: str = field(default="", compare=False)

    def __post_init__(self):
        if not self.signature:
            object.__setattr__(
                self, "signature", hash_args((_kind_name(self.kind),) + self.args)
            )

    def __eq__(self, other):
        if not isinstance(other, ParameterDescriptor):
            return NotImplemented
        return self.signature == other.signature

    def __hash__(self):
        return hash(self.signature)

    @property
    def collection(self) -> Optional[str]:
        """First constructor argument, read as a collection path by query kinds."""
        return self.args[0] if self.args else None

    def __repr__(self) -> str:
        return f"ParameterDescriptor({_kind_name(self.kind)}, {self.args!r})"


def _kind_name(kind: Any) -> str:
    return kind.value if isinstance(kind, ResourceKind) else str(kind)


# ============================================================================
# NORMALIZERS
# ============================================================================


def sub_doc(collection: str, doc_id: str) -> ParameterDescriptor:
    return ParameterDescriptor(ResourceKind.DOC, (collection, doc_id))


def sub_query(collection: str, query: Optional[dict] = None) -> ParameterDescriptor:
    """Query descriptor, promoted to QueryExtra when the query asks for metadata."""
    query = {} if query is None else query
    if isinstance(query, dict) and any(key in query for key in QUERY_EXTRA_KEYS):
        return ParameterDescriptor(ResourceKind.QUERY_EXTRA, (collection, query))
    return ParameterDescriptor(ResourceKind.QUERY, (collection, query))


def sub_query_extra(collection: str, query: dict) -> ParameterDescriptor:
    return ParameterDescriptor(ResourceKind.QUERY_EXTRA, (collection, query))


def sub_local(path: str) -> ParameterDescriptor:
    return ParameterDescriptor(ResourceKind.LOCAL, (path,))


def sub_value(value: Any) -> ParameterDescriptor:
    return ParameterDescriptor(ResourceKind.VALUE, (value,))


def sub_api(fn: Callable, *inputs: Any) -> ParameterDescriptor:
    """
    Api descriptor for calling ``fn(*inputs)``.

    The function is part of the signature by identity. A lambda or closure created
    anew on every render therefore counts as changed arguments and starts a new
    call each time; pass a function defined once (module level, a method, or one
    hoisted out of the render) to keep the subscription stable.
    """
    return ParameterDescriptor(ResourceKind.API, (fn,) + inputs)


# ============================================================================
# MEMOIZED NORMALIZATION
# ============================================================================

_cache: LRUCache = LRUCache(maxsize=DESCRIPTOR_CACHE_SIZE)
_cache_lock = threading.RLock()


def normalize(kind_fn: Callable[..., ParameterDescriptor], *args: Any) -> ParameterDescriptor:
    """
    Normalize ``args`` through ``kind_fn``, reusing the descriptor for equal input.

    Repeated calls with structurally equal arguments return the *same* descriptor
    object, so callers may compare by identity or by signature.
    """
    key = (kind_fn, hash_args(args))
    with _cache_lock:
        cached = _cache.get(key)
        if cached is not None:
            return cached

    descriptor = kind_fn(*args)

    with _cache_lock:
        _cache[key] = descriptor
    return descriptor


def clear_descriptor_cache() -> None:
    """Drop every memoized descriptor (used by tests)."""
    with _cache_lock:
        _cache.clear()


__all__ = [
    "ResourceKind",
    "ParameterDescriptor",
    "hash_args",
    "normalize",
    "clear_descriptor_cache",
    "sub_doc",
    "sub_query",
    "sub_query_extra",
    "sub_local",
    "sub_value",
    "sub_api",
]
