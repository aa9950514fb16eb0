"""
Tether Model - Shared Path-Addressed Store
==========================================

The `Model` is the shared data store every subscription site projects into. Data is a
tree of nested dicts addressed by dot-separated paths (``"threads.t1.title"``).

Features:
- Scoped handles: `scope(path)` and `ScopedModel.at(subpath)`
- Reference-counted path refs: an alias path resolves to a target path
- Read tracking: reads through `get()` are recorded so reactive consumers can
  discover which paths they depend on
- Change observers with numpy-aware change suppression
- Fresh unique ids for subscription slots

Example:
    model = Model()
    model.set("_page.user", {"name": "Ann"})
    model.ref("$hooks.abc", "_page.user")
    model.scope("$hooks").at("abc").get()  # {"name": "Ann"}
"""

import logging
import threading
import time
import uuid
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

import numpy as np

from .connection import MemoryConnection

HOOKS_COLLECTION = "$hooks"

_MAX_REF_DEPTH = 32


# ============================================================================
# EXCEPTIONS
# ============================================================================


class InvalidPathError(ValueError):
    """Raised when a path is empty, malformed, or resolves through a ref cycle."""

    pass


# ============================================================================
# CHANGES
# ============================================================================


class ChangeType(Enum):
    """Type of change that occurred."""

    SET = "set"
    DELETED = "deleted"
    REF = "ref"


@dataclass(frozen=True)
class Change:
    """Immutable change event at a resolved path."""

    path: str
    change_type: ChangeType
    old_value: Any
    new_value: Any
    timestamp: float

    @property
    def is_deletion(self) -> bool:
        return self.change_type == ChangeType.DELETED

    def __repr__(self) -> str:
        if self.change_type == ChangeType.DELETED:
            return f"Change({self.path}: deleted)"
        if self.change_type == ChangeType.REF:
            return f"Change({self.path}: ref -> {self.new_value!r})"
        return f"Change({self.path}: {self.old_value!r} → {self.new_value!r})"


def split_path(path: str) -> List[str]:
    if not isinstance(path, str) or not path:
        raise InvalidPathError(f"Invalid path: {path!r}")
    segments = path.split(".")
    if any(not segment for segment in segments):
        raise InvalidPathError(f"Invalid path: {path!r}")
    return segments


def join_path(*parts: str) -> str:
    return ".".join(part for part in parts if part)


def _related(a: str, b: str) -> bool:
    """True if one path is equal to or nested under the other."""
    return a == b or a.startswith(b + ".") or b.startswith(a + ".")


# ============================================================================
# MODEL
# ============================================================================


class Model:
    """
    Shared store addressed by dot paths.

    Reads go through `get()` so they can be tracked; writes go through `set()`,
    `del_()` and `destroy()` so observers hear about them.
    """

    def __init__(
        self,
        connection: Optional[MemoryConnection] = None,
        hooks_collection: str = HOOKS_COLLECTION,
        history_size: int = 1000,
    ):
        self.connection = connection if connection is not None else MemoryConnection()
        self.hooks_collection = hooks_collection

        self._data: Dict[str, Any] = {}
        self._refs: Dict[str, str] = {}
        self._ref_counts: Dict[str, int] = defaultdict(int)
        self._observers: Dict[str, List[Callable[[Change], None]]] = defaultdict(list)

        self._lock = threading.RLock()
        self._ctx = threading.local()
        self._history: deque = deque(maxlen=history_size)

    # ========================================================================
    # SCOPING
    # ========================================================================

    def scope(self, path: Optional[str] = None) -> "ScopedModel":
        if path is not None:
            split_path(path)
        return ScopedModel(self, path or "")

    def id(self) -> str:
        """Fresh globally unique identifier."""
        return uuid.uuid4().hex

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, path: Optional[str] = None) -> Any:
        with self._lock:
            if path is None:
                return self._data
            resolved = self.resolve(path)

            accessed = getattr(self._ctx, "accessed_paths", None)
            if accessed is not None:
                accessed.add(path)
                accessed.add(resolved)

            node: Any = self._data
            for segment in split_path(resolved):
                if not isinstance(node, dict) or segment not in node:
                    return None
                node = node[segment]
            return node

    @contextmanager
    def track_reads(self) -> Iterator[Set[str]]:
        """Collect every path read through `get()` inside the block."""
        previous = getattr(self._ctx, "accessed_paths", None)
        accessed: Set[str] = set()
        self._ctx.accessed_paths = accessed
        try:
            yield accessed
        finally:
            if previous is not None:
                previous.update(accessed)
                self._ctx.accessed_paths = previous
            else:
                delattr(self._ctx, "accessed_paths")

    def resolve(self, path: str) -> str:
        """Follow refs until the path no longer starts with an alias."""
        segments = split_path(path)
        with self._lock:
            for _ in range(_MAX_REF_DEPTH):
                for i in range(len(segments), 0, -1):
                    target = self._refs.get(".".join(segments[:i]))
                    if target is not None:
                        segments = split_path(target) + segments[i:]
                        break
                else:
                    return ".".join(segments)
        raise InvalidPathError(f"Ref cycle while resolving {path!r}")

    # ========================================================================
    # WRITES
    # ========================================================================

    def set(self, path: str, value: Any) -> Any:
        """Set ``value`` at ``path``, creating intermediate dicts. Returns the old value."""
        with self._lock:
            resolved = self.resolve(path)
            *parents, last = split_path(resolved)
            node = self._data
            for segment in parents:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    node[segment] = child
                node = child

            old_value = node.get(last)
            node[last] = value

        if not self._values_equal(old_value, value):
            self._emit(resolved, ChangeType.SET, old_value, value)
        return old_value

    def del_(self, path: str) -> Any:
        with self._lock:
            return self._delete_resolved(self.resolve(path))

    def destroy(self, path: str) -> None:
        """Remove the data at ``path`` and every ref aliased at or below it."""
        with self._lock:
            for alias in [a for a in self._refs if a == path or a.startswith(path + ".")]:
                self._drop_ref(alias)
            self._delete_resolved(path)

    def _delete_resolved(self, resolved: str) -> Any:
        *parents, last = split_path(resolved)
        node: Any = self._data
        for segment in parents:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        if not isinstance(node, dict) or last not in node:
            return None

        old_value = node.pop(last)
        self._emit(resolved, ChangeType.DELETED, old_value, None)
        return old_value

    # ========================================================================
    # REFS
    # ========================================================================

    def ref(self, alias: str, target: str) -> None:
        """Point ``alias`` at ``target``. Repeated refs to the same target are counted."""
        split_path(alias)
        split_path(target)
        with self._lock:
            current = self._refs.get(alias)
            if current == target:
                self._ref_counts[alias] += 1
                return
            self._refs[alias] = target
            self._ref_counts[alias] = 1
        self._emit(alias, ChangeType.REF, current, target)

    def remove_ref(self, alias: str) -> None:
        """Drop one reference to ``alias``; the alias disappears at zero."""
        with self._lock:
            if alias not in self._refs:
                return
            self._ref_counts[alias] -= 1
            if self._ref_counts[alias] > 0:
                return
            self._drop_ref(alias)

    def ref_count(self, alias: str) -> int:
        with self._lock:
            return self._ref_counts.get(alias, 0) if alias in self._refs else 0

    def refs(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._refs)

    def _drop_ref(self, alias: str) -> None:
        target = self._refs.pop(alias)
        self._ref_counts.pop(alias, None)
        self._emit(alias, ChangeType.REF, target, None)

    # ========================================================================
    # SUBSCRIPTION
    # ========================================================================

    def on(self, path: str, callback: Callable[[Change], None]) -> Callable[[], None]:
        """Subscribe to changes at, above, or below ``path``."""
        split_path(path)
        with self._lock:
            self._observers[path].append(callback)

            def unsubscribe():
                with self._lock:
                    if callback in self._observers.get(path, []):
                        self._observers[path].remove(callback)
                        if not self._observers[path]:
                            del self._observers[path]

            return unsubscribe

    def _emit(self, path: str, change_type: ChangeType, old_value: Any, new_value: Any) -> None:
        change = Change(
            path=path,
            change_type=change_type,
            old_value=old_value,
            new_value=new_value,
            timestamp=time.time(),
        )
        self._history.append(change)
        self._notify(change)

    def _notify(self, change: Change) -> None:
        with self._lock:
            callbacks = [
                callback
                for path, observers in self._observers.items()
                if _related(path, change.path)
                for callback in observers
            ]

        for callback in callbacks:
            try:
                callback(change)
            except Exception as e:
                logging.error(f"Error in model observer for '{change.path}': {e}")

    def _values_equal(self, a: Any, b: Any) -> bool:
        try:
            if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
                if type(a) != type(b):
                    return False
                return np.array_equal(a, b)
            return a is b or a == b
        except (ValueError, TypeError):
            return False

    # ========================================================================
    # UTILITY METHODS
    # ========================================================================

    def history(self, limit: int = 100) -> List[Change]:
        with self._lock:
            return list(self._history)[-limit:]

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "roots": len(self._data),
                "refs": len(self._refs),
                "observers": sum(len(obs) for obs in self._observers.values()),
                "history_size": len(self._history),
            }

    def __repr__(self) -> str:
        return f"Model(roots={len(self._data)}, refs={len(self._refs)})"


# ============================================================================
# SCOPED MODEL
# ============================================================================


class ScopedModel:
    """A `Model` bound to an absolute path."""

    def __init__(self, model: Model, path: str):
        self._model = model
        self._path = path

    @property
    def model(self) -> Model:
        return self._model

    def path(self, subpath: Optional[str] = None) -> str:
        return join_path(self._path, subpath or "")

    def at(self, subpath: str) -> "ScopedModel":
        split_path(subpath)
        return ScopedModel(self._model, self.path(subpath))

    def scope(self, path: str) -> "ScopedModel":
        return self._model.scope(path)

    def get(self, subpath: Optional[str] = None) -> Any:
        full = self.path(subpath)
        return self._model.get(full) if full else self._model.get()

    def set(self, subpath_or_value: Any, *value: Any) -> Any:
        """``set(value)`` writes at the scoped path, ``set(subpath, value)`` below it."""
        if value:
            return self._model.set(self.path(subpath_or_value), value[0])
        return self._model.set(self._path, subpath_or_value)

    def del_(self, subpath: Optional[str] = None) -> Any:
        return self._model.del_(self.path(subpath))

    def destroy(self, subpath: Optional[str] = None) -> None:
        self._model.destroy(self.path(subpath))

    def ref(self, target: str) -> None:
        self._model.ref(self._path, target)

    def remove_ref(self) -> None:
        self._model.remove_ref(self._path)

    def on(self, callback: Callable[[Change], None]) -> Callable[[], None]:
        return self._model.on(self._path, callback)

    def __eq__(self, other):
        if not isinstance(other, ScopedModel):
            return NotImplemented
        return self._model is other._model and self._path == other._path

    def __hash__(self):
        return hash((id(self._model), self._path))

    def __repr__(self) -> str:
        return f"ScopedModel({self._path!r})"


__all__ = [
    "Model",
    "ScopedModel",
    "Change",
    "ChangeType",
    "InvalidPathError",
    "HOOKS_COLLECTION",
    "split_path",
    "join_path",
]
