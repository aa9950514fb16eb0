"""
Tether Site - Subscription Sites and Hook Functions
===================================================

A `Site` stands for one mounted UI component instance. While it renders, hook
functions (`use_doc`, `use_query`, ...) bind subscriptions to it by call order, the
same way component hooks work: the n-th hook call of every render maps to the n-th
`Subscription` of the site.

```python
site = Site(model, on_render=lambda site: rerender(site))

with site.render():
    threads, threads_model, ready = use_query("threads", {"status": "open"})
    title, title_model, _ = use_local("_page.title")

site.unmount()
```

Each `Subscription` is idempotent under repeated calls with structurally equal
arguments; only a change of the normalized descriptor reaches its controller.
During a render the site records every model path it reads and re-renders when
any of them changes, which is how store-observed kinds become reactive.
"""

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from .batching import Batcher, default_batcher
from .controller import LifecycleController, SlotAllocator
from .handles import HANDLE_TYPES, HandleConstructor
from .model import Model
from .params import (
    ParameterDescriptor,
    normalize,
    sub_api,
    sub_doc,
    sub_local,
    sub_query,
    sub_query_extra,
    sub_value,
)
from .projector import SubscriptionView, project


# ============================================================================
# EXCEPTIONS
# ============================================================================


class HookOrderError(RuntimeError):
    """Raised when hooks are called outside a render or in a different order."""

    pass


class SiteUnmountedError(RuntimeError):
    """Raised when a torn-down subscription or site is used."""

    pass


# ============================================================================
# SUBSCRIPTION
# ============================================================================


class Subscription:
    """One subscription site bound to a normalizer function."""

    def __init__(
        self,
        kind_fn: Callable[..., ParameterDescriptor],
        model: Model,
        batcher: Optional[Batcher] = None,
        on_render: Optional[Callable[[], None]] = None,
        handle_types: Optional[Dict[Any, HandleConstructor]] = None,
        slots: Optional[SlotAllocator] = None,
    ):
        self.kind_fn = kind_fn
        self.model = model
        self.controller = LifecycleController(
            model,
            batcher if batcher is not None else default_batcher,
            slots=slots,
            on_render=on_render,
            handle_types=handle_types,
        )
        self._params: Optional[ParameterDescriptor] = None
        self._closed = False

    def __call__(self, *args: Any) -> SubscriptionView:
        if self._closed:
            raise SiteUnmountedError("Subscription has been closed")

        params = normalize(self.kind_fn, *args)
        if self._params is None or params.signature != self._params.signature:
            self.controller.on_parameters_changed(params)
            self._params = params
        return self.view

    @property
    def view(self) -> SubscriptionView:
        return project(self.controller.state, self.model)

    @property
    def params(self) -> Optional[ParameterDescriptor]:
        return self._params

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.controller.teardown()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"Subscription({self.kind_fn.__name__}, {self._params!r})"


# ============================================================================
# SITE
# ============================================================================


class Site:
    """A mounted component instance owning an ordered list of subscriptions."""

    _local = threading.local()

    def __init__(
        self,
        model: Optional[Model] = None,
        batcher: Optional[Batcher] = None,
        on_render: Optional[Callable[["Site"], None]] = None,
        handle_types: Optional[Dict[Any, HandleConstructor]] = None,
    ):
        self.model = model if model is not None else Model()
        self.batcher = batcher if batcher is not None else default_batcher
        self.render_requests = 0

        self._on_render = on_render
        self._handle_types = (
            {**HANDLE_TYPES, **handle_types} if handle_types else None
        )
        self._slots = SlotAllocator(self.model)
        self._subscriptions: List[Subscription] = []
        self._cursor = 0
        self._rendered = False
        self._mounted = True
        self._watched: Set[str] = set()
        self._unwatch: List[Callable[[], None]] = []

    @classmethod
    def _stack(cls) -> list:
        if not hasattr(cls._local, "stack"):
            cls._local.stack = []
        return cls._local.stack

    @classmethod
    def current(cls) -> "Site":
        stack = cls._stack()
        if not stack:
            raise HookOrderError("Hooks can only be called while a Site is rendering")
        return stack[-1]

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    # ========================================================================
    # RENDERING
    # ========================================================================

    @contextmanager
    def render(self) -> Iterator["Site"]:
        """Render pass: hook calls inside the block bind to this site by order."""
        if not self._mounted:
            raise SiteUnmountedError("Cannot render an unmounted site")

        stack = self._stack()
        stack.append(self)
        self._cursor = 0
        try:
            with self.model.track_reads() as reads:
                yield self
        finally:
            stack.pop()

        if self._rendered and self._cursor != len(self._subscriptions):
            raise HookOrderError(
                f"Rendered {self._cursor} hooks, expected {len(self._subscriptions)}"
            )
        self._rendered = True
        self._watch(reads)

    def use(self, kind_fn: Callable[..., ParameterDescriptor], *args: Any) -> SubscriptionView:
        if self._cursor < len(self._subscriptions):
            subscription = self._subscriptions[self._cursor]
            if subscription.kind_fn is not kind_fn:
                raise HookOrderError(
                    f"Hook #{self._cursor} changed from {subscription.kind_fn.__name__} "
                    f"to {kind_fn.__name__}"
                )
        elif self._rendered:
            raise HookOrderError("Rendered more hooks than during the first render")
        else:
            subscription = Subscription(
                kind_fn,
                self.model,
                self.batcher,
                on_render=self._request_render,
                handle_types=self._handle_types,
                slots=self._slots,
            )
            self._subscriptions.append(subscription)

        self._cursor += 1
        return subscription(*args)

    def _request_render(self) -> None:
        if not self._mounted:
            return
        self.render_requests += 1
        if self._on_render is not None:
            self._on_render(self)

    def _watch(self, paths: Set[str]) -> None:
        if paths == self._watched:
            return
        for unsubscribe in self._unwatch:
            unsubscribe()
        self._unwatch = [
            self.model.on(path, lambda change: self.batcher.request_render(self._request_render))
            for path in sorted(paths)
        ]
        self._watched = set(paths)

    # ========================================================================
    # TEARDOWN
    # ========================================================================

    def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        for unsubscribe in self._unwatch:
            unsubscribe()
        self._unwatch = []
        self._watched = set()
        for subscription in reversed(self._subscriptions):
            subscription.close()

    def __repr__(self) -> str:
        return f"Site(subscriptions={len(self._subscriptions)}, mounted={self._mounted})"


# ============================================================================
# HOOK FUNCTIONS
# ============================================================================


def subscription_type(kind_fn: Callable[..., ParameterDescriptor]) -> Callable[..., SubscriptionView]:
    """Build the hook function for one resource kind family."""

    def use(*args: Any) -> SubscriptionView:
        return Site.current().use(kind_fn, *args)

    use.__name__ = "use_" + kind_fn.__name__[len("sub_"):]
    use.__doc__ = f"Subscribe the rendering site through ``{kind_fn.__name__}``."
    return use


use_doc = subscription_type(sub_doc)
use_query = subscription_type(sub_query)
use_query_extra = subscription_type(sub_query_extra)
use_local = subscription_type(sub_local)
use_value = subscription_type(sub_value)
use_api = subscription_type(sub_api)


__all__ = [
    "Site",
    "Subscription",
    "HookOrderError",
    "SiteUnmountedError",
    "subscription_type",
    "use_doc",
    "use_query",
    "use_query_extra",
    "use_local",
    "use_value",
    "use_api",
]
