"""
Tether Controller - Subscription Lifecycle Controller
=====================================================

One `LifecycleController` exists per mounted subscription site. It binds the
lifetime of resource handles to the site and sequences overlapping acquisitions:

- Every parameter change constructs a fresh handle and queues it for teardown
  right away, before knowing whether its initialization succeeds.
- Synchronous kinds initialize inline and are promoted immediately.
- Asynchronous kinds get a `CancelToken`. Starting a newer initialization marks
  the previous token superseded and cancels the previous handle (signal only).
  A superseded completion is ignored; the latest intent always wins.
- Promotion (`_finish_init`) destroys every queued handle except the one being
  promoted, bumps ``init_count``, references the promoted handle's store path,
  and requests a render for kinds that expose data directly.
- `teardown` destroys everything still queued and releases the slot.

All mutable bookkeeping lives in `ControllerState` so the ordering rules above
are visible in one place.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set

from .batching import Batcher
from .handles import HandleConstructor, ResourceHandle, get_handle_constructor
from .model import Model
from .params import ParameterDescriptor

INIT_FAILURE_WARNING = (
    "[tether] Warning. Item couldn't initialize. "
    "This might be normal if several resubscriptions happened "
    "quickly one after another. Error: {}"
)

CURRENT_INIT_FAILURE_WARNING = (
    "[tether] Warning. Item couldn't initialize and no newer subscription "
    "replaced it, the site stays not ready. Error: {}"
)


# ============================================================================
# STATE
# ============================================================================


class CancelToken:
    """Single-use flag: written by the controller, read by one init continuation."""

    __slots__ = ("superseded",)

    def __init__(self):
        self.superseded = False

    def supersede(self) -> None:
        self.superseded = True

    def __repr__(self) -> str:
        return f"CancelToken(superseded={self.superseded})"


@dataclass
class ControllerState:
    """
    Per-site bookkeeping.

    ``active_handle`` is the latest intent (what the next cancellation targets);
    ``promoted_handle`` is the last handle that finished initializing and is what
    the projector reads. The last entry of ``teardown_queue`` is the handle most
    recently queued and is never swept by `_finish_init`.
    """

    slot_key: Optional[str] = None
    params: Optional[ParameterDescriptor] = None
    active_handle: Optional[ResourceHandle] = None
    promoted_handle: Optional[ResourceHandle] = None
    teardown_queue: List[ResourceHandle] = field(default_factory=list)
    cancel_token: Optional[CancelToken] = None
    init_count: int = 0
    handles_created: int = 0
    last_error: Optional[BaseException] = None
    torn_down: bool = False

    @property
    def ready(self) -> bool:
        return self.init_count > 0


# ============================================================================
# SLOT ALLOCATION
# ============================================================================


class SlotAllocator:
    """Issues slot keys inside the model's hooks collection and frees them."""

    def __init__(self, model: Model):
        self._model = model
        self._hooks = model.scope(model.hooks_collection)
        self._live: Set[str] = set()

    def allocate(self) -> str:
        key = self._model.id()
        self._live.add(key)
        return key

    def release(self, key: str) -> None:
        if key not in self._live:
            raise KeyError(f"Slot {key!r} is not allocated")
        self._live.discard(key)
        self._hooks.destroy(key)

    @property
    def live(self) -> Set[str]:
        return set(self._live)


# ============================================================================
# CONTROLLER
# ============================================================================


class LifecycleController:
    """Drives acquisition, supersession and teardown for one subscription site."""

    def __init__(
        self,
        model: Model,
        batcher: Batcher,
        slots: Optional[SlotAllocator] = None,
        on_render: Optional[Callable[[], None]] = None,
        handle_types: Optional[Dict[Any, HandleConstructor]] = None,
    ):
        self.model = model
        self.batcher = batcher
        self._slots = slots if slots is not None else SlotAllocator(model)
        self._on_render = on_render
        self._handle_types = handle_types
        self._tasks: Set[asyncio.Task] = set()

        self.state = ControllerState(slot_key=self._slots.allocate())

    @property
    def slot_key(self) -> Optional[str]:
        return self.state.slot_key

    # ========================================================================
    # PARAMETER CHANGES
    # ========================================================================

    def on_parameters_changed(self, params: ParameterDescriptor) -> None:
        state = self.state
        if state.torn_down:
            raise RuntimeError("Controller has been torn down")

        constructor = get_handle_constructor(params.kind, self._handle_types)
        loop = None if params.kind.is_sync else asyncio.get_running_loop()

        handle = constructor(self.model.connection, state.slot_key, params.args, model=self.model)
        state.params = params
        state.handles_created += 1
        state.teardown_queue.append(handle)

        if params.kind.is_sync:
            handle.init(state.promoted_handle is None)
            state.active_handle = handle
            self.batcher.batch(partial(self._finish_init, handle))
            return

        if state.cancel_token is not None:
            state.cancel_token.supersede()
        token = CancelToken()
        state.cancel_token = token

        first = state.active_handle is None
        if state.active_handle is not None:
            state.active_handle.cancel()
        state.active_handle = handle

        task = loop.create_task(self._run_init(handle, token, first))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_init(self, handle: ResourceHandle, token: CancelToken, first: bool) -> None:
        try:
            await handle.init(first)
        except Exception as e:
            self.state.last_error = e
            if token.superseded:
                logging.warning(INIT_FAILURE_WARNING.format(e))
            else:
                logging.warning(CURRENT_INIT_FAILURE_WARNING.format(e))
            return

        if token.superseded:
            return
        self.batcher.batch(partial(self._finish_init, handle))

    # ========================================================================
    # PROMOTION
    # ========================================================================

    def _finish_init(self, handle: ResourceHandle) -> None:
        state = self.state
        if state.torn_down or handle is not state.active_handle:
            return

        queue = state.teardown_queue
        for stale in queue[:-1]:
            self._dispose(stale)
        del queue[:-1]

        state.init_count += 1
        handle.ref_model()
        state.promoted_handle = handle

        if state.params is not None and state.params.kind.exposes_data:
            self.batcher.request_render(self._request_render)

    def _request_render(self) -> None:
        if self._on_render is not None and not self.state.torn_down:
            self._on_render()

    # ========================================================================
    # TEARDOWN
    # ========================================================================

    def teardown(self) -> None:
        state = self.state
        if state.torn_down:
            return
        state.torn_down = True

        if state.cancel_token is not None:
            state.cancel_token.supersede()
        state.active_handle = None
        state.promoted_handle = None

        for handle in state.teardown_queue:
            self._dispose(handle)
        state.teardown_queue.clear()

        self._slots.release(state.slot_key)
        state.slot_key = None

    def _dispose(self, handle: ResourceHandle) -> None:
        handle.unref_model()
        handle.destroy()

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    def __repr__(self) -> str:
        state = self.state
        return (
            f"LifecycleController(slot={state.slot_key}, params={state.params!r}, "
            f"init_count={state.init_count}, queued={len(state.teardown_queue)})"
        )


__all__ = [
    "LifecycleController",
    "ControllerState",
    "CancelToken",
    "SlotAllocator",
    "INIT_FAILURE_WARNING",
    "CURRENT_INIT_FAILURE_WARNING",
]
