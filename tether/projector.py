"""
Derived view of a subscription site.

`project` computes the caller-visible triple ``(data, model, ready)`` from a
`ControllerState`. It is recomputed on every access and never cached.

- ``data``: ``None`` before the first promotion. Data-exposing kinds read from the
  promoted handle; store-observed kinds read ``$hooks.<slot>`` through the model's
  `get` so read tracking sees the access.
- ``model``: query kinds get the collection scope (so sibling records can be
  edited); other kinds get the slot scope, but only once ready.
- ``ready``: ``init_count > 0``.
"""

from typing import Any, NamedTuple, Optional

from .controller import ControllerState
from .model import InvalidPathError, Model, ScopedModel


class SubscriptionView(NamedTuple):
    data: Any
    model: Optional[ScopedModel]
    ready: bool


EMPTY_VIEW = SubscriptionView(None, None, False)


def project(state: ControllerState, model: Model) -> SubscriptionView:
    if state.torn_down or state.params is None:
        return EMPTY_VIEW

    kind = state.params.kind
    ready = state.init_count > 0

    if not ready:
        data = None
    elif kind.exposes_data:
        handle = state.promoted_handle
        data = handle.get_data() if handle is not None else None
    else:
        data = model.scope(model.hooks_collection).at(state.slot_key).get()

    if kind.is_query:
        try:
            caller_model = model.scope(state.params.collection)
        except InvalidPathError:
            # the handle reports the bad collection when it initializes
            caller_model = None
    elif ready:
        caller_model = model.scope(model.hooks_collection).at(state.slot_key)
    else:
        caller_model = None

    return SubscriptionView(data, caller_model, ready)


__all__ = ["SubscriptionView", "EMPTY_VIEW", "project"]
