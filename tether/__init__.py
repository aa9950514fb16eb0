"""
Tether - Subscription Lifecycle Controller
==========================================

Binds the lifetime of externally managed resources (documents, queries, local
state, computed values, remote calls) to the lifetime of a UI component instance,
and keeps overlapping asynchronous acquisitions in order: the latest request wins,
superseded ones are cancelled and reclaimed, and every handle is destroyed exactly
once.
"""

from .batching import Batcher, batch, default_batcher
from .connection import MemoryConnection
from .controller import (
    CancelToken,
    ControllerState,
    LifecycleController,
    SlotAllocator,
)
from .handles import (
    HANDLE_TYPES,
    Api,
    Doc,
    HandleState,
    Local,
    Query,
    QueryExtra,
    ResourceHandle,
    UnsupportedResourceKindError,
    Value,
    get_handle_constructor,
)
from .model import Change, ChangeType, InvalidPathError, Model, ScopedModel
from .params import (
    ParameterDescriptor,
    ResourceKind,
    normalize,
    sub_api,
    sub_doc,
    sub_local,
    sub_query,
    sub_query_extra,
    sub_value,
)
from .projector import SubscriptionView, project
from .site import (
    HookOrderError,
    Site,
    SiteUnmountedError,
    Subscription,
    use_api,
    use_doc,
    use_local,
    use_query,
    use_query_extra,
    use_value,
)

__all__ = [
    # Hooks
    "Site",
    "Subscription",
    "use_doc",
    "use_query",
    "use_query_extra",
    "use_local",
    "use_value",
    "use_api",
    # Controller
    "LifecycleController",
    "ControllerState",
    "CancelToken",
    "SlotAllocator",
    "SubscriptionView",
    "project",
    # Parameters
    "ResourceKind",
    "ParameterDescriptor",
    "normalize",
    "sub_doc",
    "sub_query",
    "sub_query_extra",
    "sub_local",
    "sub_value",
    "sub_api",
    # Handles
    "ResourceHandle",
    "HandleState",
    "HANDLE_TYPES",
    "get_handle_constructor",
    "Local",
    "Value",
    "Doc",
    "Query",
    "QueryExtra",
    "Api",
    # Model
    "Model",
    "ScopedModel",
    "Change",
    "ChangeType",
    "MemoryConnection",
    # Batching
    "Batcher",
    "default_batcher",
    "batch",
    # Exceptions
    "UnsupportedResourceKindError",
    "InvalidPathError",
    "HookOrderError",
    "SiteUnmountedError",
]
