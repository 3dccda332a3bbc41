"""Client side of the change pipeline: router, reconciler and bindings."""

from .api_client import ENTITY_RESOURCES, EntityApiClient
from .bindings import ChangeDispatcher, EntityBinding, bind_collection, default_get_id
from .dispatch import LoopDispatcher
from .reconciler import CollectionReconciler, reconcile
from .router import ChangeHandler, ChangeStreamRouter, ConnectionState
from .transport import (
    AiohttpHubConnection,
    AiohttpHubConnector,
    HubConnection,
    HubConnector,
)
from .views import ChangeStreamView

__all__ = [
    "AiohttpHubConnection",
    "AiohttpHubConnector",
    "ChangeDispatcher",
    "ChangeHandler",
    "ChangeStreamRouter",
    "ChangeStreamView",
    "CollectionReconciler",
    "ConnectionState",
    "ENTITY_RESOURCES",
    "EntityApiClient",
    "EntityBinding",
    "HubConnection",
    "HubConnector",
    "LoopDispatcher",
    "bind_collection",
    "default_get_id",
    "reconcile",
]
