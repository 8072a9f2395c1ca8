"""pinyx: definable, pluggable state stores on a MobX-style reactive core."""

from importlib.metadata import version as _version

__version__ = _version("pinyx")

from pinyx._tracking import get_pending_count
from pinyx.observable import Observable, ObservableList, ObservableDict, WriteEvent, to_raw
from pinyx.computed import Computed, computed
from pinyx.reaction import Reaction, autorun, reaction
from pinyx.action import ActionContext, action, transaction
from pinyx.scope import Scope, get_current_scope
from pinyx.subscriptions import MutationRecord, MutationType
from pinyx.store import Store
from pinyx.definition import StoreAccessor, StoreDefinition, define
from pinyx.container import Container, PluginContext, create_container, get_active, set_active
from pinyx.snapshot import hydrate, serialize, skip_hydrate
from pinyx.config import is_production, set_production
from pinyx.errors import (
    DefinitionError,
    DuplicateStoreError,
    HydrationError,
    InstantiationError,
    NoActiveContainerError,
    PinyxError,
    PluginError,
    StateError,
    StoreError,
    UndeclaredStateError,
)
# hot_reload is opt-in and not imported here

__all__ = [
    "Observable",
    "ObservableList",
    "ObservableDict",
    "WriteEvent",
    "to_raw",
    "Computed",
    "computed",
    "Reaction",
    "autorun",
    "reaction",
    "ActionContext",
    "action",
    "transaction",
    "get_pending_count",
    "Scope",
    "get_current_scope",
    "MutationRecord",
    "MutationType",
    "Store",
    "StoreAccessor",
    "StoreDefinition",
    "define",
    "Container",
    "PluginContext",
    "create_container",
    "get_active",
    "set_active",
    "hydrate",
    "serialize",
    "skip_hydrate",
    "is_production",
    "set_production",
    "PinyxError",
    "DefinitionError",
    "DuplicateStoreError",
    "InstantiationError",
    "StateError",
    "UndeclaredStateError",
    "StoreError",
    "NoActiveContainerError",
    "PluginError",
    "HydrationError",
]
