"""Live, change-aware subscriptions to cached read functions.

Read functions installed through an activation gain ``create_observable``;
subscribers are re-notified whenever a broadcast change may have made the
result stale.
"""

from .config import (
    ApiDescriptor,
    Change,
    ConfigurationError,
    EntityConfig,
    Operation,
    load_entity_configs,
)
from .core import (
    ChangePublisher,
    IChangeSource,
    Observable,
    ObservableFactory,
    ObservableState,
    Subscription,
    SubscriptionHandle,
)
from .plugin import ObservableInstaller, observable_plugin
from .relationships import Relation, build_relationship_index
from .relevance import is_relevant

__all__ = [
    "ApiDescriptor",
    "Change",
    "ChangePublisher",
    "ConfigurationError",
    "EntityConfig",
    "IChangeSource",
    "Observable",
    "ObservableFactory",
    "ObservableInstaller",
    "ObservableState",
    "Operation",
    "Relation",
    "Subscription",
    "SubscriptionHandle",
    "build_relationship_index",
    "is_relevant",
    "load_entity_configs",
    "observable_plugin",
]
