"""Live, change-aware subscriptions to cached read functions.

Subscriptions are re-evaluated aggressively: any change that may have made a
result stale triggers a new read.
"""

from .entity_observer import (
    Change,
    ChangePublisher,
    EntityConfig,
    Operation,
    observable_plugin,
)

__all__ = [
    "Change",
    "ChangePublisher",
    "EntityConfig",
    "Operation",
    "observable_plugin",
]
