"""
Decides whether a change may have made the result of a read function stale.

The check is deliberately aggressive: a false positive costs one extra read,
a false negative leaves a subscriber with stale data. Identifiers carried by a
change are not inspected, so every call of an affected read function is
re-evaluated.
"""

from typing import Callable

from .config import Change, EntityConfig
from .relationships import EMPTY_RELATION, Relation, RelationshipIndex


def function_name(fn: Callable[..., object]) -> str:
    return getattr(fn, "fn_name", None) or getattr(fn, "__name__", "")


def is_change_of_same_entity(entity: EntityConfig, change: Change) -> bool:
    return not change.is_no_operation and change.entity == entity.name


def is_change_of_view(rel: Relation, change: Change) -> bool:
    return not change.is_no_operation and change.entity in rel.views


def is_change_of_parent(rel: Relation, change: Change) -> bool:
    return not change.is_no_operation and change.entity in rel.parents


def is_invalidated_by_change(rel: Relation, change: Change) -> bool:
    return change.entity in rel.invalidated_by


def is_invalidated_by_function(
    entity: EntityConfig, fn: Callable[..., object], change: Change
) -> bool:
    if change.entity != entity.name or change.api_fn is None:
        return False
    descriptor = entity.api.get(change.api_fn)
    if descriptor is None:
        return False
    return function_name(fn) in descriptor.invalidates


def is_relevant(
    index: RelationshipIndex,
    entity: EntityConfig,
    fn: Callable[..., object],
    change: Change,
) -> bool:
    if change.is_no_operation:
        return False

    rel = index.get(entity.name, EMPTY_RELATION)
    return (
        is_change_of_same_entity(entity, change)
        or is_change_of_view(rel, change)
        or is_change_of_parent(rel, change)
        or is_invalidated_by_change(rel, change)
        or is_invalidated_by_function(entity, fn, change)
    )
