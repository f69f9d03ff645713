from dataclasses import dataclass
from typing import Iterable, Mapping
import logging

from .config import EntityConfig


@dataclass(frozen=True)
class Relation:
    views: tuple[str, ...] = ()
    parents: tuple[str, ...] = ()
    invalidated_by: tuple[str, ...] = ()


EMPTY_RELATION = Relation()

RelationshipIndex = Mapping[str, Relation]


def build_relationship_index(entity_configs: Iterable[EntityConfig]) -> dict[str, Relation]:
    """
    Resolve, per entity name, which entities are its views, its parents and
    which invalidate it.

    Explicit lists are copied as given. ``view_of`` and entity-level
    ``invalidates`` contribute their inverse edges. Names that refer to
    unknown entities are kept; they simply never match a change.
    """
    views: dict[str, list[str]] = {}
    parents: dict[str, list[str]] = {}
    invalidated_by: dict[str, list[str]] = {}

    def edges(table: dict[str, list[str]], name: str) -> list[str]:
        return table.setdefault(name, [])

    configs = list(entity_configs)
    for config in configs:
        edges(views, config.name).extend(config.views)
        edges(parents, config.name).extend(config.parents)
        edges(invalidated_by, config.name).extend(config.invalidated_by)

    for config in configs:
        if config.view_of is not None:
            edges(parents, config.name).append(config.view_of)
            edges(views, config.view_of).append(config.name)
        for target in config.invalidates:
            edges(invalidated_by, target).append(config.name)

    names = list(dict.fromkeys([*views, *parents, *invalidated_by]))
    index = {
        name: Relation(
            views=_unique(views.get(name, ())),
            parents=_unique(parents.get(name, ())),
            invalidated_by=_unique(invalidated_by.get(name, ())),
        )
        for name in names
    }
    logging.getLogger(__name__).debug(
        "Built relationship index for %d entities.", len(index)
    )
    return index


def _unique(names: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(names))
