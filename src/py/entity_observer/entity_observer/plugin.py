from typing import Any, Callable, Iterable, Mapping, Union
import logging

from .config import EntityConfig, Operation, load_entity_configs
from .core import ChangeListener, ObservableFactory, ObservableState
from .relationships import build_relationship_index

EntityConfigs = Union[Mapping[str, Mapping[str, Any]], Iterable[EntityConfig]]


class ObservableInstaller:
    """
    Returned by an activation. Called once per api function of the host;
    read functions gain ``create_observable``, every function is returned.
    """

    def __init__(
        self,
        state: ObservableState,
        relationships: Mapping[str, Any],
        entity_configs: list[EntityConfig],
    ) -> None:
        self.state = state
        self.relationships = relationships
        self.entity_configs = {config.name: config for config in entity_configs}

    def __call__(
        self, entity: Union[EntityConfig, str], fn: Callable[..., Any]
    ) -> Callable[..., Any]:
        if getattr(fn, "operation", None) != Operation.READ:
            return fn

        config = self._resolve(entity)
        fn.create_observable = ObservableFactory(  # type: ignore[attr-defined]
            self.state, self.relationships, config, fn
        )
        return fn

    async def drain(self) -> None:
        await self.state.drain()

    def _resolve(self, entity: Union[EntityConfig, str]) -> EntityConfig:
        if isinstance(entity, EntityConfig):
            return entity
        # An unknown name gets an empty config: it only matches its own changes.
        return self.entity_configs.get(entity) or EntityConfig(name=entity)


def observable_plugin() -> Callable[
    [Callable[[ChangeListener], None], EntityConfigs], ObservableInstaller
]:
    """
    Build the plugin. The host activates it once with its change listener
    registration hook and its entity configuration.
    """

    def activate(
        add_change_listener: Callable[[ChangeListener], None],
        entity_configs: EntityConfigs,
    ) -> ObservableInstaller:
        configs = load_entity_configs(entity_configs)
        state = ObservableState()
        relationships = build_relationship_index(configs)

        add_change_listener(state.dispatch)
        logging.getLogger(__name__).debug(
            "Observable plugin activated for %d entities.", len(configs)
        )
        return ObservableInstaller(state, relationships, configs)

    return activate
