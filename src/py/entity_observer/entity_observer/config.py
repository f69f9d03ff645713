from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union


class ConfigurationError(ValueError):
    """Raised when raw entity configuration cannot be parsed."""


class Operation(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    COMMAND = "COMMAND"
    WRITE = "WRITE"
    # Host signal for "something happened but nothing to invalidate".
    NO_OPERATION = "NO_OPERATION"

    @classmethod
    def coerce(cls, value: Union["Operation", str]) -> "Operation":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown operation: {value!r}") from None


@dataclass(frozen=True)
class ApiDescriptor:
    invalidates: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntityConfig:
    """
    Static description of one entity as supplied by the host.

    ``views``, ``parents`` and ``invalidated_by`` are taken as given.
    ``view_of`` and ``invalidates`` are the host's entity-level shorthands;
    their inverse edges are derived when the relationship index is built.
    """

    name: str
    api: Mapping[str, ApiDescriptor] = field(default_factory=dict)
    views: tuple[str, ...] = ()
    parents: tuple[str, ...] = ()
    invalidated_by: tuple[str, ...] = ()
    view_of: Optional[str] = None
    invalidates: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "EntityConfig":
        """
        Parse the host's raw form. Both snake_case and camelCase keys are
        accepted (``invalidatedBy``, ``viewOf``).
        """
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"Entity name must be a non-empty string: {name!r}")

        api = {
            fn_name: _parse_api_entry(name, fn_name, entry)
            for fn_name, entry in (data.get("api") or {}).items()
        }
        view_of = data.get("view_of", data.get("viewOf"))
        if view_of is not None and not isinstance(view_of, str):
            raise ConfigurationError(f"{name}: view_of must be an entity name")

        return cls(
            name=name,
            api=api,
            views=_names(name, "views", data.get("views")),
            parents=_names(name, "parents", data.get("parents")),
            invalidated_by=_names(
                name,
                "invalidated_by",
                data.get("invalidated_by", data.get("invalidatedBy")),
            ),
            view_of=view_of,
            invalidates=_names(name, "invalidates", data.get("invalidates")),
        )


@dataclass(frozen=True)
class Change:
    """
    A change broadcast by the host after a cached operation completed.

    ``args`` carries whatever identifiers the host attached to the call.
    Relevance checks do not look at them.
    """

    entity: str
    operation: Operation
    api_fn: Optional[str] = None
    args: tuple = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "operation", Operation.coerce(self.operation))

    @property
    def is_no_operation(self) -> bool:
        return self.operation is Operation.NO_OPERATION


def load_entity_configs(
    configs: Union[Mapping[str, Mapping[str, Any]], Iterable[EntityConfig]],
) -> list[EntityConfig]:
    """
    Accept either already built ``EntityConfig`` objects or the host's
    ``{entity_name: raw_config}`` mapping.
    """
    if isinstance(configs, Mapping):
        return [EntityConfig.from_dict(name, data) for name, data in configs.items()]

    result = list(configs)
    for config in result:
        if not isinstance(config, EntityConfig):
            raise ConfigurationError(f"Expected EntityConfig, got {type(config).__name__}")
    return result


def _parse_api_entry(entity: str, fn_name: str, entry: object) -> ApiDescriptor:
    if isinstance(entry, ApiDescriptor):
        return entry
    if isinstance(entry, Mapping):
        invalidates = entry.get("invalidates")
    else:
        # Host api functions carry their invalidations as an attribute.
        invalidates = getattr(entry, "invalidates", None)
    return ApiDescriptor(_names(entity, f"api.{fn_name}.invalidates", invalidates))


def _names(entity: str, key: str, value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        raise ConfigurationError(f"{entity}: {key} must be a list of names, not a string")
    try:
        names = tuple(value)  # type: ignore[call-overload]
    except TypeError:
        raise ConfigurationError(f"{entity}: {key} must be a list of names") from None
    for item in names:
        if not isinstance(item, str):
            raise ConfigurationError(f"{entity}: {key} contains non-string entry {item!r}")
    return names
