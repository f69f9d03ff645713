import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Generator, Generic, Optional, TypeVar
from typing_extensions import override
import inspect
import logging
import weakref

from .config import Change, EntityConfig
from .relationships import RelationshipIndex
from .relevance import function_name, is_relevant

T = TypeVar("T")

ChangeListener = Callable[[Change], None]


def noop(_value: object) -> None:
    return None


class IChangeSource:
    def add_change_listener(self, listener: ChangeListener) -> None:
        """
        Register a listener invoked synchronously for every future change.
        """
        raise NotImplementedError


class ChangePublisher(IChangeSource):
    """
    In-process change broadcaster for hosts that do not bring their own.
    """

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    @override
    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def notify(self, change: Change) -> None:
        for listener in list(self._listeners):
            listener(change)


class ObservableState:
    """
    Listener list and in-flight reads owned by one plugin activation.
    """

    def __init__(self) -> None:
        self.change_listeners: list[ChangeListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def add_listener(self, listener: ChangeListener) -> None:
        if any(registered is listener for registered in self.change_listeners):
            return
        self.change_listeners.append(listener)
        logging.getLogger(__name__).debug(
            "Change listener added (%d active).", len(self.change_listeners)
        )

    def remove_listener(self, listener: ChangeListener) -> None:
        self.change_listeners = [
            registered
            for registered in self.change_listeners
            if registered is not listener
        ]
        logging.getLogger(__name__).debug(
            "Change listener removed (%d active).", len(self.change_listeners)
        )

    def dispatch(self, change: Change) -> None:
        """
        Fan a change out to the listeners registered when dispatch started.
        """
        for listener in tuple(self.change_listeners):
            try:
                listener(change)
            except Exception:
                logging.getLogger(__name__).exception(
                    "Change listener failed for %s.", change
                )

    def spawn(self, coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """
        Wait until every scheduled read, including ones scheduled while
        waiting, has settled and been delivered.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass(eq=False)
class Subscription(Generic[T]):
    on_next: Callable[[T], None]
    on_error: Callable[[BaseException], None] = noop


class SubscriptionHandle(Generic[T]):
    """
    Returned by ``Observable.subscribe``. Awaiting the handle waits for the
    initial result to be delivered and the subscription to be registered.
    """

    def __init__(
        self,
        observable: "Observable[T]",
        subscription: Subscription[T],
        settled: "asyncio.Task[None]",
    ) -> None:
        self.subscription = subscription
        self.settled = settled
        self._observable = observable
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._observable.remove_subscription(self.subscription)

    def __await__(self) -> Generator[Any, None, None]:
        return self.settled.__await__()


class Observable(Generic[T]):
    """
    Live result of one read function called with one fixed set of arguments.
    """

    def __init__(
        self,
        state: ObservableState,
        relationships: RelationshipIndex,
        entity: EntityConfig,
        fn: Callable[..., Any],
        args: tuple,
        kwargs: dict[str, Any],
    ) -> None:
        self.entity = entity
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self._state = state
        self._relationships = relationships
        self._subscriptions: list[Subscription[T]] = []
        # Subscribed, initial read not yet delivered.
        self._joining: set[Subscription[T]] = set()
        self._listener: ChangeListener = self._on_change

    @property
    def subscriptions(self) -> tuple[Subscription[T], ...]:
        return tuple(self._subscriptions)

    @property
    def is_active(self) -> bool:
        return bool(self._subscriptions)

    def subscribe(
        self,
        on_next: Callable[[T], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> SubscriptionHandle[T]:
        subscription: Subscription[T] = Subscription(on_next, on_error or noop)
        self._joining.add(subscription)
        settled = self._state.spawn(self._initial_read(subscription))
        return SubscriptionHandle(self, subscription, settled)

    def add_subscription(self, subscription: Subscription[T]) -> None:
        if not self._subscriptions:
            self._state.add_listener(self._listener)
        self._subscriptions.append(subscription)

    def remove_subscription(self, subscription: Subscription[T]) -> None:
        self._joining.discard(subscription)
        remaining = [s for s in self._subscriptions if s is not subscription]
        if len(remaining) == len(self._subscriptions):
            return
        self._subscriptions = remaining
        if not remaining:
            self._state.remove_listener(self._listener)

    async def _initial_read(self, subscription: Subscription[T]) -> None:
        ok, value = await self._read()
        if subscription not in self._joining:
            return
        self._publish((subscription,), ok, value)
        # Registering only after the initial result was delivered keeps a
        # change emitted by that very read from reaching this subscription.
        if subscription in self._joining:
            self._joining.discard(subscription)
            self.add_subscription(subscription)

    def _on_change(self, change: Change) -> None:
        if not is_relevant(self._relationships, self.entity, self.fn, change):
            return
        logging.getLogger(__name__).debug(
            "%s.%s%r is stale after %s.",
            self.entity.name,
            function_name(self.fn),
            self.args,
            change,
        )
        self._state.spawn(self._refresh(tuple(self._subscriptions)))

    async def _refresh(self, targets: tuple[Subscription[T], ...]) -> None:
        ok, value = await self._read()
        # Subscribed at dispatch time and still subscribed now.
        current = self._subscriptions
        self._publish(
            tuple(s for s in targets if any(s is c for c in current)), ok, value
        )

    async def _read(self) -> tuple[bool, Any]:
        try:
            value = self.fn(*self.args, **self.kwargs)
            if inspect.isawaitable(value):
                value = await value
        except Exception as err:
            return False, err
        return True, value

    def _publish(
        self, subscriptions: tuple[Subscription[T], ...], ok: bool, value: Any
    ) -> None:
        for subscription in subscriptions:
            callback = subscription.on_next if ok else subscription.on_error
            try:
                callback(value)
            except Exception:
                logging.getLogger(__name__).exception("Subscriber callback failed.")


class ObservableFactory:
    """
    Installed as ``create_observable`` on a read function. Equal hashable
    arguments share the instance that is still alive, and with it the
    registered change listener.
    """

    def __init__(
        self,
        state: ObservableState,
        relationships: RelationshipIndex,
        entity: EntityConfig,
        fn: Callable[..., Any],
    ) -> None:
        self.state = state
        self.relationships = relationships
        self.entity = entity
        self.fn = fn
        self._instances: "weakref.WeakValueDictionary[Any, Observable[Any]]" = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, *args: Any, **kwargs: Any) -> Observable[Any]:
        try:
            key = (args, frozenset(kwargs.items()))
            hash(key)
        except TypeError:
            return self._create(args, kwargs)

        observable = self._instances.get(key)
        if observable is None:
            observable = self._create(args, kwargs)
            self._instances[key] = observable
        return observable

    def _create(self, args: tuple, kwargs: dict[str, Any]) -> Observable[Any]:
        return Observable(self.state, self.relationships, self.entity, self.fn, args, kwargs)
