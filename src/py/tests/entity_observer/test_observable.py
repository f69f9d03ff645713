from typing import Any, Callable, Optional
import asyncio
import inspect
import itertools
import logging

import pytest

from entity_observer.entity_observer import (
    Change,
    ChangePublisher,
    EntityConfig,
    ObservableFactory,
    ObservableState,
    Operation,
    build_relationship_index,
)


class FakeRead:
    def __init__(self, fn_name: str, handler: Callable[..., Any]) -> None:
        self.fn_name = fn_name
        self.operation = Operation.READ
        self.handler = handler
        self.calls: list[tuple] = []

    async def __call__(self, *args: Any) -> Any:
        self.calls.append(args)
        result = self.handler(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


USER = EntityConfig(name="User")


def make_factory(
    fn: FakeRead, state: Optional[ObservableState] = None
) -> ObservableFactory:
    state = state or ObservableState()
    return ObservableFactory(state, build_relationship_index([USER]), USER, fn)


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_result_then_registers() -> None:
    fn = FakeRead("getById", lambda user_id: {"id": user_id})
    factory = make_factory(fn)
    received: list[object] = []

    handle = factory(1).subscribe(received.append)
    assert factory.state.change_listeners == []

    await handle
    assert received == [{"id": 1}]
    assert fn.calls == [(1,)]
    assert len(factory.state.change_listeners) == 1


@pytest.mark.asyncio
async def test_one_listener_per_observable_instance() -> None:
    factory = make_factory(FakeRead("getById", lambda user_id: user_id))
    observable = factory(1)

    first = observable.subscribe(lambda _: None)
    second = observable.subscribe(lambda _: None)
    await first
    await second

    assert len(factory.state.change_listeners) == 1
    assert len(observable.subscriptions) == 2

    first.unsubscribe()
    assert len(factory.state.change_listeners) == 1

    second.unsubscribe()
    assert factory.state.change_listeners == []
    assert not observable.is_active


@pytest.mark.asyncio
async def test_unsubscribe_twice_is_safe() -> None:
    factory = make_factory(FakeRead("getById", lambda user_id: user_id))
    observable = factory(1)

    stays = observable.subscribe(lambda _: None)
    leaves = observable.subscribe(lambda _: None)
    await stays
    await leaves

    leaves.unsubscribe()
    leaves.unsubscribe()

    assert leaves.closed
    assert observable.subscriptions == (stays.subscription,)
    assert len(factory.state.change_listeners) == 1


@pytest.mark.asyncio
async def test_equal_arguments_share_an_instance() -> None:
    factory = make_factory(FakeRead("getById", lambda *args: args))

    assert factory(7) is factory(7)
    assert factory(7) is not factory(8)
    assert factory([7]) is not factory([7])


@pytest.mark.asyncio
async def test_initial_read_change_is_not_delivered_back() -> None:
    state = ObservableState()
    publisher = ChangePublisher()
    publisher.add_change_listener(state.dispatch)

    def read(user_id: int) -> dict:
        publisher.notify(Change("User", Operation.WRITE))
        return {"id": user_id}

    fn = FakeRead("getById", read)
    factory = make_factory(fn, state)
    received: list[object] = []

    await factory(42).subscribe(received.append)
    await state.drain()

    assert received == [{"id": 42}]
    assert fn.calls == [(42,)]


@pytest.mark.asyncio
async def test_relevant_change_refetches_and_fans_out_in_order() -> None:
    values = itertools.count()
    factory = make_factory(FakeRead("getAll", lambda: next(values)))
    received: list[tuple[str, object]] = []
    observable = factory()

    await observable.subscribe(lambda v: received.append(("a", v)))
    await observable.subscribe(lambda v: received.append(("b", v)))
    received.clear()

    factory.state.dispatch(Change("User", Operation.UPDATE))
    await factory.state.drain()

    assert received == [("a", 2), ("b", 2)]


@pytest.mark.asyncio
async def test_read_failure_is_delivered_to_on_error() -> None:
    failure = RuntimeError("cache-miss")

    def read() -> object:
        raise failure

    factory = make_factory(FakeRead("getAll", read))
    values: list[object] = []
    errors: list[BaseException] = []

    await factory().subscribe(values.append, errors.append)

    assert values == []
    assert errors == [failure]
    assert len(factory.state.change_listeners) == 1


@pytest.mark.asyncio
async def test_unsubscribe_before_initial_read_settles() -> None:
    gate = asyncio.Event()

    async def read() -> str:
        await gate.wait()
        return "late"

    factory = make_factory(FakeRead("getAll", read))
    received: list[object] = []

    handle = factory().subscribe(received.append)
    handle.unsubscribe()
    gate.set()
    await handle

    assert received == []
    assert factory.state.change_listeners == []


@pytest.mark.asyncio
async def test_unsubscribe_during_refetch_skips_delivery() -> None:
    gate = asyncio.Event()
    calls = 0

    async def read() -> int:
        nonlocal calls
        calls += 1
        if calls > 1:
            await gate.wait()
        return calls

    fn = FakeRead("getAll", read)
    factory = make_factory(fn)
    received: list[object] = []

    handle = factory().subscribe(received.append)
    await handle

    factory.state.dispatch(Change("User", Operation.UPDATE))
    await asyncio.sleep(0)
    handle.unsubscribe()
    gate.set()
    await factory.state.drain()

    assert received == [1]
    assert len(fn.calls) == 2


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_other_subscribers(
    caplog: pytest.LogCaptureFixture,
) -> None:
    factory = make_factory(FakeRead("getAll", lambda: "value"))
    observable = factory()
    received: list[object] = []
    first_call = True

    def explode(value: object) -> None:
        nonlocal first_call
        if first_call:
            first_call = False
            return
        raise ValueError("subscriber-failure")

    await observable.subscribe(explode)
    await observable.subscribe(received.append)
    received.clear()

    with caplog.at_level(logging.ERROR):
        factory.state.dispatch(Change("User", Operation.UPDATE))
        await factory.state.drain()

    assert received == ["value"]
    assert "Subscriber callback failed." in caplog.text


@pytest.mark.asyncio
async def test_dispatch_iterates_a_snapshot() -> None:
    state = ObservableState()
    seen: list[str] = []

    def second(change: Change) -> None:
        seen.append("second")

    def first(change: Change) -> None:
        seen.append("first")
        state.remove_listener(second)
        state.add_listener(third)

    def third(change: Change) -> None:
        seen.append("third")

    state.add_listener(first)
    state.add_listener(second)

    state.dispatch(Change("User", Operation.UPDATE))
    assert seen == ["first", "second"]

    seen.clear()
    state.dispatch(Change("User", Operation.UPDATE))
    assert seen == ["first", "third"]


@pytest.mark.asyncio
async def test_dispatch_survives_failing_listener(
    caplog: pytest.LogCaptureFixture,
) -> None:
    state = ObservableState()
    seen: list[Change] = []

    def broken(change: Change) -> None:
        raise RuntimeError("listener-failure")

    state.add_listener(broken)
    state.add_listener(seen.append)
    change = Change("User", Operation.DELETE)

    with caplog.at_level(logging.ERROR):
        state.dispatch(change)

    assert seen == [change]
    assert "Change listener failed" in caplog.text


def test_add_listener_does_not_duplicate() -> None:
    state = ObservableState()

    def listener(change: Change) -> None:
        return None

    state.add_listener(listener)
    state.add_listener(listener)

    assert state.change_listeners == [listener]


@pytest.mark.asyncio
async def test_change_from_second_subscriber_initial_read_is_not_delivered_back() -> None:
    state = ObservableState()
    publisher = ChangePublisher()
    publisher.add_change_listener(state.dispatch)
    calls = 0

    def read(user_id: int) -> dict:
        nonlocal calls
        calls += 1
        if calls == 2:
            publisher.notify(Change("User", Operation.WRITE))
        return {"id": user_id, "read": calls}

    factory = make_factory(FakeRead("getById", read), state)
    observable = factory(42)
    first: list[object] = []
    second: list[object] = []

    await observable.subscribe(first.append)
    await observable.subscribe(second.append)
    await state.drain()

    assert first == [{"id": 42, "read": 1}, {"id": 42, "read": 3}]
    assert second == [{"id": 42, "read": 2}]


@pytest.mark.asyncio
async def test_subscriber_joining_during_refetch_skips_its_result() -> None:
    gate = asyncio.Event()
    calls = 0

    async def read() -> int:
        nonlocal calls
        calls += 1
        if calls == 2:
            await gate.wait()
        return calls

    factory = make_factory(FakeRead("getAll", read))
    observable = factory()
    early: list[object] = []
    late: list[object] = []

    await observable.subscribe(early.append)
    factory.state.dispatch(Change("User", Operation.UPDATE))
    await asyncio.sleep(0)

    await observable.subscribe(late.append)
    gate.set()
    await factory.state.drain()

    assert early == [1, 2]
    assert late == [3]
