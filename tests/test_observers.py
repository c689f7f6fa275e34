from __future__ import annotations

from notebook_engine.observers import ObserverRegistry


def test_reregistering_a_key_replaces_the_previous_observer() -> None:
    registry: ObserverRegistry[str] = ObserverRegistry()
    first: list[str] = []
    second: list[str] = []

    old = registry.register("notes", first.append)
    new = registry.register("notes", second.append)
    registry.notify("changed")

    assert first == []
    assert second == ["changed"]
    assert not old.active
    assert new.active
    assert len(registry) == 1


def test_cancelling_a_replaced_subscription_does_not_remove_its_successor() -> None:
    registry: ObserverRegistry[int] = ObserverRegistry()
    seen: list[int] = []

    old = registry.register("k", lambda _: None)
    registry.register("k", seen.append)
    old.cancel()
    registry.notify(1)

    assert seen == [1]


def test_unregister_stops_delivery_and_is_idempotent() -> None:
    registry: ObserverRegistry[int] = ObserverRegistry()
    seen: list[int] = []
    sub = registry.register("k", seen.append)

    registry.unregister("k")
    registry.unregister("k")
    sub.cancel()
    registry.notify(1)

    assert seen == []
    assert registry.keys() == []


def test_subscription_cancelled_during_notify_is_skipped() -> None:
    registry: ObserverRegistry[int] = ObserverRegistry()
    seen: list[str] = []
    holder: dict[str, object] = {}

    def first(_: int) -> None:
        seen.append("first")
        holder["second"].cancel()  # type: ignore[attr-defined]

    registry.register("first", first)
    holder["second"] = registry.register("second", lambda _: seen.append("second"))
    registry.notify(0)

    assert seen == ["first"]
