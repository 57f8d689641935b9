import pytest

from explorer_state import State
from explorer_utils import (
    ConfigurationError,
    NotificationLoopError,
    UnknownPropertyError,
)


def test_define_and_get():
    state = State()
    state.define_property("selection", None)
    assert state.get("selection") is None
    assert "selection" in state
    assert state.names() == ["selection"]


def test_duplicate_declaration_fails():
    state = State()
    state.declare("filters", [])
    with pytest.raises(ConfigurationError):
        state.declare("filters", [])


@pytest.mark.parametrize("op", [
    lambda s: s.get("nope"),
    lambda s: s.set("nope", 1),
    lambda s: s.trigger("nope"),
    lambda s: s.subscribe("nope", lambda: None),
])
def test_undeclared_property_fails(op):
    with pytest.raises(UnknownPropertyError):
        op(State())


def test_set_replaces_value_then_notifies_in_order():
    state = State()
    state.define_property("selection", None)
    calls = []
    state.subscribe("selection", lambda: calls.append(("a", state.get("selection"))))
    state.subscribe("selection", lambda: calls.append(("b", state.get("selection"))))

    value = object()
    state.set("selection", value)

    assert state.get("selection") is value
    assert calls == [("a", value), ("b", value)]


def test_each_listener_fires_exactly_once_per_set():
    state = State()
    state.define_property("x", 0)
    counts = {"a": 0, "b": 0}
    state.subscribe("x", lambda: counts.__setitem__("a", counts["a"] + 1))
    state.subscribe("x", lambda: counts.__setitem__("b", counts["b"] + 1))
    state.set("x", 1)
    assert counts == {"a": 1, "b": 1}


def test_listeners_are_per_property():
    state = State()
    state.define_property("x", 0)
    state.define_property("y", 0)
    fired = []
    state.subscribe("y", lambda: fired.append("y"))
    state.set("x", 5)
    assert fired == []


def test_trigger_keeps_value_after_in_place_mutation():
    state = State()
    filters = []
    state.define_property("filters", filters)
    seen = []
    state.subscribe("filters", lambda: seen.append(list(state.get("filters"))))

    state.get("filters").append("year:2020")
    state.trigger("filters")

    assert state.get("filters") is filters
    assert seen == [["year:2020"]]


def test_unsubscribe():
    state = State()
    state.define_property("x", 0)
    fired = []
    off = state.subscribe("x", lambda: fired.append(1))
    off()
    off()
    state.set("x", 1)
    assert fired == []


def test_nested_set_notifies_synchronously():
    state = State()
    state.define_property("selection", None)
    state.define_property("highlight", frozenset())
    order = []

    def on_selection():
        order.append("selection:start")
        state.set("highlight", frozenset({state.get("selection")}))
        order.append("selection:end")

    state.subscribe("selection", on_selection)
    state.subscribe("highlight", lambda: order.append("highlight"))
    state.set("selection", "p1")

    assert order == ["selection:start", "highlight", "selection:end"]
    assert state.get("highlight") == frozenset({"p1"})


def test_self_triggering_loop_is_bounded():
    state = State(max_depth=5)
    state.define_property("x", 0)
    state.subscribe("x", lambda: state.set("x", state.get("x") + 1))

    with pytest.raises(NotificationLoopError):
        state.set("x", 1)
    assert state.get("x") == 6

    # depth counter unwinds, so the store is usable again
    state2_calls = []
    state.define_property("y", 0)
    state.subscribe("y", lambda: state2_calls.append(1))
    state.set("y", 1)
    assert state2_calls == [1]


def test_listener_error_propagates_and_value_stays():
    state = State()
    state.define_property("x", 0)
    after = []

    def boom():
        raise RuntimeError("listener failed")

    state.subscribe("x", boom)
    state.subscribe("x", lambda: after.append(1))

    with pytest.raises(RuntimeError):
        state.set("x", 7)
    assert state.get("x") == 7
    assert after == []


def test_listener_added_during_notification_waits_for_next_round():
    state = State()
    state.define_property("x", 0)
    fired = []

    def late():
        fired.append("late")

    def first():
        fired.append("first")
        state.subscribe("x", late)

    state.subscribe("x", first)
    state.set("x", 1)
    assert fired == ["first"]
