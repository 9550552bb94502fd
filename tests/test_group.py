"""Tests for Group declaration and Subscription."""

import pytest

from cellgraph import Engine, Subscription, UseAfterDispose, UserFunctionError, cell, derived


class TestDeclareGroup:
    def test_declaration_order_initialisation(self, engine):
        g = engine.declare_group([("a", 1), ("b", lambda g: g.a.get() * 2)])
        assert g.b.get() == 2
        assert g.names() == ("a", "b")

    def test_mapping_entries(self, engine):
        g = engine.declare_group({"x": 10, "y": "hello"})
        assert g.get("x") == 10
        assert g["y"].get() == "hello"
        assert list(g) == ["x", "y"]
        assert len(g) == 2
        assert "x" in g

    def test_cell_factory_reads_earlier_entry(self, engine):
        g = engine.declare_group({
            "base": 3,
            "start": cell(factory=lambda g: g.base.peek() * 10),
        })
        assert g.get("start") == 30
        g.set("base", 4)
        assert g.get("start") == 30  # factory runs once

    def test_callable_values_need_cell_spec(self, engine):
        handler = print
        g = engine.declare_group({"handler": cell(handler)})
        assert g.get("handler") is handler

    def test_cell_spec_validation(self):
        with pytest.raises(TypeError):
            cell()
        with pytest.raises(TypeError):
            cell(1, factory=lambda g: 2)

    def test_derived_with_equality(self, engine):
        runs = []
        g = engine.declare_group({
            "word": "Hi",
            "loud": derived(lambda g: g.word.get().upper(), equals=lambda a, b: a.lower() == b.lower()),
            "echo": lambda g: runs.append(1) or g.loud.get(),
        })
        g.set("word", "hi")
        assert g.get("loud") == "HI"
        assert runs == [1]

    def test_reading_later_entry_fails(self, engine):
        with pytest.raises(UserFunctionError) as info:
            engine.declare_group({"early": lambda g: g.late.get(), "late": 1}, name="bad")
        assert info.value.name == "bad.early"
        assert isinstance(info.value.original, AttributeError)

    def test_failed_declaration_disposes_created_entries(self, engine):
        def boom(g):
            raise RuntimeError("boom")

        with pytest.raises(UserFunctionError):
            engine.declare_group({"a": 1, "b": lambda g: g.a.get(), "c": boom})
        assert engine.anchor.live_count("cell") == 0
        assert engine.anchor.live_count("computation") == 0

    def test_duplicate_names_rejected(self, engine):
        with pytest.raises(ValueError, match="twice"):
            engine.declare_group([("a", 1), ("a", 2)])

    @pytest.mark.parametrize("key", ["name", "get", "set", "update", "snapshot", "dispose", "engine"])
    def test_attribute_names_rejected(self, engine, key):
        with pytest.raises(ValueError, match="Group attribute"):
            engine.declare_group({"ok": 1, key: 2})
        assert engine.anchor.live_count("cell") == 0

    def test_entry_names_are_qualified(self, engine):
        g = engine.declare_group({"count": 0}, name="counter")
        assert g.count.name == "counter.count"
        assert g.name == "counter"
        assert engine.declare_group({}).name.startswith("group#")

    def test_set_derived_raises(self, engine):
        g = engine.declare_group({"a": 1, "b": lambda g: g.a.get()})
        with pytest.raises(TypeError, match="derived"):
            g.set("b", 5)

    def test_missing_entry(self, engine):
        g = engine.declare_group({"a": 1})
        with pytest.raises(KeyError):
            g["nope"]
        with pytest.raises(AttributeError):
            g.nope

    def test_update_batches(self, engine):
        g = engine.declare_group({"x": 0, "y": 0, "pair": lambda g: (g.x.get(), g.y.get())})
        seen = []
        engine.observe_group(g, lambda changed: seen.append(g.pair.peek()))
        g.update({"x": 1, "y": 2})
        assert seen == [(1, 2)]

    def test_snapshot(self, engine):
        g = engine.declare_group({"a": 2, "sq": lambda g: g.a.get() ** 2})
        assert g.snapshot() == {"a": 2, "sq": 4}

    def test_repr(self, engine):
        g = engine.declare_group({"a": 1, "b": 2}, name="pair")
        assert repr(g) == "Group(pair: a, b)"


class TestObserveGroup:
    def test_notified_once_per_flush(self, engine):
        g = engine.declare_group({
            "a": 1,
            "b": lambda g: g.a.get() + 1,
            "c": lambda g: g.a.get() * 2,
            "d": lambda g: g.b.get() + g.c.get(),
        })
        seen = []
        engine.observe_group(g, lambda changed: seen.append((changed, g.d.peek())))
        g.set("a", 5)
        assert seen == [(("a", "b", "c", "d"), 16)]

    def test_only_changed_entries_reported(self, engine):
        g = engine.declare_group({
            "n": 1,
            "parity": lambda g: g.n.get() % 2,
            "other": 0,
        })
        seen = []
        engine.observe_group(g, seen.append)
        g.set("n", 3)
        assert seen == [("n",)]
        g.set("other", 1)
        assert seen == [("n",), ("other",)]

    def test_transitive_change_reported(self, engine):
        outside = engine.create_cell(1)
        g = engine.declare_group({"view": lambda g: outside.get() * 100})
        seen = []
        engine.observe_group(g, seen.append)
        outside.set(2)
        assert seen == [("view",)]

    def test_dispose_stops_notifications(self, engine):
        g = engine.declare_group({"x": 0})
        seen = []
        sub = engine.observe_group(g, seen.append)
        assert isinstance(sub, Subscription)
        g.set("x", 1)
        sub.dispose()
        assert not sub.active
        g.set("x", 2)
        assert seen == [("x",)]

    def test_dispose_twice_raises(self, engine):
        g = engine.declare_group({"x": 0})
        sub = engine.observe_group(g, lambda changed: None)
        sub.dispose()
        with pytest.raises(UseAfterDispose):
            sub.dispose()
        g.set("x", 1)  # the group itself is unaffected
        assert g.get("x") == 1

    def test_dispose_removes_from_group(self, engine):
        g = engine.declare_group({"x": 0})
        sub = engine.observe_group(g, print)
        other = engine.observe_group(g, print)
        sub.dispose()
        assert g._subscriptions == [other]
        g.dispose()
        assert not other.active
        assert g._subscriptions == []

    def test_dispose_during_flush_skips_pending(self, engine):
        g = engine.declare_group({"x": 0})
        calls = []
        holder = {}

        def first(changed):
            calls.append("first")
            holder["second"].dispose()

        engine.observe_group(g, first)
        holder["second"] = engine.observe_group(g, lambda changed: calls.append("second"))
        g.set("x", 1)
        assert calls == ["first"]

    def test_other_engine_rejected(self, engine):
        g = Engine().declare_group({"x": 0})
        with pytest.raises(ValueError, match="another engine"):
            engine.observe_group(g, print)


class TestGroupDispose:
    def test_writes_after_dispose_raise(self, engine):
        g = engine.declare_group({"x": 0, "y": lambda g: g.x.get()})
        x = g.x
        sub = engine.observe_group(g, print)
        g.dispose()
        assert g.disposed
        assert not sub.active
        with pytest.raises(UseAfterDispose):
            x.set(1)
        with pytest.raises(UseAfterDispose):
            g["x"]

    def test_dispose_twice_raises(self, engine):
        g = engine.declare_group({"x": 0})
        g.dispose()
        with pytest.raises(UseAfterDispose):
            g.dispose()

    def test_dispose_releases_state(self, engine):
        g = engine.declare_group({"x": 0, "y": lambda g: g.x.get()})
        engine.observe_group(g, print)
        g.dispose()
        assert engine.anchor.values == {}
        assert engine.anchor.observers == {}
        assert engine.anchor.dependencies == {}

    def test_observe_disposed_group_raises(self, engine):
        g = engine.declare_group({"x": 0})
        g.dispose()
        with pytest.raises(UseAfterDispose):
            engine.observe_group(g, print)

    def test_repeated_mounts_do_not_grow_the_anchor(self, engine):
        anchor = engine.anchor
        tables = (
            "kinds", "names", "values", "revisions", "equals", "observers",
            "dependencies", "derivation_fns", "dirty_flags", "generations",
            "heights", "failures",
        )
        before = {table: len(getattr(anchor, table)) for table in tables}
        for i in range(50):
            g = engine.declare_group({"x": i, "y": lambda g: g.x.get() + 1})
            engine.observe_group(g, lambda changed: None)
            g.set("x", -1)
            g.dispose()
        assert {table: len(getattr(anchor, table)) for table in tables} == before
        assert anchor.live_count("computation") == 0
        assert anchor.live_count("subscription") == 0

    def test_disposed_names_survive_in_errors(self, engine):
        g = engine.declare_group({"x": 0}, name="form")
        x = g.x
        g.dispose()
        with pytest.raises(UseAfterDispose, match="form.x"):
            x.get()
