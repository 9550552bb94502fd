"""Tests for action batching and the transaction context manager."""

from cellgraph import action, transaction


class TestAction:
    def test_batches_updates(self, engine):
        a = engine.create_cell(0)
        b = engine.create_cell(0)
        log = []
        both = engine.create_computation(lambda: log.append((a.get(), b.get())))
        both.get()
        assert log == [(0, 0)]

        @engine.action
        def update_both():
            a.set(1)
            b.set(2)

        update_both()
        # Should see (1, 2) not intermediate (1, 0)
        assert log == [(0, 0), (1, 2)]

    def test_nested_actions(self, engine):
        o = engine.create_cell(0)
        log = []
        engine.create_computation(lambda: log.append(o.get())).get()

        @action(engine)
        def outer():
            o.set(1)

            @action(engine)
            def inner():
                o.set(2)

            inner()
            o.set(3)

        outer()
        # Only flushes after outermost action completes
        assert log == [0, 3]

    def test_preserves_return_value(self, engine):
        @engine.action
        def compute():
            return 42

        assert compute() == 42
        assert compute.__name__ == "compute"


class TestTransaction:
    def test_batches_updates(self, engine):
        a = engine.create_cell(0)
        b = engine.create_cell(0)
        log = []
        engine.create_computation(lambda: log.append((a.get(), b.get()))).get()

        with transaction(engine):
            a.set(10)
            b.set(20)

        assert log == [(0, 0), (10, 20)]

    def test_nested_transactions(self, engine):
        o = engine.create_cell(0)
        log = []
        engine.create_computation(lambda: log.append(o.get())).get()

        with engine.batch():
            o.set(1)
            with engine.batch():
                o.set(2)
            assert engine.pending_count() == 1
            o.set(3)

        assert log == [0, 3]
        assert engine.pending_count() == 0

    def test_flushes_when_block_raises(self, engine):
        o = engine.create_cell(0)
        log = []
        engine.create_computation(lambda: log.append(o.get())).get()

        try:
            with engine.batch():
                o.set(5)
                raise KeyError("interrupted")
        except KeyError:
            pass

        assert log == [0, 5]
