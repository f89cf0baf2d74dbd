"""
Tests for capture sessions.

Tests cover:
- Recording and querying firings
- Additive vs exclusive interaction with listener dispatch
- Nested sessions
- Failure inside the captured call
- Isolation across threads and asyncio tasks
- Stacking captured payloads into arrays
"""

import asyncio
import contextvars
import functools
import threading

import numpy as np
import pytest

from lensing.capture import CaptureSession, capture, capturing, current_session, query


# =============================================================================
# Recording and querying
# =============================================================================


class TestRecording:
    """Tests for what a session records."""

    def test_three_firings_without_listeners(self, dispatcher):
        """Capture works whether or not anyone listens."""

        def f():
            for value in (1, 2, 3):
                dispatcher.fire("a", value)

        _, session = capture(f)

        assert query(session, "a") == [1, 2, 3]

    def test_returns_result_of_call(self, dispatcher):
        def add(a, b, scale=1):
            dispatcher.fire("sum", a + b)
            return (a + b) * scale

        result, session = capture(add, 2, 3, scale=10)

        assert result == 50
        assert session.result == 50
        assert session["sum"] == [5]

    def test_exclusive_is_consumed_by_capture(self, dispatcher):
        """A callable's own `exclusive` argument is bound with partial."""
        seen = []
        dispatcher.registry.register("mode", "L1", seen.append)

        def run(exclusive=False):
            dispatcher.fire("mode", exclusive)
            return exclusive

        result, session = capture(functools.partial(run, exclusive=True))

        assert result is True
        assert session.exclusive is False
        assert seen == [True]

    def test_fn_keyword_passes_through(self, dispatcher):
        """`fn` is positional-only, so the wrapped call may take `fn=`."""

        def apply(fn):
            return fn(2)

        result, _ = capture(apply, fn=lambda v: v * 10)

        assert result == 20

    def test_unknown_lens_queries_empty(self, dispatcher):
        _, session = capture(lambda: dispatcher.fire("a", 1))
        assert session.query("b") == []

    def test_payload_shapes(self, dispatcher):
        """Single values unwrap; tuples and keyed dicts stay as fired."""

        def f():
            dispatcher.fire("single", 1)
            dispatcher.fire("pair", 1, 2)
            dispatcher.fire("empty")
            dispatcher.fire("keyed", x=1, y=2)

        _, session = capture(f)

        assert session.query("single") == [1]
        assert session.query("pair") == [(1, 2)]
        assert session.query("empty") == [()]
        assert session.query("keyed") == [{"x": 1, "y": 2}]

    def test_log_keeps_raw_order(self, dispatcher):
        def f():
            dispatcher.fire("a", 1)
            dispatcher.fire("b", x=2)
            dispatcher.fire("a", 3)

        _, session = capture(f)

        assert session.log == [("a", (1,)), ("b", {"x": 2}), ("a", (3,))]
        assert list(session) == session.log
        assert len(session) == 3
        assert session.lens_names() == ["a", "b"]
        assert session.to_dict() == {"a": [1, 3], "b": [{"x": 2}]}
        assert "a" in session
        assert "c" not in session

    def test_recursive_calls_recorded(self, dispatcher):
        def fact(n):
            dispatcher.fire("n", n)
            return 1 if n <= 1 else n * fact(n - 1)

        result, session = capture(fact, 4)

        assert result == 24
        assert session.query("n") == [4, 3, 2, 1]

    def test_lens_names_normalised_when_recorded(self, dispatcher):
        _, session = capture(lambda: dispatcher.fire(" a ", 1))
        assert session.query("a") == [1]

    def test_no_session_outside_capture(self, dispatcher):
        assert current_session() is None

        with capturing() as session:
            assert current_session() is session

        assert current_session() is None

    def test_session_sealed_after_call(self, dispatcher):
        _, session = capture(lambda: None)

        dispatcher.fire("a", 1)

        assert session.sealed
        assert session.query("a") == []
        with pytest.raises(RuntimeError, match="sealed"):
            session.record("a", (1,))

    def test_repr(self, dispatcher):
        _, session = capture(lambda: dispatcher.fire("a", 1))
        assert repr(session) == "<CaptureSession firings=1 lenses=1 sealed>"


# =============================================================================
# Capture vs listener dispatch
# =============================================================================


class TestDispatchPolicy:
    """Capture is additive by default; exclusive sessions suppress listeners."""

    def test_additive_by_default(self, dispatcher):
        seen = []
        dispatcher.registry.register("a", "L1", seen.append)

        _, session = capture(lambda: dispatcher.fire("a", 1))

        assert seen == [1]
        assert session.query("a") == [1]

    def test_exclusive_suppresses_listeners(self, dispatcher):
        seen = []
        dispatcher.registry.register("a", "L1", seen.append)

        _, session = capture(lambda: dispatcher.fire("a", 1), exclusive=True)

        assert seen == []
        assert session.query("a") == [1]
        assert session.exclusive is True

    def test_exclusive_skips_shape_check(self, dispatcher):
        """Nothing is dispatched, so a mismatched listener is never consulted."""
        dispatcher.registry.register("a", "L1", print)

        with capturing(exclusive=True) as session:
            dispatcher.fire("a", x=1)

        assert session.query("a") == [{"x": 1}]

    def test_listeners_resume_after_exclusive_session(self, dispatcher):
        seen = []
        dispatcher.registry.register("a", "L1", seen.append)

        with capturing(exclusive=True):
            dispatcher.fire("a", 1)
        dispatcher.fire("a", 2)

        assert seen == [2]

    def test_mutating_listener_does_not_rewrite_history(self, dispatcher):
        """The captured bundle stays as fired."""
        dispatcher.registry.register("x", "L1", lambda v: v.update(y=99), kwargs=True)

        _, session = capture(lambda: dispatcher.fire("x", a=1))

        assert session.query("x") == [{"a": 1}]

    def test_failing_listener_does_not_break_capture(self, dispatcher):
        def boom(v):
            raise ValueError("nope")

        dispatcher.registry.register("a", "bad", boom)

        result, session = capture(lambda: dispatcher.fire("a", 1) or "ok")

        assert result == "ok"
        assert session.query("a") == [1]
        assert len(dispatcher.failures) == 1


# =============================================================================
# Nesting
# =============================================================================


class TestNesting:
    """Only the innermost open session records."""

    def test_inner_sees_only_inner_firings(self, dispatcher):
        holder = {}

        def inner():
            dispatcher.fire("a", "inner")

        def outer():
            dispatcher.fire("a", "before")
            _, holder["inner"] = capture(inner)
            dispatcher.fire("a", "after")

        _, outer_session = capture(outer)

        assert holder["inner"].query("a") == ["inner"]
        assert outer_session.query("a") == ["before", "after"]

    def test_outer_resumes_after_inner_fails(self, dispatcher):
        def inner():
            dispatcher.fire("a", "inner")
            raise ValueError("inner failed")

        def outer():
            dispatcher.fire("a", "before")
            with pytest.raises(ValueError):
                capture(inner)
            dispatcher.fire("a", "after")

        _, session = capture(outer)

        assert session.query("a") == ["before", "after"]

    def test_exclusive_inner_inside_additive_outer(self, dispatcher):
        seen = []
        dispatcher.registry.register("a", "L1", seen.append)

        with capturing() as outer:
            dispatcher.fire("a", 1)
            with capturing(exclusive=True) as inner:
                dispatcher.fire("a", 2)
            dispatcher.fire("a", 3)

        assert seen == [1, 3]
        assert outer.query("a") == [1, 3]
        assert inner.query("a") == [2]

    def test_deep_nesting(self, dispatcher):
        sessions = []

        def level(depth):
            dispatcher.fire("depth", depth)
            if depth < 3:
                _, s = capture(level, depth + 1)
                sessions.append(s)
            return depth

        _, top = capture(level, 0)
        sessions.append(top)

        assert [s.query("depth") for s in sessions] == [[3], [2], [1], [0]]


# =============================================================================
# Failures inside the captured call
# =============================================================================


class TestFailures:
    """The captured call's exceptions propagate; the session is still sealed."""

    def test_exception_propagates(self, dispatcher):
        def f():
            dispatcher.fire("a", 1)
            raise ZeroDivisionError("boom")

        with pytest.raises(ZeroDivisionError):
            capture(f)

        assert current_session() is None

    def test_partial_log_available_via_capturing(self, dispatcher):
        with pytest.raises(KeyError):
            with capturing() as session:
                dispatcher.fire("a", 1)
                dispatcher.fire("a", 2)
                raise KeyError("missing")

        assert session.sealed
        assert session.query("a") == [1, 2]
        assert isinstance(session.error, KeyError)
        assert session.result is None


# =============================================================================
# Concurrency
# =============================================================================


class TestIsolation:
    """Sessions are per thread and per asyncio task."""

    def test_copied_context_outliving_session(self, dispatcher):
        """A context copied inside a capture fires quietly once it is sealed."""
        seen = []
        dispatcher.registry.register("a", "L1", seen.append)

        def body():
            dispatcher.fire("a", 1)
            return contextvars.copy_context()

        ctx, session = capture(body)
        invoked = ctx.run(dispatcher.fire, "a", 2)

        assert invoked == 1
        assert seen == [1, 2]
        assert session.query("a") == [1]

    def test_task_outliving_session(self, dispatcher):
        """A task started inside a capture can fire after it closes."""

        async def main():
            gate = asyncio.Event()

            async def late():
                await gate.wait()
                return dispatcher.fire("a", 2)

            with capturing() as session:
                dispatcher.fire("a", 1)
                task = asyncio.ensure_future(late())
            gate.set()
            return session, await task

        session, invoked = asyncio.run(main())

        assert invoked == 0
        assert session.query("a") == [1]

    def test_late_firing_falls_through_to_open_outer_session(self, dispatcher):
        """Only sealed sessions are skipped; an enclosing open one records."""
        with capturing() as outer:
            with capturing() as inner:
                ctx = contextvars.copy_context()
            ctx.run(dispatcher.fire, "a", "late")

        assert inner.query("a") == []
        assert outer.query("a") == ["late"]

    def test_threads_do_not_share_sessions(self, dispatcher):
        barrier = threading.Barrier(4)
        results = {}

        def worker(idx):
            def body():
                barrier.wait()
                for step in range(20):
                    dispatcher.fire("v", (idx, step))

            _, results[idx] = capture(body)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for idx, session in results.items():
            assert session.query("v") == [(idx, step) for step in range(20)]

    def test_tasks_do_not_share_sessions(self, dispatcher):
        async def task(name):
            with capturing() as session:
                for step in range(5):
                    dispatcher.fire("v", name)
                    await asyncio.sleep(0)
            return session

        async def main():
            return await asyncio.gather(task("a"), task("b"))

        first, second = asyncio.run(main())

        assert first.query("v") == ["a"] * 5
        assert second.query("v") == ["b"] * 5


# =============================================================================
# Array stacking
# =============================================================================


class TestStack:
    """Tests for CaptureSession.stack."""

    def test_stack_scalars(self, dispatcher):
        def f():
            for value in (1.0, 0.5, 0.25):
                dispatcher.fire("loss", value)

        _, session = capture(f)
        arr = session.stack("loss")

        assert arr.shape == (3,)
        np.testing.assert_allclose(arr, [1.0, 0.5, 0.25])

    def test_stack_vectors(self, dispatcher):
        def f():
            x = np.zeros(4)
            for _ in range(3):
                x = x + 1
                dispatcher.fire("x", x)

        _, session = capture(f)

        assert session.stack("x").shape == (3, 4)

    def test_stack_by_key(self, dispatcher):
        def f():
            for step in range(3):
                dispatcher.fire("state", step=step, grad=np.full(2, step))

        _, session = capture(f)

        np.testing.assert_array_equal(session.stack("state", key="step"), [0, 1, 2])
        assert session.stack("state", key="grad").shape == (3, 2)

    def test_stack_missing_lens(self, dispatcher):
        _, session = capture(lambda: None)

        with pytest.raises(ValueError, match="was not fired"):
            session.stack("loss")

    def test_stack_missing_key(self, dispatcher):
        _, session = capture(lambda: dispatcher.fire("state", step=1))

        with pytest.raises(KeyError):
            session.stack("state", key="grad")


def test_new_session_defaults():
    session = CaptureSession()

    assert session.log == []
    assert session.result is None
    assert session.error is None
    assert session.exclusive is False
    assert session.sealed is False
