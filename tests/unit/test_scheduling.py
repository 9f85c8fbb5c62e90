"""
Unit tests for deferred delivery, the tick queue, and asyncio integration.
"""
import asyncio

import pytest

from machina import build
from machina.kernel.errors import InconsistentMachineFault, RuntimeValidationFault, UsageFault
from machina.kernel.scheduler import LoopScheduler, TickQueue, default_queue, get_scheduler


class TestTickQueue:
    def test_runs_in_order_including_nested_deferrals(self):
        queue = TickQueue()
        seen = []
        queue.defer(seen.append, 1)
        queue.defer(lambda: queue.defer(seen.append, 3))
        queue.defer(seen.append, 2)
        assert queue.run_until_idle() == 4
        assert seen == [1, 2, 3]

    def test_each_session_drains_what_it_deferred(self):
        queue = TickQueue()
        seen = []
        with queue.session():
            queue.defer(seen.append, "outer")
            with queue.session():
                queue.defer(seen.append, "inner")
            assert seen == ["inner"]
        assert seen == ["inner", "outer"]
        assert queue.pending == 0

    def test_late_deferral_goes_to_the_running_session(self):
        queue = TickQueue()
        seen = []
        with queue.session() as first:
            pass
        with queue.session():
            first.defer(seen.append, "late")
            assert seen == []
        assert seen == ["late"]

    def test_failed_session_discards_its_deferrals(self, caplog):
        queue = TickQueue()
        seen = []
        with pytest.raises(RuntimeError):
            with queue.session():
                queue.defer(seen.append, "never")
                raise RuntimeError("stop")
        assert seen == []
        assert queue.pending == 0
        assert "Discarding 1 deferred callback" in caplog.text

    def test_a_raising_callback_does_not_strand_the_rest(self, caplog):
        queue = TickQueue()
        seen = []

        def explode(label):
            raise ValueError(label)

        queue.defer(seen.append, 1)
        queue.defer(explode, "first")
        queue.defer(seen.append, 2)
        queue.defer(explode, "second")
        queue.defer(seen.append, 3)
        with pytest.raises(ValueError, match="first"):
            queue.run_until_idle()
        assert seen == [1, 2, 3]
        assert queue.pending == 0
        assert "after an earlier failure" in caplog.text


def test_scheduler_outside_a_loop_is_the_tick_queue():
    assert isinstance(get_scheduler(), TickQueue)


def test_delivery_waits_for_the_fn_to_return():
    order = []

    def fn(inputs, exits):
        exits.success("done")
        order.append("fn returned")

    build({"identity": "eager", "fn": fn}).exec(
        {"success": lambda output: order.append(output), "error": pytest.fail}
    )
    assert order == ["fn returned", "done"]


def test_env_defer_continues_later():
    order = []

    def fn(inputs, exits, env):
        env.defer(lambda: exits.success("later"))
        order.append("fn returned")

    build({"identity": "patient", "fn": fn}).exec(
        {"success": order.append, "error": pytest.fail}
    )
    assert order == ["fn returned", "later"]


def _leaf():
    return build({"identity": "leaf", "fn": lambda inputs, exits: exits.success("leaf")})


def test_raising_continuation_reaches_the_callers_error_side():
    errors = []

    def fn(inputs, exits):
        def boom(output):
            raise ValueError("continuation failed")

        _leaf()().exec({"success": boom, "error": exits.error})
        _leaf()().exec({"success": exits.success, "error": exits.error})

    build({"identity": "parent", "fn": fn}).exec({"success": pytest.fail, "error": errors.append})
    assert [str(err) for err in errors] == ["continuation failed"]
    assert default_queue().pending == 0


def test_abandoned_sync_instance_leaves_nothing_queued(caplog):
    def fn(inputs, exits, env):
        env.defer(exits.success, 1)

    instance = build({"identity": "procrastinator", "sync": True, "fn": fn})()
    with pytest.raises(InconsistentMachineFault):
        instance.exec_sync()
    assert default_queue().pending == 0
    assert instance.outcome is None
    assert "Discarding 1 deferred callback" in caplog.text


class TestNestedExecSync:
    @staticmethod
    def relay():
        def fn(inputs, exits):
            _leaf()().exec({"success": lambda output: exits.success(output * 2), "error": exits.error})

        return build({"identity": "relay", "sync": True, "exits": {"success": {"example": "x"}}, "fn": fn})

    def test_top_level(self):
        assert self.relay()().exec_sync() == "leafleaf"

    def test_inside_another_machines_fn(self):
        seen = []
        relay = self.relay()

        def fn(inputs, exits):
            exits.success(relay().exec_sync())

        build({"identity": "host", "fn": fn}).exec({"success": seen.append, "error": pytest.fail})
        assert seen == ["leafleaf"]


def test_delivery_is_deferred_inside_a_loop():
    async def scenario():
        assert isinstance(get_scheduler(), LoopScheduler)
        order = []
        machine = build({"identity": "quick", "fn": lambda inputs, exits: exits.success(1)})
        machine().exec({"success": order.append, "error": order.append})
        order.append("after exec")
        await asyncio.sleep(0)
        return order

    assert asyncio.run(scenario()) == ["after exec", 1]


def test_run_awaits_async_fn():
    async def fetch(inputs, exits):
        await asyncio.sleep(0)
        exits.success({"id": inputs["id"], "ok": "yes"})

    machine = build(
        {
            "identity": "fetch",
            "inputs": {"id": {"example": 1, "required": True}},
            "exits": {"success": {"example": {"id": 1, "ok": True}}},
            "fn": fetch,
        }
    )

    async def scenario():
        return await machine(id="5").run()

    # "yes" is not a boolean; exit coercion falls back to False
    assert asyncio.run(scenario()) == {"id": 5, "ok": False}


def test_run_raises_the_error_side():
    async def broken(inputs, exits):
        raise KeyError("missing")

    machine = build({"identity": "broken", "fn": broken})

    async def scenario():
        return await machine().run()

    with pytest.raises(KeyError):
        asyncio.run(scenario())


def test_run_raises_validation_faults():
    machine = build(
        {
            "identity": "strict",
            "inputs": {"n": {"example": 1, "required": True}},
            "fn": lambda inputs, exits: exits.success(),
        }
    )

    async def scenario():
        return await machine().run()

    with pytest.raises(RuntimeValidationFault) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.errors[0].input == "n"
    assert excinfo.value.machine_instance.identity == "strict"


def test_async_fn_without_a_loop_reports_usage_fault():
    async def later(inputs, exits):
        exits.success()

    errors = []
    build({"identity": "later", "fn": later}).exec({"success": pytest.fail, "error": errors.append})
    assert len(errors) == 1
    assert isinstance(errors[0], UsageFault)
