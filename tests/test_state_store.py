import pytest

from dwe.runtime.state_store import RunState, StepRecord
from dwe.runtime.telemetry import TelemetryCollector


def test_records_feed_the_context_snapshot():
    state = RunState(inputs={"q": "x"}, defaults={"limit": 3})
    state.record(StepRecord(step_id="a", status="completed", output={"n": 1}))
    state.record(StepRecord(step_id="b", status="skipped", reason="condition not met"))
    state.record(StepRecord(step_id="c", status="failed", error="boom"))

    snapshot = state.snapshot()
    assert snapshot["inputs"] == {"q": "x"}
    assert snapshot["a"] == {"output": {"n": 1}}
    assert snapshot["b"] == {"output": None, "skipped": True}
    assert snapshot["c"] == {"output": None, "error": "boom"}
    assert state.get("a").status == "completed"


def test_snapshot_is_isolated_from_later_writes():
    state = RunState(inputs={}, defaults={})
    before = state.snapshot()
    state.record(StepRecord(step_id="a", status="completed", output=1))
    assert "a" not in before


def test_step_results_are_written_once():
    state = RunState(inputs={}, defaults={})
    state.record(StepRecord(step_id="a", status="completed"))
    with pytest.raises(ValueError, match='Step "a" already has a recorded result'):
        state.record(StepRecord(step_id="a", status="completed"))


def test_skip_set_grows():
    state = RunState(inputs={}, defaults={})
    state.skip_branch(["x", "y"])
    state.skip_branch(["y", "z"])
    assert state.skip_set == {"x", "y", "z"}
    assert state.is_branch_skipped("x")
    assert not state.is_branch_skipped("a")


def test_telemetry_in_memory():
    telemetry = TelemetryCollector()
    trace_id = telemetry.new_trace_id("demo")
    telemetry.on_run_start(trace_id, "demo")
    telemetry.on_step_error(trace_id, "a", RuntimeError("bad"))

    assert telemetry.traces() == [trace_id]
    events = telemetry.events(trace_id)
    assert [event.event for event in events] == ["run_started", "step_failed"]
    assert events[1].step_id == "a"
    assert events[1].data == {"error": "bad"}


def test_telemetry_drops_oldest_trace_past_the_bound():
    telemetry = TelemetryCollector(max_traces=2)
    for name in ("first", "second", "third"):
        telemetry.on_run_start(name, name)

    assert telemetry.traces() == ["second", "third"]
    assert telemetry.events("first") == []


def test_telemetry_clear():
    telemetry = TelemetryCollector()
    telemetry.on_run_start("one", "demo")
    telemetry.on_run_start("two", "demo")

    telemetry.clear("one")
    assert telemetry.traces() == ["two"]
    telemetry.clear()
    assert telemetry.traces() == []
