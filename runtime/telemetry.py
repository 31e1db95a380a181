"""
Run observers and structured telemetry for workflow execution.
"""

from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class RunObserver:
    """
    Receives run lifecycle events. Every hook is a no-op by default.

    Hooks run on the engine thread. An exception raised by a hook aborts the
    run and propagates unchanged; ``on_run_complete`` still fires with
    ``success=False``.
    """

    def on_run_start(self, trace_id: str, workflow_name: str) -> None:
        pass

    def on_step_start(self, trace_id: str, step_id: str) -> None:
        pass

    def on_step_complete(self, trace_id: str, step_id: str, output: Any, duration_ms: int) -> None:
        pass

    def on_step_skip(self, trace_id: str, step_id: str, reason: str) -> None:
        pass

    def on_step_error(self, trace_id: str, step_id: str, error: BaseException) -> None:
        pass

    def on_run_complete(self, trace_id: str, success: bool, total_time_ms: int) -> None:
        pass


class CallbackObserver(RunObserver):
    """Adapts plain callables (``on_step_start(step_id)`` etc.) to ``RunObserver``."""

    def __init__(
        self,
        *,
        on_step_start: Optional[Callable[[str], Any]] = None,
        on_step_complete: Optional[Callable[[str, Any, int], Any]] = None,
        on_step_skip: Optional[Callable[[str, str], Any]] = None,
        on_step_error: Optional[Callable[[str, BaseException], Any]] = None,
    ) -> None:
        self._start = on_step_start
        self._complete = on_step_complete
        self._skip = on_step_skip
        self._error = on_step_error

    def on_step_start(self, trace_id: str, step_id: str) -> None:
        if self._start:
            self._start(step_id)

    def on_step_complete(self, trace_id: str, step_id: str, output: Any, duration_ms: int) -> None:
        if self._complete:
            self._complete(step_id, output, duration_ms)

    def on_step_skip(self, trace_id: str, step_id: str, reason: str) -> None:
        if self._skip:
            self._skip(step_id, reason)

    def on_step_error(self, trace_id: str, step_id: str, error: BaseException) -> None:
        if self._error:
            self._error(step_id, error)


class RunEvent(BaseModel):
    trace_id: str
    event: str
    timestamp: str
    step_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class TelemetryCollector(RunObserver):
    """
    Records every run event in memory, keyed by trace id. When ``root_dir`` is
    set, events are also appended to ``<root_dir>/<trace_id>.jsonl``.

    ``max_traces`` bounds the in-memory history; the oldest trace is dropped
    first. Files on disk are never removed.
    """

    def __init__(self, root_dir: Optional[Union[str, Path]] = None, *, max_traces: Optional[int] = None) -> None:
        self.root_dir = Path(root_dir) if root_dir else None
        if self.root_dir is not None:
            self.root_dir.mkdir(parents=True, exist_ok=True)
        self._events: Dict[str, List[RunEvent]] = {}
        self.max_traces = max_traces
        self._lock = threading.Lock()

    @staticmethod
    def new_trace_id(workflow_name: str) -> str:
        return f"{workflow_name}-{uuid.uuid4()}"

    def log(self, trace_id: str, event: str, step_id: Optional[str] = None, **data: Any) -> RunEvent:
        payload = RunEvent(
            trace_id=trace_id,
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            step_id=step_id,
            data=data,
        )
        with self._lock:
            if trace_id not in self._events:
                self._events[trace_id] = []
                self._evict()
            self._events[trace_id].append(payload)
            if self.root_dir is not None:
                self._append_to_disk(payload)
        return payload

    def traces(self) -> List[str]:
        with self._lock:
            return list(self._events)

    def events(self, trace_id: str) -> List[RunEvent]:
        with self._lock:
            return list(self._events.get(trace_id, []))

    def clear(self, trace_id: Optional[str] = None) -> None:
        """Forget one trace, or every trace when ``trace_id`` is None."""

        with self._lock:
            if trace_id is None:
                self._events.clear()
            else:
                self._events.pop(trace_id, None)

    def summarize(self, trace_id: str) -> Dict[str, Any]:
        events = self.events(trace_id)
        counts: Dict[str, int] = {}
        for item in events:
            counts[item.event] = counts.get(item.event, 0) + 1
        return {
            "trace_id": trace_id,
            "event_count": len(events),
            "counts": counts,
            "events": [item.model_dump() for item in events],
        }

    def on_run_start(self, trace_id: str, workflow_name: str) -> None:
        self.log(trace_id, "run_started", workflow_name=workflow_name)

    def on_step_start(self, trace_id: str, step_id: str) -> None:
        self.log(trace_id, "step_started", step_id=step_id)

    def on_step_complete(self, trace_id: str, step_id: str, output: Any, duration_ms: int) -> None:
        self.log(trace_id, "step_completed", step_id=step_id, duration_ms=duration_ms)

    def on_step_skip(self, trace_id: str, step_id: str, reason: str) -> None:
        self.log(trace_id, "step_skipped", step_id=step_id, reason=reason)

    def on_step_error(self, trace_id: str, step_id: str, error: BaseException) -> None:
        self.log(trace_id, "step_failed", step_id=step_id, error=str(error))

    def on_run_complete(self, trace_id: str, success: bool, total_time_ms: int) -> None:
        self.log(trace_id, "run_completed", success=success, total_time_ms=total_time_ms)

    def _evict(self) -> None:
        if self.max_traces is None:
            return
        while len(self._events) > max(self.max_traces, 1):
            del self._events[next(iter(self._events))]

    def _append_to_disk(self, event: RunEvent) -> None:
        path = self.root_dir / f"{event.trace_id}.jsonl"
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(event.model_dump(), sort_keys=True, default=str) + "\n")
