"""
Per-run execution state: the context and the conditional skip-set.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Set

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    step_id: str
    status: str
    output: Any = None
    error: Optional[str] = None
    reason: Optional[str] = None
    recorded_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def context_entry(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"output": self.output}
        if self.status == "skipped":
            entry["skipped"] = True
        if self.error is not None:
            entry["error"] = self.error
        return entry


class RunState:
    """
    Owned by one engine run. Each step id is written once; the skip-set only
    grows.
    """

    def __init__(self, *, inputs: Dict[str, Any], defaults: Dict[str, Any]) -> None:
        self._context: Dict[str, Any] = {"inputs": inputs, "defaults": defaults}
        self._records: Dict[str, StepRecord] = {}
        self._skip_set: Set[str] = set()
        self._lock = threading.Lock()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._context)

    def record(self, record: StepRecord) -> None:
        with self._lock:
            if record.step_id in self._records:
                raise ValueError(f'Step "{record.step_id}" already has a recorded result')
            self._records[record.step_id] = record
            self._context[record.step_id] = record.context_entry()

    def get(self, step_id: str) -> Optional[StepRecord]:
        with self._lock:
            return self._records.get(step_id)

    def skip_branch(self, step_ids: Iterable[str]) -> None:
        with self._lock:
            self._skip_set.update(step_ids)

    def is_branch_skipped(self, step_id: str) -> bool:
        with self._lock:
            return step_id in self._skip_set

    @property
    def skip_set(self) -> Set[str]:
        with self._lock:
            return set(self._skip_set)
