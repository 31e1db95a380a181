"""
Step dispatch: maps a step's kind to the code that executes it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from dwe.ir.spec_schema import StepKind, parse_step_kind, step_kind_name
from dwe.runtime.control_flow import (
    DEFAULT_MAX_ITERATIONS,
    execute_conditional,
    execute_filter,
    execute_loop,
    execute_merge,
    execute_template,
    execute_transform,
)
from dwe.tools import chunking, http, llm

LOGGER = logging.getLogger(__name__)

# (resolved inputs, defaults, context) -> output
StepExecutor = Callable[[Dict[str, Any], Dict[str, Any], Dict[str, Any]], Any]


class UnknownStepKindError(ValueError):
    """Raised for a step whose kind is not one of the known kinds."""


class ToolNotAvailableError(RuntimeError):
    """Raised when a known tool kind has no registered backend."""


class ToolRegistry:
    """Executors for tool kinds, plus overrides for any kind (used by mocks)."""

    def __init__(self, executors: Optional[Mapping[StepKind, StepExecutor]] = None) -> None:
        self._executors: Dict[StepKind, StepExecutor] = {}
        for kind, executor in (executors or {}).items():
            self.register(kind, executor)

    def register(self, kind: Union[StepKind, str], executor: StepExecutor) -> None:
        parsed = parse_step_kind(kind)
        if parsed is None:
            raise UnknownStepKindError(f"Unknown step kind: {kind!r}")
        self._executors[parsed] = executor

    def get(self, kind: StepKind) -> Optional[StepExecutor]:
        return self._executors.get(kind)

    def kinds(self) -> List[str]:
        return sorted(kind.value for kind in self._executors)

    def with_overrides(self, overrides: Mapping[Union[StepKind, str], StepExecutor]) -> "ToolRegistry":
        merged = ToolRegistry(self._executors)
        for kind, executor in overrides.items():
            merged.register(kind, executor)
        return merged

    @classmethod
    def from_mocks(cls, mocks: Mapping[str, Any], base: Optional["ToolRegistry"] = None) -> "ToolRegistry":
        """
        Build a registry where each mocked kind returns a fixed value, or calls
        the mock when it is callable.
        """

        overrides: Dict[Union[StepKind, str], StepExecutor] = {}
        for kind, mock in mocks.items():
            overrides[kind] = mock if callable(mock) else _constant(mock)
        return (base or cls()).with_overrides(overrides)


def _constant(value: Any) -> StepExecutor:
    def executor(inputs: Dict[str, Any], defaults: Dict[str, Any], context: Dict[str, Any]) -> Any:
        return value

    return executor


def default_registry() -> ToolRegistry:
    """Registry with the built-in http, generate and chunk backends."""

    return ToolRegistry(
        {
            StepKind.HTTP: http.execute_http,
            StepKind.GENERATE: llm.execute_generate,
            StepKind.CHUNK: chunking.execute_chunk,
        }
    )


class StepDispatcher:
    def __init__(
        self,
        registry: Optional[ToolRegistry] = None,
        *,
        max_loop_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.max_loop_iterations = max_loop_iterations

    def dispatch(
        self,
        step: Mapping[str, Any],
        inputs: Dict[str, Any],
        defaults: Dict[str, Any],
        context: Dict[str, Any],
    ) -> Any:
        raw_kind = step_kind_name(step)
        kind = parse_step_kind(raw_kind)
        if kind is None:
            raise UnknownStepKindError(f"Unknown step kind: {raw_kind!r}")

        LOGGER.debug("Dispatching step %s (%s)", step.get("id"), kind.value)
        executor = self.registry.get(kind)
        if executor is not None:
            return executor(inputs, defaults, context)

        if kind is StepKind.MERGE:
            return execute_merge(inputs)
        elif kind is StepKind.FILTER:
            return execute_filter(inputs, context)
        elif kind is StepKind.TRANSFORM:
            return execute_transform(inputs)
        elif kind is StepKind.CONDITIONAL:
            return execute_conditional(inputs, context)
        elif kind is StepKind.TEMPLATE:
            return execute_template(inputs)
        elif kind is StepKind.LOOP:
            return execute_loop(
                inputs,
                defaults,
                context,
                self.dispatch,
                step_id=str(step.get("id", "loop")),
                max_iterations=self.max_loop_iterations,
            )

        raise ToolNotAvailableError(
            f'No backend registered for tool "{kind.value}" '
            f"(registered: {', '.join(self.registry.kinds()) or 'none'})"
        )
