"""
Workflow execution: validation gate, planning and layer-by-layer dispatch.
"""

from __future__ import annotations

import json
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from dwe.compiler.dependency_resolver import build_execution_plan
from dwe.ir.references import resolve_template
from dwe.ir.spec_schema import (
    StepKind,
    WorkflowDefinition,
    parse_step_kind,
    step_kind_name,
)
from dwe.ir.validators import WorkflowValidationError, validate_workflow
from dwe.runtime.conditions import condition_roots, evaluate_condition
from dwe.runtime.control_flow import DEFAULT_MAX_ITERATIONS, resolve_step_inputs
from dwe.runtime.dispatcher import StepDispatcher, ToolRegistry, default_registry
from dwe.runtime.state_store import RunState, StepRecord
from dwe.runtime.telemetry import CallbackObserver, RunObserver, TelemetryCollector

LOGGER = logging.getLogger(__name__)

BRANCH_NOT_TAKEN = "branch not taken"
CONDITION_NOT_MET = "condition not met"


class MissingInputError(ValueError):
    """Raised when a required workflow input has neither a value nor a default."""


class StepExecutionError(RuntimeError):
    """A step failed and did not opt into ``continueOnError``."""

    def __init__(self, step_id: str, cause: BaseException):
        self.step_id = step_id
        super().__init__(f'Step "{step_id}" failed: {cause}')


class WorkflowEngineConfig(BaseModel):
    max_loop_iterations: int = DEFAULT_MAX_ITERATIONS
    max_parallel_steps: Optional[int] = None
    telemetry_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "WorkflowEngineConfig":
        values: Dict[str, Any] = {}
        if os.getenv("DWE_MAX_LOOP_ITERATIONS"):
            values["max_loop_iterations"] = int(os.environ["DWE_MAX_LOOP_ITERATIONS"])
        if os.getenv("DWE_MAX_PARALLEL_STEPS"):
            values["max_parallel_steps"] = int(os.environ["DWE_MAX_PARALLEL_STEPS"])
        if os.getenv("DWE_TELEMETRY_DIR"):
            values["telemetry_dir"] = os.environ["DWE_TELEMETRY_DIR"]
        return cls(**values)


class RunOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    inputs: Dict[str, Any] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    observers: List[RunObserver] = Field(default_factory=list)
    on_step_start: Optional[Callable[..., Any]] = None
    on_step_complete: Optional[Callable[..., Any]] = None
    on_step_skip: Optional[Callable[..., Any]] = None
    on_step_error: Optional[Callable[..., Any]] = None
    mocks: Dict[str, Any] = Field(default_factory=dict)


class StepResult(BaseModel):
    id: str
    tool: str
    status: str
    output: Any = None
    error: Optional[str] = None
    reason: Optional[str] = None
    duration_ms: int = 0
    layer: int = 0

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"


class WorkflowRunResult(BaseModel):
    output: Any = None
    steps: List[StepResult] = Field(default_factory=list)
    total_time_ms: int = 0
    layers: List[List[str]] = Field(default_factory=list)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    trace_id: Optional[str] = None

    def step(self, step_id: str) -> Optional[StepResult]:
        return next((item for item in self.steps if item.id == step_id), None)


def coerce_input(value: Any, input_type: Optional[str]) -> Any:
    """Best-effort conversion of a supplied input to its declared type."""

    if input_type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        try:
            number = float(str(value).strip())
        except ValueError:
            return value
        return int(number) if number.is_integer() else number
    if input_type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1")
        return bool(value)
    if input_type == "array":
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
            return [part.strip() for part in value.split(",") if part.strip()]
        return [value]
    return value


def resolve_inputs(schema: Mapping[str, Any], provided: Mapping[str, Any]) -> Dict[str, Any]:
    resolved: Dict[str, Any] = dict(provided)
    for name, spec in schema.items():
        spec = spec if isinstance(spec, Mapping) else {}
        if name in provided and provided[name] is not None:
            resolved[name] = coerce_input(provided[name], spec.get("type"))
        elif "default" in spec:
            resolved[name] = spec["default"]
        elif spec.get("required"):
            raise MissingInputError(f'Missing required input: "{name}"')
    return resolved


def _definition_mapping(definition: Any) -> Any:
    if isinstance(definition, WorkflowDefinition):
        return definition.to_dict()
    return definition


class WorkflowEngine:
    def __init__(
        self,
        *,
        registry: Optional[ToolRegistry] = None,
        config: Optional[WorkflowEngineConfig] = None,
        telemetry: Optional[TelemetryCollector] = None,
    ) -> None:
        self.config = config or WorkflowEngineConfig()
        self.registry = registry if registry is not None else default_registry()
        if telemetry is None and self.config.telemetry_dir:
            telemetry = TelemetryCollector(self.config.telemetry_dir)
        self.telemetry = telemetry

    def run(self, definition: Any, options: Optional[RunOptions] = None) -> WorkflowRunResult:
        options = options or RunOptions()
        started = time.perf_counter()
        raw = _definition_mapping(definition)

        errors = validate_workflow(raw)
        if errors:
            raise WorkflowValidationError(errors)

        inputs = resolve_inputs(raw.get("inputs") or {}, options.inputs)
        defaults = {**(raw.get("defaults") or {}), **options.defaults}
        steps: List[Mapping[str, Any]] = raw["steps"]
        layers = build_execution_plan(steps)

        if options.dry_run:
            return WorkflowRunResult(
                layers=layers,
                inputs=inputs,
                defaults=defaults,
                dry_run=True,
                total_time_ms=_elapsed_ms(started),
            )

        registry = ToolRegistry.from_mocks(options.mocks, base=self.registry) if options.mocks else self.registry
        run = _WorkflowRun(
            steps={step["id"]: step for step in steps},
            dispatcher=StepDispatcher(registry, max_loop_iterations=self.config.max_loop_iterations),
            state=RunState(inputs=inputs, defaults=defaults),
            observers=self._observers(options),
            trace_id=TelemetryCollector.new_trace_id(raw.get("name") or "workflow"),
            max_workers=self.config.max_parallel_steps,
        )

        run.notify("on_run_start", raw.get("name") or "workflow")
        # on_run_complete fires however the run ends, including a raising observer
        success = False
        try:
            for index, layer in enumerate(layers):
                run.execute_layer(index, layer)

            context = run.state.snapshot()
            if raw.get("output") is not None:
                output = resolve_template(raw["output"], context)
            else:
                output = context
            success = True
        finally:
            total_ms = _elapsed_ms(started)
            run.notify("on_run_complete", success, total_ms)

        return WorkflowRunResult(
            output=output,
            steps=run.results,
            total_time_ms=total_ms,
            layers=layers,
            inputs=inputs,
            defaults=defaults,
            trace_id=run.trace_id,
        )

    def _observers(self, options: RunOptions) -> List[RunObserver]:
        observers = list(options.observers)
        if any((options.on_step_start, options.on_step_complete, options.on_step_skip, options.on_step_error)):
            observers.append(
                CallbackObserver(
                    on_step_start=options.on_step_start,
                    on_step_complete=options.on_step_complete,
                    on_step_skip=options.on_step_skip,
                    on_step_error=options.on_step_error,
                )
            )
        if self.telemetry is not None:
            observers.append(self.telemetry)
        return observers


class _WorkflowRun:
    """State for a single invocation of ``WorkflowEngine.run``."""

    def __init__(
        self,
        *,
        steps: Dict[str, Mapping[str, Any]],
        dispatcher: StepDispatcher,
        state: RunState,
        observers: List[RunObserver],
        trace_id: str,
        max_workers: Optional[int],
    ) -> None:
        self.steps = steps
        self.dispatcher = dispatcher
        self.state = state
        self.observers = observers
        self.trace_id = trace_id
        self.max_workers = max_workers
        self.results: List[StepResult] = []

    def notify(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            getattr(observer, hook)(self.trace_id, *args)

    def execute_layer(self, index: int, layer: List[str]) -> None:
        context = self.state.snapshot()
        defaults = context["defaults"]
        runnable: List[Mapping[str, Any]] = []

        for step_id in layer:
            step = self.steps[step_id]
            if self.state.is_branch_skipped(step_id):
                self._skip(step, index, BRANCH_NOT_TAKEN)
            elif self._condition_blocks(step, context):
                self._skip(step, index, CONDITION_NOT_MET)
            else:
                runnable.append(step)

        if not runnable:
            return

        workers = self.max_workers or len(runnable)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dwe-step") as pool:
            futures: Dict[Future, Mapping[str, Any]] = {}
            for step in runnable:
                self.notify("on_step_start", step["id"])
                futures[pool.submit(self._execute_step, step, context, defaults)] = step

            for future in as_completed(futures):
                step = futures[future]
                try:
                    output, duration_ms = future.result()
                except Exception as exc:
                    self._fail(step, index, exc, futures)
                    continue
                self._complete(step, index, output, duration_ms)

    def _condition_blocks(self, step: Mapping[str, Any], context: Dict[str, Any]) -> bool:
        condition = step.get("condition")
        if condition is None:
            return False
        if step.get("forEach") and condition_roots(condition) & {"item", "index"}:
            return False
        return not evaluate_condition(condition, context)

    def _execute_step(
        self, step: Mapping[str, Any], context: Dict[str, Any], defaults: Dict[str, Any]
    ) -> Tuple[Any, int]:
        started = time.perf_counter()
        if step.get("forEach"):
            output = self._execute_for_each(step, context, defaults)
        else:
            output = self.dispatcher.dispatch(step, resolve_step_inputs(step, context), defaults, context)
        return output, _elapsed_ms(started)

    def _execute_for_each(
        self, step: Mapping[str, Any], context: Dict[str, Any], defaults: Dict[str, Any]
    ) -> Dict[str, Any]:
        items = resolve_template(step["forEach"], context)
        if not isinstance(items, list):
            raise ValueError(
                f'"forEach" must resolve to an array, got {type(items).__name__}'
            )
        condition = step.get("condition")
        per_item = condition is not None and bool(condition_roots(condition) & {"item", "index"})

        results: List[Any] = []
        for position, item in enumerate(items):
            iteration_context = {**context, "item": item, "index": position}
            if per_item and not evaluate_condition(condition, iteration_context):
                continue
            results.append(
                self.dispatcher.dispatch(
                    step, resolve_step_inputs(step, iteration_context), defaults, iteration_context
                )
            )
        return {"results": results, "count": len(results)}

    def _skip(self, step: Mapping[str, Any], layer: int, reason: str) -> None:
        LOGGER.info("Skipping step %s: %s", step["id"], reason)
        self.state.record(StepRecord(step_id=step["id"], status="skipped", reason=reason))
        self.results.append(
            StepResult(id=step["id"], tool=str(step_kind_name(step)), status="skipped", reason=reason, layer=layer)
        )
        self.notify("on_step_skip", step["id"], reason)

    def _complete(self, step: Mapping[str, Any], layer: int, output: Any, duration_ms: int) -> None:
        self.state.record(StepRecord(step_id=step["id"], status="completed", output=output))
        is_conditional = parse_step_kind(step_kind_name(step)) is StepKind.CONDITIONAL
        if is_conditional and not step.get("forEach") and isinstance(output, Mapping):
            self.state.skip_branch(output.get("skippedSteps") or [])
        self.results.append(
            StepResult(
                id=step["id"],
                tool=str(step_kind_name(step)),
                status="completed",
                output=output,
                duration_ms=duration_ms,
                layer=layer,
            )
        )
        self.notify("on_step_complete", step["id"], output, duration_ms)

    def _fail(
        self,
        step: Mapping[str, Any],
        layer: int,
        exc: Exception,
        futures: Dict[Future, Mapping[str, Any]],
    ) -> None:
        self.notify("on_step_error", step["id"], exc)
        if not step.get("continueOnError"):
            LOGGER.warning("Step %s failed; aborting run: %s", step["id"], exc)
            for pending in futures:
                pending.cancel()
            raise StepExecutionError(step["id"], exc) from exc

        LOGGER.warning("Step %s failed; continuing: %s", step["id"], exc)
        self.state.record(StepRecord(step_id=step["id"], status="failed", error=str(exc)))
        self.results.append(
            StepResult(
                id=step["id"],
                tool=str(step_kind_name(step)),
                status="failed",
                error=str(exc),
                layer=layer,
            )
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def run_workflow(
    definition: Any,
    *,
    registry: Optional[ToolRegistry] = None,
    config: Optional[WorkflowEngineConfig] = None,
    **options: Any,
) -> WorkflowRunResult:
    """Convenience wrapper: ``run_workflow(defn, inputs={...}, mocks={...})``."""

    engine = WorkflowEngine(registry=registry, config=config)
    return engine.run(definition, RunOptions(**options))
