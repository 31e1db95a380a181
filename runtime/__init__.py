from dwe.runtime.conditions import evaluate_condition
from dwe.runtime.dispatcher import StepDispatcher, ToolNotAvailableError, ToolRegistry, default_registry
from dwe.runtime.executor import (
    MissingInputError,
    RunOptions,
    StepExecutionError,
    StepResult,
    WorkflowEngine,
    WorkflowEngineConfig,
    WorkflowRunResult,
    run_workflow,
)
from dwe.runtime.state_store import RunState
from dwe.runtime.telemetry import CallbackObserver, RunObserver, TelemetryCollector
from dwe.runtime.test_runner import WorkflowTestCase, run_all_tests, run_workflow_test

__all__ = [
    "evaluate_condition",
    "StepDispatcher",
    "ToolRegistry",
    "ToolNotAvailableError",
    "default_registry",
    "WorkflowEngine",
    "WorkflowEngineConfig",
    "RunOptions",
    "StepResult",
    "WorkflowRunResult",
    "MissingInputError",
    "StepExecutionError",
    "run_workflow",
    "RunState",
    "RunObserver",
    "CallbackObserver",
    "TelemetryCollector",
    "WorkflowTestCase",
    "run_workflow_test",
    "run_all_tests",
]
