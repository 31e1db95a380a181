"""Declarative Workflow Engine package."""

from dwe.ir import WorkflowDefinition, WorkflowValidationError, load_workflow, validate_workflow
from dwe.runtime import RunOptions, WorkflowEngine, WorkflowRunResult, run_workflow

__all__ = [
    "WorkflowDefinition",
    "WorkflowValidationError",
    "validate_workflow",
    "load_workflow",
    "WorkflowEngine",
    "RunOptions",
    "WorkflowRunResult",
    "run_workflow",
]
