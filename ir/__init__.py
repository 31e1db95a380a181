from dwe.ir.spec_schema import InputSchema, StepKind, StepSpec, WorkflowDefinition
from dwe.ir.references import MISSING, extract_dependencies, resolve_template, step_references
from dwe.ir.validators import (
    DraftValidationResult,
    ValidationIssue,
    WorkflowValidationError,
    detect_cycles,
    ensure_valid,
    validate_schema_enhanced,
    validate_workflow,
)
from dwe.ir.loader import WorkflowSummary, list_workflows, load_workflow

__all__ = [
    "WorkflowDefinition",
    "StepSpec",
    "StepKind",
    "InputSchema",
    "MISSING",
    "extract_dependencies",
    "resolve_template",
    "step_references",
    "WorkflowValidationError",
    "ValidationIssue",
    "DraftValidationResult",
    "validate_workflow",
    "validate_schema_enhanced",
    "detect_cycles",
    "ensure_valid",
    "WorkflowSummary",
    "load_workflow",
    "list_workflows",
]
