"""
Validation for workflow definitions.

``validate_workflow`` runs the same checks in two reporting modes. Strict mode
returns a flat list of error strings (an empty list means the definition may
run). Draft mode returns severity-tagged issues so authoring tools can work
with a definition that is still incomplete.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from dwe.compiler.dependency_resolver import build_dependency_graph
from dwe.ir.references import IDENTIFIER_RE, step_references
from dwe.ir.spec_schema import (
    INPUT_TYPES,
    INPUTS_OPTIONAL_KINDS,
    StepKind,
    known_kind_names,
    parse_step_kind,
    step_kind_name,
)

LOGGER = logging.getLogger(__name__)

STRICT = "strict"
DRAFT = "draft"

RESERVED_STEP_IDS = frozenset(
    {
        "index",
        "inputs",
        "defaults",
        "item",
        "true",
        "false",
        "null",
        "undefined",
        "output",
        "input",
        "step",
        "steps",
    }
)

SCHEMA_LIMITS: Dict[str, int] = {
    "maxSteps": 50,
    "maxInputs": 20,
    "maxNameLength": 64,
    "minDescriptionLength": 10,
}

SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")

# code -> (strict severity, draft severity); draft-only codes have no strict entry.
SEVERITIES: Dict[str, tuple] = {
    "INVALID_DEFINITION": ("error", "error"),
    "MISSING_STEPS": ("error", "error"),
    "MISSING_WORKFLOW_NAME": ("error", "info"),
    "INVALID_INPUT_TYPE": ("error", "error"),
    "MISSING_STEP_ID": ("error", "error"),
    "INVALID_STEP_ID": ("error", "error"),
    "RESERVED_STEP_ID": ("error", "error"),
    "MISSING_TOOL": ("error", "error"),
    "INVALID_TOOL": ("error", "error"),
    "MISSING_INPUTS": ("error", "error"),
    "INVALID_CONDITION": ("error", "error"),
    "EMPTY_CONDITION": ("error", "info"),
    "INVALID_FOREACH": ("error", "error"),
    "DUPLICATE_ID": ("error", "error"),
    "MISSING_REQUIRED_INPUT": ("error", "info"),
    "INVALID_BRANCH": ("error", "error"),
    "INVALID_LOOP_BINDING": ("error", "error"),
    "UNKNOWN_STEP_REF": ("error", "warning"),
    "CIRCULAR_DEPENDENCY": ("error", "error"),
    "MISSING_STEP_NAME": (None, "info"),
    "ORPHAN_NODE": (None, "info"),
}


class WorkflowValidationError(ValueError):
    """Raised when a workflow definition fails strict validation."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        detail = "; ".join(self.errors) if self.errors else "unknown error"
        super().__init__(f"Invalid workflow: {detail}")


class ValidationIssue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    severity: str
    code: str
    message: str
    step_id: Optional[str] = Field(default=None, alias="stepId")
    field: Optional[str] = None
    referenced_step: Optional[str] = Field(default=None, alias="referencedStep")


class ValidationStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_steps: int = Field(default=0, alias="totalSteps")
    errors: int = 0
    warnings: int = 0
    info: int = 0


class DraftValidationResult(BaseModel):
    valid: bool
    mode: str = DRAFT
    issues: List[ValidationIssue] = Field(default_factory=list)
    stats: ValidationStats = Field(default_factory=ValidationStats)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class _IssueCollector:
    def __init__(self, mode: str):
        self.mode = mode
        self.issues: List[ValidationIssue] = []

    def add(
        self,
        code: str,
        message: str,
        *,
        step_id: Optional[str] = None,
        field: Optional[str] = None,
        referenced_step: Optional[str] = None,
    ) -> None:
        strict_severity, draft_severity = SEVERITIES[code]
        severity = draft_severity if self.mode == DRAFT else strict_severity
        if severity is None:
            return
        self.issues.append(
            ValidationIssue(
                severity=severity,
                code=code,
                message=message,
                step_id=step_id,
                field=field,
                referenced_step=referenced_step,
            )
        )


def validate_workflow(
    definition: Any, mode: str = STRICT
) -> Union[List[str], DraftValidationResult]:
    """Validate a raw workflow definition (a mapping as loaded from JSON)."""

    if mode not in (STRICT, DRAFT):
        raise ValueError(f"Unknown validation mode: {mode!r}")
    if isinstance(definition, BaseModel):
        definition = definition.model_dump(mode="json", by_alias=True, exclude_none=True)

    collector = _IssueCollector(mode)
    steps = _collect_issues(definition, collector)

    if mode == STRICT:
        errors = [issue.message for issue in collector.issues if issue.severity == "error"]
        if errors:
            LOGGER.info("Workflow validation failed with %d error(s)", len(errors))
        return errors

    stats = ValidationStats(
        total_steps=len(steps),
        errors=sum(1 for issue in collector.issues if issue.severity == "error"),
        warnings=sum(1 for issue in collector.issues if issue.severity == "warning"),
        info=sum(1 for issue in collector.issues if issue.severity == "info"),
    )
    return DraftValidationResult(valid=stats.errors == 0, issues=collector.issues, stats=stats)


def _collect_issues(definition: Any, collector: _IssueCollector) -> List[Any]:
    if not isinstance(definition, Mapping):
        collector.add("INVALID_DEFINITION", "Workflow definition must be a JSON object")
        return []

    name = definition.get("name")
    if not name or not isinstance(name, str):
        collector.add("MISSING_WORKFLOW_NAME", 'Workflow must have a "name" string')

    steps = definition.get("steps")
    if not isinstance(steps, list) or not steps:
        collector.add("MISSING_STEPS", 'Workflow must have a non-empty "steps" array')
        return []

    _check_inputs(definition.get("inputs"), collector)

    all_ids: Set[str] = {
        step["id"]
        for step in steps
        if isinstance(step, Mapping) and isinstance(step.get("id"), str) and step["id"]
    }
    seen: Set[str] = set()
    duplicates: List[str] = []
    valid_steps: List[Mapping[str, Any]] = []

    for index, step in enumerate(steps):
        step_id = step.get("id") if isinstance(step, Mapping) else None
        if not step_id or not isinstance(step_id, str):
            collector.add("MISSING_STEP_ID", f'Step {index}: must have a string "id"')
            continue

        if step_id in seen and step_id not in duplicates:
            duplicates.append(step_id)
        seen.add(step_id)
        valid_steps.append(step)
        _check_step(step, collector)

    for step_id in duplicates:
        collector.add("DUPLICATE_ID", f'Duplicate step id: "{step_id}"', step_id=step_id)

    for step in valid_steps:
        kind = parse_step_kind(step_kind_name(step))
        if kind is StepKind.CONDITIONAL:
            _check_conditional(step, collector)
        elif kind is StepKind.LOOP:
            _check_loop(step, collector)

    for step in valid_steps:
        _check_references(step, all_ids, collector)

    for cycle in detect_cycles(valid_steps):
        collector.add("CIRCULAR_DEPENDENCY", format_cycle(cycle), step_id=cycle[0])

    if collector.mode == DRAFT:
        for step in valid_steps:
            if not step.get("name"):
                collector.add(
                    "MISSING_STEP_NAME",
                    f'Step "{step["id"]}": has no "name" (add one for readable output)',
                    step_id=step["id"],
                    field="name",
                )
        for step_id in _orphan_steps(valid_steps, all_ids):
            collector.add(
                "ORPHAN_NODE",
                f'Step "{step_id}": not connected to any other step',
                step_id=step_id,
            )

    return steps


def _check_inputs(inputs: Any, collector: _IssueCollector) -> None:
    if not isinstance(inputs, Mapping):
        return
    for key, schema in inputs.items():
        if not isinstance(schema, Mapping):
            collector.add("INVALID_INPUT_TYPE", f'Input "{key}" must be an object')
            continue
        input_type = schema.get("type")
        if input_type and input_type not in INPUT_TYPES:
            collector.add(
                "INVALID_INPUT_TYPE",
                f'Input "{key}" has invalid type "{input_type}" '
                "(must be string, number, boolean, or array)",
                field=f"inputs.{key}.type",
            )


def _check_step(step: Mapping[str, Any], collector: _IssueCollector) -> None:
    step_id = step["id"]
    prefix = f'Step "{step_id}"'

    if not IDENTIFIER_RE.match(step_id):
        collector.add(
            "INVALID_STEP_ID",
            f"{prefix}: id must start with a letter or underscore and contain only "
            "letters, digits and underscores",
            step_id=step_id,
            field="id",
        )
    if step_id in RESERVED_STEP_IDS:
        collector.add(
            "RESERVED_STEP_ID",
            f'{prefix}: id "{step_id}" is a reserved word',
            step_id=step_id,
            field="id",
        )

    tool = step_kind_name(step)
    kind = parse_step_kind(tool)
    if not tool or not isinstance(tool, str):
        collector.add("MISSING_TOOL", f'{prefix}: must have a string "tool"', step_id=step_id, field="tool")
    elif kind is None:
        collector.add(
            "INVALID_TOOL",
            f'{prefix}: unknown tool "{tool}" (available: {", ".join(known_kind_names())})',
            step_id=step_id,
            field="tool",
        )

    inputs = step.get("inputs")
    inputs_optional = kind in INPUTS_OPTIONAL_KINDS and inputs is None
    if not inputs_optional and not isinstance(inputs, Mapping):
        collector.add("MISSING_INPUTS", f'{prefix}: must have an "inputs" object', step_id=step_id, field="inputs")

    if "condition" in step and step["condition"] is not None:
        condition = step["condition"]
        if not isinstance(condition, str):
            collector.add("INVALID_CONDITION", f'{prefix}: "condition" must be a string', step_id=step_id, field="condition")
        elif not condition.strip():
            collector.add("EMPTY_CONDITION", f'{prefix}: "condition" is empty', step_id=step_id, field="condition")

    if "forEach" in step and step["forEach"] is not None and not isinstance(step["forEach"], str):
        collector.add("INVALID_FOREACH", f'{prefix}: "forEach" must be a string', step_id=step_id, field="forEach")


def _require_input(step: Mapping[str, Any], key: str, collector: _IssueCollector) -> bool:
    inputs = step.get("inputs") if isinstance(step.get("inputs"), Mapping) else {}
    if inputs.get(key) is None:
        collector.add(
            "MISSING_REQUIRED_INPUT",
            f'Step "{step["id"]}": {step_kind_name(step)} requires "inputs.{key}"',
            step_id=step["id"],
            field=f"inputs.{key}",
        )
        return False
    return True


def _check_conditional(step: Mapping[str, Any], collector: _IssueCollector) -> None:
    _require_input(step, "condition", collector)
    _require_input(step, "then", collector)
    inputs = step.get("inputs") if isinstance(step.get("inputs"), Mapping) else {}
    for branch in ("then", "else"):
        value = inputs.get(branch)
        if value is not None and not isinstance(value, list):
            collector.add(
                "INVALID_BRANCH",
                f'Step "{step["id"]}": "{branch}" must be an array of step ids',
                step_id=step["id"],
                field=f"inputs.{branch}",
            )


def _check_loop(step: Mapping[str, Any], collector: _IssueCollector) -> None:
    step_id = step["id"]
    _require_input(step, "items", collector)
    inputs = step.get("inputs") if isinstance(step.get("inputs"), Mapping) else {}

    if _require_input(step, "as", collector):
        binding = inputs["as"]
        if not isinstance(binding, str) or not IDENTIFIER_RE.match(binding):
            collector.add(
                "INVALID_LOOP_BINDING",
                f'Step "{step_id}": "as" must be a valid identifier',
                step_id=step_id,
                field="inputs.as",
            )

    if _require_input(step, "step", collector):
        nested = inputs["step"]
        nested_tool = step_kind_name(nested) if isinstance(nested, Mapping) else None
        if parse_step_kind(nested_tool) is None:
            collector.add(
                "INVALID_TOOL",
                f'Step "{step_id}": loop step has unknown tool "{nested_tool}"',
                step_id=step_id,
                field="inputs.step.tool",
            )


def _branch_members(step: Mapping[str, Any]) -> List[str]:
    if parse_step_kind(step_kind_name(step)) is not StepKind.CONDITIONAL:
        return []
    inputs = step.get("inputs") if isinstance(step.get("inputs"), Mapping) else {}
    members: List[str] = []
    for branch in ("then", "else"):
        value = inputs.get(branch)
        if isinstance(value, list):
            members.extend(item for item in value if isinstance(item, str))
    return members


def _check_references(step: Mapping[str, Any], known: Set[str], collector: _IssueCollector) -> None:
    step_id = step["id"]
    for ref in sorted(step_references(step)):
        if ref not in known:
            collector.add(
                "UNKNOWN_STEP_REF",
                f'Step "{step_id}": references unknown step "{ref}"',
                step_id=step_id,
                referenced_step=ref,
            )
    for member in _branch_members(step):
        if member not in known:
            collector.add(
                "UNKNOWN_STEP_REF",
                f'Step "{step_id}": branch references unknown step "{member}"',
                step_id=step_id,
                referenced_step=member,
            )


def _orphan_steps(steps: List[Mapping[str, Any]], known: Set[str]) -> List[str]:
    if len(steps) <= 1:
        return []

    outbound: Dict[str, Set[str]] = {}
    for step in steps:
        refs = set(step_references(step)) | set(_branch_members(step))
        refs.discard(step["id"])
        outbound.setdefault(step["id"], set()).update(refs)

    referenced: Set[str] = set()
    for refs in outbound.values():
        referenced.update(refs & known)

    return [
        step_id
        for step_id, refs in outbound.items()
        if not refs and step_id not in referenced
    ]


def detect_cycles(steps: Sequence[Any]) -> List[List[str]]:
    """
    Find dependency cycles with a three-colour depth-first search.

    Returns one closed path (first node repeated at the end) for the first
    cycle reached from each unvisited root.
    """

    graph = build_dependency_graph(steps)
    white, grey, black = 0, 1, 2
    colour: Dict[str, int] = {node: white for node in graph}
    cycles: List[List[str]] = []

    def visit(node: str, path: List[str]) -> bool:
        colour[node] = grey
        path.append(node)
        for dep in sorted(graph[node]):
            if dep not in graph:
                continue
            if colour[dep] == grey:
                cycles.append(path[path.index(dep):] + [dep])
                return True
            if colour[dep] == white and visit(dep, path):
                return True
        path.pop()
        colour[node] = black
        return False

    for node in graph:
        if colour[node] == white:
            visit(node, [])
    return cycles


def format_cycle(cycle: Sequence[str]) -> str:
    return f"Circular dependency: {' -> '.join(cycle)}"


def validate_schema_enhanced(definition: Any) -> List[str]:
    """Publish-readiness checks layered over strict validation."""

    errors = list(validate_workflow(definition, mode=STRICT))
    if not isinstance(definition, Mapping):
        return errors

    name = definition.get("name")
    if isinstance(name, str) and len(name) > SCHEMA_LIMITS["maxNameLength"]:
        errors.append(
            f"Workflow name too long ({len(name)} chars, max {SCHEMA_LIMITS['maxNameLength']})"
        )

    description = definition.get("description")
    if not isinstance(description, str) or len(description.strip()) < SCHEMA_LIMITS["minDescriptionLength"]:
        errors.append(
            f"Description must be at least {SCHEMA_LIMITS['minDescriptionLength']} characters"
        )

    version = definition.get("version")
    if not isinstance(version, str) or not SEMVER_RE.match(version):
        errors.append(f'Version must be valid semver (e.g. 1.0.0), got "{version}"')

    inputs = definition.get("inputs")
    if isinstance(inputs, Mapping):
        if len(inputs) > SCHEMA_LIMITS["maxInputs"]:
            errors.append(f"Too many inputs ({len(inputs)}, max {SCHEMA_LIMITS['maxInputs']})")
        for key, schema in inputs.items():
            if isinstance(schema, Mapping) and not schema.get("description"):
                errors.append(f'Input "{key}" missing description')

    steps = definition.get("steps")
    if isinstance(steps, list):
        if len(steps) > SCHEMA_LIMITS["maxSteps"]:
            errors.append(f"Too many steps ({len(steps)}, max {SCHEMA_LIMITS['maxSteps']})")
        for step in steps:
            if isinstance(step, Mapping) and not step.get("name"):
                errors.append(f'Step "{step.get("id")}" missing "name" field')

    if not definition.get("output"):
        errors.append('Workflow must have an "output" section')

    return errors


def ensure_valid(definition: Any) -> None:
    """Raise ``WorkflowValidationError`` when strict validation reports errors."""

    errors = validate_workflow(definition, mode=STRICT)
    if errors:
        raise WorkflowValidationError(errors)
