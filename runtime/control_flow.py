"""
Built-in control-flow step kinds.

Each function receives inputs that the engine has already resolved, except
where noted: the ``condition`` of conditionals and filters and the loop's
nested ``step`` arrive raw so they can be resolved against the right context.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from dwe.ir.references import IDENTIFIER_RE, resolve_template, stringify
from dwe.ir.spec_schema import INPUTS_OPTIONAL_KINDS, StepKind, parse_step_kind, step_kind_name
from dwe.runtime.conditions import evaluate_condition, is_truthy

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100

# (step, resolved inputs, defaults, context) -> output
NestedDispatch = Callable[[Mapping[str, Any], Dict[str, Any], Dict[str, Any], Dict[str, Any]], Any]

# Inputs each kind receives unresolved, to be resolved later against the right context.
RAW_INPUT_KEYS: Dict[StepKind, Tuple[str, ...]] = {
    StepKind.CONDITIONAL: ("condition",),
    StepKind.FILTER: ("condition",),
    StepKind.LOOP: ("step",),
}


def resolve_step_inputs(step: Mapping[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    raw_inputs = step.get("inputs")
    kind = parse_step_kind(step_kind_name(step))
    if raw_inputs is None and kind in INPUTS_OPTIONAL_KINDS:
        return {}
    raw_inputs = raw_inputs or {}
    keep_raw = RAW_INPUT_KEYS.get(kind, ())
    return {
        key: value if key in keep_raw else resolve_template(value, context)
        for key, value in raw_inputs.items()
    }


def execute_merge(inputs: Mapping[str, Any]) -> Dict[str, Any]:
    arrays = inputs.get("arrays")
    if not isinstance(arrays, list):
        raise ValueError('merge: "arrays" input must be an array of arrays')

    merged: List[Any] = []
    for array in arrays:
        if isinstance(array, list):
            merged.extend(array)

    dedup_field = inputs.get("dedup_field")
    if is_truthy(inputs.get("dedup")) and dedup_field:
        seen = set()
        unique: List[Any] = []
        for item in merged:
            key = item.get(dedup_field) if isinstance(item, Mapping) else item
            marker = _hashable(key)
            if marker in seen:
                continue
            seen.add(marker)
            unique.append(item)
        merged = unique

    return {"results": merged, "resultCount": len(merged)}


def _hashable(value: Any) -> Any:
    try:
        hash(value)
        return value
    except TypeError:
        return repr(value)


def execute_filter(inputs: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
    array = inputs.get("array")
    condition = inputs.get("condition")
    if not isinstance(array, list):
        raise ValueError('filter: "array" input must be an array')
    if not condition or not isinstance(condition, str):
        raise ValueError('filter: "condition" must be a string expression')

    results = [item for item in array if evaluate_condition(condition, {**context, "item": item})]
    return {"results": results, "resultCount": len(results)}


def execute_transform(inputs: Mapping[str, Any]) -> Dict[str, Any]:
    array = inputs.get("array")
    if not isinstance(array, list):
        raise ValueError('transform: "array" input must be an array')

    fields = inputs.get("fields")
    mapping = inputs.get("mapping")
    if fields:
        results = [
            {field: item[field] for field in fields if field in item}
            if isinstance(item, Mapping)
            else item
            for item in array
        ]
    elif mapping:
        results = [
            {
                new_key: item[source] if isinstance(source, str) and source in item else source
                for new_key, source in mapping.items()
            }
            if isinstance(item, Mapping)
            else item
            for item in array
        ]
    else:
        results = list(array)

    return {"results": results, "resultCount": len(results)}


def execute_conditional(inputs: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
    condition = inputs.get("condition")
    if condition is None:
        raise ValueError('conditional: "condition" input is required')

    then_steps = inputs.get("then")
    else_steps = inputs.get("else") or []
    if not isinstance(then_steps, list):
        raise ValueError('conditional: "then" must be an array of step ids')
    if not isinstance(else_steps, list):
        raise ValueError('conditional: "else" must be an array of step ids')

    if isinstance(condition, bool):
        result = condition
    elif isinstance(condition, str):
        result = evaluate_condition(condition, context)
    else:
        result = is_truthy(condition)

    enabled, skipped = (then_steps, else_steps) if result else (else_steps, then_steps)
    return {
        "conditionResult": result,
        "branchTaken": "then" if result else "else",
        "enabledSteps": list(enabled),
        "skippedSteps": list(skipped),
    }


def execute_template(inputs: Mapping[str, Any]) -> Dict[str, Any]:
    text = inputs.get("text")
    if text is None:
        raise ValueError('template: "text" input is required')
    rendered = text if isinstance(text, str) else stringify(text)
    return {"text": rendered, "charCount": len(rendered)}


def execute_loop(
    inputs: Mapping[str, Any],
    defaults: Dict[str, Any],
    context: Dict[str, Any],
    dispatch: NestedDispatch,
    *,
    step_id: str = "loop",
    max_iterations: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Run the nested ``step`` once per element of ``items``.

    Failures are collected per index and do not stop the loop. Items beyond
    the iteration cap are dropped with a single truncation error.
    """

    items = inputs.get("items")
    binding = inputs.get("as")
    nested = inputs.get("step")
    if not isinstance(items, list):
        raise ValueError('loop: "items" must be an array')
    if not binding or not isinstance(binding, str):
        raise ValueError('loop: "as" is required (the variable name for each item)')
    if not IDENTIFIER_RE.match(binding):
        raise ValueError(f'loop: "as" must be a valid identifier, got "{binding}"')
    if not isinstance(nested, Mapping):
        raise ValueError('loop: "step" is required (the step to run for each item)')

    cap = inputs.get("maxIterations")
    if not isinstance(cap, int) or isinstance(cap, bool) or cap < 0:
        cap = max_iterations if max_iterations is not None else DEFAULT_MAX_ITERATIONS

    results: List[Any] = []
    errors: List[Dict[str, Any]] = []
    for index, item in enumerate(items[:cap]):
        iteration_context = {**context, binding: item, "index": index}
        iteration_step = {**nested, "id": f"{step_id}[{index}]"}
        try:
            resolved = resolve_step_inputs(iteration_step, iteration_context)
            results.append(dispatch(iteration_step, resolved, defaults, iteration_context))
        except Exception as exc:
            LOGGER.debug("Loop %s iteration %d failed: %s", step_id, index, exc)
            errors.append({"index": index, "error": str(exc)})

    if len(items) > cap:
        errors.append(
            {
                "index": cap,
                "error": f"Loop truncated: {len(items)} items exceeds maxIterations ({cap})",
            }
        )

    return {"results": results, "errors": errors, "iterations": len(results)}
