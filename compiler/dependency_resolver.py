"""
Dependency graph construction and layered execution planning.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Dict, List, Mapping, Sequence, Set

from dwe.ir.references import step_references
from dwe.ir.spec_schema import StepKind, parse_step_kind, step_as_mapping, step_kind_name


class ExecutionPlanError(RuntimeError):
    """Raised when steps cannot be layered; validation should have caught this."""


def _branch_members(step: Mapping[str, Any]) -> List[str]:
    inputs = step.get("inputs")
    if not isinstance(inputs, Mapping):
        return []
    members: List[str] = []
    for branch in ("then", "else"):
        value = inputs.get(branch)
        if isinstance(value, list):
            members.extend(item for item in value if isinstance(item, str))
    return members


def _step_mappings(steps: Sequence[Any]) -> List[Mapping[str, Any]]:
    mappings = [step_as_mapping(step) for step in steps]
    return [step for step in mappings if isinstance(step, Mapping) and isinstance(step.get("id"), str)]


def build_dependency_graph(steps: Sequence[Any]) -> Dict[str, Set[str]]:
    """
    Map each step id to the ids it depends on.

    References to ids that are not steps are dropped here; the validator
    reports them. Members of a conditional's ``then``/``else`` lists depend on
    that conditional.
    """

    mappings = _step_mappings(steps)
    known = {step["id"] for step in mappings}
    graph: Dict[str, Set[str]] = {step["id"]: set() for step in mappings}

    for step in mappings:
        graph[step["id"]].update(ref for ref in step_references(step) if ref in known)

    for step in mappings:
        if parse_step_kind(step_kind_name(step)) is not StepKind.CONDITIONAL:
            continue
        for member in _branch_members(step):
            if member in graph and member != step["id"]:
                graph[member].add(step["id"])

    return graph


def build_execution_plan(steps: Sequence[Any]) -> List[List[str]]:
    return DependencyResolver(steps).layers()


class DependencyResolver:
    def __init__(self, steps: Sequence[Any]):
        self.order = [step["id"] for step in _step_mappings(steps)]
        self.graph = build_dependency_graph(steps)

    def dependencies(self, step_id: str) -> Set[str]:
        return set(self.graph.get(step_id, set()))

    def dependents(self) -> Dict[str, Set[str]]:
        reverse: Dict[str, Set[str]] = {node: set() for node in self.graph}
        for node, deps in self.graph.items():
            for dep in deps:
                reverse[dep].add(node)
        return reverse

    def roots(self) -> List[str]:
        return [node for node in self._ordered_nodes() if not self.graph[node]]

    def sinks(self) -> List[str]:
        reverse = self.dependents()
        return [node for node in self._ordered_nodes() if not reverse[node]]

    def layers(self) -> List[List[str]]:
        """Kahn's algorithm, collecting every ready step into the same layer."""

        in_degree: Dict[str, int] = {node: len(deps) for node, deps in self.graph.items()}
        reverse = self.dependents()
        position = {node: idx for idx, node in enumerate(self._ordered_nodes())}

        ready = [node for node in self._ordered_nodes() if in_degree[node] == 0]
        layers: List[List[str]] = []
        placed = 0
        while ready:
            layer = sorted(ready, key=position.__getitem__)
            layers.append(layer)
            placed += len(layer)
            ready = []
            for node in layer:
                for dependent in reverse[node]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        ready.append(dependent)

        if placed != len(self.graph):
            stuck = [node for node in self._ordered_nodes() if in_degree[node] > 0]
            raise ExecutionPlanError(
                f"Cannot plan steps with unresolved dependencies: {', '.join(stuck)}"
            )
        return layers

    def topological_order(self) -> List[str]:
        return [node for layer in self.layers() for node in layer]

    def has_path(self, source: str, target: str) -> bool:
        """True when ``target`` (transitively) depends on ``source``."""

        if source not in self.graph or target not in self.graph:
            return False
        reverse = self.dependents()
        queue = deque([source])
        visited: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current == target:
                return True
            if current in visited:
                continue
            visited.add(current)
            queue.extend(nxt for nxt in reverse[current] if nxt not in visited)
        return False

    def _ordered_nodes(self) -> List[str]:
        seen: Set[str] = set()
        ordered: List[str] = []
        for node in self.order:
            if node not in seen:
                seen.add(node)
                ordered.append(node)
        return ordered
