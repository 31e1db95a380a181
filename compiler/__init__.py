from dwe.compiler.dependency_resolver import (
    DependencyResolver,
    ExecutionPlanError,
    build_dependency_graph,
    build_execution_plan,
)

__all__ = ["DependencyResolver", "ExecutionPlanError", "build_dependency_graph", "build_execution_plan"]
