"""
Typed representation of workflow definitions for the Declarative Workflow Engine (DWE).
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class StepKind(str, Enum):
    # control flow
    MERGE = "merge"
    FILTER = "filter"
    TRANSFORM = "transform"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    TEMPLATE = "template"
    # retrieval
    QUERY = "query"
    SEARCH = "search"
    RERANK = "rerank"
    EMBED = "embed"
    SIMILARITY = "similarity"
    INGEST = "ingest"
    COLLECTIONS = "collections"
    MODELS = "models"
    EXPLAIN = "explain"
    ESTIMATE = "estimate"
    # code search
    CODE_INDEX = "code_index"
    CODE_SEARCH = "code_search"
    CODE_QUERY = "code_query"
    CODE_FIND_SIMILAR = "code_find_similar"
    CODE_STATUS = "code_status"
    # processing
    CHUNK = "chunk"
    AGGREGATE = "aggregate"
    # integration
    HTTP = "http"
    GENERATE = "generate"


CONTROL_FLOW_KINDS: FrozenSet[StepKind] = frozenset(
    {
        StepKind.MERGE,
        StepKind.FILTER,
        StepKind.TRANSFORM,
        StepKind.CONDITIONAL,
        StepKind.LOOP,
        StepKind.TEMPLATE,
    }
)
RETRIEVAL_KINDS: FrozenSet[StepKind] = frozenset(
    {
        StepKind.QUERY,
        StepKind.SEARCH,
        StepKind.RERANK,
        StepKind.EMBED,
        StepKind.SIMILARITY,
        StepKind.INGEST,
        StepKind.COLLECTIONS,
        StepKind.MODELS,
        StepKind.EXPLAIN,
        StepKind.ESTIMATE,
    }
)
CODE_KINDS: FrozenSet[StepKind] = frozenset(
    {
        StepKind.CODE_INDEX,
        StepKind.CODE_SEARCH,
        StepKind.CODE_QUERY,
        StepKind.CODE_FIND_SIMILAR,
        StepKind.CODE_STATUS,
    }
)
PROCESSING_KINDS: FrozenSet[StepKind] = frozenset({StepKind.CHUNK, StepKind.AGGREGATE})
INTEGRATION_KINDS: FrozenSet[StepKind] = frozenset({StepKind.HTTP, StepKind.GENERATE})
ALL_KINDS: FrozenSet[StepKind] = frozenset(StepKind)
TOOL_KINDS: FrozenSet[StepKind] = ALL_KINDS - CONTROL_FLOW_KINDS

# Kinds that can run on defaults alone.
INPUTS_OPTIONAL_KINDS: FrozenSet[StepKind] = frozenset(
    {StepKind.MODELS, StepKind.COLLECTIONS, StepKind.CODE_STATUS}
)

INPUT_TYPES = ("string", "number", "boolean", "array")


def parse_step_kind(value: Any) -> Optional[StepKind]:
    if isinstance(value, StepKind):
        return value
    if not isinstance(value, str):
        return None
    try:
        return StepKind(value)
    except ValueError:
        return None


def known_kind_names() -> List[str]:
    return sorted(kind.value for kind in StepKind)


class DefinitionModel(BaseModel):
    """Base model for workflow documents; tolerates keys it does not know."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class InputSchema(DefinitionModel):
    type: Literal["string", "number", "boolean", "array"] = "string"
    required: bool = False
    default: Optional[Any] = None
    description: Optional[str] = None

    def has_default(self) -> bool:
        return "default" in self.model_fields_set


class StepSpec(DefinitionModel):
    id: str
    tool: StepKind = Field(validation_alias=AliasChoices("tool", "kind"))
    name: Optional[str] = None
    description: Optional[str] = None
    inputs: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[str] = None
    for_each: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("forEach", "for_each"),
        serialization_alias="forEach",
    )
    continue_on_error: bool = Field(
        default=False,
        validation_alias=AliasChoices("continueOnError", "continue_on_error"),
        serialization_alias="continueOnError",
    )


class FormatterSpec(DefinitionModel):
    default_format: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("defaultFormat", "default_format"),
        serialization_alias="defaultFormat",
    )
    columns: List[str] = Field(default_factory=list)
    title: Optional[str] = None


class WorkflowDefinition(DefinitionModel):
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    inputs: Dict[str, InputSchema] = Field(default_factory=dict)
    defaults: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepSpec] = Field(default_factory=list)
    output: Optional[Any] = None
    formatters: Optional[FormatterSpec] = None

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def step_map(self) -> Dict[str, StepSpec]:
        return {step.id: step for step in self.steps}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, raw: str) -> "WorkflowDefinition":
        return cls.model_validate_json(raw)


def step_as_mapping(step: Union[StepSpec, Mapping[str, Any]]) -> Mapping[str, Any]:
    """Return a raw mapping view of a step so graph code can accept either form."""

    if isinstance(step, BaseModel):
        payload = step.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload["tool"] = step.tool.value if isinstance(step, StepSpec) else payload.get("tool")
        return payload
    return step


def step_kind_name(step: Mapping[str, Any]) -> Any:
    """Raw kind of a step mapping, accepting either the ``tool`` or ``kind`` key."""

    if "tool" in step:
        return step.get("tool")
    return step.get("kind")
