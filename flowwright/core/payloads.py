"""Typed views over the branch and loop payloads.

Ordinary action payloads stay plain dictionaries; control-flow payloads are
parsed with pydantic so a malformed descriptor is caught at load time.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flowwright.core.ir import StepKind, StepNode
from flowwright.errors import StructuralError

DEFAULT_MAX_ITERATIONS = 100


class ConditionSpec(BaseModel):
    """What a branch (or a conditional loop) checks."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["selector", "url", "custom"] = "selector"
    selector: Optional[str] = None
    comparison: Literal["exists", "visible", "contains", "equals"] = "exists"
    value: Optional[str] = None
    expression: Optional[str] = None

    @property
    def url_fragment(self) -> str:
        return self.value or self.expression or ""


class LoopSpec(BaseModel):
    """Loop descriptor: fixed count, enumeration or a bounded while."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["count", "while", "forEach"] = "count"
    count: int = Field(1, ge=0)
    max_iterations: Optional[int] = Field(None, alias="maxIterations", ge=1)
    selector: Optional[str] = None
    condition: Optional[Union[ConditionSpec, str]] = None
    items: Optional[Union[List[str], str]] = None
    index_variable: str = Field("index", alias="indexVariable")
    item_variable: str = Field("item", alias="itemVariable")

    def limit(self, default: int = DEFAULT_MAX_ITERATIONS) -> int:
        return self.max_iterations or default

    def item_list(self) -> List[str]:
        if self.items is None:
            return []
        if isinstance(self.items, str):
            return [item.strip() for item in self.items.split(",") if item.strip()]
        return [str(item) for item in self.items]


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def condition_spec(node: StepNode) -> ConditionSpec:
    """Parse the condition carried by a branch node."""
    if node.kind != StepKind.BRANCH.value:
        raise StructuralError(f"Node {node.id} is a '{node.kind}', not a branch")
    try:
        return ConditionSpec.model_validate(node.payload)
    except ValidationError as exc:
        raise StructuralError(f"Invalid branch condition on node {node.id}: {_describe(exc)}") from exc


def loop_spec(node: StepNode) -> LoopSpec:
    """Parse the loop descriptor carried by a loop node."""
    if node.kind != StepKind.LOOP.value:
        raise StructuralError(f"Node {node.id} is a '{node.kind}', not a loop")
    try:
        return LoopSpec.model_validate(node.payload)
    except ValidationError as exc:
        raise StructuralError(f"Invalid loop descriptor on node {node.id}: {_describe(exc)}") from exc
