"""Run and step records produced by the interpreter."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    STOPPED = "stopped"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Diagnostics:
    """Page and element state captured when a step fails."""

    message: str
    error_type: str
    url: Optional[str] = None
    title: Optional[str] = None
    selector: Optional[str] = None
    element_count: Optional[int] = None
    element_found: Optional[bool] = None
    element_visible: Optional[bool] = None
    element_details: Optional[Dict[str, Any]] = None
    selector_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "message": self.message,
            "errorType": self.error_type,
            "url": self.url,
            "title": self.title,
            "selector": self.selector,
            "elementCount": self.element_count,
            "elementFound": self.element_found,
            "elementVisible": self.element_visible,
            "elementDetails": self.element_details,
            "selectorError": self.selector_error,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class StepResult:
    step_id: str
    kind: str
    label: str = ""
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[int] = None
    ended_at: Optional[int] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    diagnostics: Optional[Diagnostics] = None
    screenshot: Optional[str] = None
    runs: int = 0
    # Branch result (bool) or number of loop iterations
    outcome: Any = None

    def mark_running(self) -> None:
        self.status = StepStatus.RUNNING
        self.started_at = now_ms()
        self.ended_at = None
        self.duration_ms = None
        self.runs += 1

    def mark_finished(self, status: StepStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.ended_at = now_ms()
        if self.started_at is not None:
            self.duration_ms = self.ended_at - self.started_at
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stepId": self.step_id,
            "kind": self.kind,
            "label": self.label,
            "status": self.status.value,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "runs": self.runs,
        }
        if self.outcome is not None:
            data["outcome"] = self.outcome
        if self.error:
            data["error"] = self.error
        if self.diagnostics:
            data["diagnostics"] = self.diagnostics.to_dict()
        if self.screenshot:
            data["screenshot"] = self.screenshot
        return data


@dataclass
class RunResult:
    flow_name: str
    status: RunStatus = RunStatus.PENDING
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[int] = None
    ended_at: Optional[int] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    def step(self, step_id: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.step_id == step_id:
                return result
        return None

    def by_status(self, status: StepStatus) -> List[StepResult]:
        return [s for s in self.steps if s.status == status]

    @property
    def passed(self) -> bool:
        return self.status == RunStatus.PASSED

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "flow": self.flow_name,
            "status": self.status.value,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
            "variables": dict(self.variables),
        }
        if self.error:
            data["error"] = self.error
        return data
