"""Live execution of flow graphs."""

from .results import Diagnostics, RunResult, RunStatus, StepResult, StepStatus
from .runner import FlowRunner, run_flow
from .telemetry import CallbackTelemetry, NullTelemetry, RecordingTelemetry, TelemetrySink
from .variables import VariableStore

__all__ = [
    "Diagnostics",
    "RunResult",
    "RunStatus",
    "StepResult",
    "StepStatus",
    "FlowRunner",
    "run_flow",
    "CallbackTelemetry",
    "NullTelemetry",
    "RecordingTelemetry",
    "TelemetrySink",
    "VariableStore",
]
