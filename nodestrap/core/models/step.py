"""
Step and result models — the execution contract of a pipeline.

A Step is what the pipeline builder produces; a StepRecord is what the
runner hands back for every step it touched; a PipelineResult collects
the records of one run.

State machine per step:
    PENDING → SATISFIED                 precondition already true
    PENDING → RUNNING → SUCCEEDED       action ran, postcondition held
    PENDING → RUNNING → FAILED          action raised or postcondition false
    PENDING → FAILED                    precondition probe could not run

Steps after a FAILED one are never attempted and get no record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Callable

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepState(StrEnum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _never_satisfied() -> bool:
    return False


@dataclass
class Step:
    """One named, host-mutating unit of work.

    ``precondition`` answers "is this already done?" and must not touch
    host state.  ``action`` is the only callable allowed to mutate the
    host; whatever it returns is kept as the step's output.
    ``postcondition`` is optional and verifies the action really worked.
    """

    name: str
    action: Callable[[], Any]
    precondition: Callable[[], bool] = _never_satisfied
    postcondition: Callable[[], bool] | None = None
    description: str = ""


class StepRecord(BaseModel):
    """Outcome of one step in one run."""

    name: str
    state: StepState = StepState.PENDING
    description: str = ""

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = ""
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.state in (StepState.SATISFIED, StepState.SUCCEEDED)

    @property
    def failed(self) -> bool:
        return self.state == StepState.FAILED


@dataclass
class PipelineResult:
    """Records of every step the runner attempted, in order."""

    pipeline: str = ""
    records: list[StepRecord] = field(default_factory=list)
    not_attempted: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(r.failed for r in self.records)

    @property
    def failed_step(self) -> StepRecord | None:
        for record in self.records:
            if record.failed:
                return record
        return None

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def record(self, name: str) -> StepRecord | None:
        for record in self.records:
            if record.name == name:
                return record
        return None

    def count(self, state: StepState) -> int:
        return sum(1 for r in self.records if r.state == state)

    def summary_lines(self) -> list[str]:
        """Human-readable one-line-per-step summary."""
        markers = {
            StepState.SATISFIED: "=",
            StepState.SUCCEEDED: "✓",
            StepState.FAILED: "✗",
        }
        lines = []
        for record in self.records:
            marker = markers.get(record.state, "?")
            line = f"{marker} {record.name}: {record.state}"
            if record.failed and record.error:
                line += f" — {record.error_kind}: {record.error}"
            lines.append(line)
        for name in self.not_attempted:
            lines.append(f"- {name}: not attempted")
        return lines

    def to_dict(self) -> dict:
        return {
            "pipeline": self.pipeline,
            "ok": self.ok,
            "satisfied": self.count(StepState.SATISFIED),
            "succeeded": self.count(StepState.SUCCEEDED),
            "failed": self.count(StepState.FAILED),
            "records": [r.model_dump(mode="json") for r in self.records],
            "not_attempted": list(self.not_attempted),
        }
