"""
Step runner — executes an ordered list of steps, fail-fast.

For each step, strictly in order:

    1. Evaluate the precondition.  True → SATISFIED, action skipped.
       If the probe itself raises, the step FAILS with a
       PreconditionCheckError: an unanswerable "already done?" is never
       read as "not done", because that would re-run a destructive action.
    2. Otherwise RUNNING → invoke the action.
    3. If a postcondition exists, it must return True, or the step FAILS
       even though the action raised nothing.

The first FAILED step halts the run.  Later steps are not attempted and
get no record.  No retries: a re-run resumes through the preconditions.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Callable, Sequence

from nodestrap.core.errors import PreconditionCheckError
from nodestrap.core.models.step import PipelineResult, Step, StepRecord, StepState

logger = logging.getLogger(__name__)

Sink = Callable[[StepRecord], None]


class PostconditionFailed(Exception):
    """Raised internally when a postcondition returns False."""


class StepRunner:
    """Run steps sequentially and collect a PipelineResult.

    Args:
        sink: Optional callback receiving a StepRecord at the start of
            each step (state RUNNING or PENDING) and again when it
            reaches its terminal state.
    """

    def __init__(self, sink: Sink | None = None):
        self._sink = sink

    def run(self, steps: Sequence[Step], pipeline: str = "", on_log: Sink | None = None) -> PipelineResult:
        sink = on_log or self._sink
        result = PipelineResult(pipeline=pipeline)

        names = [s.name for s in steps]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {', '.join(duplicates)}")

        total = len(steps)
        for index, step in enumerate(steps, start=1):
            record = self._run_step(step, index, total, sink)
            result.records.append(record)
            if record.failed:
                result.not_attempted = [s.name for s in steps[index:]]
                logger.error(
                    "Pipeline %s halted at step '%s' (%s); %d step(s) not attempted",
                    pipeline or "-", step.name, record.error_kind, len(result.not_attempted),
                )
                break

        if result.ok:
            logger.info(
                "Pipeline %s complete: %d succeeded, %d already satisfied",
                pipeline or "-",
                result.count(StepState.SUCCEEDED),
                result.count(StepState.SATISFIED),
            )
        return result

    def _run_step(self, step: Step, index: int, total: int, sink: Sink | None) -> StepRecord:
        record = StepRecord(name=step.name, description=step.description)
        start = time.monotonic()
        logger.info("[%d/%d] %s: starting", index, total, step.name)
        _emit(sink, record)

        try:
            satisfied = bool(step.precondition())
        except Exception as e:
            probe_error = PreconditionCheckError(f"precondition probe failed: {e}")
            probe_error.__cause__ = e
            return self._finish_failed(record, probe_error, start, sink)

        if satisfied:
            record.state = StepState.SATISFIED
            self._finish(record, start)
            logger.info("[%d/%d] %s: already satisfied", index, total, step.name)
            _emit(sink, record)
            return record

        record.state = StepState.RUNNING
        _emit(sink, record)
        try:
            output = step.action()
            if step.postcondition is not None and not step.postcondition():
                raise PostconditionFailed("postcondition not met after action completed")
        except Exception as e:
            return self._finish_failed(record, e, start, sink)

        record.state = StepState.SUCCEEDED
        record.output = "" if output is None else str(output)
        self._finish(record, start)
        logger.info("[%d/%d] %s: succeeded (%d ms)", index, total, step.name, record.duration_ms)
        _emit(sink, record)
        return record

    def _finish_failed(
        self,
        record: StepRecord,
        error: BaseException,
        start: float,
        sink: Sink | None,
    ) -> StepRecord:
        record.state = StepState.FAILED
        record.error = str(error) or error.__class__.__name__
        record.error_kind = error.__class__.__name__
        self._finish(record, start)
        logger.error("%s: failed — %s: %s", record.name, record.error_kind, record.error)
        logger.debug("%s: failure detail", record.name, exc_info=error)
        _emit(sink, record)
        return record

    @staticmethod
    def _finish(record: StepRecord, start: float) -> None:
        record.duration_ms = int((time.monotonic() - start) * 1000)
        record.ended_at = datetime.now(UTC).isoformat()


def _emit(sink: Sink | None, record: StepRecord) -> None:
    if sink is not None:
        sink(record.model_copy())
