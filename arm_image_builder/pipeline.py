from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .build_state import BuildState

logger = logging.getLogger(__name__)


class StepAction(enum.Enum):
    CONTINUE = "continue"
    HALT = "halt"


class Step(Protocol):
    """A unit of build work with a guaranteed cleanup."""

    step_id: str

    def run(self, state: BuildState) -> StepAction:
        ...

    def cleanup(self, state: BuildState) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    action: StepAction
    ran_steps: List[str]
    halted_step: Optional[str] = None


def _cleanup_all(state: BuildState, ran: Sequence[Step]) -> None:
    for step in reversed(ran):
        logger.info("Cleaning up step %s", step.step_id)
        try:
            step.cleanup(state)
        except Exception as e:
            logger.exception("Cleanup of step %s failed", step.step_id)
            state.record_error(step.step_id, e)


def run_pipeline(*, state: BuildState, steps: Sequence[Step]) -> PipelineResult:
    """Run steps in order, then clean up every step that ran, newest first.

    The first step returning HALT (or raising) stops the run; its own cleanup
    is still part of the unwind. KeyboardInterrupt unwinds the same way and
    is re-raised afterwards.
    """

    ran: List[Step] = []
    halted_step: Optional[str] = None

    try:
        for step in steps:
            logger.info("Running step %s", step.step_id)
            ran.append(step)
            try:
                action = step.run(state)
            except Exception as e:
                logger.exception("Step %s failed", step.step_id)
                state.record_error(step.step_id, e)
                action = StepAction.HALT

            if action is StepAction.HALT:
                logger.error("Halting build at step %s", step.step_id)
                state.halted = True
                halted_step = step.step_id
                break
    except KeyboardInterrupt:
        logger.warning("Build cancelled; cleaning up")
        state.cancelled = True
        _cleanup_all(state, ran)
        raise

    _cleanup_all(state, ran)
    return PipelineResult(
        action=StepAction.HALT if halted_step else StepAction.CONTINUE,
        ran_steps=[s.step_id for s in ran],
        halted_step=halted_step,
    )
