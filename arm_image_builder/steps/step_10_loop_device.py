from __future__ import annotations

import logging

from ..build_state import BuildState
from ..pipeline import StepAction

logger = logging.getLogger(__name__)


class UseLoopDeviceStep:
    """Publish the loop device the image is attached to.

    Attaching and detaching belongs to the caller (losetup -P, kpartx, ...).
    """

    step_id = "10_loop_device"

    def run(self, state: BuildState) -> StepAction:
        loop_device = state.loop_device or state.config.loop_device
        if not loop_device:
            logger.error("No loop device configured (image.loop_device or --loop-device)")
            return StepAction.HALT

        state.loop_device = loop_device
        logger.info("Using loop device %s", loop_device)
        return StepAction.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        pass
