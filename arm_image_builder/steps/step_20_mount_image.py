from __future__ import annotations

import logging
import os
import tempfile
from typing import List, Optional

from ..build_state import BuildState, MissingStateError
from ..lib.command import CommandError
from ..lib.mount import mount_device, umount_path
from ..lib.partitions import mount_plan
from ..pipeline import StepAction

logger = logging.getLogger(__name__)


class MountImageStep:
    """Mount the image partitions under a build root.

    Partitions are mounted parents first (ascending mountpoint) and
    unmounted children first. A failure while mounting only halts; whatever
    got mounted is released by cleanup().
    """

    step_id = "20_mount_image"

    def __init__(self, mount_path: Optional[str] = None) -> None:
        self.mount_path = mount_path
        self.build_root: Optional[str] = None
        self.mountpoints: List[str] = []
        self.torn_down = False

    def _resolve_build_root(self, state: BuildState) -> str:
        mount_path = self.mount_path or state.config.mount_path
        if mount_path:
            os.makedirs(mount_path, mode=0o777, exist_ok=True)
            return mount_path
        return tempfile.mkdtemp(prefix="arm-image-builder-")

    def run(self, state: BuildState) -> StepAction:
        if self.torn_down:
            raise RuntimeError(f"{self.step_id} already torn down; use a new step instance")

        try:
            loop_device = state.require_loop_device()
            self.build_root = self._resolve_build_root(state)
        except (MissingStateError, OSError) as e:
            logger.error("%s", e)
            state.record_error(self.step_id, e)
            return StepAction.HALT

        for partition, mountpoint in mount_plan(self.build_root, state.config.partitions):
            device = partition.device_path(loop_device)
            try:
                if state.dry_run:
                    logger.info("Would create %s", mountpoint)
                else:
                    os.makedirs(mountpoint, mode=0o755, exist_ok=True)

                logger.info("mounting %s to %s", device, mountpoint)
                mount_device(device, mountpoint, dry_run=state.dry_run)
            except (CommandError, OSError) as e:
                logger.error("%s", e)
                state.record_error(self.step_id, e)
                return StepAction.HALT

            self.mountpoints.append(mountpoint)

        state.build_root = self.build_root
        return StepAction.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        if not self.build_root:
            return

        # Whole plan, not just self.mountpoints
        for _, mountpoint in mount_plan(self.build_root, state.config.partitions, reverse=True):
            try:
                umount_path(mountpoint, dry_run=state.dry_run)
            except CommandError as e:
                logger.error("%s", e)
                state.record_error(self.step_id, e)
        self.mountpoints = []

        # rmdir only: the tree may still hold a stuck mount
        try:
            os.rmdir(self.build_root)
        except OSError as e:
            logger.error("%s", e)
            state.record_error(self.step_id, e)

        self.build_root = None
        self.torn_down = True
