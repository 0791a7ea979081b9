from __future__ import annotations

import logging
import os
from typing import List

from ..build_state import BuildState, MissingStateError
from ..lib.command import CommandError
from ..lib.mount import mount_device, umount_path
from ..lib.partitions import join_under
from ..pipeline import StepAction

logger = logging.getLogger(__name__)


class ChrootMountsStep:
    """Expose host /dev, /proc, /sys (or configured mounts) inside the build root."""

    step_id = "30_chroot_mounts"

    def __init__(self) -> None:
        self.mounted: List[str] = []

    def run(self, state: BuildState) -> StepAction:
        try:
            build_root = state.require_build_root()
        except MissingStateError as e:
            logger.error("%s", e)
            state.record_error(self.step_id, e)
            return StepAction.HALT

        for m in state.config.chroot_mounts:
            target = join_under(build_root, m.target)
            try:
                if not state.dry_run:
                    os.makedirs(target, mode=0o755, exist_ok=True)
                mount_device(m.source, target, fstype=m.type, dry_run=state.dry_run)
            except (CommandError, OSError) as e:
                logger.error("%s", e)
                state.record_error(self.step_id, e)
                return StepAction.HALT
            self.mounted.append(target)

        return StepAction.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        while self.mounted:
            target = self.mounted.pop()
            try:
                umount_path(target, lazy=True, dry_run=state.dry_run)
            except CommandError as e:
                logger.error("%s", e)
                state.record_error(self.step_id, e)
