from __future__ import annotations

import logging
from typing import Callable, Mapping

from ..build_state import BuildState, MissingStateError
from ..lib.chroot import ChrootCommunicator
from ..lib.command import CommandError
from ..pipeline import StepAction

logger = logging.getLogger(__name__)


class ProvisionStep:
    step_id = "40_provision"

    def __init__(
        self,
        communicator_factory: Callable[[str, Mapping[str, str]], ChrootCommunicator] = ChrootCommunicator,
    ) -> None:
        self.communicator_factory = communicator_factory

    def run(self, state: BuildState) -> StepAction:
        cfg = state.config
        try:
            build_root = state.require_build_root()
        except MissingStateError as e:
            logger.error("%s", e)
            state.record_error(self.step_id, e)
            return StepAction.HALT

        if state.dry_run:
            for f in cfg.file_uploads:
                logger.info("Would upload %s -> %s", f.source, f.destination)
            for d in cfg.directory_uploads:
                logger.info("Would upload directory %s -> %s", d.source, d.destination)
            for command in cfg.commands:
                logger.info("Would run in chroot: %s", command)
            return StepAction.CONTINUE

        comm = self.communicator_factory(build_root, cfg.chroot_env)

        try:
            for f in cfg.file_uploads:
                with open(f.source, "rb") as src:
                    comm.upload(f.destination, src)
            for d in cfg.directory_uploads:
                comm.upload_dir(d.destination, d.source, d.exclude)
        except (CommandError, OSError) as e:
            logger.error("%s", e)
            state.record_error(self.step_id, e)
            return StepAction.HALT

        for command in cfg.commands:
            logger.info("Provisioning with command: %s", command)
            try:
                status = comm.execute(command).wait()
            except OSError as e:
                logger.error("%s", e)
                state.record_error(self.step_id, e)
                return StepAction.HALT

            if status != 0:
                msg = f"Command exited with non-zero status {status}: {command}"
                logger.error(msg)
                state.record_error(self.step_id, msg)
                return StepAction.HALT

        return StepAction.CONTINUE

    def cleanup(self, state: BuildState) -> None:
        # Commands are waited on in run(); nothing is left behind
        pass
