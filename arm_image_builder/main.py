from __future__ import annotations

import argparse
import logging
from typing import Optional

from .build_config import load_build_config
from .build_state import BuildState, save_build_state
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import PipelineResult, StepAction, run_pipeline
from .steps import ChrootMountsStep, MountImageStep, ProvisionStep, UseLoopDeviceStep

logger = logging.getLogger(__name__)


DEFAULT_BUILD_CONFIG = "build.yaml"
DEFAULT_BUILD_STATE = "build/build_state.json"


def build_steps(*, mount_path: Optional[str] = None):
    return [
        UseLoopDeviceStep(),
        MountImageStep(mount_path=mount_path),
        ChrootMountsStep(),
        ProvisionStep(),
    ]


def run_build(
    *,
    config_path: str,
    state_path: str,
    log_path: str,
    loop_device: Optional[str] = None,
    mount_path: Optional[str] = None,
    dry_run: bool = False,
) -> PipelineResult:
    configure_logging(log_path=log_path)

    cfg = load_build_config(config_path)
    state = BuildState(config=cfg, dry_run=dry_run or cfg.dry_run, loop_device=loop_device)

    result: Optional[PipelineResult] = None
    try:
        result = run_pipeline(state=state, steps=build_steps(mount_path=mount_path))
        return result
    finally:
        summary = state.summary()
        if result is not None:
            summary["ran_steps"] = result.ran_steps
            summary["halted_step"] = result.halted_step
        save_build_state(state_path, summary)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="arm-image-builder")
    p.add_argument("--config", default=DEFAULT_BUILD_CONFIG)
    p.add_argument("--state", default=DEFAULT_BUILD_STATE, help="Where to write the run summary (json)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH)
    p.add_argument("--loop-device", default=None, help="Attached loop device (e.g. /dev/loop0)")
    p.add_argument("--mount-path", default=None, help="Build root (default: a fresh temp dir)")
    p.add_argument("--dry-run", action="store_true")

    args = p.parse_args(argv)

    result = run_build(
        config_path=args.config,
        state_path=args.state,
        log_path=args.log,
        loop_device=args.loop_device,
        mount_path=args.mount_path,
        dry_run=bool(args.dry_run),
    )
    if result.action is StepAction.HALT:
        logger.error("Build halted at %s", result.halted_step)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
