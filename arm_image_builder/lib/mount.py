from __future__ import annotations

import logging

from .command import CmdResult, run_cmd

logger = logging.getLogger(__name__)


def mount_device(device: str, path: str, *, fstype: str | None = None, dry_run: bool = False) -> CmdResult:
    argv = ["mount"]
    if fstype == "bind":
        argv.append("--bind")
    elif fstype:
        argv += ["-t", fstype]
    return run_cmd([*argv, device, path], dry_run=dry_run)


def umount_path(path: str, *, lazy: bool = False, dry_run: bool = False) -> CmdResult:
    argv = ["umount"]
    if lazy:
        # Detach now even if busy (a chrooted daemon may still hold /dev)
        argv.append("-lf")
    return run_cmd([*argv, path], dry_run=dry_run)
