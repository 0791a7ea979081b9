from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    output: str


class CommandError(RuntimeError):
    def __init__(self, result: CmdResult) -> None:
        self.result = result
        super().__init__(
            f"Command failed ({result.returncode}): {fmt_argv(result.argv)}\n{result.output}".rstrip()
        )


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    dry_run: bool = False,
) -> CmdResult:
    """Run a host command with combined stdout/stderr capture.

    - Always logs the command.
    - Output is kept on the result (and on CommandError) for diagnostics.
    - dry_run logs but does not execute.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    if dry_run:
        return CmdResult(argv=argv_list, returncode=0, output="")

    p = subprocess.run(
        argv_list,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        env=dict(os.environ, **(env or {})),
    )

    if p.stdout:
        logger.debug("OUTPUT %s", p.stdout.strip())

    result = CmdResult(argv=argv_list, returncode=p.returncode, output=p.stdout or "")
    if check and p.returncode != 0:
        raise CommandError(result)

    return result
