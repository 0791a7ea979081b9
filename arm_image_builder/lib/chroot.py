from __future__ import annotations

import logging
import os
import shlex
import shutil
import signal
import subprocess
import tempfile
import threading
from typing import IO, Any, BinaryIO, Mapping, Optional, Sequence

from .command import CommandError, run_cmd
from .partitions import join_under

logger = logging.getLogger(__name__)

# Recorded when the real exit code cannot be recovered (killed by a signal, wait() failed).
GENERIC_EXIT_STATUS = 1

DOWNLOAD_DIR_UNSUPPORTED = "download_dir is not implemented for the chroot communicator"


class RemoteCommand:
    """Handle for a command started by ChrootCommunicator.execute().

    exit_status stays None until the process has really exited; exited is set
    right after exit_status is recorded.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        self.exit_status: Optional[int] = None
        self.exited = threading.Event()
        self.process: Optional[subprocess.Popen] = None

    def set_exited(self, status: int) -> None:
        self.exit_status = status
        self.exited.set()

    def wait(self, timeout: float | None = None) -> Optional[int]:
        """Block until the command exits; returns None on timeout."""

        self.exited.wait(timeout)
        return self.exit_status

    def kill(self) -> None:
        """SIGKILL the whole process group, chrooted children included."""

        if self.process is not None and self.process.poll() is None:
            try:
                os.killpg(self.process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass  # group exited between poll() and killpg()


def shell_command(command: str) -> list[str]:
    return ["/bin/sh", "-c", command]


def _exit_status_from_returncode(returncode: int) -> int:
    # Popen reports death-by-signal as -N; there is no portable code for it
    if returncode < 0:
        return GENERIC_EXIT_STATUS
    return returncode


class ChrootCommunicator:
    """Runs commands and moves files against a filesystem rooted at `chroot`.

    Commands run through `chroot <root> /bin/sh -c <command>`; file transfers
    act on the host paths under the root directly.
    """

    def __init__(self, chroot: str, env: Mapping[str, str] | None = None) -> None:
        self.chroot = chroot
        self.env = dict(env or {})

    def chroot_command(self, command: str) -> str:
        return f"chroot {shlex.quote(self.chroot)} /bin/sh -c {shlex.quote(command)}"

    def execute(
        self,
        command: str,
        *,
        stdin: IO[Any] | int | None = None,
        stdout: IO[Any] | int | None = None,
        stderr: IO[Any] | int | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> RemoteCommand:
        """Start `command` inside the chroot and return without waiting.

        Streams are handed to the child as-is (None inherits ours). The exit
        status is recorded on the returned handle by a background thread.
        """

        cmd = RemoteCommand(command)
        argv = shell_command(self.chroot_command(command))
        env = dict(os.environ)
        env.update(self.env)
        env.update(extra_env or {})

        logger.info("Executing: %s", argv)
        cmd.process = subprocess.Popen(
            argv,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            env=env,
            start_new_session=True,
        )

        waiter = threading.Thread(
            target=self._wait_for_exit,
            args=(cmd, cmd.process),
            name=f"chroot-wait-{cmd.process.pid}",
            daemon=True,
        )
        waiter.start()
        return cmd

    def _wait_for_exit(self, cmd: RemoteCommand, process: subprocess.Popen) -> None:
        try:
            status = _exit_status_from_returncode(process.wait())
        except Exception:
            logger.exception("Lost track of chroot command: %s", cmd.command)
            status = GENERIC_EXIT_STATUS

        logger.info("Chroot execution exited with '%d': '%s'", status, cmd.command)
        cmd.set_exited(status)

    def upload(self, dst: str, src: BinaryIO) -> None:
        dst = join_under(self.chroot, dst)
        logger.info("Uploading to chroot dir: %s", dst)

        # Stage into a real file so any reader (pipe, BytesIO, socket) works with cp
        fd, tmp_path = tempfile.mkstemp(prefix="arm-image-builder")
        try:
            with os.fdopen(fd, "wb") as tf:
                shutil.copyfileobj(src, tf)
            run_cmd(["cp", tmp_path, dst])
        finally:
            os.remove(tmp_path)

    def upload_dir(self, dst: str, src: str, exclude: Sequence[str] = ()) -> None:
        # "src/" means the directory contents, hidden files included. BSD cp
        # does this on its own for a trailing slash, GNU cp needs "src/.".
        if src.endswith("/"):
            src = src + "."

        # TODO: honor `exclude` by pruning matching paths after the copy
        chroot_dest = join_under(self.chroot, dst)

        logger.info("Uploading directory '%s' to '%s'", src, chroot_dest)
        try:
            run_cmd(["cp", "-R", src, chroot_dest], env={"LANG": "C", "LC_ALL": "C"})
        except CommandError as e:
            if "No such file" in e.result.output:
                logger.info("Nothing to upload from '%s' (empty source)", src)
                return
            raise

    def download(self, src: str, dst: BinaryIO) -> None:
        src = join_under(self.chroot, src)
        logger.info("Downloading from chroot dir: %s", src)

        with open(src, "rb") as f:
            shutil.copyfileobj(f, dst)

    def download_dir(self, src: str, dst: str, exclude: Sequence[str] = ()) -> None:
        raise NotImplementedError(DOWNLOAD_DIR_UNSUPPORTED)
