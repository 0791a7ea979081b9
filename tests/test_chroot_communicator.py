from __future__ import annotations

import io
import shlex
import time
from pathlib import Path

import pytest

from arm_image_builder.lib import chroot as chroot_mod
from arm_image_builder.lib.chroot import (
    DOWNLOAD_DIR_UNSUPPORTED,
    GENERIC_EXIT_STATUS,
    ChrootCommunicator,
    RemoteCommand,
)
from arm_image_builder.lib.command import CommandError


class HostCommunicator(ChrootCommunicator):
    """Runs commands on the host; chroot(8) needs root."""

    def chroot_command(self, command: str) -> str:
        return command


def test_chroot_command_quotes_root_and_command() -> None:
    comm = ChrootCommunicator("/mnt/my root")
    cmd = comm.chroot_command('echo "hi" > /etc/motd')
    assert shlex.split(cmd) == ["chroot", "/mnt/my root", "/bin/sh", "-c", 'echo "hi" > /etc/motd']


def test_execute_records_real_exit_code(tmp_path: Path) -> None:
    cmd = HostCommunicator(str(tmp_path)).execute("exit 7")
    assert cmd.wait(timeout=10) == 7
    assert cmd.exited.is_set()


def test_execute_killed_by_signal_gets_generic_status(tmp_path: Path) -> None:
    cmd = HostCommunicator(str(tmp_path)).execute("kill -9 $$")
    assert cmd.wait(timeout=10) == GENERIC_EXIT_STATUS == 1


def test_execute_uses_caller_streams_and_env(tmp_path: Path) -> None:
    comm = HostCommunicator(str(tmp_path), env={"BUILD_STAGE": "provision"})
    out_path = tmp_path / "out.txt"
    with open(out_path, "wb") as out:
        cmd = comm.execute('echo "$BUILD_STAGE $EXTRA"', stdout=out, extra_env={"EXTRA": "yes"})
        assert cmd.wait(timeout=10) == 0
    assert out_path.read_text() == "provision yes\n"


def test_extra_env_overrides_configured_env(tmp_path: Path) -> None:
    comm = HostCommunicator(str(tmp_path), env={"STAGE": "base", "KEEP": "kept"})
    out_path = tmp_path / "out.txt"
    with open(out_path, "wb") as out:
        cmd = comm.execute('echo "$STAGE $KEEP"', stdout=out, extra_env={"STAGE": "override"})
        assert cmd.wait(timeout=10) == 0
    assert out_path.read_text() == "override kept\n"
    assert comm.env == {"STAGE": "base", "KEEP": "kept"}


def _pid_gone(pid: int) -> bool:
    try:
        with open(f"/proc/{pid}/stat") as f:
            # Reaped or left as a zombie
            return f.read().rsplit(")", 1)[1].split()[0] == "Z"
    except FileNotFoundError:
        return True


def test_kill_takes_down_background_children(tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    cmd = HostCommunicator(str(tmp_path)).execute(f"sleep 300 & echo $! > {pid_file}; wait")

    deadline = time.monotonic() + 10
    while not (pid_file.exists() and pid_file.read_text().strip()):
        assert time.monotonic() < deadline
        time.sleep(0.05)
    child_pid = int(pid_file.read_text())

    cmd.kill()
    assert cmd.wait(timeout=10) == GENERIC_EXIT_STATUS

    while not _pid_gone(child_pid):
        assert time.monotonic() < deadline + 10
        time.sleep(0.05)


def test_execute_returns_before_exit(tmp_path: Path) -> None:
    cmd = HostCommunicator(str(tmp_path)).execute("sleep 30")
    try:
        assert cmd.exit_status is None
        assert not cmd.exited.is_set()
    finally:
        cmd.kill()
    assert cmd.wait(timeout=10) == GENERIC_EXIT_STATUS


def test_exit_status_from_returncode() -> None:
    assert chroot_mod._exit_status_from_returncode(0) == 0
    assert chroot_mod._exit_status_from_returncode(7) == 7
    assert chroot_mod._exit_status_from_returncode(-15) == 1


def test_wait_failure_falls_back_to_generic_status() -> None:
    class BrokenProcess:
        def wait(self):
            raise OSError("no child")

    cmd = RemoteCommand("true")
    ChrootCommunicator("/")._wait_for_exit(cmd, BrokenProcess())  # type: ignore[arg-type]
    assert cmd.exit_status == GENERIC_EXIT_STATUS


def test_upload_then_download_round_trip(tmp_path: Path) -> None:
    (tmp_path / "etc").mkdir()
    comm = ChrootCommunicator(str(tmp_path))
    payload = bytes(range(256)) * 8

    comm.upload("/etc/blob.bin", io.BytesIO(payload))
    assert (tmp_path / "etc" / "blob.bin").read_bytes() == payload

    out = io.BytesIO()
    comm.download("/etc/blob.bin", out)
    assert out.getvalue() == payload


def test_upload_removes_staging_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    staging = tmp_path / "staging"
    staging.mkdir()
    root = tmp_path / "root"
    root.mkdir()
    monkeypatch.setattr(chroot_mod.tempfile, "tempdir", str(staging))
    comm = ChrootCommunicator(str(root))

    comm.upload("/ok.txt", io.BytesIO(b"ok"))
    with pytest.raises(CommandError):
        comm.upload("/missing-dir/fail.txt", io.BytesIO(b"fail"))

    assert list(staging.iterdir()) == []


def test_download_missing_path(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ChrootCommunicator(str(tmp_path)).download("/nope", io.BytesIO())


def _make_source(tmp_path: Path) -> Path:
    src = tmp_path / "foo"
    src.mkdir()
    (src / "a.txt").write_text("a")
    (src / ".hidden").write_text("h")
    return src


def test_upload_dir_trailing_slash_copies_contents(tmp_path: Path) -> None:
    src = _make_source(tmp_path)
    root = tmp_path / "root"
    (root / "opt").mkdir(parents=True)

    ChrootCommunicator(str(root)).upload_dir("/opt", f"{src}/")

    assert (root / "opt" / "a.txt").read_text() == "a"
    assert (root / "opt" / ".hidden").exists()
    assert not (root / "opt" / "foo").exists()


def test_upload_dir_without_slash_copies_directory(tmp_path: Path) -> None:
    src = _make_source(tmp_path)
    root = tmp_path / "root"
    (root / "opt").mkdir(parents=True)

    ChrootCommunicator(str(root)).upload_dir("/opt", str(src), exclude=["*.txt"])

    assert (root / "opt" / "foo" / "a.txt").read_text() == "a"
    assert not (root / "opt" / "a.txt").exists()


def test_upload_dir_missing_source_is_not_an_error(tmp_path: Path) -> None:
    root = tmp_path / "root"
    (root / "opt").mkdir(parents=True)

    ChrootCommunicator(str(root)).upload_dir("/opt", str(tmp_path / "does-not-exist"))

    assert list((root / "opt").iterdir()) == []


def test_upload_dir_other_failures_raise(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from arm_image_builder.lib.command import CmdResult

    def fake_run_cmd(argv, **kwargs):
        raise CommandError(CmdResult(argv=list(argv), returncode=1, output="cp: Permission denied"))

    monkeypatch.setattr(chroot_mod, "run_cmd", fake_run_cmd)
    with pytest.raises(CommandError):
        ChrootCommunicator(str(tmp_path)).upload_dir("/opt", "src")


@pytest.mark.parametrize("src", ["/", "/etc", "relative/dir"])
def test_download_dir_always_unsupported(tmp_path: Path, src: str) -> None:
    with pytest.raises(NotImplementedError, match=DOWNLOAD_DIR_UNSUPPORTED):
        ChrootCommunicator(str(tmp_path)).download_dir(src, str(tmp_path / "out"))
