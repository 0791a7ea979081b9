from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .lib.partitions import Partition

DEFAULT_CHROOT_MOUNTS: List[Dict[str, str]] = [
    {"type": "bind", "source": "/dev", "target": "/dev"},
    {"type": "bind", "source": "/proc", "target": "/proc"},
    {"type": "bind", "source": "/sys", "target": "/sys"},
]


@dataclass(frozen=True)
class ChrootMount:
    source: str
    target: str
    type: str = "bind"


@dataclass(frozen=True)
class FileUpload:
    source: str
    destination: str


@dataclass(frozen=True)
class DirectoryUpload:
    source: str
    destination: str
    exclude: tuple[str, ...] = ()


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


def _require(item: Dict[str, Any], key: str, *, where: str) -> str:
    value = item.get(key)
    if not value:
        raise ValueError(f"{where}.{key} is required")
    return str(value)


def _entries(section: Dict[str, Any], key: str, *, where: str) -> List[Dict[str, Any]]:
    value = section.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{where}.{key} must be a list")
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ValueError(f"{where}.{key}[{i}] must be a mapping")
    return value


@dataclass(frozen=True)
class BuildConfig:
    raw: Dict[str, Any]

    @property
    def partitions(self) -> List[Partition]:
        return [
            Partition(name=str(p.get("name") or ""), mountpoint=str(p.get("mountpoint") or ""))
            for p in _entries(_section(self.raw, "image"), "partitions", where="image")
        ]

    @property
    def mount_path(self) -> str:
        return str(_section(self.raw, "image").get("mount_path") or "")

    @property
    def loop_device(self) -> str:
        return str(_section(self.raw, "image").get("loop_device") or "")

    @property
    def chroot_env(self) -> Dict[str, str]:
        env = _section(self.raw, "chroot").get("env") or {}
        if not isinstance(env, dict):
            raise ValueError("chroot.env must be a mapping")
        return {str(k): str(v) for k, v in env.items()}

    @property
    def chroot_mounts(self) -> List[ChrootMount]:
        chroot = _section(self.raw, "chroot")
        entries = DEFAULT_CHROOT_MOUNTS if "mounts" not in chroot else _entries(chroot, "mounts", where="chroot")
        return [
            ChrootMount(
                source=_require(m, "source", where=f"chroot.mounts[{i}]"),
                target=_require(m, "target", where=f"chroot.mounts[{i}]"),
                type=str(m.get("type") or "bind"),
            )
            for i, m in enumerate(entries)
        ]

    @property
    def file_uploads(self) -> List[FileUpload]:
        return [
            FileUpload(
                source=_require(f, "source", where=f"provision.files[{i}]"),
                destination=_require(f, "destination", where=f"provision.files[{i}]"),
            )
            for i, f in enumerate(_entries(_section(self.raw, "provision"), "files", where="provision"))
        ]

    @property
    def directory_uploads(self) -> List[DirectoryUpload]:
        return [
            DirectoryUpload(
                source=_require(d, "source", where=f"provision.directories[{i}]"),
                destination=_require(d, "destination", where=f"provision.directories[{i}]"),
                exclude=tuple(str(x) for x in (d.get("exclude") or [])),
            )
            for i, d in enumerate(_entries(_section(self.raw, "provision"), "directories", where="provision"))
        ]

    @property
    def commands(self) -> List[str]:
        commands = _section(self.raw, "provision").get("commands") or []
        if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
            raise ValueError("provision.commands must be a list of strings")
        return list(commands)

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))


def load_build_config(path: str) -> BuildConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise ValueError("build config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("build config must contain a mapping/object")

    return BuildConfig(raw=raw)
