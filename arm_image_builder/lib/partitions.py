from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Iterable, List, Tuple


@dataclass(frozen=True)
class Partition:
    name: str = ""
    mountpoint: str = ""  # "" = not mountable (swap, raw firmware, ...)
    index: int = 0  # 1-based declaration position, set by plan_mounts()

    def device_path(self, loop_device: str) -> str:
        # Loop devices always use the p suffix (/dev/loop0p1)
        return f"{loop_device}p{self.index}"


def plan_mounts(partitions: Iterable[Partition], *, reverse: bool = False) -> List[Partition]:
    """Return the mountable partitions in mount order.

    Indexes are assigned from declaration order before sorting, so the
    device path stays tied to the partition table slot. Sorting is plain
    string order on the mountpoint: parents ("/") sort before children
    ("/boot") when mounting, and after them when reverse=True.
    """

    mountable = [
        replace(p, index=i + 1)
        for i, p in enumerate(partitions)
        if p.mountpoint
    ]
    ascending = sorted(mountable, key=lambda p: p.mountpoint)
    if reverse:
        return list(reversed(ascending))
    return ascending


def join_under(root: str, path: str) -> str:
    """Join an absolute target path under a host directory."""

    rel = path.lstrip("/")
    if not rel:
        return root
    return os.path.join(root, rel)


def mount_plan(
    build_root: str,
    partitions: Iterable[Partition],
    *,
    reverse: bool = False,
) -> List[Tuple[Partition, str]]:
    return [(p, join_under(build_root, p.mountpoint)) for p in plan_mounts(partitions, reverse=reverse)]
