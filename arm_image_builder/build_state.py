from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .build_config import BuildConfig


class MissingStateError(RuntimeError):
    pass


@dataclass
class BuildState:
    """State shared by every step of one build.

    Steps talk to each other only through this object: an earlier step
    publishes a value (loop device, build root) and a later one requires it.
    """

    config: BuildConfig
    dry_run: bool = False
    loop_device: Optional[str] = None
    build_root: Optional[str] = None
    halted: bool = False
    cancelled: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def require_loop_device(self) -> str:
        if not self.loop_device:
            raise MissingStateError("loop device not set; attach the image before mounting")
        return self.loop_device

    def require_build_root(self) -> str:
        if not self.build_root:
            raise MissingStateError("build root not set; run the mount step first")
        return self.build_root

    def record_error(self, step_id: Optional[str], error: BaseException | str) -> None:
        self.errors.append({"step": step_id, "error": str(error)})

    def summary(self) -> Dict[str, Any]:
        return {
            "loop_device": self.loop_device,
            "build_root": self.build_root,
            "dry_run": self.dry_run,
            "halted": self.halted,
            "cancelled": self.cancelled,
            "errors": list(self.errors),
        }


def save_build_state(path: str, data: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
