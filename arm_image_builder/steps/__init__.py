from .step_10_loop_device import UseLoopDeviceStep
from .step_20_mount_image import MountImageStep
from .step_30_chroot_mounts import ChrootMountsStep
from .step_40_provision import ProvisionStep

__all__ = [
    "UseLoopDeviceStep",
    "MountImageStep",
    "ChrootMountsStep",
    "ProvisionStep",
]
