"""ARM disk image provisioning (mount, chroot, unwind).

Core design goals:
- Ordered mounts: parents before children, children unmounted first
- Guaranteed reverse-order cleanup of every step that ran
- Provisioning through chroot as if on the target root filesystem
- Centralized logging
"""

__all__ = []
