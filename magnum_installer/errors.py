from __future__ import annotations

from typing import Sequence


class InstallerError(RuntimeError):
    """Base class for provisioning failures."""


class CommandError(InstallerError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr or ""
        detail = f"\n{self.stderr.strip()}" if self.stderr.strip() else ""
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}{detail}")


class DeviceNotFoundError(InstallerError):
    pass


class DeviceBusyError(InstallerError):
    pass


class PartitionLayoutError(InstallerError):
    pass


class AuthenticationError(InstallerError):
    pass


class AlreadyOpenError(InstallerError):
    pass


class BusyError(InstallerError):
    pass


class SubvolumeExistsError(InstallerError):
    pass


class TemplateError(InstallerError):
    pass


class BootImageError(InstallerError):
    pass


class SecureBootStateError(InstallerError):
    pass
