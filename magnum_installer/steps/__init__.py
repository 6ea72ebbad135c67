from .step_05_preflight import PreflightStep
from .step_10_detect_hardware import DetectHardwareStep
from .step_15_freeze_parameters import FreezeParametersStep
from .step_20_partition import PartitionStep
from .step_30_encrypt import EncryptStep
from .step_40_filesystems import FilesystemsStep
from .step_50_install_base import InstallBaseStep
from .step_55_write_fstab import WriteFstabStep
from .step_60_stage_handoff import StageHandoffStep
from .step_90_finalize import FinalizeStep

__all__ = [
    "PreflightStep",
    "DetectHardwareStep",
    "FreezeParametersStep",
    "PartitionStep",
    "EncryptStep",
    "FilesystemsStep",
    "InstallBaseStep",
    "WriteFstabStep",
    "StageHandoffStep",
    "FinalizeStep",
]
