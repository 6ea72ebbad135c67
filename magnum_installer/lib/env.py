from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    mount_root: str = "/mnt"
    esp_mountpoint: str = "/efi"
    state_default: str = "/var/lib/magnum-installer/state.json"
    log_default: str = "/var/log/magnum-installer.log"
    stage2_log_default: str = "/var/log/magnum-installer-stage2.log"
    stage2_state_default: str = "/var/lib/magnum-installer/stage2-state.json"
    swapfile: str = "/swapfile"


PATHS = Paths()
