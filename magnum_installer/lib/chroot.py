from __future__ import annotations

import logging
from typing import Sequence

from .command import run_cmd

logger = logging.getLogger(__name__)


def chroot_cmd(
    target_root: str,
    argv: Sequence[str],
    *,
    interactive: bool = False,
    dry_run: bool = False,
) -> None:
    """Run a command inside target root.

    arch-chroot sets up /dev, /proc, /sys, /run and resolv.conf for the
    duration of the command and tears them down afterwards.
    """

    run_cmd(["arch-chroot", target_root, *argv], interactive=interactive, dry_run=dry_run)
