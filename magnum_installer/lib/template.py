"""Closed-world ``@NAME@`` substitution for the stage-2 program.

Every placeholder in a template must be bound and every binding must be
used. Substitution is a single pass: values are opaque and are never scanned
for further placeholders.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Set

from ..errors import TemplateError
from ..params import ProvisioningParameters
from .assets import copy_tree
from .chroot import chroot_cmd

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"@([A-Z][A-Z0-9_]*)@")

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
STAGE2_TEMPLATE = TEMPLATES_DIR / "stage2.py.tmpl"

STAGE2_SCRIPT = "/root/magnum-stage2.py"
STAGE2_PACKAGE_DIR = "/root/magnum-installer"


def find_placeholders(text: str) -> Set[str]:
    return set(PLACEHOLDER_RE.findall(text))


def check_bindings(text: str, bindings: Mapping[str, Any]) -> None:
    wanted = find_placeholders(text)
    given = set(bindings)
    unbound = sorted(wanted - given)
    unused = sorted(given - wanted)
    if unbound or unused:
        parts = []
        if unbound:
            parts.append(f"unbound: {', '.join(unbound)}")
        if unused:
            parts.append(f"unused: {', '.join(unused)}")
        raise TemplateError("Template/parameter mismatch (" + "; ".join(parts) + ")")


def render(text: str, bindings: Mapping[str, Any], *, quote: Callable[[Any], str] = str) -> str:
    check_bindings(text, bindings)
    return PLACEHOLDER_RE.sub(lambda m: quote(bindings[m.group(1)]), text)


def stage2_bindings(params: ProvisioningParameters) -> Dict[str, Any]:
    bindings: Dict[str, Any] = {k.upper(): v for k, v in params.to_dict().items()}
    bindings["PACKAGE_DIR"] = STAGE2_PACKAGE_DIR
    return bindings


def render_stage2(params: ProvisioningParameters, template_path: Path = STAGE2_TEMPLATE) -> str:
    text = template_path.read_text(encoding="utf-8")
    # repr() yields Python literals, so a value is data even if it looks like code.
    return render(text, stage2_bindings(params), quote=repr)


def write_stage2(mount_root: str, params: ProvisioningParameters, *, dry_run: bool = False) -> Path:
    """Copy the installer package into the new root and write the stage-2 program."""

    root = Path(mount_root)
    script = root / STAGE2_SCRIPT.lstrip("/")
    pkg_dst = root / STAGE2_PACKAGE_DIR.lstrip("/") / "magnum_installer"
    content = render_stage2(params)
    if dry_run:
        logger.info("Would write %s and copy package to %s", str(script), str(pkg_dst))
        return script

    if pkg_dst.exists():
        shutil.rmtree(pkg_dst)
    copy_tree(str(Path(__file__).resolve().parents[1]), str(pkg_dst))
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(content, encoding="utf-8")
    os.chmod(script, 0o755)
    logger.info("Stage-2 program written to %s", str(script))
    return script


def run_stage2(mount_root: str, *, dry_run: bool = False) -> None:
    # stdio passes through: the second stage prompts for passwords.
    logger.info("Entering %s to run the second stage", mount_root)
    chroot_cmd(mount_root, [STAGE2_SCRIPT], interactive=True, dry_run=dry_run)
