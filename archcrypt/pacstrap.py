"""Base system install and mount-table generation for the new root."""

from __future__ import annotations

import logging
import os
from typing import Callable, Dict

from .errors import UserDeclined
from .executil import Runner
from .model import InstallPlan

logger = logging.getLogger(__name__)

FSTAB_MOUNTPOINTS = ("/", "/home", "/boot")


def base_install(plan: InstallPlan, runner: Runner):
    # pacstrap streams its own progress; leave the terminal attached
    runner.run(["pacstrap", "-K", plan.target, *plan.packages], capture=False)


def parse_fstab(text: str) -> Dict[str, str]:
    """Map mountpoint -> source for every non-comment fstab line."""

    entries: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) >= 2:
            entries[parts[1]] = parts[0]
    return entries


def verify_fstab(text: str) -> None:
    entries = parse_fstab(text)
    missing = [mp for mp in FSTAB_MOUNTPOINTS if not entries.get(mp, "").startswith("UUID=")]
    if missing:
        raise RuntimeError("fstab lacks UUID entries for: " + ", ".join(missing))


def generate_fstab(plan: InstallPlan, runner: Runner, confirm_fn: Callable[[str], bool]) -> str:
    """Generate the new root's fstab and persist it once the operator agrees.

    Declining is fatal: the installed system cannot boot without it.
    """

    res = runner.run(["genfstab", "-U", plan.target])
    content = res.out if res.out.endswith("\n") else res.out + "\n"
    for line in content.splitlines():
        if line.strip():
            logger.info("fstab | %s", line)
    prompt = "Write generated fstab to the new system?"
    if not confirm_fn(prompt):
        raise UserDeclined(prompt)
    runner.write_file(os.path.join(plan.target, "etc", "fstab"), content)
    if not runner.dry_run:
        verify_fstab(content)
    return content
