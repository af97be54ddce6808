"""Filesystems on the logical volumes and the target mount tree."""

from __future__ import annotations

import os

from .executil import Runner
from .model import InstallPlan, PartitionLayout

MKFS_TIMEOUT = 360.0


def make_filesystems(layout: PartitionLayout, runner: Runner):
    # -F: a re-run over the same disk finds stale ext4 signatures on the LVs
    for dev in (layout.root_lv_path, layout.home_lv_path):
        runner.run(["mkfs.ext4", "-F", dev], timeout=MKFS_TIMEOUT)


def _mount(dev: str, target: str, runner: Runner):
    runner.run(["mkdir", "-p", target])
    runner.run(["mount", dev, target])


def mount_targets(layout: PartitionLayout, plan: InstallPlan, runner: Runner) -> dict[str, str]:
    mnt = plan.target
    home = os.path.join(mnt, "home")
    boot = os.path.join(mnt, "boot")
    runner.run(["mount", layout.root_lv_path, mnt])
    _mount(layout.home_lv_path, home, runner)
    _mount(layout.efi, boot, runner)
    return {"/": mnt, "/home": home, "/boot": boot}


def unmount_all(mnt: str, runner: Runner):
    # umount -R reports "not mounted" as rc 32; callers tolerate it
    return runner.run(["umount", "-R", mnt], check=False)
