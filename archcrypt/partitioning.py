"""GPT layout: signature wipe, ESP + LUKS partitions, ESP filesystem."""

from __future__ import annotations

from .executil import Runner
from .model import InstallPlan, PartitionLayout

PARTED_TIMEOUT = 120.0


def wipe_signatures(layout: PartitionLayout, runner: Runner):
    runner.run(["wipefs", "-a", layout.disk], timeout=PARTED_TIMEOUT)


def reread(disk: str, runner: Runner):
    runner.run(["partprobe", disk], check=False, timeout=PARTED_TIMEOUT)
    runner.udev_settle()


def esp_bounds(efi_mib: int) -> tuple[str, str]:
    # 1MiB alignment gap before the ESP
    return "1MiB", f"{efi_mib + 1}MiB"


def partition(layout: PartitionLayout, plan: InstallPlan, runner: Runner):
    start, end = esp_bounds(plan.efi_mib)
    disk = layout.disk
    cmds = [
        ["parted", "-s", disk, "mklabel", "gpt"],
        ["parted", "-s", disk, "mkpart", "ESP", "fat32", start, end],
        ["parted", "-s", disk, "set", "1", "esp", "on"],
        ["parted", "-s", disk, "mkpart", "primary", end, "100%"],
    ]
    for c in cmds:
        runner.run(c, timeout=PARTED_TIMEOUT)
    reread(disk, runner)


def format_esp(layout: PartitionLayout, runner: Runner):
    runner.run(["mkfs.fat", "-F32", layout.efi], timeout=PARTED_TIMEOUT)
