"""LUKS container and LVM layout lifecycle."""

from __future__ import annotations

from .executil import Runner
from .model import InstallPlan, PartitionLayout

LVM_TIMEOUT = 60.0


def format_luks(layout: PartitionLayout, runner: Runner):
    # Interactive: cryptsetup asks for the YES confirmation and the passphrase.
    runner.run(["cryptsetup", "luksFormat", layout.luks], capture=False)


def open_luks(layout: PartitionLayout, runner: Runner):
    runner.run(["cryptsetup", "open", layout.luks, layout.mapper_name], capture=False)
    runner.udev_settle()


def encrypt_setup(layout: PartitionLayout, runner: Runner):
    format_luks(layout, runner)
    open_luks(layout, runner)


def make_vg_lv(layout: PartitionLayout, plan: InstallPlan, runner: Runner):
    mapper = layout.mapper_path
    runner.run(["pvcreate", mapper], timeout=LVM_TIMEOUT)
    runner.run(["vgcreate", layout.vg, mapper], timeout=LVM_TIMEOUT)
    runner.run(["lvcreate", "-L", plan.root_size, layout.vg, "-n", layout.root_lv], timeout=LVM_TIMEOUT)
    runner.run(["lvcreate", "-l", "100%FREE", layout.vg, "-n", layout.home_lv], timeout=LVM_TIMEOUT)
    runner.udev_settle()


def deactivate_vg(vg: str, runner: Runner):
    return runner.run(["vgchange", "-an", vg], check=False, timeout=LVM_TIMEOUT)


def close_luks(name: str, runner: Runner):
    return runner.run(["cryptsetup", "close", name], check=False, timeout=LVM_TIMEOUT)


def luks_uuid(layout: PartitionLayout, runner: Runner) -> str:
    res = runner.query(["blkid", "-s", "UUID", "-o", "value", layout.luks])
    return (res.out or "").strip()
