"""Environment checks that gate the destructive phase."""

from __future__ import annotations

import os
import stat

from .errors import InvalidDevice, LiveDiskRefused, NetworkUnreachable
from .executil import Runner, trace
from .model import InstallPlan

PROBE_HOST = "archlinux.org"


def check_network(runner: Runner, host: str = PROBE_HOST) -> None:
    # A single probe: a flaky link is treated the same as no link.
    res = runner.query(["ping", "-c", "1", "-W", "5", host])
    trace("preflight.network", host=host, rc=res.rc)
    if res.rc != 0:
        raise NetworkUnreachable(f"No internet connection ({host} unreachable)")


def is_block_device(path: str) -> bool:
    try:
        st = os.stat(path)
    except OSError:
        return False
    return stat.S_ISBLK(st.st_mode)


def check_device(disk: str) -> None:
    if not disk or not is_block_device(disk):
        raise InvalidDevice(f"Invalid disk: {disk}")


def _parent_disk(runner: Runner, source: str) -> str:
    if not source:
        return ""
    res = runner.query(["lsblk", "-no", "PKNAME", source])
    lines = (res.out or "").strip().splitlines()
    return lines[0].strip() if lines else ""


def guard_not_live_disk(disk: str, runner: Runner) -> None:
    """Refuse a target that backs the running system's ``/`` or ``/boot``."""

    target = os.path.basename(disk.rstrip("/"))
    for mountpoint in ("/", "/boot"):
        src = (runner.query(["findmnt", "-no", "SOURCE", mountpoint]).out or "").strip()
        if not src:
            continue
        live = _parent_disk(runner, src) or os.path.basename(src)
        if live and (live == target or os.path.basename(src) == target):
            raise LiveDiskRefused(f"Target {disk} looks like the live disk ({live} backs {mountpoint})")


def validate(plan: InstallPlan, runner: Runner) -> None:
    check_network(runner)
    check_device(plan.disk)
    guard_not_live_disk(plan.disk, runner)


def sync_clock(runner: Runner) -> None:
    runner.run(["timedatectl", "set-ntp", "true"], check=False)


def disk_size_bytes(disk: str, runner: Runner) -> int | None:
    res = runner.query(["blockdev", "--getsize64", disk])
    try:
        return int((res.out or "").strip())
    except ValueError:
        return None
