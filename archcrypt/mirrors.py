"""Mirror list backup and regeneration with reflector."""

from __future__ import annotations

from .executil import Runner
from .model import InstallPlan
from .paths import MIRRORLIST

REFLECTOR_TIMEOUT = 600.0


def reflector_cmd(plan: InstallPlan, save_to: str = MIRRORLIST) -> list[str]:
    return [
        "reflector",
        "--country", ",".join(plan.mirror_countries),
        "--latest", str(plan.mirror_latest),
        "--protocol", "https",
        "--sort", "rate",
        "--fastest", str(plan.mirror_fastest),
        "--save", save_to,
    ]


def configure_mirrors(plan: InstallPlan, runner: Runner):
    runner.run(["pacman", "-Sy", "--noconfirm", "reflector"], timeout=REFLECTOR_TIMEOUT)
    runner.run(["cp", MIRRORLIST, MIRRORLIST + ".backup"])
    runner.run(reflector_cmd(plan), timeout=REFLECTOR_TIMEOUT)
