"""Ordered provisioning stages and the executor that walks them."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from . import chroot, luks_lvm, mirrors, mounts, pacstrap, partitioning
from .errors import ChrootStageFailure
from .executil import Runner, render, trace
from .model import InstallPlan, PartitionLayout, StageResult
from .rollback import RollbackManager

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    plan: InstallPlan
    layout: PartitionLayout
    runner: Runner
    rollback: RollbackManager
    confirm_fn: Callable[[str], bool]
    input_fn: Optional[Callable[[str], str]] = None


@dataclass(frozen=True)
class Stage:
    name: str
    description: str
    fn: Callable[[StageContext], object]


def _close_encrypted(ctx: StageContext):
    luks_lvm.deactivate_vg(ctx.layout.vg, ctx.runner)
    return luks_lvm.close_luks(ctx.layout.mapper_name, ctx.runner)


def register_cleanup(ctx: StageContext) -> None:
    """Arm teardown before the first stage.

    Both actions tolerate an absent mount or mapping, so they also clear what
    an earlier interrupted run left behind.
    """

    ctx.rollback.register("close-luks", lambda: _close_encrypted(ctx))
    ctx.rollback.register("unmount", lambda: mounts.unmount_all(ctx.plan.target, ctx.runner))


def build_stages() -> List[Stage]:
    return [
        Stage("WipeSignatures", "Wiping old disk signatures",
              lambda ctx: partitioning.wipe_signatures(ctx.layout, ctx.runner)),
        Stage("Partition", "Partitioning disk",
              lambda ctx: partitioning.partition(ctx.layout, ctx.plan, ctx.runner)),
        Stage("FormatESP", "Formatting EFI partition",
              lambda ctx: partitioning.format_esp(ctx.layout, ctx.runner)),
        Stage("EncryptSetup", "Setting up LUKS encryption",
              lambda ctx: luks_lvm.encrypt_setup(ctx.layout, ctx.runner)),
        Stage("VolumeManage", "Creating LVM layout",
              lambda ctx: luks_lvm.make_vg_lv(ctx.layout, ctx.plan, ctx.runner)),
        Stage("Filesystem", "Creating filesystems on logical volumes",
              lambda ctx: mounts.make_filesystems(ctx.layout, ctx.runner)),
        Stage("Mount", "Mounting target filesystems",
              lambda ctx: mounts.mount_targets(ctx.layout, ctx.plan, ctx.runner)),
        Stage("MirrorConfigure", "Configuring mirrors",
              lambda ctx: mirrors.configure_mirrors(ctx.plan, ctx.runner)),
        Stage("BaseInstall", "Installing base system",
              lambda ctx: pacstrap.base_install(ctx.plan, ctx.runner)),
        Stage("FstabGenerate", "Generating fstab",
              lambda ctx: pacstrap.generate_fstab(ctx.plan, ctx.runner, ctx.confirm_fn)),
        Stage("ChrootConfigure", "Configuring the new system (chroot)",
              lambda ctx: chroot.configure(ctx.plan, ctx.layout, ctx.runner, ctx.input_fn)),
    ]


def _describe_failure(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        cmd = exc.cmd if isinstance(exc.cmd, (list, tuple)) else [str(exc.cmd)]
        detail = (exc.stderr or "").strip() if isinstance(exc.stderr, str) else ""
        text = f"command failed ({exc.returncode}): {render(cmd)}"
        return f"{text}: {detail}" if detail else text
    return str(exc) or type(exc).__name__


@dataclass
class StageExecutor:
    """Run stages in order; the first failure ends the sequence.

    There is no retry and no skipping. The caller owns rollback.
    """

    ctx: StageContext
    stages: Sequence[Stage] = field(default_factory=build_stages)
    completed: List[str] = field(default_factory=list)

    def run(self) -> StageResult:
        last = "ChrootConfigure"
        for stage in self.stages:
            last = stage.name
            logger.info(stage.description)
            trace("stage.start", stage=stage.name)
            try:
                stage.fn(self.ctx)
            except ChrootStageFailure as exc:
                trace("stage.failed", stage=stage.name, chroot_stage=exc.stage, cause=exc.cause)
                return StageResult.failure(f"{stage.name}/{exc.stage}", exc.cause)
            except Exception as exc:  # noqa: BLE001 - any escape is a stage failure
                cause = _describe_failure(exc)
                trace("stage.failed", stage=stage.name, cause=cause)
                return StageResult.failure(stage.name, cause)
            self.completed.append(stage.name)
            trace("stage.done", stage=stage.name)
        return StageResult.success(last)
