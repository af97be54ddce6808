from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from .paths import target_root

BASE_PACKAGES = (
    "base",
    "linux",
    "linux-firmware",
    "sof-firmware",
    "intel-ucode",
    "base-devel",
    "grub",
    "efibootmgr",
    "networkmanager",
    "vim",
    "lvm2",
    "cryptsetup",
)

MIRROR_COUNTRIES = ("Bangladesh", "India", "Singapore")


class ExecutionMode(enum.Enum):
    LIVE = "live"
    DRY_RUN = "dry-run"

    @classmethod
    def from_flag(cls, dry_run: bool) -> "ExecutionMode":
        return cls.DRY_RUN if dry_run else cls.LIVE


@dataclass(frozen=True)
class InstallPlan:
    disk: str
    efi_mib: int = 2048
    root_size: str = "200G"
    dry_run: bool = False
    packages: tuple[str, ...] = BASE_PACKAGES
    mirror_countries: tuple[str, ...] = MIRROR_COUNTRIES
    mirror_latest: int = 10
    mirror_fastest: int = 5
    target: str = field(default_factory=target_root)
    luks_name: str = "cryptlvm"
    vg: str = "vg0"
    root_lv: str = "root"
    home_lv: str = "home"
    locale: str = "en_US.UTF-8"
    default_timezone: str = "Asia/Dhaka"
    bootloader_id: str = "GRUB"

    @property
    def mode(self) -> ExecutionMode:
        return ExecutionMode.from_flag(self.dry_run)


@dataclass(frozen=True)
class PartitionLayout:
    disk: str
    efi: str
    luks: str
    mapper_name: str
    vg: str
    root_lv: str
    home_lv: str

    @property
    def mapper_path(self) -> str:
        return f"/dev/mapper/{self.mapper_name}"

    @property
    def root_lv_path(self) -> str:
        return f"/dev/{self.vg}/{self.root_lv}"

    @property
    def home_lv_path(self) -> str:
        return f"/dev/{self.vg}/{self.home_lv}"


def partition_path(disk: str, index: int) -> str:
    # nvme0n1 and mmcblk0 style names need a ``p`` before the index
    base = disk.rstrip("/") or disk
    suffix = "p" if base[-1:].isdigit() else ""
    return f"{base}{suffix}{index}"


def derive_layout(plan: InstallPlan) -> PartitionLayout:
    return PartitionLayout(
        disk=plan.disk,
        efi=partition_path(plan.disk, 1),
        luks=partition_path(plan.disk, 2),
        mapper_name=plan.luks_name,
        vg=plan.vg,
        root_lv=plan.root_lv,
        home_lv=plan.home_lv,
    )


@dataclass(frozen=True)
class ChrootAnswers:
    timezone: str
    hostname: str


@dataclass(frozen=True)
class StageResult:
    stage: str
    ok: bool
    cause: Optional[str] = None

    @classmethod
    def success(cls, stage: str) -> "StageResult":
        return cls(stage=stage, ok=True)

    @classmethod
    def failure(cls, stage: str, cause: str) -> "StageResult":
        return cls(stage=stage, ok=False, cause=cause)
