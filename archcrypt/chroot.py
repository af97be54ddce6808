"""Configuration of the installed system from inside its own root.

The work is described as an ordered list of :class:`ChrootStage` objects made
of typed actions. At the boundary the list is rendered into a bash script
(every argument shell-quoted), dropped into the new root, run once through
``arch-chroot`` and deleted again.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from .errors import ChrootStageFailure
from .executil import Runner, render, trace
from .luks_lvm import luks_uuid
from .model import ChrootAnswers, InstallPlan, PartitionLayout
from .paths import CHROOT_SCRIPT_NAME
from .prompts import ask

logger = logging.getLogger(__name__)

CHROOT_LOG = "/var/log/arch-install.log"
FAILED_MARKER = "chroot-setup.failed"
DRY_RUN_UUID = "DRY-RUN-LUKS-UUID"

MKINITCPIO_HOOKS = (
    "base", "udev", "autodetect", "keyboard", "keymap", "consolefont",
    "modconf", "block", "encrypt", "lvm2", "filesystems", "fsck",
)

_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
USERNAME_PATTERN = r"^[a-z_][a-z0-9_-]{0,31}$"
USER_VAR = "NEW_USER"
_TIMEZONE_RE = re.compile(r"^[A-Za-z0-9_+-]+(?:/[A-Za-z0-9_+-]+)*$")


def _bre_literal(text: str) -> str:
    return re.sub(r"([\\.\[\]*^$])", r"\\\1", text)


def _sed_replacement(text: str) -> str:
    return re.sub(r"([\\|&])", r"\\\1", text)


@dataclass(frozen=True)
class Var:
    """A shell variable set earlier in the script."""

    name: str

    def render(self) -> str:
        return f'"${self.name}"'


@dataclass(frozen=True)
class Command:
    argv: tuple[Union[str, Var], ...]

    def render(self) -> str:
        return " ".join(a.render() if isinstance(a, Var) else shlex.quote(a) for a in self.argv)


@dataclass(frozen=True)
class WriteFile:
    path: str
    content: str

    def render(self) -> str:
        return f"printf '%s\\n' {shlex.quote(self.content)} > {shlex.quote(self.path)}"


@dataclass(frozen=True)
class Substitute:
    """Replace lines of ``path`` matching ``pattern`` (a sed BRE) in place."""

    path: str
    pattern: str
    replacement: str

    def render(self) -> str:
        expr = "s|{}|{}|".format(self.pattern.replace("|", "\\|"), _sed_replacement(self.replacement))
        return render(("sed", "-i", expr, self.path))


@dataclass(frozen=True)
class Notice:
    text: str

    def render(self) -> str:
        return f"echo {shlex.quote(self.text)}"


@dataclass(frozen=True)
class ReadInto:
    """Prompt on the chroot terminal until the answer matches ``pattern`` (ERE)."""

    var: str
    label: str
    pattern: str

    def render(self) -> str:
        pattern_var = f"{self.var}_RE"
        return "\n".join([
            f"{pattern_var}={shlex.quote(self.pattern)}",
            "while true; do",
            f"  read -r -p {shlex.quote(self.label + ': ')} {self.var}",
            f"  [[ ${self.var} =~ ${pattern_var} ]] && break",
            f"  echo {shlex.quote('Invalid ' + self.label.lower())}",
            "done",
        ])


Action = Union[Command, WriteFile, Substitute, Notice, ReadInto]


@dataclass(frozen=True)
class ChrootStage:
    name: str
    actions: tuple[Action, ...]


def _cmd(*argv: Union[str, Var]) -> Command:
    return Command(tuple(argv))


def build_stages(
    plan: InstallPlan,
    layout: PartitionLayout,
    answers: ChrootAnswers,
    uuid: str,
) -> list[ChrootStage]:
    locale_entry = f"{plan.locale} {plan.locale.split('.')[-1]}"
    grub_dir = f"/boot/EFI/{plan.bootloader_id}"
    cmdline = f"cryptdevice=UUID={uuid}:{layout.mapper_name} root={layout.root_lv_path}"
    return [
        ChrootStage("Timezone", (
            _cmd("ln", "-sf", f"/usr/share/zoneinfo/{answers.timezone}", "/etc/localtime"),
            _cmd("hwclock", "--systohc"),
        )),
        ChrootStage("Localization", (
            Substitute("/etc/locale.gen", "^#" + _bre_literal(locale_entry), locale_entry),
            _cmd("locale-gen"),
            WriteFile("/etc/locale.conf", f"LANG={plan.locale}"),
        )),
        ChrootStage("Hostname", (
            WriteFile("/etc/hostname", answers.hostname),
        )),
        ChrootStage("InitImageRebuild", (
            Substitute("/etc/mkinitcpio.conf", "^HOOKS=.*", "HOOKS=({})".format(" ".join(MKINITCPIO_HOOKS))),
            _cmd("mkinitcpio", "-P"),
        )),
        ChrootStage("Credentials", (
            Notice("Set root password"),
            _cmd("passwd"),
            ReadInto(USER_VAR, "New username", USERNAME_PATTERN),
            _cmd("useradd", "-m", "-G", "wheel", "-s", "/bin/bash", Var(USER_VAR)),
            _cmd("echo", "Set password for", Var(USER_VAR)),
            _cmd("passwd", Var(USER_VAR)),
        )),
        ChrootStage("Privilege", (
            Substitute("/etc/sudoers", "^# %wheel ALL=(ALL:ALL) ALL", "%wheel ALL=(ALL:ALL) ALL"),
        )),
        ChrootStage("NetworkService", (
            _cmd("systemctl", "enable", "NetworkManager"),
        )),
        ChrootStage("BootloaderInstall", (
            Substitute("/etc/default/grub", "^GRUB_CMDLINE_LINUX=.*", f'GRUB_CMDLINE_LINUX="{cmdline}"'),
            _cmd(
                "grub-install",
                "--target=x86_64-efi",
                "--efi-directory=/boot",
                f"--bootloader-id={plan.bootloader_id}",
            ),
            _cmd("grub-mkconfig", "-o", "/boot/grub/grub.cfg"),
        )),
        ChrootStage("FirmwareFallback", (
            _cmd("mkdir", "-p", "/boot/EFI/BOOT"),
            _cmd("cp", f"{grub_dir}/grubx64.efi", "/boot/EFI/BOOT/BOOTX64.EFI"),
            _cmd(
                "efibootmgr", "-c",
                "-d", layout.disk,
                "-p", "1",
                "-L", "Arch Linux",
                "-l", f"\\EFI\\{plan.bootloader_id}\\grubx64.efi",
            ),
        )),
    ]


def render_script(stages: Sequence[ChrootStage], log_path: str = CHROOT_LOG) -> str:
    lines = [
        "#!/usr/bin/env bash",
        "set -euo pipefail",
        "",
        f"mkdir -p {shlex.quote(os.path.dirname(log_path))}",
        f"exec > >(tee -a {shlex.quote(log_path)}) 2>&1",
        f"echo {shlex.quote('Logging to ' + log_path)}",
        "",
        "STAGE=start",
        f"trap 'echo \"$STAGE\" > /{FAILED_MARKER}' ERR",
    ]
    for stage in stages:
        lines.append("")
        lines.append(f"STAGE={shlex.quote(stage.name)}")
        lines.append(f"echo {shlex.quote('==> ' + stage.name)}")
        lines.extend(action.render() for action in stage.actions)
    lines.append("")
    return "\n".join(lines)


def _valid(value: str, pattern: re.Pattern) -> bool:
    return bool(pattern.match(value)) and ".." not in value


def _ask_valid(prompt: str, pattern: re.Pattern, default: Optional[str], input_fn) -> str:
    while True:
        value = ask(prompt, default=default, input_fn=input_fn)
        if _valid(value, pattern):
            return value
        logger.warning("Invalid %s: %r", prompt.lower(), value)


def gather_answers(plan: InstallPlan, input_fn: Optional[Callable[[str], str]] = None) -> ChrootAnswers:
    return ChrootAnswers(
        timezone=_ask_valid("Timezone", _TIMEZONE_RE, plan.default_timezone, input_fn),
        hostname=_ask_valid("Hostname", _HOSTNAME_RE, None, input_fn),
    )


def resolve_uuid(layout: PartitionLayout, runner: Runner) -> str:
    uuid = luks_uuid(layout, runner)
    if uuid:
        return uuid
    if runner.dry_run:
        return DRY_RUN_UUID
    raise RuntimeError(f"could not determine LUKS UUID of {layout.luks}")


def _failed_stage(marker: str) -> Optional[str]:
    try:
        with open(marker, "r", encoding="utf-8") as fh:
            return fh.read().strip() or None
    except OSError:
        return None


def configure(
    plan: InstallPlan,
    layout: PartitionLayout,
    runner: Runner,
    input_fn: Optional[Callable[[str], str]] = None,
) -> list[ChrootStage]:
    """Render, run and remove the chroot configuration script."""

    answers = gather_answers(plan, input_fn)
    uuid = resolve_uuid(layout, runner)
    stages = build_stages(plan, layout, answers, uuid)
    script = render_script(stages)

    host_script = os.path.join(plan.target, CHROOT_SCRIPT_NAME)
    host_marker = os.path.join(plan.target, FAILED_MARKER)
    trace("chroot.script", path=host_script, stages=[s.name for s in stages], luks_uuid=uuid)
    runner.write_file(host_script, script, mode=0o755)
    try:
        runner.run(["arch-chroot", plan.target, f"/{CHROOT_SCRIPT_NAME}"], capture=False)
    except subprocess.CalledProcessError as exc:
        stage = _failed_stage(host_marker) or "ChrootConfigure"
        raise ChrootStageFailure(stage, f"exit status {exc.returncode}") from exc
    finally:
        runner.remove(host_script)
        runner.remove(host_marker)
    return stages
