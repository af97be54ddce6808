"""CLI entrypoint for the encrypted Arch Linux installer."""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
import time
from typing import Any, Callable, Dict, Optional

from . import preflight
from .errors import InvalidDevice, LiveDiskRefused, NetworkUnreachable, PreflightFailure
from .executil import Runner, append_jsonl, set_trace_path, trace
from .logsink import configure_logging
from .model import MIRROR_COUNTRIES, ExecutionMode, InstallPlan, PartitionLayout, derive_layout
from .paths import trace_file
from .prompts import ask, confirm
from .rollback import RollbackManager
from .stages import StageContext, StageExecutor, register_cleanup

logger = logging.getLogger("archcrypt")

RESULT_CODES: Dict[str, int] = {
    "INSTALL_OK": 0,
    "DRYRUN_OK": 0,
    "DECLINED": 0,
    "FAIL_NETWORK": 2,
    "FAIL_INVALID_DEVICE": 3,
    "FAIL_LIVE_DISK_GUARD": 4,
    "FAIL_STAGE": 5,
    "FAIL_CHROOT": 6,
    "FAIL_UNHANDLED": 9,
    "FAIL_INTERRUPTED": 130,
}

PREFLIGHT_RESULTS = {
    NetworkUnreachable: "FAIL_NETWORK",
    InvalidDevice: "FAIL_INVALID_DEVICE",
    LiveDiskRefused: "FAIL_LIVE_DISK_GUARD",
}

RESULT_LOG_PATH: Optional[str] = None
CLI_START_MONO = time.perf_counter()

_SIZE_UNITS = {"K": 1 << 10, "M": 1 << 20, "G": 1 << 30, "T": 1 << 40}


def _record_result(kind: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"result": kind, "ts": int(time.time())}
    if extra:
        payload.update(extra)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    if RESULT_LOG_PATH:
        append_jsonl(RESULT_LOG_PATH, payload)
    print(json.dumps(payload, sort_keys=True, separators=(",", ":")), file=sys.stderr)
    return payload


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None, exit_code: Optional[int] = None):
    _record_result(kind, extra)
    code = RESULT_CODES.get(kind, 1) if exit_code is None else exit_code
    raise SystemExit(code)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="archcrypt", description="Encrypted (LUKS + LVM) Arch Linux installer")
    parser.add_argument("--dry-run", action="store_true", help="print every operation instead of running it")
    parser.add_argument("--disk", default=None, help="target disk; prompted for when omitted")
    parser.add_argument("--log-file", default=None, help="installer log (default /var/log/arch-install.log)")
    parser.add_argument("--efi-size-mib", type=int, default=2048)
    parser.add_argument("--root-size", default="200G", help="root logical volume size, lvcreate -L syntax")
    parser.add_argument(
        "--mirror-country",
        action="append",
        dest="mirror_countries",
        default=None,
        help="reflector country (repeatable)",
    )
    return parser


def size_to_bytes(size: str) -> Optional[int]:
    m = re.fullmatch(r"\s*(\d+)\s*([KMGT])?i?B?\s*", size, re.IGNORECASE)
    if not m:
        return None
    unit = (m.group(2) or "M").upper()
    return int(m.group(1)) * _SIZE_UNITS[unit]


def home_estimate(disk_bytes: Optional[int], plan: InstallPlan) -> str:
    """Rough size left for /home. Display only; lvcreate uses 100%FREE."""

    root_bytes = size_to_bytes(plan.root_size)
    if disk_bytes is None or root_bytes is None:
        return "Remaining (unknown)"
    left = disk_bytes - root_bytes - plan.efi_mib * _SIZE_UNITS["M"]
    if left <= 0:
        return "Remaining (~0, disk smaller than root + EFI)"
    return f"Remaining (~{left / _SIZE_UNITS['G']:.0f} GiB)"


def print_summary(plan: InstallPlan, layout: PartitionLayout, runner: Runner) -> None:
    home = home_estimate(preflight.disk_size_bytes(plan.disk, runner), plan)
    lines = [
        "=========================================",
        " ARCH LINUX INSTALLATION PREFLIGHT",
        "=========================================",
        f" Disk            : {plan.disk}",
        f" EFI partition   : {layout.efi} {plan.efi_mib}MiB (FAT32)",
        f" Encrypted part. : {layout.luks}",
        f" Root LV         : {plan.root_size} (ext4)",
        f" Home LV         : {home} (ext4)",
        " Encryption      : LUKS + LVM",
        " Boot mode       : UEFI",
        f" Dry-run         : {str(runner.dry_run).lower()}",
    ]
    for line in lines:
        logger.info(line)
    logger.warning("ALL DATA ON %s WILL BE LOST", plan.disk)


def _show_disks(runner: Runner) -> None:
    res = runner.query(["lsblk"])
    for line in (res.out or "").splitlines():
        logger.info(line)


def build_plan(args: argparse.Namespace, disk: str) -> InstallPlan:
    return InstallPlan(
        disk=disk,
        efi_mib=args.efi_size_mib,
        root_size=args.root_size,
        dry_run=args.dry_run,
        mirror_countries=tuple(args.mirror_countries or MIRROR_COUNTRIES),
    )


def install(
    plan: InstallPlan,
    runner: Runner,
    confirm_fn: Callable[[str], bool] = confirm,
    input_fn: Optional[Callable[[str], str]] = None,
) -> None:
    """Run the destructive phase with rollback armed.

    Raises ``SystemExit`` through ``_emit_result`` on a stage failure, after
    the rollback has run.
    """

    layout = derive_layout(plan)
    with RollbackManager() as rollback:
        ctx = StageContext(
            plan=plan,
            layout=layout,
            runner=runner,
            rollback=rollback,
            confirm_fn=confirm_fn,
            input_fn=input_fn,
        )
        register_cleanup(ctx)
        executor = StageExecutor(ctx)
        result = executor.run()
        if not result.ok:
            logger.error("Stage %s failed: %s", result.stage, result.cause)
            rollback.rollback("Installation failed")
            kind = "FAIL_CHROOT" if result.stage.startswith("ChrootConfigure") else "FAIL_STAGE"
            _emit_result(kind, {"stage": result.stage, "why": result.cause, "completed": executor.completed})
        logger.info("Unmounting target and closing encrypted volume")
        rollback.rollback()


def _main_impl(argv: Optional[list[str]] = None, input_fn: Optional[Callable[[str], str]] = None) -> int:
    global RESULT_LOG_PATH
    args = build_parser().parse_args(argv)
    log_path = configure_logging(args.log_file)
    RESULT_LOG_PATH = trace_file(log_path)
    set_trace_path(RESULT_LOG_PATH)

    mode = ExecutionMode.from_flag(args.dry_run)
    runner = Runner(mode)
    trace("cli.args", dry_run=args.dry_run, disk=args.disk, log_path=log_path)
    if runner.dry_run:
        logger.warning("DRY-RUN MODE ENABLED, no changes will be made")

    confirm_fn: Callable[[str], bool] = lambda prompt: confirm(prompt, input_fn=input_fn)

    disk = args.disk
    if not disk:
        _show_disks(runner)
        disk = ask("Enter disk (e.g. /dev/sda)", input_fn=input_fn)
    plan = build_plan(args, disk)

    logger.info("Checking internet connection and target disk")
    try:
        preflight.validate(plan, runner)
    except PreflightFailure as exc:
        logger.error("%s", exc)
        kind = PREFLIGHT_RESULTS.get(type(exc), "FAIL_UNHANDLED")
        _emit_result(kind, {"device": plan.disk, "why": str(exc)})

    preflight.sync_clock(runner)

    layout = derive_layout(plan)
    print_summary(plan, layout, runner)
    if not confirm_fn("Proceed with installation?"):
        _emit_result("DECLINED", {"device": plan.disk})

    try:
        install(plan, runner, confirm_fn=confirm_fn, input_fn=input_fn)
    except KeyboardInterrupt:
        logger.error("Installation interrupted")
        _emit_result("FAIL_INTERRUPTED", {"device": plan.disk})

    logger.info("Installation completed successfully")
    logger.warning("Log file saved at %s", log_path)
    logger.warning("You may now reboot")
    _record_result("DRYRUN_OK" if runner.dry_run else "INSTALL_OK", {"device": plan.disk, "commands": len(runner.history)})
    if confirm_fn("Reboot now?"):
        runner.run(["reboot"], check=False)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        logger.error("Interrupted before any disk change")
        _emit_result("FAIL_INTERRUPTED")
    except Exception as exc:  # noqa: BLE001
        logger.error("Unhandled error: %s", exc)
        _emit_result("FAIL_UNHANDLED", extra={"error": str(exc)})
    return 1


if __name__ == "__main__":
    sys.exit(main())
