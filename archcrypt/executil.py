from __future__ import annotations

"""Subprocess wrapper, dry-run hook and JSONL trace log."""

import datetime as _dt
import json
import logging
import os
import shlex
import subprocess
import time
from typing import Sequence

from .model import ExecutionMode
from .paths import log_file, trace_file

logger = logging.getLogger(__name__)

TRACE_PATH: str | None = None


def _ensure_trace_path() -> str | None:
    global TRACE_PATH
    if TRACE_PATH:
        return TRACE_PATH
    path = trace_file(log_file())
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    except OSError:
        return None
    TRACE_PATH = path
    return path


def set_trace_path(path: str | None) -> None:
    global TRACE_PATH
    TRACE_PATH = path


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("ARCHCRYPT_LOG_LEVEL", "TRACE").upper()


def append_jsonl(path: str, obj: dict):
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    except OSError:
        pass


def log(level: str, event: str, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    cur = LEVELS.get(LOG_LEVEL, 100)
    if lvl < cur:
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z")
    rec = {"ts": ts, "level": level.upper(), "event": event}
    rec.update(fields)
    path = _ensure_trace_path()
    if path:
        append_jsonl(path, rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def render(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(c) for c in cmd)


def run(
    cmd: Sequence[str],
    check: bool = True,
    dry_run: bool = False,
    timeout: float | None = None,
    capture: bool = True,
) -> Result:
    """Run ``cmd`` or, under ``dry_run``, only report it.

    ``capture=False`` leaves stdin/stdout attached to the terminal for
    commands that prompt (``cryptsetup luksFormat``, ``passwd``).
    """

    trace("exec.start", cmd=list(cmd), dry_run=dry_run)
    if dry_run:
        text = "DRY-RUN: " + render(cmd)
        return Result(0, text, "", 0.0)
    started = time.time()
    proc = subprocess.run(
        list(cmd),
        capture_output=capture,
        text=True,
        timeout=timeout,
    )
    dur = time.time() - started
    out = proc.stdout if capture else ""
    err = proc.stderr if capture else ""
    trace("exec.done", cmd=list(cmd), rc=proc.returncode, dur=dur, err=(err or "").strip() or None)
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, list(cmd), out, err)
    return Result(proc.returncode, out or "", err or "", dur)


class Runner:
    """Single gate for every system-changing operation.

    In ``ExecutionMode.DRY_RUN`` nothing is executed or written: the operation
    is logged, recorded in ``history`` and reported as successful.
    """

    def __init__(self, mode: ExecutionMode):
        self.mode = mode
        self.history: list[str] = []

    @property
    def dry_run(self) -> bool:
        return self.mode is ExecutionMode.DRY_RUN

    def _record(self, text: str) -> None:
        self.history.append(text)
        if self.dry_run:
            logger.info("[DRY-RUN] %s", text)

    def run(
        self,
        cmd: Sequence[str],
        check: bool = True,
        timeout: float | None = None,
        capture: bool = True,
    ) -> Result:
        self._record(render(cmd))
        return run(cmd, check=check, dry_run=self.dry_run, timeout=timeout, capture=capture)

    def query(self, cmd: Sequence[str], timeout: float | None = 30.0) -> Result:
        # Read-only inspection runs in both modes and never raises on rc.
        try:
            return run(cmd, check=False, dry_run=False, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            trace("exec.query_error", cmd=list(cmd), error=str(exc))
            return Result(127, "", str(exc), 0.0)

    def write_file(self, path: str, content: str, mode: int | None = None) -> None:
        self._record(f"write {path} ({len(content)} bytes)")
        if self.dry_run:
            for line in content.splitlines():
                logger.info("[DRY-RUN]   | %s", line)
            return
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(path, mode)
        trace("file.write", path=path, size=len(content))

    def remove(self, path: str) -> None:
        self._record(f"rm -f {shlex.quote(path)}")
        if self.dry_run:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        trace("file.remove", path=path)

    def udev_settle(self) -> None:
        if self.dry_run:
            return
        try:
            subprocess.run(["udevadm", "settle"], check=False)
        except OSError:
            pass
