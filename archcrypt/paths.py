from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_LOG_FILE = "/var/log/arch-install.log"
_FALLBACK_LOG_FILE = "/tmp/arch-install.log"
_DEFAULT_TARGET = "/mnt"

MIRRORLIST = "/etc/pacman.d/mirrorlist"
CHROOT_SCRIPT_NAME = "chroot-setup.sh"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def log_file() -> str:
    """Return the installer log path.

    ``ARCHCRYPT_LOG_FILE`` overrides the historical ``/var/log/arch-install.log``
    location, which is also the path the chroot script appends to inside the
    new root.
    """

    override = os.environ.get("ARCHCRYPT_LOG_FILE")
    if override:
        return _expand(override)
    return _DEFAULT_LOG_FILE


def fallback_log_file() -> str:
    return _FALLBACK_LOG_FILE


def trace_file(log_path: str) -> str:
    return str(Path(log_path).with_name("archcrypt-trace.jsonl"))


def target_root() -> str:
    override = os.environ.get("ARCHCRYPT_TARGET")
    if override:
        return _expand(override)
    return _DEFAULT_TARGET
