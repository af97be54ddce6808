"""Best-effort teardown of everything the installer acquired."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import CleanupFailure
from .executil import trace

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


@dataclass(frozen=True)
class CleanupAction:
    name: str
    fn: Callable[[], Any]

    def __call__(self) -> None:
        res = self.fn()
        rc = getattr(res, "rc", 0)
        # 32: umount "not mounted", 4: cryptsetup "device not active"
        if rc not in (0, 32, 4):
            err = (getattr(res, "err", "") or "").strip()
            raise CleanupFailure(self.name, err or f"exit status {rc}")


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


class RollbackManager:
    """Holds cleanup actions and runs them, newest first, at most once.

    Actions are registered before the resource they undo is acquired, so each
    one must tolerate the resource being absent. Failures are logged as
    warnings and never raised: the original error is what the operator needs
    to see.
    """

    def __init__(self) -> None:
        self._actions: List[CleanupAction] = []
        self._done = False
        self._previous: Dict[int, Any] = {}

    @property
    def done(self) -> bool:
        return self._done

    @property
    def registered(self) -> List[str]:
        return [a.name for a in self._actions]

    def register(self, name: str, fn: Callable[[], Any]) -> None:
        if name in self.registered:
            return
        self._actions.append(CleanupAction(name, fn))
        trace("rollback.register", action=name)

    def rollback(self, reason: Optional[str] = None) -> List[str]:
        if self._done:
            return []
        self._done = True
        if reason:
            logger.warning("%s, cleaning up...", reason)
        ran: List[str] = []
        for action in reversed(self._actions):
            try:
                action()
            except Exception as exc:  # noqa: BLE001 - cleanup is best effort
                logger.warning("Cleanup step %s failed: %s", action.name, exc)
                trace("rollback.action_failed", action=action.name, error=str(exc))
            ran.append(action.name)
        trace("rollback.done", reason=reason, actions=ran)
        return ran

    def install_signal_handlers(self) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                self._previous[signum] = signal.signal(signum, _raise_interrupt)
            except (ValueError, OSError):
                # not in the main thread
                continue

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def __enter__(self) -> "RollbackManager":
        self.install_signal_handlers()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is not None:
                if issubclass(exc_type, KeyboardInterrupt):
                    self.rollback("Interrupted")
                else:
                    self.rollback("Unexpected error")
        finally:
            self.restore_signal_handlers()
        return False
