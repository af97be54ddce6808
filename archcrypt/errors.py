"""Installer error taxonomy."""

from __future__ import annotations


class ArchcryptError(RuntimeError):
    """Base class for installer failures."""


class PreflightFailure(ArchcryptError):
    """Raised before anything is acquired; no rollback is needed."""


class NetworkUnreachable(PreflightFailure):
    pass


class InvalidDevice(PreflightFailure):
    pass


class LiveDiskRefused(PreflightFailure):
    pass


class UserDeclined(ArchcryptError):
    """The operator answered "no" at a confirmation gate."""

    def __init__(self, prompt: str) -> None:
        super().__init__(f"declined: {prompt}")
        self.prompt = prompt


class StageFailure(ArchcryptError):
    def __init__(self, stage: str, cause: str) -> None:
        super().__init__(f"{stage}: {cause}")
        self.stage = stage
        self.cause = cause


class ChrootStageFailure(StageFailure):
    pass


class CleanupFailure(ArchcryptError):
    def __init__(self, action: str, cause: str) -> None:
        super().__init__(f"cleanup {action} failed: {cause}")
        self.action = action
        self.cause = cause
