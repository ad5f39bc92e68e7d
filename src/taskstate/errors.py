"""Typed errors for the persistent-state layer.

Backup and JSON-store operations raise these so callers (the CLI, mostly)
can map them to an exit code. The manifest resolver never raises them.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes surfaced by the CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_INPUT = 2
    NOT_FOUND = 4
    VALIDATION_ERROR = 6
    NO_BACKUPS = 7
    LOCK_TIMEOUT = 8


class StateError(Exception):
    """Base class for caller-correctable state errors."""

    exit_code: ExitCode = ExitCode.GENERAL_ERROR

    def __init__(self, message: str, *, fix: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fix = fix

    def to_dict(self) -> dict:
        data = {"code": int(self.exit_code), "name": type(self).__name__, "message": self.message}
        if self.fix:
            data["fix"] = self.fix
        return data


class SourceNotFound(StateError):
    exit_code = ExitCode.NOT_FOUND


class NoBackupsAvailable(StateError):
    exit_code = ExitCode.NO_BACKUPS


class StateNotFoundError(StateError):
    exit_code = ExitCode.NOT_FOUND


class InvalidJsonError(StateError):
    exit_code = ExitCode.VALIDATION_ERROR


class ValidationFailedError(StateError):
    exit_code = ExitCode.VALIDATION_ERROR


class InvalidInputError(StateError):
    exit_code = ExitCode.INVALID_INPUT


class LockTimeoutError(StateError):
    exit_code = ExitCode.LOCK_TIMEOUT
