"""
Errors -- Exception taxonomy for shadowbox

Precondition errors are user-facing: the CLI prints them and exits 1
without a traceback. Command failures are never exceptions; a non-zero
exit is recorded as data on the run.
"""

from typing import Optional


class ShadowboxError(Exception):
    """Base class for all shadowbox errors."""


class PreconditionError(ShadowboxError):
    """An operation was refused before anything was mutated."""


class NoSandboxError(PreconditionError):
    """No sandbox could be resolved for the source tree."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "No sandbox found. Run `shadowbox start` first or pass --sandbox."
        )


class ApplyRefusedError(PreconditionError):
    """
    Apply was gated by apply_requires_success.

    reason is "no_status" when no run was ever recorded and
    "last_run_failed" when the most recent run failed or was interrupted.
    """

    REMEDIATION = "Rerun until the commands succeed, or pass --force to apply anyway."

    def __init__(self, reason: str):
        self.reason = reason
        if reason == "no_status":
            detail = "No successful run recorded."
        else:
            detail = "Last run failed or was interrupted."
        super().__init__(f"Refusing to apply changes. {detail} {self.REMEDIATION}")


class CommandSpawnError(ShadowboxError):
    """A configured command could not be started at all."""

    def __init__(self, name: str, cause: Exception):
        self.name = name
        self.cause = cause
        super().__init__(f"Could not start command '{name}': {cause}")
