"""Exceptions raised by the setup tool.

Only failures that must stop the run are exceptions. "Already exists" results
and best-effort failures (role assignments, Graph consent) are recorded on the
provisioning context instead.
"""


class SetupError(Exception):
    """Base class for every error this tool raises on purpose."""


class FatalPreconditionError(SetupError):
    """Missing tooling, no active login, or bad input. Nothing was mutated."""


class AzureCliError(SetupError):
    """An `az` command exited non-zero where no failure was expected."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"`{' '.join(command)}` failed with exit code {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)
