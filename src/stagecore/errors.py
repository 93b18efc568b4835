"""
Error taxonomy for StageCore.

Every error raised by the core and its collaborators derives from
StageCoreError so the stage runner and CLI can report them uniformly.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class StageCoreError(Exception):
    """Base class for all StageCore errors."""


class ConfigurationError(StageCoreError):
    """Required configuration (project id, credentials) could not be resolved."""


# =============================================================================
# State store
# =============================================================================


class StateError(StageCoreError):
    """Base class for state store failures."""

    def __init__(self, message: str, directory: Optional[str] = None, key: Optional[str] = None):
        self.directory = directory
        self.key = key
        super().__init__(message)


class StorageError(StateError):
    """I/O failure reading or writing test data (permissions, disk full, missing directory)."""


class NotFoundError(StateError):
    """No value was ever saved under the requested key."""


class CorruptDataError(StateError):
    """Stored test data exists but cannot be decoded into the expected shape."""


# =============================================================================
# Collaborators
# =============================================================================


class ProvisioningError(StageCoreError):
    """The provisioning tool failed to apply, destroy, or report outputs."""

    def __init__(
        self,
        message: str,
        cmd: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        self.cmd: List[str] = list(cmd) if cmd else []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        parts = [message]
        if self.cmd:
            parts.append(f"Command: {' '.join(self.cmd)}")
        if self.returncode is not None:
            parts.append(f"Exit code: {self.returncode}")
        if self.stderr:
            parts.append(f"Error: {self.stderr.strip()}")
        return "\n".join(parts)


class OutputTypeError(ProvisioningError):
    """A provisioning output exists but has the wrong type for the accessor used."""


class OutputNotFoundError(ProvisioningError, KeyError):
    """A provisioning output was requested that the module does not declare."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return Exception.__str__(self)


class ResourceConnectionError(StageCoreError):
    """Opening or pinging the provisioned resource failed."""


class StatementError(StageCoreError):
    """The provisioned resource rejected a statement."""


class AssertionFailure(StageCoreError):
    """An output or exercise-stage expectation did not hold."""

    def __init__(self, message: str, expected: object = None, actual: object = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


def assert_equal(expected: object, actual: object, what: str) -> None:
    """Raise AssertionFailure unless ``expected == actual``."""
    if expected != actual:
        raise AssertionFailure(
            f"{what}: expected {expected!r}, got {actual!r}",
            expected=expected,
            actual=actual,
        )
