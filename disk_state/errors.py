"""Exceptions raised by disk-state operations."""

from __future__ import annotations

from typing import Sequence


class DiskStateError(RuntimeError):
    """Base class for failures that abort an inspect, test or converge call."""


class InvalidParameterError(DiskStateError, ValueError):
    """A caller-supplied parameter is malformed."""


class DiskNotFoundError(DiskStateError):
    """The requested disk number does not exist on the host."""

    def __init__(self, disk_number: int) -> None:
        super().__init__(f"disk {disk_number} was not found")
        self.disk_number = disk_number


class DiskAlreadyInitializedError(DiskStateError):
    """The disk carries a partition table this resource does not manage."""

    def __init__(self, disk_number: int, partition_style: str) -> None:
        super().__init__(
            f"disk {disk_number} is already initialized with partition style "
            f"{partition_style!r}; only RAW and GPT disks can be managed"
        )
        self.disk_number = disk_number
        self.partition_style = partition_style


class TransientInconsistencyError(DiskStateError):
    """A freshly created partition did not become writable in time."""

    def __init__(self, drive_letter: str, attempts: int, delay: float) -> None:
        super().__init__(
            f"partition {drive_letter}: still reported read-only after "
            f"{attempts} checks {delay:g}s apart"
        )
        self.drive_letter = drive_letter
        self.attempts = attempts
        self.delay = delay


class StorageCommandError(DiskStateError):
    """An underlying storage command exited unsuccessfully."""

    def __init__(
        self, action: str, command: Sequence[str], returncode: int, stderr: str = ""
    ) -> None:
        detail = stderr.strip()
        message = f"{action} exited with status {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.action = action
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
