"""Get, test and set entry points called by the configuration engine."""

from __future__ import annotations

from typing import Any, Optional

from . import comparator, inspector, reconciler
from .logging_utils import log_event
from .model import ComparisonResult, DesiredState, ObservedState
from .storage import PowerShellStorage, StorageBackend


def _desired(
    disk_number: Any,
    drive_letter: Any,
    size: Any,
    label: Any,
    allocation_unit_size: Any,
) -> DesiredState:
    return DesiredState.from_parameters(
        disk_number,
        drive_letter,
        size=size,
        label=label,
        allocation_unit_size=allocation_unit_size,
    )


def get_state(
    disk_number: Any,
    drive_letter: Any,
    size: Any = None,
    label: Any = None,
    allocation_unit_size: Any = None,
    *,
    storage: Optional[StorageBackend] = None,
) -> ObservedState:
    """Return the live state of *disk_number* and *drive_letter*."""

    desired = _desired(disk_number, drive_letter, size, label, allocation_unit_size)
    storage = storage if storage is not None else PowerShellStorage()
    return inspector.inspect(storage, desired.disk_number, desired.drive_letter)


def evaluate_state(
    disk_number: Any,
    drive_letter: Any,
    size: Any = None,
    label: Any = None,
    allocation_unit_size: Any = None,
    *,
    storage: Optional[StorageBackend] = None,
) -> ComparisonResult:
    """Compare the live state against the requested one and explain the result."""

    desired = _desired(disk_number, drive_letter, size, label, allocation_unit_size)
    storage = storage if storage is not None else PowerShellStorage()
    observed = inspector.inspect(storage, desired.disk_number, desired.drive_letter)
    return comparator.compare(observed, desired)


def test_state(
    disk_number: Any,
    drive_letter: Any,
    size: Any = None,
    label: Any = None,
    allocation_unit_size: Any = None,
    *,
    storage: Optional[StorageBackend] = None,
) -> bool:
    """Return ``True`` when the host already matches the requested state."""

    result = evaluate_state(
        disk_number,
        drive_letter,
        size,
        label,
        allocation_unit_size,
        storage=storage,
    )
    log_event(
        "disk_state.resource.test",
        in_desired_state=result.in_desired_state,
        reason=result.reason,
    )
    return result.in_desired_state


def set_state(
    disk_number: Any,
    drive_letter: Any,
    size: Any = None,
    label: Any = None,
    allocation_unit_size: Any = None,
    *,
    storage: Optional[StorageBackend] = None,
) -> None:
    """Converge the host toward the requested state."""

    desired = _desired(disk_number, drive_letter, size, label, allocation_unit_size)
    storage = storage if storage is not None else PowerShellStorage()
    reconciler.converge(storage, desired)
