"""Compare observed disk state against the desired state."""

from __future__ import annotations

from .logging_utils import log_event
from .model import PARTITION_STYLE_GPT, ComparisonResult, DesiredState, ObservedState

REASON_DISK_NOT_FOUND = "disk not found"
REASON_DISK_OFFLINE = "disk offline"
REASON_DISK_READ_ONLY = "disk read-only"
REASON_NOT_GPT = "not GPT"
REASON_DRIVE_LETTER_NOT_FOUND = "target drive letter not found"
REASON_SIZE_MISMATCH = "size mismatch"
REASON_LABEL_MISMATCH = "label mismatch"


def _mismatch(reason: str, **fields: object) -> ComparisonResult:
    log_event("disk_state.comparator.mismatch", reason=reason, **fields)
    return ComparisonResult(in_desired_state=False, reason=reason)


def compare(observed: ObservedState, desired: DesiredState) -> ComparisonResult:
    """Return whether *observed* satisfies *desired*.

    Checks run from the most fundamental fact (the disk exists) to the most
    mutable one (the label) and the first failing check is reported.
    Allocation unit drift is logged but never reported as a mismatch.
    """

    disk = observed.disk
    if disk is None:
        return _mismatch(REASON_DISK_NOT_FOUND, disk_number=desired.disk_number)
    if disk.is_offline:
        return _mismatch(REASON_DISK_OFFLINE, disk_number=disk.number)
    if disk.is_read_only:
        return _mismatch(REASON_DISK_READ_ONLY, disk_number=disk.number)
    if disk.partition_style != PARTITION_STYLE_GPT:
        return _mismatch(
            REASON_NOT_GPT,
            disk_number=disk.number,
            partition_style=disk.partition_style,
        )

    partition = observed.partition
    if partition is None or partition.drive_letter != desired.drive_letter:
        return _mismatch(REASON_DRIVE_LETTER_NOT_FOUND, drive_letter=desired.drive_letter)

    if desired.size is not None and partition.size != desired.size:
        return _mismatch(
            REASON_SIZE_MISMATCH,
            expected=desired.size,
            actual=partition.size,
        )

    if (
        observed.allocation_unit_size
        and desired.allocation_unit_size
        and observed.allocation_unit_size != desired.allocation_unit_size
    ):
        log_event(
            "disk_state.comparator.allocation_unit_drift",
            drive_letter=desired.drive_letter,
            expected=desired.allocation_unit_size,
            actual=observed.allocation_unit_size,
        )

    if desired.label is not None:
        actual_label = observed.volume.file_system_label if observed.volume else None
        if observed.volume is None or (actual_label or "") != desired.label:
            return _mismatch(
                REASON_LABEL_MISMATCH,
                expected=desired.label,
                actual=actual_label,
            )

    log_event(
        "disk_state.comparator.match",
        disk_number=desired.disk_number,
        drive_letter=desired.drive_letter,
    )
    return ComparisonResult(in_desired_state=True)
