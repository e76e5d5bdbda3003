"""Drive a disk toward its desired state."""

from __future__ import annotations

import os
import time
from typing import Optional, Tuple

from .errors import (
    DiskAlreadyInitializedError,
    DiskNotFoundError,
    InvalidParameterError,
    TransientInconsistencyError,
)
from .logging_utils import log_event
from .model import (
    PARTITION_STYLE_GPT,
    PARTITION_STYLE_RAW,
    DesiredState,
    DiskInfo,
    VolumeInfo,
)
from .storage import StorageBackend

FILE_SYSTEM = "NTFS"

# Partition 1 is the Microsoft reserved partition on the GPT disks this
# resource initialises, so the data partition is always number 2.
DATA_PARTITION_NUMBER = 2

DEFAULT_SETTLE_ATTEMPTS = 10
DEFAULT_SETTLE_DELAY = 3.0


def _env_number(name: str, default: float, cast: type) -> float:
    """Return the numeric environment override *name* or *default*."""

    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = cast(value)
    except ValueError:
        parsed = None
    if parsed is None or parsed <= 0:
        log_event("disk_state.config.invalid", variable=name, value=value, default=default)
        return default
    return parsed


def settle_attempts() -> int:
    """Return how often a new partition's read-only flag is polled."""

    return int(_env_number("DISK_STATE_SETTLE_ATTEMPTS", DEFAULT_SETTLE_ATTEMPTS, int))


def settle_delay() -> float:
    """Return the delay in seconds between read-only polls."""

    return float(_env_number("DISK_STATE_SETTLE_DELAY", DEFAULT_SETTLE_DELAY, float))


def _settle_settings(
    attempts: Optional[int], delay: Optional[float]
) -> Tuple[int, float]:
    """Resolve explicit poll settings against the configured defaults."""

    if attempts is None:
        attempts = settle_attempts()
    elif isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise InvalidParameterError(
            f"settle attempts must be a positive integer, not {attempts!r}"
        )
    if delay is None:
        delay = settle_delay()
    elif isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
        raise InvalidParameterError(
            f"settle delay must be a non-negative number, not {delay!r}"
        )
    return attempts, delay


def wait_for_writable_partition(
    storage: StorageBackend,
    drive_letter: str,
    *,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> None:
    """Poll the partition at *drive_letter* until it stops reporting read-only.

    The storage stack keeps a freshly created partition read-only for a short
    while; formatting before it clears fails. Raises
    :class:`TransientInconsistencyError` once *attempts* polls are exhausted.
    Explicit settings below one attempt or a negative delay raise
    :class:`InvalidParameterError`.
    """

    attempts, delay = _settle_settings(attempts, delay)

    log_event(
        "disk_state.reconciler.wait_for_writable.start",
        drive_letter=drive_letter,
        attempts=attempts,
        delay_seconds=delay,
    )
    for attempt in range(1, attempts + 1):
        partition = storage.get_partition(drive_letter)
        if partition is not None and not partition.is_read_only:
            log_event(
                "disk_state.reconciler.wait_for_writable.ready",
                drive_letter=drive_letter,
                attempt=attempt,
            )
            return
        if attempt < attempts:
            time.sleep(delay)

    log_event(
        "disk_state.reconciler.wait_for_writable.timeout",
        drive_letter=drive_letter,
        attempts=attempts,
        delay_seconds=delay,
    )
    raise TransientInconsistencyError(drive_letter, attempts, delay)


def _require_disk(storage: StorageBackend, disk_number: int) -> DiskInfo:
    disk = storage.get_disk(disk_number)
    if disk is None:
        log_event("disk_state.reconciler.disk_missing", disk_number=disk_number)
        raise DiskNotFoundError(disk_number)
    return disk


def _create_volume(
    storage: StorageBackend,
    desired: DesiredState,
    *,
    attempts: Optional[int],
    delay: Optional[float],
) -> None:
    pending = storage.get_partition(desired.drive_letter)
    if pending is not None and pending.disk_number == desired.disk_number:
        log_event(
            "disk_state.reconciler.partition.resume",
            disk_number=desired.disk_number,
            partition_number=pending.partition_number,
            drive_letter=desired.drive_letter,
        )
    else:
        log_event(
            "disk_state.reconciler.partition.create",
            disk_number=desired.disk_number,
            drive_letter=desired.drive_letter,
            size=desired.size,
        )
        storage.new_partition(desired.disk_number, desired.drive_letter, desired.size)
    wait_for_writable_partition(
        storage, desired.drive_letter, attempts=attempts, delay=delay
    )

    log_event(
        "disk_state.reconciler.volume.format",
        drive_letter=desired.drive_letter,
        file_system=FILE_SYSTEM,
        label=desired.label,
        allocation_unit_size=desired.allocation_unit_size,
    )
    storage.format_volume(
        desired.drive_letter,
        FILE_SYSTEM,
        label=desired.label,
        allocation_unit_size=desired.allocation_unit_size or None,
    )


def _update_volume(
    storage: StorageBackend, desired: DesiredState, volume: VolumeInfo
) -> None:
    if volume.drive_letter is None:
        log_event(
            "disk_state.reconciler.drive_letter.assign",
            disk_number=desired.disk_number,
            partition_number=DATA_PARTITION_NUMBER,
            drive_letter=desired.drive_letter,
        )
        storage.set_partition_number_drive_letter(
            desired.disk_number, DATA_PARTITION_NUMBER, desired.drive_letter
        )
    elif volume.drive_letter != desired.drive_letter:
        log_event(
            "disk_state.reconciler.drive_letter.change",
            old=volume.drive_letter,
            new=desired.drive_letter,
        )
        storage.set_partition_drive_letter(volume.drive_letter, desired.drive_letter)

    if desired.label is not None and (volume.file_system_label or "") != desired.label:
        log_event(
            "disk_state.reconciler.volume.relabel",
            drive_letter=desired.drive_letter,
            old=volume.file_system_label,
            new=desired.label,
        )
        storage.set_volume_label(desired.drive_letter, desired.label)

    if desired.allocation_unit_size:
        log_event(
            "disk_state.reconciler.allocation_unit_size.unchanged",
            drive_letter=desired.drive_letter,
            requested=desired.allocation_unit_size,
            reason="existing volumes are never reformatted",
        )


def converge(
    storage: StorageBackend,
    desired: DesiredState,
    *,
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> None:
    """Apply the ordered steps that bring the host to *desired*.

    Every step re-reads the disk before acting because the previous step may
    have changed it. Nothing is rolled back: the first failing step raises and
    a later run picks up where this one stopped. Callers are expected to run
    :func:`disk_state.comparator.compare` first; this function does not check
    whether any work is needed.
    """

    attempts, delay = _settle_settings(attempts, delay)
    number = desired.disk_number
    log_event(
        "disk_state.reconciler.converge.start",
        disk_number=number,
        drive_letter=desired.drive_letter,
    )

    disk = _require_disk(storage, number)
    if disk.is_offline:
        log_event("disk_state.reconciler.disk.online", disk_number=number)
        storage.set_disk_online(number)

    disk = _require_disk(storage, number)
    if disk.is_read_only:
        log_event("disk_state.reconciler.disk.writable", disk_number=number)
        storage.set_disk_writable(number)

    disk = _require_disk(storage, number)
    if disk.partition_style == PARTITION_STYLE_RAW:
        log_event("disk_state.reconciler.disk.initialize", disk_number=number)
        storage.initialize_disk(number, PARTITION_STYLE_GPT)
    elif disk.partition_style != PARTITION_STYLE_GPT:
        log_event(
            "disk_state.reconciler.disk.unsupported_style",
            disk_number=number,
            partition_style=disk.partition_style,
        )
        raise DiskAlreadyInitializedError(number, disk.partition_style)

    volume = storage.get_disk_volume(number)
    if volume is None:
        _create_volume(storage, desired, attempts=attempts, delay=delay)
    else:
        _update_volume(storage, desired, volume)

    log_event(
        "disk_state.reconciler.converge.finished",
        disk_number=number,
        drive_letter=desired.drive_letter,
    )
