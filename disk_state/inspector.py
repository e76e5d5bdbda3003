"""Read the live state of a disk and drive letter."""

from __future__ import annotations

from typing import Iterable, Optional

from .drive_letter import validate_drive_letter
from .logging_utils import log_event
from .model import ObservedState
from .storage import BlockSizeSource, StorageBackend


def query_allocation_unit_size(
    sources: Iterable[BlockSizeSource], drive_letter: str
) -> Optional[int]:
    """Return the first allocation unit size reported by *sources*.

    Sources are tried in order; a source answering ``None`` hands over to the
    next one. ``None`` is returned when every source comes up empty.
    """

    for index, source in enumerate(sources):
        value = source(drive_letter)
        if value is not None:
            log_event(
                "disk_state.inspector.allocation_unit_size.found",
                drive_letter=drive_letter,
                source=index,
                allocation_unit_size=value,
            )
            return value
    log_event(
        "disk_state.inspector.allocation_unit_size.missing",
        drive_letter=drive_letter,
    )
    return None


def inspect(storage: StorageBackend, disk_number: int, drive_letter: str) -> ObservedState:
    """Return an :class:`ObservedState` for *disk_number* and *drive_letter*.

    Missing disks, partitions and volumes are reported as ``None`` fields;
    only a malformed drive letter raises.
    """

    letter = validate_drive_letter(drive_letter)
    disk = storage.get_disk(disk_number)
    partition = storage.get_partition(letter)
    volume = storage.get_volume(letter)
    allocation_unit_size = query_allocation_unit_size(storage.block_size_sources, letter)

    log_event(
        "disk_state.inspector.inspect",
        disk_number=disk_number,
        drive_letter=letter,
        disk_found=disk is not None,
        partition_found=partition is not None,
        volume_found=volume is not None,
    )
    return ObservedState(
        disk_number=disk_number,
        drive_letter=letter,
        disk=disk,
        partition=partition,
        volume=volume,
        allocation_unit_size=allocation_unit_size,
    )
