"""Tests for converging a disk toward its desired state."""

from __future__ import annotations

import pytest

from disk_state import reconciler
from disk_state.errors import (
    DiskAlreadyInitializedError,
    DiskNotFoundError,
    InvalidParameterError,
    TransientInconsistencyError,
)
from disk_state.model import DesiredState
from tests.fake_storage import GIB, RESERVED_PARTITION_SIZE, FakePartition, FakeStorage


def _desired(letter: str = "D", **kwargs) -> DesiredState:
    return DesiredState.from_parameters(2, letter, **kwargs)


def test_missing_disk_is_fatal(storage: FakeStorage) -> None:
    with pytest.raises(DiskNotFoundError) as excinfo:
        reconciler.converge(storage, _desired())
    assert excinfo.value.disk_number == 2
    assert storage.calls == []


def test_raw_offline_read_only_disk_is_fully_prepared(storage: FakeStorage) -> None:
    storage.add_disk(2, is_offline=True, is_read_only=True, partition_style="RAW")

    reconciler.converge(storage, _desired())

    assert storage.calls == [
        ("set_disk_online", 2),
        ("set_disk_writable", 2),
        ("initialize_disk", 2, "GPT"),
        ("new_partition", 2, "D", None),
        ("format_volume", "D", "NTFS", None, None),
    ]
    data = storage.partitions[-1]
    assert data.size == storage.disks[2].size - RESERVED_PARTITION_SIZE


def test_new_partition_uses_requested_size_label_and_allocation_unit(
    storage: FakeStorage,
) -> None:
    storage.add_disk(2, partition_style="GPT")

    reconciler.converge(
        storage, _desired(size=10 * GIB, label="DATA", allocation_unit_size=65536)
    )

    assert storage.calls == [
        ("new_partition", 2, "D", 10 * GIB),
        ("format_volume", "D", "NTFS", "DATA", 65536),
    ]


def test_zero_allocation_unit_formats_with_default(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")

    reconciler.converge(storage, _desired(allocation_unit_size=0))

    assert storage.calls[-1] == ("format_volume", "D", "NTFS", None, None)


def test_unsupported_partition_style_is_fatal(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="MBR")

    with pytest.raises(DiskAlreadyInitializedError) as excinfo:
        reconciler.converge(storage, _desired())

    assert excinfo.value.partition_style == "MBR"
    assert storage.calls == []


def test_existing_volume_gets_new_drive_letter(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")
    storage.add_volume(2, "E")

    reconciler.converge(storage, _desired("D"))

    assert storage.calls == [("set_partition_drive_letter", "E", "D")]


def test_letterless_volume_is_assigned_on_data_partition(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")
    storage.add_volume(2, None, partition_number=reconciler.DATA_PARTITION_NUMBER)

    reconciler.converge(storage, _desired("D"))

    assert storage.calls == [("set_partition_number_drive_letter", 2, 2, "D")]


def test_existing_volume_is_relabelled_in_place(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")
    storage.add_volume(2, "D", label="OLD")

    reconciler.converge(storage, _desired(label="DATA"))

    assert storage.calls == [("set_volume_label", "D", "DATA")]


def test_existing_volume_is_never_reformatted(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")
    storage.add_volume(2, "E", label="OLD", allocation_unit_size=4096)

    reconciler.converge(
        storage, _desired("D", size=1 * GIB, label="NEW", allocation_unit_size=65536)
    )

    assert "format_volume" not in storage.call_names
    assert "new_partition" not in storage.call_names
    assert "initialize_disk" not in storage.call_names
    assert storage.calls == [
        ("set_partition_drive_letter", "E", "D"),
        ("set_volume_label", "D", "NEW"),
    ]


def test_waits_for_new_partition_to_become_writable(no_sleep) -> None:
    storage = FakeStorage(settle_polls=2)
    storage.add_disk(2, partition_style="GPT")

    reconciler.converge(storage, _desired(), attempts=5, delay=0.5)

    assert no_sleep == [0.5, 0.5]
    assert storage.call_names[-1] == "format_volume"


def test_partition_stuck_read_only_raises_without_formatting(no_sleep) -> None:
    storage = FakeStorage(settle_polls=10)
    storage.add_disk(2, partition_style="GPT")

    with pytest.raises(TransientInconsistencyError) as excinfo:
        reconciler.converge(storage, _desired(), attempts=3, delay=1.0)

    assert excinfo.value.attempts == 3
    assert no_sleep == [1.0, 1.0]
    assert "format_volume" not in storage.call_names


def test_rerun_formats_partition_left_read_only_by_earlier_run(no_sleep) -> None:
    storage = FakeStorage(settle_polls=5)
    storage.add_disk(2, partition_style="GPT")

    with pytest.raises(TransientInconsistencyError):
        reconciler.converge(storage, _desired(label="DATA"), attempts=2, delay=1.0)

    reconciler.converge(storage, _desired(label="DATA"), attempts=10, delay=1.0)

    assert storage.calls == [
        ("new_partition", 2, "D", None),
        ("format_volume", "D", "NTFS", "DATA", None),
    ]
    lettered = [p for p in storage.partitions if p.drive_letter == "D"]
    assert len(lettered) == 1
    assert lettered[0].file_system == "NTFS"


def test_rerun_after_failed_format_does_not_create_another_partition(
    storage: FakeStorage,
) -> None:
    storage.add_disk(2, partition_style="GPT")
    real_format = storage.format_volume

    def failing_format(*args, **kwargs) -> None:
        raise RuntimeError("Format-Volume failed")

    storage.format_volume = failing_format
    with pytest.raises(RuntimeError, match="Format-Volume failed"):
        reconciler.converge(storage, _desired())

    storage.format_volume = real_format
    reconciler.converge(storage, _desired())

    assert storage.call_names.count("new_partition") == 1
    assert storage.call_names[-1] == "format_volume"
    assert len(storage.partitions) == 1


def test_partition_at_letter_on_other_disk_is_not_reused(storage: FakeStorage) -> None:
    storage.add_disk(2, partition_style="GPT")
    storage.add_disk(3, partition_style="GPT")
    storage.partitions.append(
        FakePartition(disk_number=3, partition_number=2, size=GIB, drive_letter="D")
    )

    reconciler.converge(storage, _desired())

    assert ("new_partition", 2, "D", None) in storage.calls


@pytest.mark.parametrize(
    "settings",
    [{"attempts": 0}, {"attempts": -1}, {"attempts": True}, {"delay": -1.0}],
)
def test_invalid_explicit_settle_settings_are_rejected_before_any_step(
    storage: FakeStorage, settings
) -> None:
    storage.add_disk(2, is_offline=True, partition_style="GPT")

    with pytest.raises(InvalidParameterError):
        reconciler.converge(storage, _desired(), **settings)

    assert storage.calls == []


def test_wait_rejects_zero_attempts(storage: FakeStorage) -> None:
    with pytest.raises(InvalidParameterError, match="settle attempts"):
        reconciler.wait_for_writable_partition(storage, "D", attempts=0, delay=1.0)


def test_settle_settings_come_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("DISK_STATE_SETTLE_ATTEMPTS", "4")
    monkeypatch.setenv("DISK_STATE_SETTLE_DELAY", "0.25")
    assert reconciler.settle_attempts() == 4
    assert reconciler.settle_delay() == 0.25


@pytest.mark.parametrize("value", ["", "zero", "-3", "0"])
def test_invalid_settle_settings_fall_back_to_defaults(monkeypatch, value) -> None:
    monkeypatch.setenv("DISK_STATE_SETTLE_ATTEMPTS", value)
    monkeypatch.setenv("DISK_STATE_SETTLE_DELAY", value)
    assert reconciler.settle_attempts() == reconciler.DEFAULT_SETTLE_ATTEMPTS
    assert reconciler.settle_delay() == reconciler.DEFAULT_SETTLE_DELAY


def test_primitive_failure_stops_convergence(storage: FakeStorage) -> None:
    storage.add_disk(2, is_offline=True, partition_style="RAW")

    def broken(number: int) -> None:
        raise RuntimeError("Set-Disk failed")

    storage.set_disk_online = broken

    with pytest.raises(RuntimeError, match="Set-Disk failed"):
        reconciler.converge(storage, _desired())
    assert storage.calls == []
