"""Tests for desired and observed state records."""

import pytest

from disk_state.errors import InvalidParameterError
from disk_state.model import (
    DesiredState,
    DiskInfo,
    ObservedState,
    PartitionInfo,
    VolumeInfo,
    parse_size,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("4096", 4096),
        ("64K", 64 * 1024),
        ("64KB", 64 * 1024),
        ("512M", 512 * 1024 ** 2),
        ("20g", 20 * 1024 ** 3),
        ("1T", 1024 ** 4),
        ("10B", 10),
        (8192, 8192),
    ],
)
def test_parse_size(text, expected) -> None:
    assert parse_size(text) == expected


@pytest.mark.parametrize("text", ["", "G", "KB", "1.5G", "-1", "ten", True, 1.5])
def test_parse_size_rejects_garbage(text) -> None:
    with pytest.raises(InvalidParameterError):
        parse_size(text)


def test_from_parameters_normalises_letter_and_sizes() -> None:
    desired = DesiredState.from_parameters(
        2, "d:", size="10G", label="DATA", allocation_unit_size="64K"
    )
    assert desired == DesiredState(
        disk_number=2,
        drive_letter="D",
        size=10 * 1024 ** 3,
        label="DATA",
        allocation_unit_size=65536,
    )


def test_empty_label_is_kept_distinct_from_missing_label() -> None:
    assert DesiredState.from_parameters(1, "E", label="").label == ""
    assert DesiredState.from_parameters(1, "E").label is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"disk_number": -1, "drive_letter": "D"},
        {"disk_number": True, "drive_letter": "D"},
        {"disk_number": "2", "drive_letter": "D"},
        {"disk_number": 2, "drive_letter": "DE"},
        {"disk_number": 2, "drive_letter": "D", "size": 0},
        {"disk_number": 2, "drive_letter": "D", "size": 2 ** 64},
        {"disk_number": 2, "drive_letter": "D", "allocation_unit_size": 2 ** 32},
        {"disk_number": 2, "drive_letter": "D", "label": 5},
    ],
)
def test_from_parameters_rejects_invalid_input(kwargs) -> None:
    disk_number = kwargs.pop("disk_number")
    drive_letter = kwargs.pop("drive_letter")
    with pytest.raises(InvalidParameterError):
        DesiredState.from_parameters(disk_number, drive_letter, **kwargs)


def test_from_document_accepts_dsc_keys() -> None:
    desired = DesiredState.from_document(
        {"DiskNumber": 3, "DriveLetter": "F", "Size": "1G", "FSLabel": "Logs"}
    )
    assert desired.disk_number == 3
    assert desired.drive_letter == "F"
    assert desired.size == 1024 ** 3
    assert desired.label == "Logs"
    assert desired.allocation_unit_size is None


def test_from_document_rejects_unknown_and_missing_keys() -> None:
    with pytest.raises(InvalidParameterError, match="unknown"):
        DesiredState.from_document({"DiskNumber": 3, "DriveLetter": "F", "FSFormat": "ReFS"})
    with pytest.raises(InvalidParameterError, match="drive_letter"):
        DesiredState.from_document({"DiskNumber": 3})


def test_observed_payload_reports_absence() -> None:
    payload = ObservedState(disk_number=7, drive_letter="D").to_payload()
    assert payload["DiskNumber"] == 7
    assert payload["DiskFound"] is False
    assert payload["DriveLetter"] is None
    assert payload["PartitionStyle"] is None


def test_observed_payload_reports_volume() -> None:
    observed = ObservedState(
        disk_number=2,
        drive_letter="D",
        disk=DiskInfo(number=2, partition_style="GPT"),
        partition=PartitionInfo(disk_number=2, partition_number=2, drive_letter="D", size=100),
        volume=VolumeInfo(drive_letter="D", file_system="NTFS", file_system_label="DATA"),
        allocation_unit_size=4096,
    )
    payload = observed.to_payload()
    assert payload == {
        "DiskNumber": 2,
        "DriveLetter": "D",
        "Size": 100,
        "FSLabel": "DATA",
        "AllocationUnitSize": 4096,
        "DiskFound": True,
        "IsOffline": False,
        "IsReadOnly": False,
        "PartitionStyle": "GPT",
    }
