"""Desired and observed disk state records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .drive_letter import validate_drive_letter
from .errors import InvalidParameterError

PARTITION_STYLE_RAW = "RAW"
PARTITION_STYLE_GPT = "GPT"

MAX_SIZE = 2 ** 64 - 1
MAX_ALLOCATION_UNIT_SIZE = 2 ** 32 - 1
MAX_DISK_NUMBER = 2 ** 32 - 1

_SIZE_SUFFIXES = {
    "K": 1024,
    "M": 1024 ** 2,
    "G": 1024 ** 3,
    "T": 1024 ** 4,
}

# Desired-state document keys, DSC spelling first.
_DOCUMENT_KEYS = {
    "DiskNumber": "disk_number",
    "DriveLetter": "drive_letter",
    "Size": "size",
    "FSLabel": "label",
    "AllocationUnitSize": "allocation_unit_size",
    "disk_number": "disk_number",
    "drive_letter": "drive_letter",
    "size": "size",
    "label": "label",
    "allocation_unit_size": "allocation_unit_size",
}


def parse_size(value: Any) -> int:
    """Parse sizes like ``"20G"``, ``"512MB"`` or ``4096`` into bytes."""

    if isinstance(value, bool):
        raise InvalidParameterError(f"invalid size {value!r}")
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise InvalidParameterError(f"invalid size {value!r}")
    s = value.strip().upper()
    if s.endswith("B"):
        s = s[:-1]
    multiplier = 1
    if s and s[-1] in _SIZE_SUFFIXES:
        multiplier = _SIZE_SUFFIXES[s[-1]]
        s = s[:-1]
    if not s.isdigit():
        raise InvalidParameterError(f"invalid size {value!r}")
    return int(s) * multiplier


def normalise_document(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Return *document* keyed by parameter name, rejecting unknown keys."""

    if not isinstance(document, Mapping):
        raise InvalidParameterError("desired-state document must be a JSON object")
    params: Dict[str, Any] = {}
    for key, value in document.items():
        name = _DOCUMENT_KEYS.get(key)
        if name is None:
            raise InvalidParameterError(f"unknown desired-state key {key!r}")
        params[name] = value
    return params


def _check_range(name: str, value: Any, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameterError(f"{name} must be an integer, not {value!r}")
    if not minimum <= value <= maximum:
        raise InvalidParameterError(f"{name} {value} is outside {minimum}..{maximum}")
    return value


@dataclass(frozen=True)
class DesiredState:
    """Caller-supplied target configuration for one disk."""

    disk_number: int
    drive_letter: str
    size: Optional[int] = None
    label: Optional[str] = None
    allocation_unit_size: Optional[int] = None

    @classmethod
    def from_parameters(
        cls,
        disk_number: Any,
        drive_letter: Any,
        *,
        size: Any = None,
        label: Any = None,
        allocation_unit_size: Any = None,
    ) -> "DesiredState":
        """Validate raw parameters and return a normalised :class:`DesiredState`.

        ``label=None`` means the label is not managed; an empty string is a
        supplied label and will be enforced.
        """

        number = _check_range("disk number", disk_number, 0, MAX_DISK_NUMBER)
        letter = validate_drive_letter(drive_letter)
        if size is not None:
            size = _check_range("size", parse_size(size), 1, MAX_SIZE)
        if label is not None and not isinstance(label, str):
            raise InvalidParameterError(f"label must be a string, not {label!r}")
        if allocation_unit_size is not None:
            allocation_unit_size = _check_range(
                "allocation unit size",
                parse_size(allocation_unit_size),
                0,
                MAX_ALLOCATION_UNIT_SIZE,
            )
        return cls(
            disk_number=number,
            drive_letter=letter,
            size=size,
            label=label,
            allocation_unit_size=allocation_unit_size,
        )

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "DesiredState":
        """Build a desired state from a configuration document mapping."""

        params = normalise_document(document)
        for required in ("disk_number", "drive_letter"):
            if required not in params:
                raise InvalidParameterError(f"desired-state document is missing {required!r}")
        return cls.from_parameters(
            params.pop("disk_number"),
            params.pop("drive_letter"),
            **params,
        )


@dataclass(frozen=True)
class DiskInfo:
    """Disk facts relevant to reconciliation."""

    number: int
    is_offline: bool = False
    is_read_only: bool = False
    partition_style: str = PARTITION_STYLE_RAW
    size: int = 0


@dataclass(frozen=True)
class PartitionInfo:
    """A partition, usually looked up by its drive letter."""

    disk_number: int
    partition_number: int
    drive_letter: Optional[str] = None
    size: Optional[int] = None
    is_read_only: bool = False


@dataclass(frozen=True)
class VolumeInfo:
    """A formatted filesystem instance."""

    drive_letter: Optional[str] = None
    file_system: str = ""
    file_system_label: Optional[str] = None


@dataclass(frozen=True)
class ObservedState:
    """Live snapshot of the host for one disk number and drive letter."""

    disk_number: int
    drive_letter: str
    disk: Optional[DiskInfo] = None
    partition: Optional[PartitionInfo] = None
    volume: Optional[VolumeInfo] = None
    allocation_unit_size: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        """Return the get-result mapping reported to the configuration engine."""

        disk = self.disk
        return {
            "DiskNumber": self.disk_number,
            "DriveLetter": self.partition.drive_letter if self.partition else None,
            "Size": self.partition.size if self.partition else None,
            "FSLabel": self.volume.file_system_label if self.volume else None,
            "AllocationUnitSize": self.allocation_unit_size,
            "DiskFound": disk is not None,
            "IsOffline": disk.is_offline if disk else None,
            "IsReadOnly": disk.is_read_only if disk else None,
            "PartitionStyle": disk.partition_style if disk else None,
        }


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of comparing observed state against desired state."""

    in_desired_state: bool
    reason: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"InDesiredState": self.in_desired_state, "Reason": self.reason}
