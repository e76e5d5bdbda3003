"""Host storage capability used by the inspector and reconciler.

The core never talks to the operating system directly. It consumes the
:class:`StorageBackend` protocol so tests can substitute an in-memory fake,
while :class:`PowerShellStorage` drives the Windows Storage module cmdlets.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
import subprocess
from typing import Any, Callable, List, Optional, Protocol, Sequence

from .errors import StorageCommandError
from .logging_utils import log_event
from .model import DiskInfo, PartitionInfo, VolumeInfo

__all__ = [
    "BlockSizeSource",
    "CommandOutput",
    "PowerShellStorage",
    "StorageBackend",
    "quote",
]


BlockSizeSource = Callable[[str], Optional[int]]


@dataclass
class CommandOutput:
    """Minimal command result container for dependency injection."""

    stdout: str
    stderr: str = ""
    returncode: int = 0


class StorageBackend(Protocol):
    """Disk, partition and volume primitives consumed by the core."""

    @property
    def block_size_sources(self) -> Sequence[BlockSizeSource]:
        """Ordered allocation-unit queries; the first non-``None`` answer wins."""
        ...

    def get_disk(self, number: int) -> Optional[DiskInfo]: ...

    def get_partition(self, drive_letter: str) -> Optional[PartitionInfo]: ...

    def get_volume(self, drive_letter: str) -> Optional[VolumeInfo]: ...

    def get_disk_volume(self, disk_number: int) -> Optional[VolumeInfo]:
        """Return the formatted volume on *disk_number*, if any."""
        ...

    def set_disk_online(self, number: int) -> None: ...

    def set_disk_writable(self, number: int) -> None: ...

    def initialize_disk(self, number: int, partition_style: str) -> None: ...

    def new_partition(
        self, disk_number: int, drive_letter: str, size: Optional[int] = None
    ) -> Optional[PartitionInfo]:
        """Create a partition of *size* bytes, or of all free space when ``None``."""
        ...

    def format_volume(
        self,
        drive_letter: str,
        file_system: str,
        *,
        label: Optional[str] = None,
        allocation_unit_size: Optional[int] = None,
    ) -> None: ...

    def set_partition_drive_letter(self, drive_letter: str, new_drive_letter: str) -> None: ...

    def set_partition_number_drive_letter(
        self, disk_number: int, partition_number: int, new_drive_letter: str
    ) -> None: ...

    def set_volume_label(self, drive_letter: str, label: str) -> None: ...


def quote(value: str) -> str:
    """Return *value* as a single-quoted PowerShell string literal."""

    return "'" + value.replace("'", "''") + "'"


def _parse_json(text: str) -> Any:
    """Return decoded ``ConvertTo-Json`` output, or ``None`` for no output."""

    text = text.strip()
    if not text:
        return None
    return json.loads(text)


def _first(data: Any) -> Optional[dict]:
    """Collapse a PowerShell pipeline result to its first object."""

    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        return data
    return None


def _letter(value: Any) -> Optional[str]:
    # An unassigned DriveLetter is the NUL character.
    if not isinstance(value, str):
        return None
    value = value.strip("\x00 :")
    return value.upper() or None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


_DISK_FIELDS = (
    "Number, IsOffline, IsReadOnly, Size, "
    "@{Name='PartitionStyle';Expression={$_.PartitionStyle.ToString()}}"
)
_PARTITION_FIELDS = (
    "DiskNumber, PartitionNumber, Size, IsReadOnly, "
    "@{Name='DriveLetter';Expression={[string]$_.DriveLetter}}"
)
_VOLUME_FIELDS = (
    "FileSystem, FileSystemLabel, "
    "@{Name='DriveLetter';Expression={[string]$_.DriveLetter}}"
)


def _lookup(source: str, pipeline: str) -> str:
    """Return a script that feeds *source* into *pipeline* only when it found something.

    A silenced not-found error still leaves ``$?`` false, and ``-Command``
    exits 1 when its last statement failed. The script ends on the ``if`` so a
    miss exits 0 with no output.
    """

    return (
        f"$found = {source} -ErrorAction SilentlyContinue; "
        f"if ($found) {{ $found | {pipeline} }}"
    )


class PowerShellStorage:
    """Windows Storage module implementation of :class:`StorageBackend`."""

    def __init__(
        self,
        *,
        run: Callable[[Sequence[str]], CommandOutput] | None = None,
        executable: str | None = None,
    ) -> None:
        self.run = run or self._default_run
        self.executable = executable or os.environ.get(
            "DISK_STATE_POWERSHELL", "powershell.exe"
        )

    @staticmethod
    def _default_run(cmd: Sequence[str]) -> CommandOutput:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
        )
        return CommandOutput(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            returncode=completed.returncode,
        )

    def _command(self, script: str) -> List[str]:
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", script]

    def _invoke(self, action: str, script: str) -> str:
        cmd = self._command(script)
        log_event("disk_state.storage.command.start", action=action, script=script)
        result = self.run(cmd)
        status = "success" if result.returncode == 0 else "error"
        log_event(
            "disk_state.storage.command.finished",
            action=action,
            status=status,
            returncode=result.returncode,
        )
        if result.returncode != 0:
            raise StorageCommandError(action, cmd, result.returncode, result.stderr)
        return result.stdout

    def _query(self, action: str, script: str) -> Optional[dict]:
        return _first(_parse_json(self._invoke(action, script)))

    # Queries

    @property
    def block_size_sources(self) -> Sequence[BlockSizeSource]:
        return (self.get_block_size_cim, self.get_block_size_wmi)

    def get_disk(self, number: int) -> Optional[DiskInfo]:
        data = self._query(
            "Get-Disk",
            _lookup(
                f"Get-Disk -Number {int(number)}",
                f"Select-Object {_DISK_FIELDS} | ConvertTo-Json -Compress",
            ),
        )
        if data is None:
            return None
        return DiskInfo(
            number=int(data.get("Number", number)),
            is_offline=bool(data.get("IsOffline")),
            is_read_only=bool(data.get("IsReadOnly")),
            partition_style=str(data.get("PartitionStyle") or "").upper(),
            size=_int_or_none(data.get("Size")) or 0,
        )

    def get_partition(self, drive_letter: str) -> Optional[PartitionInfo]:
        data = self._query(
            "Get-Partition",
            _lookup(
                f"Get-Partition -DriveLetter {quote(drive_letter)}",
                f"Select-Object {_PARTITION_FIELDS} | ConvertTo-Json -Compress",
            ),
        )
        return self._partition_from(data)

    def get_volume(self, drive_letter: str) -> Optional[VolumeInfo]:
        data = self._query(
            "Get-Volume",
            _lookup(
                f"Get-Volume -DriveLetter {quote(drive_letter)}",
                f"Select-Object {_VOLUME_FIELDS} | ConvertTo-Json -Compress",
            ),
        )
        return self._volume_from(data)

    def get_disk_volume(self, disk_number: int) -> Optional[VolumeInfo]:
        # The reserved partition of a fresh GPT disk has no volume.
        data = self._query(
            "Get-Volume",
            _lookup(
                f"Get-Partition -DiskNumber {int(disk_number)} -ErrorAction SilentlyContinue "
                "| Get-Volume",
                "Where-Object { $_.FileSystem } "
                f"| Select-Object {_VOLUME_FIELDS} | ConvertTo-Json -Compress",
            ),
        )
        return self._volume_from(data)

    def get_block_size_cim(self, drive_letter: str) -> Optional[int]:
        return self._block_size(
            "Get-CimInstance",
            "Get-CimInstance -ClassName Win32_Volume "
            f"-Filter {quote(_volume_filter(drive_letter))}",
        )

    def get_block_size_wmi(self, drive_letter: str) -> Optional[int]:
        return self._block_size(
            "Get-WmiObject",
            "Get-WmiObject -Class Win32_Volume "
            f"-Filter {quote(_volume_filter(drive_letter))}",
        )

    def _block_size(self, action: str, source: str) -> Optional[int]:
        stdout = self._invoke(
            action,
            _lookup(source, "Select-Object -ExpandProperty BlockSize -First 1"),
        )
        return _int_or_none(stdout.strip() or None)

    # Mutations

    def set_disk_online(self, number: int) -> None:
        self._invoke("Set-Disk", f"Set-Disk -Number {int(number)} -IsOffline $false")

    def set_disk_writable(self, number: int) -> None:
        self._invoke("Set-Disk", f"Set-Disk -Number {int(number)} -IsReadOnly $false")

    def initialize_disk(self, number: int, partition_style: str) -> None:
        self._invoke(
            "Initialize-Disk",
            f"Initialize-Disk -Number {int(number)} -PartitionStyle {partition_style}",
        )

    def new_partition(
        self, disk_number: int, drive_letter: str, size: Optional[int] = None
    ) -> Optional[PartitionInfo]:
        size_param = f"-Size {int(size)}" if size is not None else "-UseMaximumSize"
        data = _first(
            _parse_json(
                self._invoke(
                    "New-Partition",
                    f"New-Partition -DiskNumber {int(disk_number)} {size_param} "
                    f"-DriveLetter {quote(drive_letter)} "
                    f"| Select-Object {_PARTITION_FIELDS} | ConvertTo-Json -Compress",
                )
            )
        )
        return self._partition_from(data)

    def format_volume(
        self,
        drive_letter: str,
        file_system: str,
        *,
        label: Optional[str] = None,
        allocation_unit_size: Optional[int] = None,
    ) -> None:
        parts = [
            "Format-Volume",
            f"-DriveLetter {quote(drive_letter)}",
            f"-FileSystem {file_system}",
        ]
        if label is not None:
            parts.append(f"-NewFileSystemLabel {quote(label)}")
        if allocation_unit_size:
            parts.append(f"-AllocationUnitSize {int(allocation_unit_size)}")
        parts.append("-Confirm:$false")
        self._invoke("Format-Volume", " ".join(parts))

    def set_partition_drive_letter(self, drive_letter: str, new_drive_letter: str) -> None:
        self._invoke(
            "Set-Partition",
            f"Set-Partition -DriveLetter {quote(drive_letter)} "
            f"-NewDriveLetter {quote(new_drive_letter)}",
        )

    def set_partition_number_drive_letter(
        self, disk_number: int, partition_number: int, new_drive_letter: str
    ) -> None:
        self._invoke(
            "Set-Partition",
            f"Set-Partition -DiskNumber {int(disk_number)} "
            f"-PartitionNumber {int(partition_number)} "
            f"-NewDriveLetter {quote(new_drive_letter)}",
        )

    def set_volume_label(self, drive_letter: str, label: str) -> None:
        self._invoke(
            "Set-Volume",
            f"Set-Volume -DriveLetter {quote(drive_letter)} "
            f"-NewFileSystemLabel {quote(label)}",
        )

    @staticmethod
    def _partition_from(data: Optional[dict]) -> Optional[PartitionInfo]:
        if data is None:
            return None
        return PartitionInfo(
            disk_number=int(data.get("DiskNumber", 0)),
            partition_number=int(data.get("PartitionNumber", 0)),
            drive_letter=_letter(data.get("DriveLetter")),
            size=_int_or_none(data.get("Size")),
            is_read_only=bool(data.get("IsReadOnly")),
        )

    @staticmethod
    def _volume_from(data: Optional[dict]) -> Optional[VolumeInfo]:
        if data is None:
            return None
        label = data.get("FileSystemLabel")
        return VolumeInfo(
            drive_letter=_letter(data.get("DriveLetter")),
            file_system=str(data.get("FileSystem") or ""),
            file_system_label=label if isinstance(label, str) else None,
        )


def _volume_filter(drive_letter: str) -> str:
    return f"DriveLetter = '{drive_letter}:'"
