"""CLI entry point for disk-state."""

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

from . import resource
from .errors import DiskStateError, InvalidParameterError
from .model import DesiredState, normalise_document

_EXIT_NOT_IN_DESIRED_STATE = 1
_EXIT_ERROR = 2


def _load_document(path: Path) -> Dict[str, Any]:
    """Return the desired-state document stored at *path*."""

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidParameterError(f"cannot read {path}: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidParameterError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidParameterError(f"{path} must contain a JSON object")
    return data


def _desired_from_args(args: argparse.Namespace) -> DesiredState:
    """Merge the optional document with command-line overrides."""

    document: Dict[str, Any] = {}
    if args.config is not None:
        document = normalise_document(_load_document(args.config))
    overrides = {
        "disk_number": args.disk_number,
        "drive_letter": args.drive_letter,
        "size": args.size,
        "label": args.label,
        "allocation_unit_size": args.allocation_unit_size,
    }
    for key, value in overrides.items():
        if value is not None:
            document[key] = value
    return DesiredState.from_document(document)


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def main(argv: list[str] | None = None) -> None:
    """Run the disk-state tool."""
    parser = argparse.ArgumentParser(
        description="Inspect, test or converge a disk volume toward a desired state"
    )
    parser.add_argument("action", choices=["get", "test", "set"])
    parser.add_argument("--disk-number", type=int, help="Target disk number")
    parser.add_argument(
        "--drive-letter",
        help="Drive letter for the data volume (a trailing colon is accepted)",
    )
    parser.add_argument(
        "--size",
        help="Partition size in bytes or with a K/M/G/T suffix (default: all free space)",
    )
    parser.add_argument(
        "--label",
        help="Filesystem label to enforce (omit to leave the label unmanaged)",
    )
    parser.add_argument(
        "--allocation-unit-size",
        help="Allocation unit size used when the volume is first formatted",
    )
    parser.add_argument(
        "--config",
        type=Path,
        metavar="PATH",
        help="JSON desired-state document; command-line options take precedence",
    )
    args = parser.parse_args(argv)

    try:
        desired = _desired_from_args(args)
        params = asdict(desired)
        if args.action == "get":
            observed = resource.get_state(**params)
            _print_json(observed.to_payload())
            return
        if args.action == "set":
            resource.set_state(**params)
        result = resource.evaluate_state(**params)
    except DiskStateError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(_EXIT_ERROR)

    _print_json(result.to_payload())
    if not result.in_desired_state:
        sys.exit(_EXIT_NOT_IN_DESIRED_STATE)


if __name__ == "__main__":
    main()
