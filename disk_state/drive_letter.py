"""Drive letter validation."""

from __future__ import annotations

import re
from typing import Any

from .errors import InvalidParameterError

_DRIVE_LETTER = re.compile(r"([A-Za-z]):?")


def validate_drive_letter(value: Any) -> str:
    """Return *value* as a bare upper-case drive letter.

    ``"d"``, ``"D"`` and ``"D:"`` all normalise to ``"D"``. Anything that is
    not a single ASCII letter with an optional trailing colon raises
    :class:`InvalidParameterError`.
    """

    if not isinstance(value, str):
        raise InvalidParameterError(f"drive letter must be a string, not {type(value).__name__}")
    match = _DRIVE_LETTER.fullmatch(value)
    if match is None:
        raise InvalidParameterError(f"invalid drive letter {value!r}")
    return match.group(1).upper()
