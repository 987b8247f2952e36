"""Messages consumed by a runner's event task.

The four stream events are the closed set the parser can produce; an
unknown or malformed line always becomes ``Unrecognized``. ``Closed`` is
posted by the supervisor when the process has exited.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Init:
    session_id: str


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class Result:
    result: str
    session_id: str | None
    is_error: bool = False


@dataclass(frozen=True)
class Unrecognized:
    line: str
    reason: str


@dataclass(frozen=True)
class Closed:
    returncode: int | None


ParsedEvent = Union[Init, TextDelta, Result, Unrecognized]
