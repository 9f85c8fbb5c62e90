"""
Provenance: which caller line a deferred failure belongs to.

Faults delivered through exits are built long after the call that caused
them, so the stack at construction time points into the scheduler. An
Omen records the stack when an operation starts; the fault built later
adopts those frames instead.
"""

from __future__ import annotations

import traceback
from pathlib import Path
from traceback import FrameSummary
from typing import Any, Iterable, List, Optional, Type, TypeVar

from .errors import ConsistencyFault, MachineError

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent

F = TypeVar("F", bound=MachineError)


def is_internal_frame(frame: FrameSummary) -> bool:
    try:
        path = Path(frame.filename).resolve()
    except (OSError, ValueError):
        return False
    return _PACKAGE_ROOT == path or _PACKAGE_ROOT in path.parents


def remove_internal_frames(frames: Iterable[FrameSummary]) -> List[FrameSummary]:
    return [frame for frame in frames if not is_internal_frame(frame)]


class Omen:
    """A stack snapshot that can be spent on exactly one fault."""

    __slots__ = ("frames", "_consumed")

    def __init__(self, frames: List[FrameSummary]) -> None:
        self.frames = frames
        self._consumed = False

    @classmethod
    def capture(cls) -> "Omen":
        # Drop the frame of capture() itself.
        return cls(list(traceback.extract_stack())[:-1])

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> List[FrameSummary]:
        if self._consumed:
            raise ConsistencyFault("This omen has already been used to customize a fault.")
        self._consumed = True
        return self.frames


def customize_omen_or_build(
    fault_cls: Type[F],
    message: str,
    omen: Optional[Omen] = None,
    **attrs: Any,
) -> F:
    """Build a fault whose provenance is the omen's stack (or the current one)."""
    fault = fault_cls(message, **attrs)
    if omen is not None:
        frames = omen.consume()
    else:
        frames = list(traceback.extract_stack())[:-1]
    fault.provenance = remove_internal_frames(frames)
    return fault


def format_provenance(err: BaseException) -> str:
    """Render an exception with its user-facing frames, innermost last."""
    frames = getattr(err, "provenance", None)
    if frames is None:
        frames = traceback.extract_tb(err.__traceback__) if err.__traceback__ else []
    lines = [f"{type(err).__name__}: {err}"]
    rendered = "".join(traceback.format_list(remove_internal_frames(frames)))
    if rendered:
        lines.append(rendered.rstrip("\n"))
    return "\n".join(lines)
