"""
Generation stream events.

Every streaming generator in docqa translates its SDK's event objects into
exactly these four types.  Anything the SDK sends that does not map onto one
of them is logged and dropped at the boundary.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class TextDelta:
    delta: str


@dataclass(frozen=True)
class Annotation:
    """A citation pointing from the answer back to one source file."""

    source_id: str
    quote: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class StreamError:
    message: str


@dataclass(frozen=True)
class Done:
    completion_tokens: int = 0


GenerationEvent = Union[TextDelta, Annotation, StreamError, Done]
