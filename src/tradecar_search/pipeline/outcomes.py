"""Terminal outcomes of a single job.

Exactly one of :class:`Success`, :class:`EmptyBySkip` or :class:`Failure`
is produced per job, by the job runner, and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from tradecar_search.adapters.base import Listing
    from tradecar_search.errors import ActionableError


class SourceStatus(StrEnum):
    """Per-source status as reported in the aggregate."""

    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class Success:
    """The source was searched; ``items`` may legitimately be empty."""

    source: str
    items: tuple[Listing, ...] = field(default_factory=tuple)

    @property
    def status(self) -> SourceStatus:
        return SourceStatus.SUCCESS


@dataclass(frozen=True)
class EmptyBySkip:
    """The source cannot satisfy the criteria (e.g. model not offered).  Not an error."""

    source: str
    reason: str

    @property
    def status(self) -> SourceStatus:
        return SourceStatus.EMPTY

    @property
    def items(self) -> tuple[Listing, ...]:
        return ()


@dataclass(frozen=True)
class Failure:
    """Any step of the job raised; ``error`` carries the classified cause."""

    source: str
    error: ActionableError

    @property
    def status(self) -> SourceStatus:
        return SourceStatus.FAILED

    @property
    def items(self) -> tuple[Listing, ...]:
        return ()


JobOutcome = Union[Success, EmptyBySkip, Failure]
