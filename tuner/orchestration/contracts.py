from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Protocol, Sequence

from tuner.models import CaptionCategory, Item, ParameterSet, TransformRequest, TransformResponse


class TransformService(Protocol):
    async def transform(self, request: TransformRequest) -> TransformResponse:
        ...


class StyleService(TransformService, Protocol):
    """Everything the editing session needs from the generation service."""

    async def calibrate(self, items: Sequence[Item]) -> ParameterSet:
        ...

    async def categorize(self, items: Sequence[Item]) -> Dict[int, CaptionCategory]:
        ...


class Phase(str, Enum):
    CURRENT = "current"
    UPCOMING = "upcoming"


class ErrorKind(str, Enum):
    NO_ELIGIBLE_ITEMS = "no_eligible_items"
    EXTERNAL_CALL_FAILURE = "external_call_failure"


class TransformationError(RuntimeError):
    """Delivered through ``on_error``; never raised out of the orchestrator."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        generation: int,
        phase: Optional[Phase] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.generation = generation
        self.phase = phase

    def __repr__(self) -> str:
        phase = self.phase.value if self.phase else None
        return (
            f"TransformationError(kind={self.kind.value!r}, phase={phase!r}, "
            f"generation={self.generation}, message={str(self)!r})"
        )
