from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

DEFAULT_WINDOW_SIZE_MS = 60_000
DEFAULT_UPCOMING_CHUNK_SIZE = 20


@dataclass(frozen=True)
class PriorityOptions:
    """Knobs for one priority transformation.

    ``preview_count=None`` selects windowed mode; ``0`` sends everything to the upcoming
    batch; a positive value picks the N items closest to the focal point.
    """

    preview_count: Optional[int] = None
    window_size: int = DEFAULT_WINDOW_SIZE_MS
    process_current: bool = True
    process_upcoming: bool = True
    excluded_keys: FrozenSet[int] = field(default_factory=frozenset)
    upcoming_chunk_size: int = DEFAULT_UPCOMING_CHUNK_SIZE

    def __post_init__(self) -> None:
        if self.preview_count is not None and self.preview_count < 0:
            raise ValueError(f"preview_count must be >= 0, got {self.preview_count}")
        if self.window_size < 0:
            raise ValueError(f"window_size must be >= 0, got {self.window_size}")
        object.__setattr__(self, "excluded_keys", frozenset(self.excluded_keys))
        object.__setattr__(self, "upcoming_chunk_size", max(1, int(self.upcoming_chunk_size)))

    @classmethod
    def build(
        cls,
        *,
        preview_count: Optional[int] = None,
        window_size: int = DEFAULT_WINDOW_SIZE_MS,
        process_current: bool = True,
        process_upcoming: bool = True,
        excluded_keys: Iterable[int] = (),
        upcoming_chunk_size: int = DEFAULT_UPCOMING_CHUNK_SIZE,
    ) -> "PriorityOptions":
        return cls(
            preview_count=preview_count,
            window_size=window_size,
            process_current=process_current,
            process_upcoming=process_upcoming,
            excluded_keys=frozenset(excluded_keys),
            upcoming_chunk_size=upcoming_chunk_size,
        )
