from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

from tuner.models import Item

from .options import PriorityOptions


@dataclass
class Partition:
    current: List[Item] = field(default_factory=list)
    upcoming: List[Item] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.current and not self.upcoming


class BatchPartitioner:
    """Split eligible items into a focus-proximate ``current`` batch and the ``upcoming`` rest."""

    def partition(self, items: Sequence[Item], focal_point: float, options: PriorityOptions) -> Partition:
        universe = [
            item for item in items if item.is_eligible and item.key not in options.excluded_keys
        ]
        if options.preview_count is not None:
            if options.preview_count == 0:
                return Partition(current=[], upcoming=universe)
            # sorted() is stable, so ties keep collection order.
            nearest = sorted(universe, key=lambda item: abs(item.time_start - focal_point))
            return Partition(
                current=nearest[: options.preview_count],
                upcoming=nearest[options.preview_count :],
            )

        window_start = focal_point - options.window_size
        window_end = focal_point + options.window_size
        current: List[Item] = []
        upcoming: List[Item] = []
        for item in universe:
            if item.time_end >= window_start and item.time_start <= window_end:
                current.append(item)
            else:
                upcoming.append(item)
        return Partition(current=current, upcoming=upcoming)


def chunked(items: Sequence[Item], size: int) -> List[List[Item]]:
    size = max(1, size)
    return [list(items[start : start + size]) for start in range(0, len(items), size)]
