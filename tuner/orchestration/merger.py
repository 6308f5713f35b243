from __future__ import annotations

from dataclasses import replace
from typing import Collection, List, Mapping, Optional, Sequence

from tuner.models import Item, PartialItem, TransformStatus


class ResultMerger:
    """Fold a partial transform result back into a full, ordered track.

    Eligibility is read from the base item at merge time. Items that are absent from the
    patch or no longer eligible come back as the very same objects.
    """

    def merge(self, base: Sequence[Item], patch: Mapping[int, PartialItem]) -> List[Item]:
        if not patch:
            return list(base)
        merged: List[Item] = []
        for item in base:
            candidate = patch.get(item.key)
            if candidate is None or not item.can_transform:
                merged.append(item)
                continue
            if candidate.text != item.text:
                merged.append(replace(item, text=candidate.text, transform_status=TransformStatus.TRANSFORMED))
            else:
                merged.append(item)
        return merged

    @staticmethod
    def scoped_patch(
        patch: Mapping[int, PartialItem], allowed_keys: Optional[Collection[int]]
    ) -> dict[int, PartialItem]:
        if allowed_keys is None:
            return dict(patch)
        return {key: value for key, value in patch.items() if key in allowed_keys}
