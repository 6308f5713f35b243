"""Editing session: one original track plus lower and upper bound tracks tuned by slider moves."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from tuner.models import (
    DEFAULT_PARAMETERS,
    Bound,
    Item,
    ParameterSet,
    StyleParameter,
    TransformationResult,
    TransformStatus,
)
from tuner.orchestration import (
    DEFAULT_UPCOMING_CHUNK_SIZE,
    DEFAULT_WINDOW_SIZE_MS,
    CalibrationMapper,
    Invocation,
    PriorityOptions,
    PriorityRequest,
    StyleService,
    TransformationCallbacks,
    TransformationError,
    TransformationOrchestrator,
)

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_COUNT = 5


def copy_track(items: Sequence[Item]) -> List[Item]:
    return [replace(item) for item in items]


@dataclass
class PendingChange:
    """Preview state of a bound that has not been committed yet."""

    track: List[Item]
    parameters: ParameterSet
    changed_parameter: StyleParameter
    ui_value: float
    previewed: FrozenSet[int] = frozenset()


class CaptionSession:
    def __init__(
        self,
        service: StyleService,
        items: Sequence[Item],
        *,
        preview_count: int = DEFAULT_PREVIEW_COUNT,
        upcoming_chunk_size: int = DEFAULT_UPCOMING_CHUNK_SIZE,
        window_size: int = DEFAULT_WINDOW_SIZE_MS,
        orchestrator: Optional[TransformationOrchestrator] = None,
    ):
        self.service = service
        self.mapper = CalibrationMapper()
        self.orchestrator = orchestrator or TransformationOrchestrator(service)
        self.preview_count = preview_count
        self.upcoming_chunk_size = upcoming_chunk_size
        self.window_size = window_size

        self.original: List[Item] = copy_track(items)
        self.original_parameters: ParameterSet = DEFAULT_PARAMETERS
        self._tracks: Dict[Bound, List[Item]] = {bound: copy_track(items) for bound in Bound}
        self._parameters: Dict[Bound, ParameterSet] = {bound: DEFAULT_PARAMETERS for bound in Bound}
        self._pending: Dict[Bound, PendingChange] = {}
        self.last_error: Optional[TransformationError] = None

    def track(self, bound: Bound) -> List[Item]:
        return self._tracks[bound]

    def parameters_for(self, bound: Bound) -> ParameterSet:
        return self._parameters[bound]

    def pending(self, bound: Bound) -> Optional[PendingChange]:
        return self._pending.get(bound)

    def has_pending(self, bound: Bound) -> bool:
        return bound in self._pending

    async def calibrate(self) -> ParameterSet:
        values = await self.service.calibrate(self.original)
        self.mapper.update_calibration(values)
        calibrated = self.mapper.current_intensity_set()
        self.original_parameters = calibrated
        for bound in Bound:
            self._parameters[bound] = calibrated
        logger.info(
            "Calibrated: detail=%.2f expressiveness=%.2f", calibrated.detail, calibrated.expressiveness
        )
        return calibrated

    async def categorize(self) -> int:
        categories = await self.service.categorize(self.original)
        if not categories:
            return 0
        for items in self._all_tracks():
            for position, item in enumerate(items):
                category = categories.get(item.key)
                if category is not None and category is not item.category:
                    items[position] = replace(item, category=category)
        return len(categories)

    async def preview(
        self,
        bound: Bound,
        parameter: StyleParameter,
        ui_value: float,
        focal_point: float = 0.0,
    ) -> Invocation:
        """Restyle the captions nearest to ``focal_point`` and hold the result as pending."""
        pending = self._pending.get(bound)
        current = self.mapper.current_intensity_set()
        mapped = self.mapper.ui_to_intensity(parameter, ui_value)
        base_parameters = pending.parameters if pending else self._parameters[bound]
        updated = base_parameters.with_value(parameter, mapped)

        base: List[Item] = []
        for item in self._tracks[bound]:
            if item.is_eligible and not item.is_locked and not item.is_manually_edited:
                item = replace(item, transform_status=TransformStatus.PENDING, skip_transformation=False)
            elif item.skip_transformation:
                item = replace(item, skip_transformation=False)
            base.append(item)
        self._pending[bound] = PendingChange(
            track=base, parameters=updated, changed_parameter=parameter, ui_value=ui_value
        )

        options = PriorityOptions.build(
            preview_count=self.preview_count,
            window_size=self.window_size,
            process_upcoming=False,
            upcoming_chunk_size=self.upcoming_chunk_size,
        )
        partition = self.orchestrator.partitioner.partition(base, focal_point, options)
        preview_keys = {item.key for item in partition.current}

        def on_current_completed(result: TransformationResult) -> None:
            other = parameter.other()
            self.mapper.recalibrate(other, result.parameters.get(other))
            previewed = frozenset(
                item.key for item in result.items if item.key in preview_keys and item.can_transform
            )
            track = [
                replace(item, transform_status=TransformStatus.TRANSFORMED) if item.key in previewed else item
                for item in result.items
            ]
            self._pending[bound] = PendingChange(
                track=track,
                parameters=updated.with_value(other, result.parameters.get(other)),
                changed_parameter=parameter,
                ui_value=ui_value,
                previewed=previewed,
            )
            logger.info("Preview ready for %s bound (%s -> %.2f)", bound.value, parameter.value, mapped)

        request = PriorityRequest(
            items=base,
            changed_parameter=parameter,
            ui_value=ui_value,
            current_intensity=current,
            updated_intensity=updated,
            bound=bound,
            focal_point=focal_point,
            options=options,
        )
        callbacks = TransformationCallbacks(on_current_completed=on_current_completed, on_error=self._record_error)
        return await self.orchestrator.start(request, callbacks)

    async def commit(
        self,
        bound: Bound,
        focal_point: float = 0.0,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Optional[Invocation]:
        """
        Apply the pending change to every remaining caption of ``bound``.

        Captions already restyled by the preview are skipped. Returns ``None`` when the
        preview covered everything and no transform call was needed.
        """
        pending = self._pending.get(bound)
        if pending is None:
            raise ValueError(f"No pending changes for the {bound.value} bound.")

        previewed = pending.previewed
        batch: List[Item] = []
        for item in pending.track:
            if item.is_eligible and not item.is_locked and not item.is_manually_edited:
                if item.key in previewed:
                    item = replace(item, skip_transformation=True)
                else:
                    item = replace(item, transform_status=TransformStatus.PENDING)
            batch.append(item)
        pending.track = batch

        if not any(item.can_transform for item in batch):
            self._install(bound, batch, pending.parameters)
            return None

        def on_upcoming_completed(result: TransformationResult) -> None:
            self._install(bound, result.items, pending.parameters)

        request = PriorityRequest(
            items=batch,
            changed_parameter=pending.changed_parameter,
            ui_value=pending.ui_value,
            current_intensity=self.mapper.current_intensity_set(),
            updated_intensity=pending.parameters,
            bound=bound,
            focal_point=focal_point,
            options=PriorityOptions.build(
                preview_count=0,
                window_size=self.window_size,
                process_current=False,
                excluded_keys=previewed,
                upcoming_chunk_size=self.upcoming_chunk_size,
            ),
        )
        callbacks = TransformationCallbacks(
            on_upcoming_completed=on_upcoming_completed,
            on_error=self._record_error,
            on_upcoming_chunk_progress=on_progress,
        )
        return await self.orchestrator.start(request, callbacks)

    def discard(self, bound: Bound) -> None:
        live = self.orchestrator.live_generation
        if live is not None:
            self.orchestrator.cancel(live)
        self._pending.pop(bound, None)

    def revert(self, bound: Bound) -> None:
        self.discard(bound)
        self._tracks[bound] = copy_track(self.original)
        self._parameters[bound] = self.original_parameters
        logger.info("Reverted %s bound to the original captions", bound.value)

    def toggle_lock(self, key: int) -> bool:
        """Flip the lock on caption ``key`` in every track; returns the new lock state."""
        locked: Optional[bool] = None
        for items in self._all_tracks():
            for position, item in enumerate(items):
                if item.key != key:
                    continue
                if locked is None:
                    locked = not item.is_locked
                items[position] = replace(item, is_locked=locked)
        if locked is None:
            raise KeyError(key)
        return locked

    def edit_text(self, bound: Bound, key: int, text: str) -> None:
        found = False
        tracks = [self._tracks[bound]]
        if bound in self._pending:
            tracks.append(self._pending[bound].track)
        for items in tracks:
            for position, item in enumerate(items):
                if item.key == key:
                    items[position] = replace(item, text=text, is_manually_edited=True)
                    found = True
        if not found:
            raise KeyError(key)

    def slider_positions(self, bound: Bound) -> Dict[StyleParameter, int]:
        pending = self._pending.get(bound)
        values = pending.parameters if pending else self._parameters[bound]
        return {
            parameter: int(round(self.mapper.intensity_to_ui(parameter, values.get(parameter))))
            for parameter in StyleParameter
        }

    def _install(self, bound: Bound, items: Sequence[Item], parameters: ParameterSet) -> None:
        self._tracks[bound] = [
            replace(item, skip_transformation=False, transform_status=TransformStatus.NONE) for item in items
        ]
        self._parameters[bound] = parameters
        self._pending.pop(bound, None)
        logger.info("Committed %s bound", bound.value)

    def _record_error(self, error: TransformationError) -> None:
        self.last_error = error
        logger.error("Transformation failed: %s", error)

    def _all_tracks(self) -> List[List[Item]]:
        tracks = [self.original, *self._tracks.values()]
        tracks.extend(change.track for change in self._pending.values())
        return tracks
