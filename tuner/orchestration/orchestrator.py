"""Two-phase priority transformation: preview near the focal point, then commit in chunks."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from tuner.models import (
    Bound,
    Item,
    ParameterSet,
    PartialItem,
    StyleParameter,
    TransformationResult,
    TransformRequest,
    TransformStatus,
)

from .contracts import ErrorKind, Phase, TransformationError, TransformService
from .merger import ResultMerger
from .options import PriorityOptions
from .partitioner import BatchPartitioner, chunked

logger = logging.getLogger(__name__)

ResultCallback = Callable[[TransformationResult], None]
ErrorCallback = Callable[[TransformationError], None]
ProgressCallback = Callable[[int, int], None]


class InvocationState(str, Enum):
    IDLE = "idle"
    PROCESSING_CURRENT = "processing_current"
    AWAITING_COMMIT = "awaiting_commit"
    PROCESSING_UPCOMING = "processing_upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"


def _ignore(*_args) -> None:
    return None


@dataclass
class PriorityRequest:
    """
    One orchestrated parameter change.

    ``items`` is the caller's base track. It is read again at every merge, so locks and
    manual edits applied to it while a call is in flight are respected.
    """

    items: List[Item]
    changed_parameter: StyleParameter
    ui_value: float
    current_intensity: ParameterSet
    updated_intensity: ParameterSet
    bound: Bound
    focal_point: float = 0.0
    options: PriorityOptions = field(default_factory=PriorityOptions)

    def transform_request(self, items: Sequence[Item]) -> TransformRequest:
        return TransformRequest(
            items=list(items),
            changed_parameter=self.changed_parameter,
            ui_value=self.ui_value,
            current_intensity=self.current_intensity,
            updated_intensity=self.updated_intensity,
            bound=self.bound,
        )


@dataclass
class TransformationCallbacks:
    on_current_completed: ResultCallback = _ignore
    on_upcoming_completed: ResultCallback = _ignore
    on_error: ErrorCallback = _ignore
    on_upcoming_chunk_progress: Optional[ProgressCallback] = None


@dataclass
class Invocation:
    """Tagged outcome of a single ``start`` call."""

    generation: int
    state: InvocationState = InvocationState.IDLE
    history: List[InvocationState] = field(default_factory=lambda: [InvocationState.IDLE])
    error: Optional[TransformationError] = None
    current_result: Optional[TransformationResult] = None
    final_result: Optional[TransformationResult] = None
    progress: Tuple[int, int] = (0, 0)

    def transition(self, state: InvocationState) -> None:
        logger.info("Generation %s: %s -> %s", self.generation, self.state.value, state.value)
        self.state = state
        self.history.append(state)


class TransformationOrchestrator:
    """
    Drive the external transform contract for one editing session.

    The orchestrator owns a single "live generation" slot. Starting an invocation
    overwrites it, which logically cancels whatever was running; superseded invocations
    finish their in-flight call and then stop without firing callbacks.
    """

    def __init__(
        self,
        service: TransformService,
        *,
        partitioner: Optional[BatchPartitioner] = None,
        merger: Optional[ResultMerger] = None,
    ):
        self._service = service
        self._partitioner = partitioner or BatchPartitioner()
        self._merger = merger or ResultMerger()
        self._generations = itertools.count(1)
        self._live_generation: Optional[int] = None

    @property
    def partitioner(self) -> BatchPartitioner:
        return self._partitioner

    @property
    def live_generation(self) -> Optional[int]:
        return self._live_generation

    def is_active(self) -> bool:
        return self._live_generation is not None

    def cancel(self, generation: int) -> bool:
        if self._live_generation != generation:
            return False
        logger.info("Cancelling transformation generation %s", generation)
        self._live_generation = None
        return True

    async def start(
        self,
        request: PriorityRequest,
        callbacks: Optional[TransformationCallbacks] = None,
    ) -> Invocation:
        callbacks = callbacks or TransformationCallbacks()
        generation = next(self._generations)
        if self._live_generation is not None:
            logger.info("Generation %s supersedes generation %s", generation, self._live_generation)
        self._live_generation = generation
        invocation = Invocation(generation=generation)
        options = request.options

        partition = self._partitioner.partition(request.items, request.focal_point, options)
        if partition.is_empty():
            error = TransformationError(
                "No eligible items to transform",
                kind=ErrorKind.NO_ELIGIBLE_ITEMS,
                generation=generation,
            )
            self._release(generation)
            invocation.error = error
            invocation.transition(InvocationState.ERRORED)
            callbacks.on_error(error)
            return invocation

        logger.info(
            "Starting %s transformation of %s (generation %s): %d current, %d upcoming",
            request.bound.value,
            request.changed_parameter.value,
            generation,
            len(partition.current),
            len(partition.upcoming),
        )

        parameters = request.updated_intensity
        resolved: Dict[int, PartialItem] = {}
        if options.process_current and partition.current:
            invocation.transition(InvocationState.PROCESSING_CURRENT)
            current_keys = {item.key for item in partition.current}
            try:
                response = await self._service.transform(request.transform_request(partition.current))
            except Exception as exc:
                return self._fail(invocation, callbacks, Phase.CURRENT, exc)
            if not self._is_live(generation):
                return self._drop(invocation, Phase.CURRENT)

            resolved.update(self._merger.scoped_patch(response.patch(), current_keys))
            parameters = response.resulting_parameters
            result = TransformationResult(items=self._merger.merge(request.items, resolved), parameters=parameters)
            invocation.current_result = result
            callbacks.on_current_completed(result)
            invocation.transition(InvocationState.AWAITING_COMMIT)

        if not options.process_upcoming:
            self._release(generation)
            return invocation

        upcoming_keys: Set[int] = set()
        if partition.upcoming:
            invocation.transition(InvocationState.PROCESSING_UPCOMING)
            total = len(partition.upcoming)
            processed = 0
            for chunk in chunked(partition.upcoming, options.upcoming_chunk_size):
                chunk_keys = {item.key for item in chunk}
                try:
                    response = await self._service.transform(request.transform_request(chunk))
                except Exception as exc:
                    return self._fail(invocation, callbacks, Phase.UPCOMING, exc)
                if not self._is_live(generation):
                    return self._drop(invocation, Phase.UPCOMING)

                resolved.update(self._merger.scoped_patch(response.patch(), chunk_keys))
                upcoming_keys |= chunk_keys
                parameters = response.resulting_parameters

                processed = min(processed + len(chunk), total)
                invocation.progress = (processed, total)
                logger.debug("Generation %s: upcoming %d/%d", generation, processed, total)
                if callbacks.on_upcoming_chunk_progress is not None:
                    callbacks.on_upcoming_chunk_progress(processed, total)

        if not self._is_live(generation):
            return self._drop(invocation, Phase.UPCOMING)

        # Locks and edits made since a batch resolved win over its text.
        final_items: List[Item] = []
        for item in self._merger.merge(request.items, resolved):
            if item.key in upcoming_keys and item.transform_status is not TransformStatus.NONE:
                item = replace(item, transform_status=TransformStatus.NONE)
            final_items.append(item)
        result = TransformationResult(items=final_items, parameters=parameters)
        invocation.final_result = result
        callbacks.on_upcoming_completed(result)
        invocation.transition(InvocationState.COMPLETED)
        self._release(generation)
        logger.info("Generation %s completed (%d items resolved)", generation, len(upcoming_keys))
        return invocation

    def _is_live(self, generation: int) -> bool:
        return self._live_generation == generation

    def _release(self, generation: int) -> None:
        if self._live_generation == generation:
            self._live_generation = None

    def _drop(self, invocation: Invocation, phase: Phase) -> Invocation:
        logger.debug(
            "Generation %s superseded during %s phase; discarding result", invocation.generation, phase.value
        )
        invocation.transition(InvocationState.CANCELLED)
        return invocation

    def _fail(
        self,
        invocation: Invocation,
        callbacks: TransformationCallbacks,
        phase: Phase,
        exc: Exception,
    ) -> Invocation:
        if not self._is_live(invocation.generation):
            return self._drop(invocation, phase)
        logger.warning("Generation %s: %s batch failed: %s", invocation.generation, phase.value, exc)
        error = TransformationError(
            f"Transform call failed during {phase.value} phase: {exc}",
            kind=ErrorKind.EXTERNAL_CALL_FAILURE,
            generation=invocation.generation,
            phase=phase,
        )
        error.__cause__ = exc
        self._release(invocation.generation)
        invocation.error = error
        invocation.transition(InvocationState.ERRORED)
        callbacks.on_error(error)
        return invocation
