"""Parameter calibration and priority transformation engine."""

from .calibration import CalibrationMapper
from .contracts import ErrorKind, Phase, StyleService, TransformationError, TransformService
from .merger import ResultMerger
from .options import DEFAULT_UPCOMING_CHUNK_SIZE, DEFAULT_WINDOW_SIZE_MS, PriorityOptions
from .orchestrator import (
    Invocation,
    InvocationState,
    PriorityRequest,
    TransformationCallbacks,
    TransformationOrchestrator,
)
from .partitioner import BatchPartitioner, Partition

__all__ = [
    "BatchPartitioner",
    "CalibrationMapper",
    "DEFAULT_UPCOMING_CHUNK_SIZE",
    "DEFAULT_WINDOW_SIZE_MS",
    "ErrorKind",
    "Invocation",
    "InvocationState",
    "Partition",
    "Phase",
    "PriorityOptions",
    "PriorityRequest",
    "ResultMerger",
    "StyleService",
    "TransformService",
    "TransformationCallbacks",
    "TransformationError",
    "TransformationOrchestrator",
]
