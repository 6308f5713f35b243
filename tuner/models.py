from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

UI_DOMAIN_MIN = -5.0
UI_DOMAIN_MAX = 5.0
INTENSITY_DOMAIN_MIN = 1.0
INTENSITY_DOMAIN_MAX = 10.0
DEFAULT_INTENSITY = 5.0


class StyleParameter(str, Enum):
    """The two tunable style parameters."""

    DETAIL = "detail"
    EXPRESSIVENESS = "expressiveness"

    @classmethod
    def from_flag(cls, flag: str) -> "StyleParameter":
        normalized = flag.strip().lower()
        for parameter in cls:
            if parameter.value == normalized:
                return parameter
        raise ValueError(f"Unsupported style parameter: {flag}")

    def other(self) -> "StyleParameter":
        if self is StyleParameter.DETAIL:
            return StyleParameter.EXPRESSIVENESS
        return StyleParameter.DETAIL


class Bound(str, Enum):
    LOWER = "lower"
    UPPER = "upper"

    @classmethod
    def from_flag(cls, flag: str) -> "Bound":
        normalized = flag.strip().lower()
        for bound in cls:
            if bound.value == normalized:
                return bound
        raise ValueError(f"Unsupported bound: {flag}")


class TransformStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    TRANSFORMING = "transforming"
    TRANSFORMED = "transformed"


class CaptionCategory(str, Enum):
    MUSIC = "music"
    SOUND_EFFECT = "sound_effect"
    CHARACTER_SOUND = "character_sound"
    ACTION = "action"
    ONOMATOPOEIA = "onomatopoeia"
    UNCATEGORIZED = "uncategorized"

    @classmethod
    def parse(cls, value: object) -> "CaptionCategory":
        normalized = str(value or "").strip().lower()
        for category in cls:
            if category.value == normalized:
                return category
        return cls.UNCATEGORIZED


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


@dataclass
class Item:
    """One time-indexed caption. ``key`` is assigned at ingestion and never reused."""

    key: int
    time_start: int
    time_end: int
    text: str
    is_eligible: bool = False
    is_locked: bool = False
    is_manually_edited: bool = False
    skip_transformation: bool = False
    transform_status: TransformStatus = TransformStatus.NONE
    category: CaptionCategory = CaptionCategory.UNCATEGORIZED

    @property
    def can_transform(self) -> bool:
        return (
            self.is_eligible
            and not self.is_locked
            and not self.is_manually_edited
            and not self.skip_transformation
        )


@dataclass(frozen=True)
class ParameterSet:
    """A point in the intensity domain, one value per style parameter."""

    detail: float = DEFAULT_INTENSITY
    expressiveness: float = DEFAULT_INTENSITY

    def get(self, parameter: StyleParameter) -> float:
        if parameter is StyleParameter.DETAIL:
            return self.detail
        return self.expressiveness

    def with_value(self, parameter: StyleParameter, value: float) -> "ParameterSet":
        if parameter is StyleParameter.DETAIL:
            return replace(self, detail=value)
        return replace(self, expressiveness=value)

    def clamped(self) -> "ParameterSet":
        return ParameterSet(
            detail=clamp(self.detail, INTENSITY_DOMAIN_MIN, INTENSITY_DOMAIN_MAX),
            expressiveness=clamp(self.expressiveness, INTENSITY_DOMAIN_MIN, INTENSITY_DOMAIN_MAX),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"detail": self.detail, "expressiveness": self.expressiveness}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], fallback: Optional["ParameterSet"] = None) -> "ParameterSet":
        base = fallback or cls()
        values = {}
        for parameter in StyleParameter:
            raw = payload.get(parameter.value)
            try:
                values[parameter.value] = float(raw) if raw is not None else base.get(parameter)
            except (TypeError, ValueError):
                values[parameter.value] = base.get(parameter)
        return cls(**values)


DEFAULT_PARAMETERS = ParameterSet()


@dataclass
class CalibrationAnchor:
    ui_anchor: float = 0.0
    intensity_anchor: float = DEFAULT_INTENSITY


@dataclass(frozen=True)
class PartialItem:
    key: int
    text: str


@dataclass
class TransformRequest:
    """Payload of one external transform call."""

    items: List[Item]
    changed_parameter: StyleParameter
    ui_value: float
    current_intensity: ParameterSet
    updated_intensity: ParameterSet
    bound: Bound


@dataclass
class TransformResponse:
    transformed_items: List[PartialItem] = field(default_factory=list)
    resulting_parameters: ParameterSet = DEFAULT_PARAMETERS

    def patch(self) -> Dict[int, PartialItem]:
        return {item.key: item for item in self.transformed_items}


@dataclass
class TransformationResult:
    """What callers receive: the full ordered track and the resulting parameter set."""

    items: List[Item]
    parameters: ParameterSet
