"""Two-segment piecewise-linear mapping between slider positions and intensities."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from tuner.models import (
    INTENSITY_DOMAIN_MAX,
    INTENSITY_DOMAIN_MIN,
    UI_DOMAIN_MAX,
    UI_DOMAIN_MIN,
    CalibrationAnchor,
    ParameterSet,
    StyleParameter,
    clamp,
)

logger = logging.getLogger(__name__)


def _interpolate(value: float, src_start: float, src_end: float, dst_start: float, dst_end: float) -> float:
    # Zero-length segment on either axis collapses to its far endpoint.
    if src_end == src_start or dst_end == dst_start:
        return dst_end
    ratio = (value - src_start) / (src_end - src_start)
    return dst_start + ratio * (dst_end - dst_start)


class CalibrationMapper:
    """
    Map UI control values in [-5, 5] to intensities in [1, 10] and back.

    Each parameter has its own anchor. The map is linear from the domain minimum to the
    anchor and from the anchor to the domain maximum, so the anchor position always maps
    exactly onto the anchor intensity.
    """

    def __init__(self, initial: Optional[ParameterSet] = None, ui_anchor: float = 0.0):
        self._anchors: Dict[StyleParameter, CalibrationAnchor] = {
            parameter: CalibrationAnchor(ui_anchor=ui_anchor) for parameter in StyleParameter
        }
        if initial is not None:
            self.update_calibration(initial)

    def anchor(self, parameter: StyleParameter) -> CalibrationAnchor:
        anchor = self._anchors[parameter]
        return CalibrationAnchor(anchor.ui_anchor, anchor.intensity_anchor)

    def update_calibration(self, values: ParameterSet) -> None:
        """Replace both anchors' intensities, e.g. after the initial calibration call."""
        for parameter in StyleParameter:
            self._anchors[parameter].intensity_anchor = self._checked_intensity(values.get(parameter))

    def recalibrate(self, parameter: StyleParameter, new_intensity: float) -> None:
        anchor = self._anchors[parameter]
        anchor.intensity_anchor = self._checked_intensity(new_intensity)
        logger.debug("Recalibrated %s anchor to %.3f", parameter.value, anchor.intensity_anchor)

    def ui_to_intensity(self, parameter: StyleParameter, ui_value: float) -> float:
        anchor = self._anchors[parameter]
        if ui_value == anchor.ui_anchor:
            return anchor.intensity_anchor
        ui_value = clamp(ui_value, UI_DOMAIN_MIN, UI_DOMAIN_MAX)
        if ui_value < anchor.ui_anchor:
            return _interpolate(
                ui_value, anchor.ui_anchor, UI_DOMAIN_MIN, anchor.intensity_anchor, INTENSITY_DOMAIN_MIN
            )
        return _interpolate(
            ui_value, anchor.ui_anchor, UI_DOMAIN_MAX, anchor.intensity_anchor, INTENSITY_DOMAIN_MAX
        )

    def intensity_to_ui(self, parameter: StyleParameter, intensity: float) -> float:
        anchor = self._anchors[parameter]
        if intensity == anchor.intensity_anchor:
            return anchor.ui_anchor
        intensity = clamp(intensity, INTENSITY_DOMAIN_MIN, INTENSITY_DOMAIN_MAX)
        if intensity < anchor.intensity_anchor:
            return _interpolate(
                intensity, anchor.intensity_anchor, INTENSITY_DOMAIN_MIN, anchor.ui_anchor, UI_DOMAIN_MIN
            )
        return _interpolate(
            intensity, anchor.intensity_anchor, INTENSITY_DOMAIN_MAX, anchor.ui_anchor, UI_DOMAIN_MAX
        )

    def current_intensity_set(self) -> ParameterSet:
        return ParameterSet(
            detail=self._anchors[StyleParameter.DETAIL].intensity_anchor,
            expressiveness=self._anchors[StyleParameter.EXPRESSIVENESS].intensity_anchor,
        )

    def intensity_set_for(self, detail_ui: float, expressiveness_ui: float) -> ParameterSet:
        return ParameterSet(
            detail=self.ui_to_intensity(StyleParameter.DETAIL, detail_ui),
            expressiveness=self.ui_to_intensity(StyleParameter.EXPRESSIVENESS, expressiveness_ui),
        )

    @staticmethod
    def _checked_intensity(value: float) -> float:
        bounded = clamp(float(value), INTENSITY_DOMAIN_MIN, INTENSITY_DOMAIN_MAX)
        if bounded != value:
            logger.warning("Calibration value %s outside [1, 10]; clamped to %s", value, bounded)
        return bounded
