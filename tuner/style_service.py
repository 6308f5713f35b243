"""Calibration, transform and categorization contracts backed by a chat-completions model."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from tuner.config import AppConfig
from tuner.llm_client import LlmClient, LlmClientError, LlmSettings
from tuner.models import (
    DEFAULT_PARAMETERS,
    CaptionCategory,
    Item,
    ParameterSet,
    PartialItem,
    StyleParameter,
    TransformRequest,
    TransformResponse,
)
from tuner.token_utils import completion_budget

logger = logging.getLogger(__name__)

PARAMETER_GLOSSARY = (
    "Level of detail: how much information a caption carries. 1 is extremely concise, 10 is extremely detailed.\n"
    "Expressiveness: how literal or evocative the wording is. 1 is neutral and literal (e.g. \"LOUD THUNDER\"), "
    "10 is vivid and artistic (e.g. \"RUMBLING THUNDER CRACKS THROUGH THE SKY\")."
)

CALIBRATE_SYSTEM_PROMPT = (
    "You analyse non-speech captions written for Deaf and Hard of Hearing viewers and rate the set as a whole "
    "on two scales from 1 to 10.\n"
    f"{PARAMETER_GLOSSARY}\n"
    'Respond with a JSON object only: {"detail": number, "expressiveness": number}.'
)

TRANSFORM_SYSTEM_PROMPT = (
    "You rewrite non-speech captions for Deaf and Hard of Hearing viewers. A user moved a style slider and every "
    "caption you receive must be restyled to match the updated parameter values.\n"
    f"{PARAMETER_GLOSSARY}\n"
    "Change only the parameter that moved; keep the other one where it is. Preserve the meaning of every caption. "
    "Return each caption under its original key and never invent keys.\n"
    'Respond with a JSON object only: {"captions": [{"key": integer, "text": string}], '
    '"parameters": {"detail": number, "expressiveness": number}}. '
    "In \"parameters\" report the changed parameter at its updated value and your estimate for the other one."
)

CATEGORIZE_SYSTEM_PROMPT = (
    "You classify non-speech captions. Allowed categories: "
    + ", ".join(category.value for category in CaptionCategory)
    + ". Music covers songs and musical cues; sound_effect covers environmental and object sounds; "
    "character_sound covers non-verbal vocalisations; action covers movement and impacts; onomatopoeia covers "
    'words imitating sounds. Respond with a JSON object only: {"categories": [{"key": integer, "category": string}]}.'
)


class StyleServiceError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def describe_change(parameter: StyleParameter, current: float, updated: float) -> str:
    name = parameter.value
    if updated == current:
        return f"{name} is UNCHANGED at {current:g}."
    direction = "INCREASED" if updated > current else "DECREASED"
    relative = "more" if updated > current else "less"
    percent = round(abs(updated - current) / current * 100) if current else 100
    return f"{name} {direction} from {current:g} to {updated:g} (about {percent}% {relative})."


class LlmStyleService:
    """
    Implements the calibration, transform and categorization contracts.

    Network calls are blocking ``requests`` calls; the async methods run them on a worker
    thread so the orchestrator's event loop stays free.
    """

    def __init__(
        self,
        client: LlmClient,
        *,
        calibrate_model: Optional[str] = None,
        transform_model: Optional[str] = None,
        categorize_model: Optional[str] = None,
    ):
        self.client = client
        self.calibrate_model = calibrate_model or client.settings.model
        self.transform_model = transform_model or client.settings.model
        self.categorize_model = categorize_model or client.settings.model

    @classmethod
    def from_config(cls, config: AppConfig, session=None) -> "LlmStyleService":
        settings = LlmSettings(
            base_url=config.get("llm_base_url") or "",
            model=config.get("llm_model") or "",
            api_key=config.get("llm_api_key") or "",
            timeout=config.get("llm_timeout"),
            temperature=config.get("llm_temperature"),
            max_completion_tokens=config.get("llm_max_completion_tokens") or None,
        )
        return cls(
            LlmClient(settings, session=session),
            calibrate_model=config.get("calibrate_model"),
            transform_model=config.get("transform_model"),
            categorize_model=config.get("categorize_model"),
        )

    async def calibrate(self, items: Sequence[Item]) -> ParameterSet:
        return await asyncio.to_thread(self.calibrate_sync, items)

    async def transform(self, request: TransformRequest) -> TransformResponse:
        return await asyncio.to_thread(self.transform_sync, request)

    async def categorize(self, items: Sequence[Item]) -> Dict[int, CaptionCategory]:
        return await asyncio.to_thread(self.categorize_sync, items)

    def calibrate_sync(self, items: Sequence[Item]) -> ParameterSet:
        lines = [item.text for item in items if item.is_eligible]
        if not lines:
            logger.warning("Calibration skipped: no eligible captions. Using defaults.")
            return DEFAULT_PARAMETERS
        messages = [
            {"role": "system", "content": CALIBRATE_SYSTEM_PROMPT},
            {"role": "user", "content": "Captions to analyse:\n\n" + "\n".join(lines)},
        ]
        try:
            data = self.client.chat_json(messages, model=self.calibrate_model)
        except LlmClientError as exc:
            logger.warning("Calibration failed (%s). Using defaults.", exc)
            return DEFAULT_PARAMETERS
        estimate = ParameterSet.from_dict(data, fallback=DEFAULT_PARAMETERS).clamped()
        logger.info("Calibrated parameters: detail=%.2f expressiveness=%.2f", estimate.detail, estimate.expressiveness)
        return estimate

    def transform_sync(self, request: TransformRequest) -> TransformResponse:
        eligible = [item for item in request.items if item.can_transform]
        if not eligible:
            return TransformResponse(transformed_items=[], resulting_parameters=request.current_intensity)

        changed = request.changed_parameter
        guidance = "\n".join(
            describe_change(parameter, request.current_intensity.get(parameter), request.updated_intensity.get(parameter))
            for parameter in StyleParameter
        )
        user_payload = {
            "changed_parameter": changed.value,
            "bound": request.bound.value,
            "current_parameters": request.current_intensity.to_dict(),
            "updated_parameters": request.updated_intensity.to_dict(),
            "guidance": guidance,
            "captions": [{"key": item.key, "text": item.text} for item in eligible],
        }
        messages = [
            {"role": "system", "content": TRANSFORM_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(user_payload, ensure_ascii=False)},
        ]
        budget = completion_budget(
            [item.text for item in eligible], self.client.settings.max_completion_tokens
        )
        try:
            data = self.client.chat_json(messages, model=self.transform_model, max_tokens=budget)
        except LlmClientError as exc:
            raise StyleServiceError(f"Transform request failed: {exc}", retryable=exc.retryable) from exc

        allowed = {item.key for item in eligible}
        transformed = self._parse_captions(data.get("captions"), allowed)
        reported = data.get("parameters")
        resulting = ParameterSet.from_dict(
            reported if isinstance(reported, dict) else {}, fallback=request.updated_intensity
        )
        resulting = resulting.with_value(changed, request.updated_intensity.get(changed)).clamped()
        logger.debug(
            "Transformed %d/%d captions (%s, %s bound)", len(transformed), len(eligible), changed.value, request.bound.value
        )
        return TransformResponse(transformed_items=transformed, resulting_parameters=resulting)

    def categorize_sync(self, items: Sequence[Item]) -> Dict[int, CaptionCategory]:
        eligible = [item for item in items if item.is_eligible]
        if not eligible:
            return {}
        payload = [{"key": item.key, "text": item.text} for item in eligible]
        messages = [
            {"role": "system", "content": CATEGORIZE_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
        ]
        try:
            data = self.client.chat_json(messages, model=self.categorize_model, temperature=0.0)
        except LlmClientError as exc:
            logger.warning("Categorization failed: %s", exc)
            return {}
        allowed = {item.key for item in eligible}
        categories: Dict[int, CaptionCategory] = {}
        for entry in data.get("categories") or []:
            if not isinstance(entry, dict):
                continue
            key = _as_key(entry.get("key"))
            if key in allowed:
                categories[key] = CaptionCategory.parse(entry.get("category"))
        return categories

    @staticmethod
    def _parse_captions(raw: Any, allowed: set) -> List[PartialItem]:
        if not isinstance(raw, list):
            raise StyleServiceError("Transform response is missing the 'captions' list.")
        parsed: List[PartialItem] = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            key = _as_key(entry.get("key"))
            text = entry.get("text")
            if key in allowed and isinstance(text, str) and text.strip():
                parsed.append(PartialItem(key=key, text=text.strip()))
        return parsed


def _as_key(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
