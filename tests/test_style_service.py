import asyncio
import json

import pytest

from tuner.config import AppConfig
from tuner.llm_client import LlmClientError, LlmSettings
from tuner.models import (
    Bound,
    CaptionCategory,
    Item,
    ParameterSet,
    PartialItem,
    StyleParameter,
    TransformRequest,
)
from tuner.style_service import LlmStyleService, StyleServiceError, describe_change


class DummyClient:
    def __init__(self, replies=None, error=None):
        self.settings = LlmSettings(base_url="http://localhost:1234/v1", model="shared-model", max_completion_tokens=2048)
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    def chat_json(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)


def _items():
    return [
        Item(key=0, time_start=0, time_end=900, text="(door slams)", is_eligible=True),
        Item(key=1, time_start=1000, time_end=1900, text="Where were you?", is_eligible=False),
        Item(key=2, time_start=2000, time_end=2900, text="(phone rings)", is_eligible=True, is_locked=True),
        Item(key=3, time_start=3000, time_end=3900, text="(soft piano)", is_eligible=True),
    ]


def _request(items):
    return TransformRequest(
        items=items,
        changed_parameter=StyleParameter.EXPRESSIVENESS,
        ui_value=3.0,
        current_intensity=ParameterSet(detail=4.0, expressiveness=5.0),
        updated_intensity=ParameterSet(detail=4.0, expressiveness=8.0),
        bound=Bound.UPPER,
    )


def test_calibrate_parses_and_clamps():
    client = DummyClient(replies=[{"detail": 3.5, "expressiveness": 14}])
    service = LlmStyleService(client, calibrate_model="calibrator")

    values = asyncio.run(service.calibrate(_items()))

    assert values == ParameterSet(detail=3.5, expressiveness=10.0)
    call = client.calls[0]
    assert call["model"] == "calibrator"
    user_text = call["messages"][1]["content"]
    assert "(door slams)" in user_text
    assert "Where were you?" not in user_text


def test_calibrate_falls_back_to_defaults():
    service = LlmStyleService(DummyClient(error=LlmClientError("down", retryable=True)))

    assert asyncio.run(service.calibrate(_items())) == ParameterSet(detail=5.0, expressiveness=5.0)


def test_calibrate_without_eligible_items_skips_the_call():
    client = DummyClient()
    items = [item for item in _items() if not item.is_eligible]

    assert LlmStyleService(client).calibrate_sync(items) == ParameterSet()
    assert client.calls == []


def test_transform_sends_only_transformable_items():
    reply = {
        "captions": [
            {"key": 0, "text": "(a door SLAMS shut with a bang)"},
            {"key": "3", "text": "(gentle piano melody drifts in)"},
            {"key": 2, "text": "(PHONE)"},
            {"key": 9, "text": "(invented)"},
        ],
        "parameters": {"detail": 4.6, "expressiveness": 7.1},
    }
    client = DummyClient(replies=[reply])
    service = LlmStyleService(client, transform_model="writer")

    response = asyncio.run(service.transform(_request(_items())))

    assert response.transformed_items == [
        PartialItem(0, "(a door SLAMS shut with a bang)"),
        PartialItem(3, "(gentle piano melody drifts in)"),
    ]
    assert response.resulting_parameters == ParameterSet(detail=4.6, expressiveness=8.0)

    call = client.calls[0]
    assert call["model"] == "writer"
    assert 0 < call["max_tokens"] <= 2048
    payload = json.loads(call["messages"][1]["content"])
    assert [caption["key"] for caption in payload["captions"]] == [0, 3]
    assert payload["bound"] == "upper"
    assert "INCREASED from 5 to 8" in payload["guidance"]
    assert "detail is UNCHANGED at 4" in payload["guidance"]


def test_transform_with_nothing_eligible_returns_current_set():
    client = DummyClient()
    items = [item for item in _items() if not item.can_transform]

    response = LlmStyleService(client).transform_sync(_request(items))

    assert response.transformed_items == []
    assert response.resulting_parameters == ParameterSet(detail=4.0, expressiveness=5.0)
    assert client.calls == []


def test_transform_failures_raise_service_error():
    service = LlmStyleService(DummyClient(error=LlmClientError("HTTP 503", retryable=True)))

    with pytest.raises(StyleServiceError) as excinfo:
        asyncio.run(service.transform(_request(_items())))

    assert excinfo.value.retryable
    assert isinstance(excinfo.value.__cause__, LlmClientError)


def test_transform_rejects_reply_without_captions():
    service = LlmStyleService(DummyClient(replies=[{"parameters": {"detail": 4}}]))

    with pytest.raises(StyleServiceError):
        service.transform_sync(_request(_items()))


def test_categorize_maps_known_categories():
    reply = {"categories": [{"key": 0, "category": "action"}, {"key": 3, "category": "Music"}, {"key": 1, "category": "x"}]}
    service = LlmStyleService(DummyClient(replies=[reply]))

    categories = asyncio.run(service.categorize(_items()))

    assert categories == {0: CaptionCategory.ACTION, 3: CaptionCategory.MUSIC}


def test_categorize_failure_returns_empty_mapping():
    service = LlmStyleService(DummyClient(error=LlmClientError("bad gateway")))

    assert asyncio.run(service.categorize(_items())) == {}


def test_describe_change_reports_direction_and_percentage():
    assert describe_change(StyleParameter.DETAIL, 4.0, 6.0) == "detail INCREASED from 4 to 6 (about 50% more)."
    assert describe_change(StyleParameter.DETAIL, 8.0, 6.0) == "detail DECREASED from 8 to 6 (about 25% less)."


def test_from_config_uses_per_operation_models(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    config = AppConfig(tmp_path / "config.json")
    config.settings.update({"llm_model": "base-model", "transform_model": "rewrite-model"})

    service = LlmStyleService.from_config(config)

    assert service.transform_model == "rewrite-model"
    assert service.calibrate_model == "base-model"
    assert service.client.settings.max_completion_tokens == 4096
