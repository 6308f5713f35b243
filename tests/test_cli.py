import asyncio
import json

import pytest

from tuner import cli
from tuner.models import ParameterSet, PartialItem, TransformResponse

SAMPLE_SRT = """1
00:00:01,000 --> 00:00:02,000
(footsteps approach)

2
00:00:02,500 --> 00:00:03,500
Who's there?

3
00:00:05,000 --> 00:00:06,000
(glass shatters)
"""


class DummyStyleService:
    async def calibrate(self, items):
        return ParameterSet(detail=6.0, expressiveness=3.0)

    async def categorize(self, items):
        return {}

    async def transform(self, request):
        await asyncio.sleep(0)
        return TransformResponse(
            transformed_items=[PartialItem(item.key, item.text.upper()) for item in request.items],
            resulting_parameters=request.updated_intensity,
        )


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(cli.LlmStyleService, "from_config", classmethod(lambda cls, config: DummyStyleService()))
    monkeypatch.setattr(cli, "build_token_counter", lambda model: None)
    source = tmp_path / "episode.srt"
    source.write_text(SAMPLE_SRT, encoding="utf-8")
    return tmp_path, source


def _common(tmp_path):
    return ["--config", str(tmp_path / "config.json"), "--base-url", "http://localhost:1234/v1", "--model", "local"]


def test_calibrate_prints_parameters(workspace, capsys):
    tmp_path, source = workspace

    assert cli.main(["calibrate", str(source), *_common(tmp_path)]) == 0

    out = capsys.readouterr().out
    assert "[OK]" in out
    assert "detail=6.00 expressiveness=3.00" in out


def test_tune_writes_webvtt(workspace, capsys):
    tmp_path, source = workspace
    output = tmp_path / "out" / "lower.vtt"

    code = cli.main(
        ["tune", str(source), *_common(tmp_path), "--bound", "lower", "--parameter", "detail",
         "--value", "-2", "-o", str(output)]
    )

    assert code == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("WEBVTT")
    assert "(FOOTSTEPS APPROACH)" in text
    assert "(GLASS SHATTERS)" in text
    assert "Who's there?" in text
    assert "saved to" in capsys.readouterr().out


def test_tune_writes_bounds_export(workspace):
    tmp_path, source = workspace
    output = tmp_path / "bounds.json"

    cli.main(
        ["tune", str(source), *_common(tmp_path), "--bound", "upper", "--parameter", "expressiveness",
         "--value", "4", "-o", str(output)]
    )

    document = json.loads(output.read_text(encoding="utf-8"))
    assert document["upper"][0]["text"] == "(FOOTSTEPS APPROACH)"
    assert document["lower"][0]["text"] == "(footsteps approach)"
    assert document["metadata"]["parameter_values"]["original"] == {"detail": 6.0, "expressiveness": 3.0}


def test_default_output_name(workspace):
    tmp_path, source = workspace

    cli.main(["tune", str(source), *_common(tmp_path), "--bound", "upper", "--parameter", "detail", "--value", "1"])

    assert (tmp_path / "episode.upper.srt").exists()


def test_out_of_range_value_is_a_usage_error(workspace):
    tmp_path, source = workspace

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["tune", str(source), *_common(tmp_path), "--bound", "upper", "--parameter", "detail", "--value", "7"])

    assert excinfo.value.code == 2


def test_remote_host_without_key_is_a_usage_error(workspace, monkeypatch):
    tmp_path, source = workspace
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(SystemExit):
        cli.main(["calibrate", str(source), "--config", str(tmp_path / "config.json")])
