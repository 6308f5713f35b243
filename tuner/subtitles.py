from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import srt

from tuner.models import Bound, Item, ParameterSet


def is_non_speech(text: str) -> bool:
    return "(" in text and ")" in text


def load_srt(text: str) -> List[Item]:
    """Parse SubRip text into caption items keyed by position."""
    items: List[Item] = []
    for key, entry in enumerate(srt.parse(text)):
        content = entry.content.strip()
        items.append(
            Item(
                key=key,
                time_start=_to_ms(entry.start),
                time_end=_to_ms(entry.end),
                text=content,
                is_eligible=is_non_speech(content),
            )
        )
    return items


def read_srt(path: Path) -> List[Item]:
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        raw = path.read_text(encoding="utf-8", errors="replace")
    items = load_srt(raw)
    if not items:
        raise ValueError(f"SRT file contains no subtitle lines: {path}")
    return items


def compose_srt(items: Iterable[Item]) -> str:
    subtitles = [
        srt.Subtitle(
            index=position,
            start=timedelta(milliseconds=item.time_start),
            end=timedelta(milliseconds=item.time_end),
            content=item.text,
        )
        for position, item in enumerate(items, 1)
        if item.text.strip()
    ]
    return srt.compose(subtitles)


def _format_vtt(ms: int) -> str:
    hours, remainder = divmod(int(ms), 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02}:{minutes:02}:{secs:02}.{millis:03}"


def compose_webvtt(items: Iterable[Item]) -> str:
    blocks = ["WEBVTT\n"]
    for item in items:
        text = item.text.strip()
        if not text:
            continue
        blocks.append(f"{_format_vtt(item.time_start)} --> {_format_vtt(item.time_end)}\n{text}\n")
    return "\n".join(blocks)


def _exported_caption(item: Item) -> Dict[str, Any]:
    return {
        "key": item.key,
        "start": item.time_start,
        "end": item.time_end,
        "text": item.text,
        "is_non_speech": item.is_eligible,
        "category": item.category.value,
    }


def _exported_track(items: Sequence[Item], non_speech_only: bool) -> List[Dict[str, Any]]:
    return [_exported_caption(item) for item in items if item.is_eligible or not non_speech_only]


def export_bounds(
    session,
    *,
    non_speech_only: bool = False,
    title: Optional[str] = None,
    description: Optional[str] = None,
    genre: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the bounds document for a session: the original track, both bound tracks and
    the parameter set each one was produced with.
    """
    parameters: Dict[str, ParameterSet] = {
        "lower": session.parameters_for(Bound.LOWER),
        "upper": session.parameters_for(Bound.UPPER),
        "original": session.original_parameters,
    }
    metadata: Dict[str, Any] = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "filter_mode": "non-speech-only" if non_speech_only else "all-captions",
        "parameter_values": {name: values.to_dict() for name, values in parameters.items()},
    }
    for name, value in (("title", title), ("description", description), ("genre", genre)):
        if value:
            metadata[name] = value
    return {
        "lower": _exported_track(session.track(Bound.LOWER), non_speech_only),
        "upper": _exported_track(session.track(Bound.UPPER), non_speech_only),
        "original": _exported_track(session.original, non_speech_only),
        "metadata": metadata,
    }


def _to_ms(value: Optional[timedelta]) -> int:
    if value is None:
        return 0
    return int(round(value.total_seconds() * 1000))
